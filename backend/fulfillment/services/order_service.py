# Overview: Service-layer operations for orders; creation, lookups, status transitions, and cancellation.

"""
Order Orchestrator

WHY: Turn a priced cart (or a staff-entered item list) into a durable order,
decrementing stock exactly once and consuming the voucher exactly once.

ATOMICITY:
Order creation runs as ONE transaction:
    stock check -> order number -> order row -> items + stock ledger
    -> voucher usage -> clear cart -> commit
Any failure rolls the whole unit back: no order, no items, no ledger rows,
no voucher usage, cart untouched.

STATE MACHINE:
    pending -> paid -> packing -> packed -> shipped -> delivered
    pending | paid -> cancelled   (terminal)

MONEY:
    total_amount = subtotal_excl_vat + total_vat - discount_amount + shipping_cost
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import or_

from ..errors import (
    CannotCancel,
    InsufficientStock,
    InvalidStatusTransition,
    NotFoundError,
    ValidationError,
    VoucherNotApplicable,
)
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..models.catalog import PRODUCT_STATUS_INACTIVE
from ..money import ZERO, round2, to_money
from .cart_service import _clear_cart_inner, get_cart
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import next_order_number
from .stock_service import (
    CHANGE_RETURN,
    CHANGE_SALE,
    REFERENCE_ORDER,
    REFERENCE_ORDER_CANCELLATION,
    _adjust_stock_inner,
)
from .vat_service import MODE_EXCLUSIVE, VatCalculator, get_vat_calculator
from .voucher_service import _record_voucher_usage_inner, apply_voucher_to_totals, get_voucher_by_code


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_PENDING = "pending"
ORDER_PAID = "paid"
ORDER_PACKING = "packing"
ORDER_PACKED = "packed"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

ORDER_STATUSES = [
    ORDER_PENDING,
    ORDER_PAID,
    ORDER_PACKING,
    ORDER_PACKED,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
]

ORDER_TRANSITIONS = {
    ORDER_PENDING: {ORDER_PAID, ORDER_CANCELLED},
    ORDER_PAID: {ORDER_PACKING, ORDER_CANCELLED},
    ORDER_PACKING: {ORDER_PACKED},
    ORDER_PACKED: {ORDER_SHIPPED},
    ORDER_SHIPPED: {ORDER_DELIVERED},
    ORDER_DELIVERED: set(),
    ORDER_CANCELLED: set(),
}

CANCELLABLE_STATUSES = {ORDER_PENDING, ORDER_PAID}


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

PAYMENT_STATUSES = [PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED]


SORTABLE_FIELDS = {
    "order_number": Order.order_number,
    "total_amount": Order.total_amount,
    "status": Order.status,
    "payment_status": Order.payment_status,
    "created_at": Order.created_at,
}


# =============================================================================
# HELPERS
# =============================================================================

def _shipping_cost(value) -> Decimal:
    cost = to_money(value if value is not None else 0, "shipping_cost")
    if cost < 0:
        raise ValidationError("shipping_cost must not be negative", details={"field": "shipping_cost"})
    return cost


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("order", order_id)
    return order


def _load_products(product_ids: list[int]) -> dict[int, Product]:
    products = lock_for_update(db.session.query(Product).filter(Product.id.in_(product_ids))).all()
    return {p.id: p for p in products}


def _require_sellable(product_ids, products: dict[int, Product]) -> None:
    """Missing and inactive products are both reported as not found."""
    for product_id in product_ids:
        product = products.get(product_id)
        if product is None or product.status == PRODUCT_STATUS_INACTIVE:
            raise NotFoundError("product", product_id)


def _check_stock(requested: list[tuple[int, int]], products: dict[int, Product]) -> None:
    """All-or-nothing pre-check; names the first product that is short."""
    for product_id, quantity in requested:
        product = products.get(product_id)
        if product is None:
            raise NotFoundError("product", product_id)
        if product.stock_quantity < quantity:
            raise InsufficientStock(product.id, product.name, quantity, product.stock_quantity)


def _new_order(
    *,
    subtotal_excl_vat: Decimal,
    total_vat: Decimal,
    discount_amount: Decimal,
    shipping_cost: Decimal,
    voucher_code: str | None,
    header: dict,
) -> Order:
    order = Order(
        order_number=next_order_number(),
        subtotal_excl_vat=subtotal_excl_vat,
        total_vat=total_vat,
        discount_amount=discount_amount,
        shipping_cost=shipping_cost,
        total_amount=round2(subtotal_excl_vat + total_vat - discount_amount + shipping_cost),
        voucher_code=voucher_code,
        status=ORDER_PENDING,
        payment_status=PAYMENT_PENDING,
        **header,
    )
    db.session.add(order)
    db.session.flush()
    return order


def _add_line(order: Order, product: Product, quantity: int, unit_excl, vat_rate, unit_vat, unit_incl,
              created_by: int | None) -> OrderItem:
    item = OrderItem(
        order=order,
        product_id=product.id,
        product_name=product.name,
        product_sku=product.sku,
        quantity=quantity,
        unit_price_excl_vat=unit_excl,
        vat_rate=vat_rate,
        unit_vat_amount=unit_vat,
        unit_price_incl_vat=unit_incl,
        line_total_incl_vat=unit_incl * quantity,
    )
    db.session.add(item)

    _adjust_stock_inner(
        product.id,
        -quantity,
        CHANGE_SALE,
        reference_id=order.id,
        reference_type=REFERENCE_ORDER,
        notes=f"Order {order.order_number}",
        created_by=created_by,
    )
    return item


def _order_header(
    *,
    user_id,
    guest_name,
    guest_email,
    guest_phone,
    shipping_address,
    shipping_subdistrict,
    shipping_district,
    shipping_province,
    shipping_postal_code,
    payment_method,
    source_platform,
    notes,
    created_by,
) -> dict:
    return {
        "user_id": user_id,
        "guest_name": guest_name,
        "guest_email": guest_email,
        "guest_phone": guest_phone,
        "shipping_address": shipping_address,
        "shipping_subdistrict": shipping_subdistrict,
        "shipping_district": shipping_district,
        "shipping_province": shipping_province,
        "shipping_postal_code": shipping_postal_code,
        "payment_method": payment_method,
        "source_platform": source_platform or "website",
        "notes": notes,
        "created_by": created_by,
    }


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_order_from_cart(
    cart_id: int,
    *,
    shipping_cost=0,
    user_id: int | None = None,
    guest_name: str | None = None,
    guest_email: str | None = None,
    guest_phone: str | None = None,
    shipping_address: str | None = None,
    shipping_subdistrict: str | None = None,
    shipping_district: str | None = None,
    shipping_province: str | None = None,
    shipping_postal_code: str | None = None,
    payment_method: str | None = None,
    source_platform: str = "website",
    notes: str | None = None,
    created_by: int | None = None,
) -> Order:
    """
    Checkout: convert a cart into an order.

    Totals are taken from the cart as precomputed (subtotal, VAT after
    discount, discount) plus the given shipping cost.

    Raises:
        NotFoundError: cart or a product in it does not exist or is inactive
        VoucherNotApplicable: the cart voucher has run out of uses
        ValidationError: cart is empty, bad shipping cost
        InsufficientStock: any line exceeds available stock (nothing is written)
    """
    shipping = _shipping_cost(shipping_cost)

    def _op():
        cart = get_cart(cart_id)
        items = list(cart.items)
        if not items:
            raise ValidationError("Cart is empty", details={"cart_id": cart_id})

        products = _load_products([item.product_id for item in items])
        _require_sellable([item.product_id for item in items], products)
        _check_stock([(item.product_id, item.quantity) for item in items], products)

        header = _order_header(
            user_id=user_id if user_id is not None else cart.user_id,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone,
            shipping_address=shipping_address,
            shipping_subdistrict=shipping_subdistrict,
            shipping_district=shipping_district,
            shipping_province=shipping_province,
            shipping_postal_code=shipping_postal_code,
            payment_method=payment_method,
            source_platform=source_platform,
            notes=notes,
            created_by=created_by,
        )
        order = _new_order(
            subtotal_excl_vat=round2(cart.subtotal_excl_vat),
            total_vat=round2(cart.total_vat),
            discount_amount=round2(cart.discount_amount or ZERO),
            shipping_cost=shipping,
            voucher_code=cart.voucher_code,
            header=header,
        )

        for item in items:
            _add_line(
                order,
                products[item.product_id],
                item.quantity,
                item.unit_price_excl_vat,
                item.vat_rate,
                item.unit_vat_amount,
                item.unit_price_incl_vat,
                created_by,
            )

        if cart.voucher_code:
            _record_voucher_usage_inner(cart.voucher_code, order.id, order.user_id)

        _clear_cart_inner(cart)

        db.session.commit()
        return order

    return run_with_retry(_op)


def _merge_requested_items(items) -> list[tuple[int, int]]:
    if not items:
        raise ValidationError("Order must contain at least one item", details={"field": "items"})

    merged: dict[int, int] = {}
    for raw in items:
        product_id = raw.get("product_id") if isinstance(raw, dict) else None
        quantity = raw.get("quantity") if isinstance(raw, dict) else None
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise ValidationError("Each item needs an integer product_id", details={"field": "items"})
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("Each item needs a positive integer quantity", details={"field": "items"})
        merged[product_id] = merged.get(product_id, 0) + quantity
    return list(merged.items())


def create_order_direct(
    items: list[dict],
    *,
    shipping_cost=0,
    voucher_code: str | None = None,
    vat_calculator: VatCalculator | None = None,
    user_id: int | None = None,
    guest_name: str | None = None,
    guest_email: str | None = None,
    guest_phone: str | None = None,
    shipping_address: str | None = None,
    shipping_subdistrict: str | None = None,
    shipping_district: str | None = None,
    shipping_province: str | None = None,
    shipping_postal_code: str | None = None,
    payment_method: str | None = None,
    source_platform: str = "website",
    notes: str | None = None,
    created_by: int | None = None,
) -> Order:
    """
    Staff-entered order from an explicit item list [{"product_id", "quantity"}].

    Prices are snapshotted from the products now; a voucher code, if given,
    is evaluated on the fly and must apply.

    Raises:
        ValidationError, NotFoundError, InsufficientStock, VoucherNotApplicable
    """
    requested = _merge_requested_items(items)
    shipping = _shipping_cost(shipping_cost)
    calculator = vat_calculator or get_vat_calculator()

    def _op():
        products = _load_products([product_id for product_id, _ in requested])
        _require_sellable([product_id for product_id, _ in requested], products)
        _check_stock(requested, products)

        lines = []
        for product_id, quantity in requested:
            product = products[product_id]
            unit = calculator.breakdown(product.price_excl_vat, MODE_EXCLUSIVE, product.vat_rate)
            lines.append((product, calculator.line_totals(unit, quantity)))

        subtotal = sum((line.line_total_excl_vat for _, line in lines), ZERO)
        vat = sum((line.line_total_vat for _, line in lines), ZERO)

        voucher = None
        if voucher_code:
            try:
                voucher = get_voucher_by_code(voucher_code)
            except NotFoundError:
                raise VoucherNotApplicable(voucher_code, "not_found", "Invalid voucher code")
        totals = apply_voucher_to_totals(voucher, subtotal, vat, calculator, user_id=user_id)

        header = _order_header(
            user_id=user_id,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone,
            shipping_address=shipping_address,
            shipping_subdistrict=shipping_subdistrict,
            shipping_district=shipping_district,
            shipping_province=shipping_province,
            shipping_postal_code=shipping_postal_code,
            payment_method=payment_method,
            source_platform=source_platform,
            notes=notes,
            created_by=created_by,
        )
        order = _new_order(
            subtotal_excl_vat=totals.subtotal_excl_vat,
            total_vat=totals.total_vat,
            discount_amount=totals.discount_amount,
            shipping_cost=shipping,
            voucher_code=voucher.code if voucher else None,
            header=header,
        )

        for product, line in lines:
            _add_line(
                order,
                product,
                line.quantity,
                line.unit.price_excl_vat,
                line.unit.vat_rate,
                line.unit.vat_amount,
                line.unit.price_incl_vat,
                created_by,
            )

        if voucher is not None:
            _record_voucher_usage_inner(voucher.code, order.id, user_id)

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# ORDER QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("order", order_id)
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError("order", order_number)
    return order


def find_guest_order(order_number: str, contact: str) -> Order:
    """Guest tracking: order number plus the phone or e-mail given at checkout."""
    if not order_number or not contact:
        raise ValidationError("order_number and contact are required")
    order = (
        db.session.query(Order)
        .filter(
            Order.order_number == order_number,
            or_(Order.guest_phone == contact, Order.guest_email == contact),
        )
        .first()
    )
    if order is None:
        raise NotFoundError("order", order_number)
    return order


def list_orders(
    *,
    user_id: int | None = None,
    status: str | None = None,
    payment_status: str | None = None,
    source_platform: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Order], dict]:
    q = db.session.query(Order)
    if user_id:
        q = q.filter(Order.user_id == user_id)
    if status:
        q = q.filter(Order.status == status)
    if payment_status:
        q = q.filter(Order.payment_status == payment_status)
    if source_platform:
        q = q.filter(Order.source_platform == source_platform)
    if search:
        pattern = f"%{search}%"
        q = q.filter(
            or_(
                Order.order_number.ilike(pattern),
                Order.guest_name.ilike(pattern),
                Order.guest_email.ilike(pattern),
                Order.guest_phone.ilike(pattern),
            )
        )

    total = q.count()

    column = SORTABLE_FIELDS.get(sort_by, Order.created_at)
    ordering = column.asc() if (sort_order or "").lower() == "asc" else column.desc()
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 200)

    orders = q.order_by(ordering, Order.id.desc()).offset((page - 1) * limit).limit(limit).all()
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit,
    }
    return orders, pagination


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def update_order_status(order_id: int, new_status: str, *, actor_id: int | None = None) -> Order:
    """
    Move an order along its lifecycle.

    Cancellation goes through cancel_order() so stock is always restored.

    Raises:
        ValidationError: unknown status
        InvalidStatusTransition: move not allowed from the current status
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid order status: {new_status}. Must be one of {ORDER_STATUSES}",
            details={"field": "status"},
        )
    if new_status == ORDER_CANCELLED:
        return cancel_order(order_id, cancelled_by=actor_id)

    def _op():
        order = _lock_order(order_id)
        if new_status not in ORDER_TRANSITIONS[order.status]:
            raise InvalidStatusTransition("order", order.status, new_status)
        order.status = new_status
        db.session.commit()
        return order

    return run_with_retry(_op)


def _mark_order_paid_inner(order: Order) -> Order:
    """
    Record payment on an order. Caller owns the transaction.

    Only a pending order advances to paid; orders already further along are
    left where they are.
    """
    if order.status == ORDER_CANCELLED:
        raise InvalidStatusTransition(
            "order", order.status, ORDER_PAID, message="Cannot record payment on a cancelled order"
        )
    order.payment_status = PAYMENT_PAID
    if order.status == ORDER_PENDING:
        order.status = ORDER_PAID
    db.session.flush()
    return order


def update_payment_status(order_id: int, payment_status: str) -> Order:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status: {payment_status}. Must be one of {PAYMENT_STATUSES}",
            details={"field": "payment_status"},
        )

    def _op():
        order = _lock_order(order_id)
        if payment_status == PAYMENT_PAID:
            _mark_order_paid_inner(order)
        else:
            if order.status == ORDER_CANCELLED and payment_status != PAYMENT_REFUNDED:
                raise InvalidStatusTransition("order payment", order.payment_status, payment_status)
            order.payment_status = payment_status
        db.session.commit()
        return order

    return run_with_retry(_op)


def update_tracking_number(order_id: int, tracking_number: str) -> Order:
    if not tracking_number or not tracking_number.strip():
        raise ValidationError("tracking_number is required", details={"field": "tracking_number"})

    def _op():
        order = _lock_order(order_id)
        if order.status == ORDER_CANCELLED:
            raise InvalidStatusTransition(
                "order", order.status, ORDER_SHIPPED, message="Cannot set tracking on a cancelled order"
            )
        order.tracking_number = tracking_number.strip()
        db.session.commit()
        return order

    return run_with_retry(_op)


def update_packing_media(order_id: int, media_path: str) -> Order:
    if not media_path:
        raise ValidationError("media_path is required", details={"field": "media_path"})

    def _op():
        order = _lock_order(order_id)
        order.packing_media_path = media_path
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(order_id: int, *, cancelled_by: int | None = None) -> Order:
    """
    Cancel a pending or paid order and return its stock.

    Each line's quantity goes back to stock with a "return" ledger row
    referencing the cancellation, atomically with the status change.

    Raises:
        NotFoundError: order does not exist
        CannotCancel: order is past paid (or already cancelled)
    """
    def _op():
        order = _lock_order(order_id)
        if order.status not in CANCELLABLE_STATUSES:
            raise CannotCancel(order.status)

        for item in order.items:
            _adjust_stock_inner(
                item.product_id,
                item.quantity,
                CHANGE_RETURN,
                reference_id=order.id,
                reference_type=REFERENCE_ORDER_CANCELLATION,
                notes=f"Order {order.order_number} cancelled",
                created_by=cancelled_by,
            )

        order.status = ORDER_CANCELLED
        order.payment_status = PAYMENT_REFUNDED
        db.session.commit()
        return order

    return run_with_retry(_op)
