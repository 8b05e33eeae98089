# Overview: Service-layer operations for carts; line snapshots, totals, and voucher application.

"""
Cart Provider

The cart is the priced snapshot that order creation consumes. Each line
captures the product's VAT breakdown when added; cart-level totals are kept
current by _recalculate_totals_inner() after every change:

    subtotal_excl_vat = sum(line_total_excl_vat)
    total_vat         = VAT re-derived after the voucher discount
    total_amount      = subtotal_excl_vat - discount_amount + total_vat

A voucher that stops applying (expired, subtotal fell below the minimum)
is dropped from the cart on the next recalculation.
"""

from __future__ import annotations

from ..errors import InsufficientStock, NotFoundError, ValidationError, VoucherNotApplicable
from ..extensions import db
from ..models import Cart, CartItem, Product
from ..models.catalog import PRODUCT_STATUS_INACTIVE
from ..money import ZERO
from .concurrency import run_with_retry
from .vat_service import MODE_EXCLUSIVE, VatCalculator, get_vat_calculator
from .voucher_service import apply_voucher_to_totals, evaluate_voucher, get_voucher_by_code


def _resolve_calculator(vat_calculator: VatCalculator | None) -> VatCalculator:
    return vat_calculator or get_vat_calculator()


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", details={"field": "quantity"})
    return quantity


def get_cart(cart_id: int) -> Cart:
    cart = db.session.get(Cart, cart_id)
    if cart is None:
        raise NotFoundError("cart", cart_id)
    return cart


def get_or_create_cart(user_id: int | None = None, session_id: str | None = None) -> Cart:
    """A registered user's cart, or a guest's cart keyed by session id."""
    if not user_id and not session_id:
        raise ValidationError("Either user_id or session_id is required")

    def _op():
        q = db.session.query(Cart)
        q = q.filter_by(user_id=user_id) if user_id else q.filter_by(session_id=session_id)
        cart = q.order_by(Cart.id.asc()).first()
        if cart is not None:
            return cart

        cart = Cart(
            user_id=user_id,
            session_id=None if user_id else session_id,
            subtotal_excl_vat=ZERO,
            total_vat=ZERO,
            discount_amount=ZERO,
            total_amount=ZERO,
        )
        db.session.add(cart)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def _snapshot_line(item: CartItem, product: Product, quantity: int, calculator: VatCalculator) -> None:
    unit = calculator.breakdown(product.price_excl_vat, MODE_EXCLUSIVE, product.vat_rate)
    line = calculator.line_totals(unit, quantity)

    item.quantity = quantity
    item.unit_price_excl_vat = unit.price_excl_vat
    item.vat_rate = unit.vat_rate
    item.unit_vat_amount = unit.vat_amount
    item.unit_price_incl_vat = unit.price_incl_vat
    item.line_total_excl_vat = line.line_total_excl_vat
    item.line_total_vat = line.line_total_vat
    item.line_total_incl_vat = line.line_total_incl_vat


def _recalculate_totals_inner(cart: Cart, calculator: VatCalculator) -> Cart:
    """Recompute cart totals in place. Caller owns the transaction."""
    db.session.flush()
    items = db.session.query(CartItem).filter_by(cart_id=cart.id).all()

    subtotal = sum((item.line_total_excl_vat for item in items), ZERO)
    vat = sum((item.line_total_vat for item in items), ZERO)

    voucher = None
    if cart.voucher_code:
        try:
            voucher = get_voucher_by_code(cart.voucher_code)
            totals = apply_voucher_to_totals(voucher, subtotal, vat, calculator, user_id=cart.user_id)
        except (NotFoundError, VoucherNotApplicable):
            cart.voucher_code = None
            voucher = None
    if voucher is None:
        totals = apply_voucher_to_totals(None, subtotal, vat, calculator)

    cart.subtotal_excl_vat = totals.subtotal_excl_vat
    cart.discount_amount = totals.discount_amount
    cart.total_vat = totals.total_vat
    cart.total_amount = totals.total_amount
    db.session.flush()
    return cart


def add_item(cart_id: int, product_id: int, quantity: int = 1, *, vat_calculator: VatCalculator | None = None) -> Cart:
    """
    Add a product to the cart (or increase its quantity).

    Stock is checked here for early feedback only; the authoritative check
    is the conditional decrement at order creation.
    """
    quantity = _validate_quantity(quantity)
    calculator = _resolve_calculator(vat_calculator)

    def _op():
        cart = get_cart(cart_id)
        product = db.session.get(Product, product_id)
        if product is None or product.status == PRODUCT_STATUS_INACTIVE:
            raise NotFoundError("product", product_id)

        item = db.session.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()
        new_quantity = quantity + (item.quantity if item else 0)
        if product.stock_quantity < new_quantity:
            raise InsufficientStock(product.id, product.name, new_quantity, product.stock_quantity)

        if item is None:
            item = CartItem(cart_id=cart.id, product_id=product.id)
            db.session.add(item)
        _snapshot_line(item, product, new_quantity, calculator)

        _recalculate_totals_inner(cart, calculator)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def update_item_quantity(
    cart_id: int, product_id: int, quantity: int, *, vat_calculator: VatCalculator | None = None
) -> Cart:
    """Set a line's quantity; zero or less removes the line."""
    if isinstance(quantity, int) and not isinstance(quantity, bool) and quantity <= 0:
        return remove_item(cart_id, product_id, vat_calculator=vat_calculator)
    quantity = _validate_quantity(quantity)
    calculator = _resolve_calculator(vat_calculator)

    def _op():
        cart = get_cart(cart_id)
        item = db.session.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()
        if item is None:
            raise NotFoundError("cart item", product_id)
        product = item.product
        if product.stock_quantity < quantity:
            raise InsufficientStock(product.id, product.name, quantity, product.stock_quantity)

        _snapshot_line(item, product, quantity, calculator)
        _recalculate_totals_inner(cart, calculator)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def remove_item(cart_id: int, product_id: int, *, vat_calculator: VatCalculator | None = None) -> Cart:
    calculator = _resolve_calculator(vat_calculator)

    def _op():
        cart = get_cart(cart_id)
        item = db.session.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()
        if item is not None:
            db.session.delete(item)
        _recalculate_totals_inner(cart, calculator)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def apply_voucher(
    cart_id: int, voucher_code: str, *, user_id: int | None = None, vat_calculator: VatCalculator | None = None
) -> Cart:
    """
    Attach a voucher code to the cart.

    Raises:
        VoucherNotApplicable: unknown code or the voucher does not apply now
    """
    if not voucher_code:
        raise ValidationError("voucher_code is required", details={"field": "voucher_code"})
    calculator = _resolve_calculator(vat_calculator)

    def _op():
        cart = get_cart(cart_id)
        try:
            voucher = get_voucher_by_code(voucher_code)
        except NotFoundError:
            raise VoucherNotApplicable(voucher_code, "not_found", "Invalid voucher code")

        _recalculate_totals_inner(cart, calculator)
        evaluate_voucher(voucher, cart.subtotal_excl_vat, user_id=user_id or cart.user_id)

        cart.voucher_code = voucher.code
        _recalculate_totals_inner(cart, calculator)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def remove_voucher(cart_id: int, *, vat_calculator: VatCalculator | None = None) -> Cart:
    calculator = _resolve_calculator(vat_calculator)

    def _op():
        cart = get_cart(cart_id)
        cart.voucher_code = None
        _recalculate_totals_inner(cart, calculator)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def _clear_cart_inner(cart: Cart) -> Cart:
    """Delete lines, drop the voucher, zero totals. Caller owns the transaction."""
    for item in db.session.query(CartItem).filter_by(cart_id=cart.id).all():
        db.session.delete(item)
    cart.voucher_code = None
    cart.subtotal_excl_vat = ZERO
    cart.total_vat = ZERO
    cart.discount_amount = ZERO
    cart.total_amount = ZERO
    db.session.flush()
    return cart


def clear_cart(cart_id: int) -> Cart:
    def _op():
        cart = _clear_cart_inner(get_cart(cart_id))
        db.session.commit()
        return cart

    return run_with_retry(_op)
