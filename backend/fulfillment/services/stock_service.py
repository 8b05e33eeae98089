# Overview: Service-layer operations for stock; atomic stock mutation plus append-only history.

"""
Stock Ledger Invariants (authoritative)

- products.stock_quantity is the current on-hand; it is only mutated here.
- Every mutation writes exactly one StockHistory row in the SAME transaction:
    quantity_after == quantity_before + quantity_change
- On-hand never goes negative. The decrement is a conditional update
    UPDATE products SET stock_quantity = stock_quantity + :delta
    WHERE id = :id AND stock_quantity + :delta >= 0
  and zero affected rows means the product is missing or short. There is no
  check-then-write window for two concurrent orders to oversell through.
- Status follows stock: after <= 0 -> out_of_stock, otherwise active.
  Inactive products stay inactive.
"""

from __future__ import annotations

from sqlalchemy import case, update

from ..errors import InsufficientStock, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockHistory
from ..models.catalog import (
    PRODUCT_STATUS_ACTIVE,
    PRODUCT_STATUS_INACTIVE,
    PRODUCT_STATUS_OUT_OF_STOCK,
)
from .concurrency import run_with_retry


CHANGE_SALE = "sale"
CHANGE_RETURN = "return"
CHANGE_ADJUSTMENT = "adjustment"
CHANGE_RESTOCK = "restock"

VALID_CHANGE_TYPES = [CHANGE_SALE, CHANGE_RETURN, CHANGE_ADJUSTMENT, CHANGE_RESTOCK]

REFERENCE_ORDER = "order"
REFERENCE_ORDER_CANCELLATION = "order_cancellation"
REFERENCE_MANUAL = "manual"


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("product", product_id)
    return product


def _expire_cached_product(product_id: int) -> None:
    """Drop stale stock/status from an already-loaded Product after a core UPDATE."""
    cached = db.session.identity_map.get(db.session.identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached, ["stock_quantity", "status", "updated_at"])


def _adjust_stock_inner(
    product_id: int,
    delta: int,
    change_type: str,
    *,
    reference_id: int | None = None,
    reference_type: str | None = None,
    notes: str | None = None,
    created_by: int | None = None,
) -> StockHistory:
    """Core ledger write without retry or commit.

    Called by order creation and cancellation inside their own transaction.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("quantity_change must be a non-zero integer", details={"field": "quantity_change"})
    if change_type not in VALID_CHANGE_TYPES:
        raise ValidationError(
            f"Invalid change_type: {change_type}. Must be one of {VALID_CHANGE_TYPES}",
            details={"field": "change_type"},
        )

    new_quantity = Product.stock_quantity + delta
    stmt = (
        update(Product)
        .where(Product.id == product_id, new_quantity >= 0)
        .values(
            stock_quantity=new_quantity,
            status=case(
                (Product.status == PRODUCT_STATUS_INACTIVE, PRODUCT_STATUS_INACTIVE),
                (new_quantity <= 0, PRODUCT_STATUS_OUT_OF_STOCK),
                else_=PRODUCT_STATUS_ACTIVE,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    _expire_cached_product(product_id)

    if not result.rowcount:
        row = db.session.query(Product.name, Product.stock_quantity).filter(Product.id == product_id).first()
        if row is None:
            raise NotFoundError("product", product_id)
        raise InsufficientStock(product_id, row.name, requested=-delta, available=row.stock_quantity)

    after = db.session.query(Product.stock_quantity).filter(Product.id == product_id).scalar()

    entry = StockHistory(
        product_id=product_id,
        quantity_change=delta,
        quantity_before=after - delta,
        quantity_after=after,
        change_type=change_type,
        reference_id=reference_id,
        reference_type=reference_type,
        notes=notes,
        created_by=created_by,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def adjust_stock(
    product_id: int,
    delta: int,
    change_type: str = CHANGE_ADJUSTMENT,
    *,
    reference_id: int | None = None,
    reference_type: str | None = REFERENCE_MANUAL,
    notes: str | None = None,
    created_by: int | None = None,
) -> StockHistory:
    """
    Standalone stock mutation (manual adjustment, restock).

    Raises:
        ValidationError: zero/non-integer delta, unknown change_type
        NotFoundError: product does not exist
        InsufficientStock: the change would take on-hand below zero
    """
    def _op():
        entry = _adjust_stock_inner(
            product_id,
            delta,
            change_type,
            reference_id=reference_id,
            reference_type=reference_type,
            notes=notes,
            created_by=created_by,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def list_stock_history(product_id: int, *, limit: int = 50, offset: int = 0) -> tuple[list[StockHistory], int]:
    """Newest-first ledger rows for one product, with the total row count."""
    get_product(product_id)

    q = db.session.query(StockHistory).filter(StockHistory.product_id == product_id)
    total = q.count()
    rows = (
        q.order_by(StockHistory.created_at.desc(), StockHistory.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total
