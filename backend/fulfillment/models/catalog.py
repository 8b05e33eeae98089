from __future__ import annotations

from ..extensions import db
from ..money import format_money
from fulfillment.time_utils import to_utc_z


PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_OUT_OF_STOCK = "out_of_stock"
PRODUCT_STATUS_INACTIVE = "inactive"


class Product(db.Model):
    """
    Product master data as seen by the fulfillment core.

    Catalog CRUD lives elsewhere; this model only exposes what orders need:
    - price_excl_vat / vat_rate: snapshotted onto cart and order lines
    - stock_quantity: current on-hand, mutated ONLY through stock_service
    - status: flipped between active/out_of_stock by the stock ledger
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status", "status"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    price_excl_vat = db.Column(db.Numeric(12, 2), nullable=False)
    # Percent; NULL means "use the configured default rate"
    vat_rate = db.Column(db.Numeric(5, 2), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_excl_vat": format_money(self.price_excl_vat),
            "vat_rate": format_money(self.vat_rate),
            "stock_quantity": self.stock_quantity,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHistory(db.Model):
    """
    Append-only stock ledger.

    One row per stock mutation, written in the same transaction as the
    mutation itself. quantity_after == quantity_before + quantity_change.

    IMMUTABLE: Rows are never updated or deleted.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_product_created", "product_id", "created_at"),
        db.Index("ix_stock_history_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Signed: negative for sales, positive for returns
    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    change_type = db.Column(db.String(32), nullable=False, index=True)  # sale, return, adjustment, restock

    reference_id = db.Column(db.Integer, nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)  # order, order_cancellation, manual

    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_history", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_change": self.quantity_change,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "change_type": self.change_type,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
