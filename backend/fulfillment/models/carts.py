from __future__ import annotations

from ..extensions import db
from ..money import format_money
from fulfillment.time_utils import to_utc_z


class Cart(db.Model):
    """
    Shopping cart with precomputed totals.

    Totals are maintained by cart_service.recalculate_totals():
    - subtotal_excl_vat: sum of line totals before discount
    - total_vat: VAT re-derived after any voucher discount
    - total_amount: subtotal - discount + total_vat
    Order creation consumes these totals as-is.
    """
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(128), nullable=True, index=True)

    voucher_code = db.Column(db.String(64), nullable=True)

    subtotal_excl_vat = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_vat = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "voucher_code": self.voucher_code,
            "subtotal_excl_vat": format_money(self.subtotal_excl_vat),
            "total_vat": format_money(self.total_vat),
            "discount_amount": format_money(self.discount_amount),
            "total_amount": format_money(self.total_amount),
            "items": [item.to_dict() for item in self.items],
            "updated_at": to_utc_z(self.updated_at),
        }


class CartItem(db.Model):
    """Cart line with the product's VAT breakdown captured at add time."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)

    unit_price_excl_vat = db.Column(db.Numeric(12, 2), nullable=False)
    vat_rate = db.Column(db.Numeric(5, 2), nullable=False)
    unit_vat_amount = db.Column(db.Numeric(12, 2), nullable=False)
    unit_price_incl_vat = db.Column(db.Numeric(12, 2), nullable=False)

    line_total_excl_vat = db.Column(db.Numeric(12, 2), nullable=False)
    line_total_vat = db.Column(db.Numeric(12, 2), nullable=False)
    line_total_incl_vat = db.Column(db.Numeric(12, 2), nullable=False)

    cart = db.relationship("Cart", backref=db.backref("items", lazy=True, order_by="CartItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_excl_vat": format_money(self.unit_price_excl_vat),
            "vat_rate": format_money(self.vat_rate),
            "unit_vat_amount": format_money(self.unit_vat_amount),
            "unit_price_incl_vat": format_money(self.unit_price_incl_vat),
            "line_total_excl_vat": format_money(self.line_total_excl_vat),
            "line_total_vat": format_money(self.line_total_vat),
            "line_total_incl_vat": format_money(self.line_total_incl_vat),
        }
