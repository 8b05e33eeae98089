from __future__ import annotations

from ..extensions import db
from ..money import format_money
from fulfillment.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order (registered user or guest).

    WHY: The order is the durable result of checkout. It is created once by
    order_service, mutated only through its status transitions, and never
    deleted (cancellation is a status).

    MONEY INVARIANT:
        total_amount == subtotal_excl_vat + total_vat - discount_amount + shipping_cost
    where total_vat is the VAT after any voucher discount.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_payment_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-20261018-00001-K7Q")
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    # Owner: registered user, or guest contact fields
    user_id = db.Column(db.Integer, nullable=True, index=True)
    guest_name = db.Column(db.String(255), nullable=True)
    guest_email = db.Column(db.String(255), nullable=True)
    guest_phone = db.Column(db.String(32), nullable=True)

    # Shipping address
    shipping_address = db.Column(db.Text, nullable=True)
    shipping_subdistrict = db.Column(db.String(128), nullable=True)
    shipping_district = db.Column(db.String(128), nullable=True)
    shipping_province = db.Column(db.String(128), nullable=True)
    shipping_postal_code = db.Column(db.String(16), nullable=True)

    # Money (2 decimals)
    subtotal_excl_vat = db.Column(db.Numeric(12, 2), nullable=False)
    total_vat = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    voucher_code = db.Column(db.String(64), nullable=True)

    # Lifecycle
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    payment_method = db.Column(db.String(32), nullable=True)

    # Fulfillment
    tracking_number = db.Column(db.String(128), nullable=True)
    packing_media_path = db.Column(db.String(512), nullable=True)

    source_platform = db.Column(db.String(32), nullable=False, default="website")
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "guest_name": self.guest_name,
            "guest_email": self.guest_email,
            "guest_phone": self.guest_phone,
            "shipping_address": self.shipping_address,
            "shipping_subdistrict": self.shipping_subdistrict,
            "shipping_district": self.shipping_district,
            "shipping_province": self.shipping_province,
            "shipping_postal_code": self.shipping_postal_code,
            "subtotal_excl_vat": format_money(self.subtotal_excl_vat),
            "total_vat": format_money(self.total_vat),
            "discount_amount": format_money(self.discount_amount),
            "shipping_cost": format_money(self.shipping_cost),
            "total_amount": format_money(self.total_amount),
            "voucher_code": self.voucher_code,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "tracking_number": self.tracking_number,
            "packing_media_path": self.packing_media_path,
            "source_platform": self.source_platform,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line: snapshot of the product at order time.

    Decoupled from later product edits. Immutable after creation.
    unit_price_incl_vat == unit_price_excl_vat + unit_vat_amount
    line_total_incl_vat == unit_price_incl_vat * quantity
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_excl_vat = db.Column(db.Numeric(12, 2), nullable=False)
    vat_rate = db.Column(db.Numeric(5, 2), nullable=False)
    unit_vat_amount = db.Column(db.Numeric(12, 2), nullable=False)
    unit_price_incl_vat = db.Column(db.Numeric(12, 2), nullable=False)
    line_total_incl_vat = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price_excl_vat": format_money(self.unit_price_excl_vat),
            "vat_rate": format_money(self.vat_rate),
            "unit_vat_amount": format_money(self.unit_vat_amount),
            "unit_price_incl_vat": format_money(self.unit_price_incl_vat),
            "line_total_incl_vat": format_money(self.line_total_incl_vat),
        }
