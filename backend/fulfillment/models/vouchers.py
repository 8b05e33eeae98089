from __future__ import annotations

from ..extensions import db
from ..money import format_money
from fulfillment.time_utils import to_utc_z


VOUCHER_PERCENTAGE = "percentage"
VOUCHER_FIXED = "fixed"


class Voucher(db.Model):
    """
    Discount code.

    Voucher lifecycle (create/edit/expire) is owned by the catalog side;
    the fulfillment core only reads vouchers, increments usage_count, and
    writes VoucherUsage rows when an order consumes one.
    """
    __tablename__ = "vouchers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)

    discount_type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)
    max_discount_amount = db.Column(db.Numeric(12, 2), nullable=True)
    minimum_order_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_limit_per_customer = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_value": format_money(self.discount_value),
            "max_discount_amount": format_money(self.max_discount_amount),
            "minimum_order_amount": format_money(self.minimum_order_amount),
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "usage_limit": self.usage_limit,
            "usage_limit_per_customer": self.usage_limit_per_customer,
            "usage_count": self.usage_count,
            "status": self.status,
        }


class VoucherUsage(db.Model):
    """One row per order that consumed a voucher."""
    __tablename__ = "voucher_usage"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    voucher = db.relationship("Voucher", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "voucher_id": self.voucher_id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "used_at": to_utc_z(self.used_at),
        }
