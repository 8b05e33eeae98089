from __future__ import annotations

import json

from ..extensions import db
from ..money import format_money
from fulfillment.time_utils import to_utc_z


class Payment(db.Model):
    """
    Payment record for an order (bank transfer slip, PromptPay, cash, ...).

    STATUS:
    - pending: awaiting verification (slip uploaded or manual entry)
    - verified: confirmed; receipt_number issued (terminal success)
    - failed: verification rejected; a slip re-upload moves it back to pending

    Many-to-one with Order; "the" payment of an order is the most recent one.
    receipt_number is issued exactly once, by payment_service.confirm_payment().
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    payment_method = db.Column(db.String(32), nullable=False, default="bank_transfer")
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    slip_image_path = db.Column(db.String(512), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Verification result (raw payload kept as JSON text)
    slip_verified = db.Column(db.Boolean, nullable=False, default=False)
    verification_response = db.Column(db.Text, nullable=True)
    verified_amount = db.Column(db.Numeric(12, 2), nullable=True)
    transfer_date = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Confirmation
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    receipt_number = db.Column(db.String(64), nullable=True, unique=True)
    receipt_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    receipt_file_path = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def verification_payload(self) -> dict | None:
        if not self.verification_response:
            return None
        return json.loads(self.verification_response)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_method": self.payment_method,
            "amount": format_money(self.amount),
            "status": self.status,
            "slip_image_path": self.slip_image_path,
            "notes": self.notes,
            "verified": bool(self.slip_verified),
            "verification_response": self.verification_payload,
            "verified_amount": format_money(self.verified_amount),
            "transfer_date": to_utc_z(self.transfer_date),
            "verified_at": to_utc_z(self.verified_at),
            "payment_date": to_utc_z(self.payment_date),
            "receipt_number": self.receipt_number,
            "receipt_generated_at": to_utc_z(self.receipt_generated_at),
            "receipt_file_path": self.receipt_file_path,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ReceiptJob(db.Model):
    """
    Outbound receipt-rendering job.

    WHY: Rendering runs after the confirmation transaction commits and may
    fail (disk, renderer bugs). The job row is written INSIDE the confirm
    transaction so every confirmed payment has exactly one job, and a failed
    render stays visible and retryable.

    STATUS: pending -> succeeded | failed (failed -> succeeded on retry)
    """
    __tablename__ = "receipt_jobs"
    __table_args__ = (
        db.UniqueConstraint("payment_id", name="uq_receipt_jobs_payment"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    file_path = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment = db.relationship("Payment", backref=db.backref("receipt_job", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "file_path": self.file_path,
            "created_at": to_utc_z(self.created_at),
            "last_attempt_at": to_utc_z(self.last_attempt_at),
            "completed_at": to_utc_z(self.completed_at),
        }
