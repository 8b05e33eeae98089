# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Lifecycle Service

WHY: Carry an order's payment from slip upload (or staff entry) through
verification to confirmation, issuing exactly one receipt number.

STATE MACHINE:
    pending -> verified   (terminal success; receipt number issued)
    pending -> failed     (slip re-upload moves it back to pending)

DESIGN PRINCIPLES:
- Many payments may exist per order; "the" payment is the latest one.
- External verification runs OUTSIDE any transaction; only its result is
  written, and confirmation (when verified) happens in that same write.
- Confirm is idempotent: a payment that already has a receipt number is
  returned unchanged. No second number, no second receipt job.
- Receipt rendering is dispatched after commit and can never undo a
  confirmation (see receipt_service).
"""

from __future__ import annotations

import json
from decimal import Decimal

from flask import current_app

from ..errors import ExternalServiceError, InvalidStatusTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Payment, ReceiptJob
from ..money import to_money
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .order_service import ORDER_CANCELLED, _lock_order, _mark_order_paid_inner
from .receipt_service import ReceiptRenderer, _enqueue_receipt_job_inner, dispatch_receipt_job
from .sequence_service import next_receipt_number
from .slip_verification import SlipVerificationClient, SlipVerificationResult, get_slip_verifier


# =============================================================================
# PAYMENT METHODS / STATUS (CONSTANTS)
# =============================================================================

METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_PROMPTPAY = "promptpay"
METHOD_CASH = "cash"
METHOD_OTHER = "other"

VALID_PAYMENT_METHODS = [METHOD_BANK_TRANSFER, METHOD_PROMPTPAY, METHOD_CASH, METHOD_OTHER]

PAYMENT_PENDING = "pending"
PAYMENT_VERIFIED = "verified"
PAYMENT_FAILED = "failed"

PAYMENT_STATUSES = [PAYMENT_PENDING, PAYMENT_VERIFIED, PAYMENT_FAILED]

SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
ERROR_ORDER_CANCELLED = "ORDER_CANCELLED"


# =============================================================================
# HELPERS
# =============================================================================

def _lock_payment(payment_id: int) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    if payment is None:
        raise NotFoundError("payment", payment_id)
    return payment


def _latest_payment_query(order_id: int):
    return (
        db.session.query(Payment)
        .filter(Payment.order_id == order_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )


def _positive_amount(value) -> Decimal:
    amount = to_money(value, "amount")
    if amount <= 0:
        raise ValidationError("Payment amount must be positive", details={"field": "amount"})
    return amount


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def create_payment(
    order_id: int,
    amount=None,
    *,
    payment_method: str = METHOD_BANK_TRANSFER,
    slip_image_path: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Staff-recorded payment for an order that has none yet.

    amount defaults to the order total.

    Raises:
        ValidationError: bad method/amount, or the order already has a payment
        NotFoundError: order does not exist
        InvalidStatusTransition: order is cancelled
    """
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}",
            details={"field": "payment_method"},
        )

    def _op():
        order = _lock_order(order_id)
        if order.status == ORDER_CANCELLED:
            raise InvalidStatusTransition(
                "order", order.status, "paid", message="Cannot add payment to a cancelled order"
            )
        if _latest_payment_query(order_id).first() is not None:
            raise ValidationError("Payment already exists for this order", details={"order_id": order_id})

        payment = Payment(
            order_id=order.id,
            payment_method=payment_method,
            amount=_positive_amount(amount if amount is not None else order.total_amount),
            status=PAYMENT_PENDING,
            slip_image_path=slip_image_path,
            notes=notes,
            slip_verified=False,
        )
        db.session.add(payment)
        order.payment_method = payment_method
        db.session.commit()
        return payment

    return run_with_retry(_op)


def upload_slip(order_id: int, slip_image_path: str, *, amount=None, notes: str | None = None) -> Payment:
    """
    Attach a transfer slip to an order's payment.

    - No payment yet: create a pending bank-transfer payment.
    - Latest payment pending/failed: replace the slip in place, back to pending.
    - Latest payment verified: rejected.
    """
    if not slip_image_path:
        raise ValidationError("slip_image_path is required", details={"field": "slip_image_path"})

    def _op():
        order = _lock_order(order_id)
        if order.status == ORDER_CANCELLED:
            raise InvalidStatusTransition(
                "order", order.status, "paid", message="Cannot upload a slip for a cancelled order"
            )

        payment = lock_for_update(_latest_payment_query(order_id)).first()
        if payment is None:
            payment = Payment(
                order_id=order.id,
                payment_method=METHOD_BANK_TRANSFER,
                amount=_positive_amount(amount if amount is not None else order.total_amount),
                status=PAYMENT_PENDING,
                slip_verified=False,
            )
            db.session.add(payment)
            order.payment_method = METHOD_BANK_TRANSFER
        elif payment.status == PAYMENT_VERIFIED:
            raise InvalidStatusTransition(
                "payment", payment.status, PAYMENT_PENDING, message="Payment is already verified"
            )
        else:
            payment.status = PAYMENT_PENDING
            payment.slip_verified = False
            payment.verification_response = None
            payment.verified_amount = None
            payment.transfer_date = None
            payment.verified_at = None

        payment.slip_image_path = slip_image_path
        if notes is not None:
            payment.notes = notes
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("payment", payment_id)
    return payment


def get_latest_payment_for_order(order_id: int) -> Payment:
    payment = _latest_payment_query(order_id).first()
    if payment is None:
        raise NotFoundError("payment", f"for order {order_id}")
    return payment


def list_payments(
    *,
    order_id: int | None = None,
    status: str | None = None,
    payment_method: str | None = None,
    verified: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Payment], dict]:
    q = db.session.query(Payment)
    if order_id:
        q = q.filter(Payment.order_id == order_id)
    if status:
        q = q.filter(Payment.status == status)
    if payment_method:
        q = q.filter(Payment.payment_method == payment_method)
    if verified is not None:
        q = q.filter(Payment.slip_verified.is_(bool(verified)))

    total = q.count()
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 200)
    payments = (
        q.order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return payments, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit,
    }


def delete_payment(payment_id: int) -> None:
    """Admin purge. Removes the payment and its receipt job, if any."""
    def _op():
        payment = _lock_payment(payment_id)
        db.session.query(ReceiptJob).filter_by(payment_id=payment.id).delete(synchronize_session="fetch")
        db.session.delete(payment)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# CONFIRMATION
# =============================================================================

def _confirm_payment_inner(payment: Payment) -> ReceiptJob:
    """
    Issue the receipt number and mark the order paid. Caller owns the
    transaction and has checked that no receipt number exists yet.
    """
    order = _lock_order(payment.order_id)
    _mark_order_paid_inner(order)

    now = utcnow()
    payment.status = PAYMENT_VERIFIED
    payment.payment_date = now
    payment.receipt_number = next_receipt_number(now)
    payment.receipt_generated_at = now
    db.session.flush()

    return _enqueue_receipt_job_inner(payment)


def _dispatch_after_commit(payment_id: int, job_id: int | None, renderer: ReceiptRenderer | None) -> Payment:
    if job_id is not None:
        dispatch_receipt_job(job_id, renderer=renderer)
    return get_payment(payment_id)


def confirm_payment(payment_id: int, *, renderer: ReceiptRenderer | None = None) -> Payment:
    """
    Confirm a payment: receipt number, payment date, order paid.

    Idempotent: an already-confirmed payment is returned as-is.

    Raises:
        NotFoundError: payment does not exist
        InvalidStatusTransition: the order is cancelled
    """
    def _op():
        payment = _lock_payment(payment_id)
        if payment.receipt_number:
            return None
        job = _confirm_payment_inner(payment)
        db.session.commit()
        return job.id

    job_id = run_with_retry(_op)
    return _dispatch_after_commit(payment_id, job_id, renderer)


# =============================================================================
# VERIFICATION
# =============================================================================

def ingest_verification(
    payment_id: int,
    result: SlipVerificationResult,
    *,
    renderer: ReceiptRenderer | None = None,
) -> Payment:
    """
    Store a verification outcome; a verified slip confirms the payment in
    the same transaction.

    A verified slip for an order cancelled in the meantime is kept as a
    failed verification with code ORDER_CANCELLED.
    """
    def _op():
        payment = _lock_payment(payment_id)
        if payment.receipt_number:
            return None

        payment.slip_verified = bool(result.verified)
        payment.verification_response = json.dumps(result.to_payload(), default=str)
        payment.verified_amount = result.amount
        payment.transfer_date = result.transfer_date

        job_id = None
        order = _lock_order(payment.order_id)
        if result.verified and order.status == ORDER_CANCELLED:
            current_app.logger.warning(
                "Verified slip for payment %s arrived after order %s was cancelled", payment.id, order.id
            )
            payload = result.to_payload()
            payload["error"] = {"code": ERROR_ORDER_CANCELLED, "message": "Order was cancelled before the slip was verified"}
            payment.verification_response = json.dumps(payload, default=str)
            payment.status = PAYMENT_FAILED
            payment.verified_at = utcnow()
        elif result.verified:
            payment.verified_at = utcnow()
            job_id = _confirm_payment_inner(payment).id
        else:
            payment.status = PAYMENT_FAILED
            payment.verified_at = None

        db.session.commit()
        return job_id

    job_id = run_with_retry(_op)
    return _dispatch_after_commit(payment_id, job_id, renderer)


def verify_slip(
    payment_id: int,
    *,
    verifier: SlipVerificationClient | None = None,
    renderer: ReceiptRenderer | None = None,
) -> Payment:
    """
    Run the payment's slip through the verification service and ingest the result.

    The outbound call happens before any transaction is opened. A service
    failure is logged and recorded as a failed verification.
    """
    verifier = verifier or get_slip_verifier()
    payment = get_payment(payment_id)
    if payment.receipt_number:
        return payment
    if not payment.slip_image_path:
        raise ValidationError("Payment has no slip image to verify", details={"payment_id": payment_id})

    slip_path = payment.slip_image_path
    expected = payment.amount
    db.session.rollback()

    try:
        result = verifier.verify(slip_path, expected)
    except ExternalServiceError as exc:
        current_app.logger.warning("Slip verification unavailable for payment %s: %s", payment_id, exc.message)
        result = SlipVerificationResult(
            verified=False,
            raw=exc.details,
            error_code=SERVICE_UNAVAILABLE,
            error_message=exc.message,
        )

    return ingest_verification(payment_id, result, renderer=renderer)
