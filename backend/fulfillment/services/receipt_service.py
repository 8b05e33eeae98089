# Overview: Service-layer operations for receipts; outbound render jobs queued at payment confirmation.

"""
Receipt Jobs

WHY: Rendering a receipt file must never roll back a confirmed payment, and
a failed render must not disappear into a log line nobody reads.

FLOW:
1. confirm_payment() writes a ReceiptJob (status=pending) in its transaction.
2. After commit, dispatch_receipt_job() renders the file OUTSIDE any
   payment/order transaction.
3. Success -> job succeeded, payment.receipt_file_path set.
   Failure -> job failed with attempts/last_error, logged; retried later by
   `flask receipts retry` (retry_receipt_jobs) until RECEIPT_MAX_ATTEMPTS.
"""

from __future__ import annotations

from pathlib import Path

from flask import current_app

from ..errors import ExternalServiceError, NotFoundError
from ..extensions import db
from ..models import Order, Payment, ReceiptJob
from ..money import format_money
from ..time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry


JOB_PENDING = "pending"
JOB_SUCCEEDED = "succeeded"
JOB_FAILED = "failed"


class ReceiptRenderer:
    """Renders one confirmed payment's receipt and returns a file reference."""

    def render(self, order: Order, payment: Payment) -> str:
        raise NotImplementedError


class TextReceiptRenderer(ReceiptRenderer):
    """Plain-text receipts written to RECEIPT_OUTPUT_DIR as <receipt_number>.txt."""

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)

    def render(self, order: Order, payment: Payment) -> str:
        if not payment.receipt_number:
            raise ValueError(f"Payment {payment.id} has no receipt number")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{payment.receipt_number}.txt"

        lines = [
            f"RECEIPT {payment.receipt_number}",
            f"Order: {order.order_number}",
            f"Paid: {to_utc_z(payment.payment_date)}",
            f"Method: {payment.payment_method}",
            "",
        ]
        for item in order.items:
            lines.append(
                f"{item.product_sku}  {item.product_name}  x{item.quantity}  "
                f"@ {format_money(item.unit_price_incl_vat)}  = {format_money(item.line_total_incl_vat)}"
            )
        lines += [
            "",
            f"Subtotal (excl. VAT): {format_money(order.subtotal_excl_vat)}",
            f"Discount:             {format_money(order.discount_amount)}",
            f"VAT:                  {format_money(order.total_vat)}",
            f"Shipping:             {format_money(order.shipping_cost)}",
            f"Total:                {format_money(order.total_amount)}",
            f"Amount paid:          {format_money(payment.amount)}",
        ]

        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)


def get_receipt_renderer() -> ReceiptRenderer:
    return current_app.extensions["receipt_renderer"]


def _enqueue_receipt_job_inner(payment: Payment) -> ReceiptJob:
    """One job per payment. Caller owns the transaction."""
    job = db.session.query(ReceiptJob).filter_by(payment_id=payment.id).first()
    if job is not None:
        return job
    job = ReceiptJob(payment_id=payment.id, order_id=payment.order_id, status=JOB_PENDING, attempts=0)
    db.session.add(job)
    db.session.flush()
    return job


def get_receipt_job(job_id: int) -> ReceiptJob:
    job = db.session.get(ReceiptJob, job_id)
    if job is None:
        raise NotFoundError("receipt job", job_id)
    return job


def list_receipt_jobs(status: str | None = None, limit: int = 100) -> list[ReceiptJob]:
    q = db.session.query(ReceiptJob)
    if status:
        q = q.filter(ReceiptJob.status == status)
    return q.order_by(ReceiptJob.id.asc()).limit(limit).all()


def process_receipt_job(job_id: int, *, renderer: ReceiptRenderer | None = None) -> ReceiptJob:
    """
    Render one job's receipt.

    Raises:
        NotFoundError: no such job
        ExternalServiceError: the renderer failed (failure already recorded on the job)
    """
    renderer = renderer or get_receipt_renderer()

    def _claim():
        job = lock_for_update(db.session.query(ReceiptJob).filter_by(id=job_id)).first()
        if job is None:
            raise NotFoundError("receipt job", job_id)
        if job.status == JOB_SUCCEEDED:
            return job
        job.attempts = (job.attempts or 0) + 1
        job.last_attempt_at = utcnow()
        db.session.commit()
        return job

    job = run_with_retry(_claim)
    if job.status == JOB_SUCCEEDED:
        return job

    payment = db.session.get(Payment, job.payment_id)
    order = db.session.get(Order, job.order_id)

    try:
        file_path = renderer.render(order, payment)
    except Exception as exc:
        error_text = f"{exc.__class__.__name__}: {exc}"

        def _fail():
            failed = get_receipt_job(job_id)
            failed.status = JOB_FAILED
            failed.last_error = error_text
            db.session.commit()
            return failed

        run_with_retry(_fail)
        raise ExternalServiceError(
            "receipt_renderer",
            "Receipt rendering failed",
            details={"job_id": job_id, "payment_id": job.payment_id, "error": error_text},
        ) from exc

    def _succeed():
        done = get_receipt_job(job_id)
        done.status = JOB_SUCCEEDED
        done.file_path = file_path
        done.last_error = None
        done.completed_at = utcnow()
        paid = db.session.get(Payment, done.payment_id)
        paid.receipt_file_path = file_path
        db.session.commit()
        return done

    return run_with_retry(_succeed)


def dispatch_receipt_job(job_id: int, *, renderer: ReceiptRenderer | None = None) -> ReceiptJob | None:
    """
    Best-effort render after a payment confirmation has committed.

    Never raises: failures are recorded on the job and logged for retry.
    """
    try:
        return process_receipt_job(job_id, renderer=renderer)
    except Exception:
        current_app.logger.exception("Failed to render receipt for job %s", job_id)
        return None


def retry_receipt_jobs(*, max_attempts: int | None = None, renderer: ReceiptRenderer | None = None) -> dict:
    """Re-dispatch pending/failed jobs that still have attempts left."""
    if max_attempts is None:
        max_attempts = current_app.config.get("RECEIPT_MAX_ATTEMPTS", 5)

    job_ids = [
        row.id
        for row in db.session.query(ReceiptJob.id)
        .filter(
            ReceiptJob.status.in_([JOB_PENDING, JOB_FAILED]),
            ReceiptJob.attempts < max_attempts,
        )
        .order_by(ReceiptJob.id.asc())
        .all()
    ]

    succeeded, failed = [], []
    for job_id in job_ids:
        job = dispatch_receipt_job(job_id, renderer=renderer)
        (succeeded if job is not None and job.status == JOB_SUCCEEDED else failed).append(job_id)

    return {"attempted": len(job_ids), "succeeded": succeeded, "failed": failed}
