# backend/fulfillment/routes/system.py
"""
System health endpoint.

Checks the database and the receipt queue, and reports whether the slip
verification service is configured and reachable.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Order, ReceiptJob
from ..services.receipt_service import JOB_FAILED, JOB_PENDING
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"orders": order_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_receipt_queue_health() -> dict:
    """Failed receipt jobs degrade health; they need `flask receipts retry`."""
    try:
        pending = db.session.query(ReceiptJob).filter_by(status=JOB_PENDING).count()
        failed = db.session.query(ReceiptJob).filter_by(status=JOB_FAILED).count()
    except Exception:
        current_app.logger.exception("Receipt queue health check failed")
        return {"status": "unhealthy", "error": "Receipt queue error"}

    return {
        "status": "degraded" if failed else "healthy",
        "details": {"pending": pending, "failed": failed},
    }


def check_slip_verifier_health() -> dict:
    verifier = current_app.extensions.get("slip_verifier")
    if verifier is None or not verifier.api_key:
        return {"status": "degraded", "warning": "Slip verification API key not configured"}
    result = verifier.check_status()
    if not result["available"]:
        return {"status": "degraded", "warning": result.get("error")}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "receipt_queue": check_receipt_queue_health(),
        "slip_verification": check_slip_verifier_health(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
