# Overview: Flask API routes for payment operations; parses input and returns JSON responses.

"""
Payment API Routes

DESIGN:
- Slip upload (the stored file path; upload/renaming happens in front of this service)
- Manual payment entry by staff
- Slip verification through the external verification service
- Manual confirmation (issues the receipt number; idempotent)
- Admin purge
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import FulfillmentError
from ..services import payment_service
from .common import bool_arg, error_response, int_arg, internal_error, json_body


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("/orders/<int:order_id>/slip")
def upload_slip_route(order_id: int):
    """
    Request body: {"slip_image_path": "slips/abc.jpg", "amount": "264.00", "notes": "..."}

    Returns:
        201: Payment created or slip replaced
        409: Payment already verified / order cancelled
    """
    try:
        data = json_body()
        payment = payment_service.upload_slip(
            order_id,
            data.get("slip_image_path"),
            amount=data.get("amount"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload payment slip")
        return internal_error()


@payments_bp.post("/orders/<int:order_id>")
def create_payment_route(order_id: int):
    """Request body: {"amount": "264.00", "payment_method": "cash", "notes": "..."}"""
    try:
        data = json_body()
        payment = payment_service.create_payment(
            order_id,
            data.get("amount"),
            payment_method=data.get("payment_method", payment_service.METHOD_BANK_TRANSFER),
            slip_image_path=data.get("slip_image_path"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return internal_error()


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/")
def list_payments_route():
    """Query params: order_id, status, payment_method, verified, page, limit"""
    try:
        payments, pagination = payment_service.list_payments(
            order_id=int_arg("order_id"),
            status=request.args.get("status"),
            payment_method=request.args.get("payment_method"),
            verified=bool_arg("verified"),
            page=int_arg("page", 1),
            limit=int_arg("limit", 20),
        )
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "pagination": pagination,
        }), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return internal_error()


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return internal_error()


@payments_bp.get("/orders/<int:order_id>")
def get_order_payment_route(order_id: int):
    """Latest payment for an order."""
    try:
        payment = payment_service.get_latest_payment_for_order(order_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order payment")
        return internal_error()


# =============================================================================
# VERIFICATION / CONFIRMATION
# =============================================================================

@payments_bp.post("/<int:payment_id>/verify")
def verify_payment_route(payment_id: int):
    """
    Verify the slip with the external service.

    A verified slip confirms the payment in the same step. An unreachable
    service is recorded as a failed verification (200 with status=failed).
    """
    try:
        payment = payment_service.verify_slip(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify payment slip")
        return internal_error()


@payments_bp.post("/<int:payment_id>/confirm")
def confirm_payment_route(payment_id: int):
    """
    Staff confirmation. Calling it again returns the same receipt number.

    Returns:
        200: Confirmed payment
        409: Order is cancelled
    """
    try:
        payment = payment_service.confirm_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return internal_error()


@payments_bp.delete("/<int:payment_id>")
def delete_payment_route(payment_id: int):
    try:
        payment_service.delete_payment(payment_id)
        return jsonify({"deleted": True}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return internal_error()
