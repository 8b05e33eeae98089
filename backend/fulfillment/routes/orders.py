# Overview: Flask API routes for order operations; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Checkout from a cart, or staff-entered direct orders
- Lookups by id, order number, and guest contact
- Status moves, payment status, tracking number, packing media
- Cancellation returns stock

Authentication and permissions are enforced in front of this service.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import FulfillmentError, ValidationError
from ..services import order_service
from .common import error_response, int_arg, internal_error, json_body


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


ORDER_HEADER_FIELDS = (
    "user_id",
    "guest_name",
    "guest_email",
    "guest_phone",
    "shipping_address",
    "shipping_subdistrict",
    "shipping_district",
    "shipping_province",
    "shipping_postal_code",
    "payment_method",
    "source_platform",
    "notes",
    "created_by",
)


def _header_kwargs(data: dict) -> dict:
    return {key: data[key] for key in ORDER_HEADER_FIELDS if key in data}


# =============================================================================
# ORDER CREATION
# =============================================================================

@orders_bp.post("/checkout")
def checkout_route():
    """
    Create an order from a cart.

    Request body:
    {
        "cart_id": 12,
        "shipping_cost": "50.00",
        "guest_name": "...", "guest_phone": "...", "shipping_address": "...", ...
    }

    Returns:
        201: Order created
        400: Invalid input / empty cart
        404: Cart or product not found
        409: Insufficient stock
    """
    try:
        data = json_body()
        cart_id = data.get("cart_id")
        if not isinstance(cart_id, int):
            raise ValidationError("cart_id is required", details={"field": "cart_id"})

        order = order_service.create_order_from_cart(
            cart_id,
            shipping_cost=data.get("shipping_cost", 0),
            **_header_kwargs(data),
        )
        return jsonify({"order": order.to_dict()}), 201

    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order from cart")
        return internal_error()


@orders_bp.post("/")
def create_direct_order_route():
    """
    Create an order from an explicit item list (staff entry).

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "shipping_cost": "50.00",
        "voucher_code": "SAVE10",
        ...
    }
    """
    try:
        data = json_body()
        order = order_service.create_order_direct(
            data.get("items") or [],
            shipping_cost=data.get("shipping_cost", 0),
            voucher_code=data.get("voucher_code"),
            **_header_kwargs(data),
        )
        return jsonify({"order": order.to_dict()}), 201

    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create direct order")
        return internal_error()


# =============================================================================
# ORDER QUERIES
# =============================================================================

@orders_bp.get("/")
def list_orders_route():
    """
    List orders.

    Query params: user_id, status, payment_status, source_platform, search,
    sort_by, sort_order, page, limit
    """
    try:
        orders, pagination = order_service.list_orders(
            user_id=int_arg("user_id"),
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            source_platform=request.args.get("source_platform"),
            search=request.args.get("search"),
            sort_by=request.args.get("sort_by", "created_at"),
            sort_order=request.args.get("sort_order", "desc"),
            page=int_arg("page", 1),
            limit=int_arg("limit", 20),
        )
        return jsonify({
            "orders": [o.to_dict(include_items=False) for o in orders],
            "pagination": pagination,
        }), 200

    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return internal_error()


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return internal_error()


@orders_bp.get("/number/<order_number>")
def get_order_by_number_route(order_number: str):
    try:
        order = order_service.get_order_by_number(order_number)
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order by number")
        return internal_error()


@orders_bp.get("/track")
def track_guest_order_route():
    """Guest lookup: ?order_number=...&contact=<phone or e-mail>"""
    try:
        order = order_service.find_guest_order(
            request.args.get("order_number", ""),
            request.args.get("contact", ""),
        )
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to look up guest order")
        return internal_error()


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

@orders_bp.patch("/<int:order_id>/status")
def update_status_route(order_id: int):
    """
    Request body: {"status": "packing", "actor_id": 3}

    Returns:
        200: Updated order
        409: Transition not allowed from the current status
    """
    try:
        data = json_body()
        order = order_service.update_order_status(order_id, data.get("status"), actor_id=data.get("actor_id"))
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return internal_error()


@orders_bp.patch("/<int:order_id>/payment-status")
def update_payment_status_route(order_id: int):
    try:
        data = json_body()
        order = order_service.update_payment_status(order_id, data.get("payment_status"))
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order payment status")
        return internal_error()


@orders_bp.patch("/<int:order_id>/tracking")
def update_tracking_route(order_id: int):
    try:
        data = json_body()
        order = order_service.update_tracking_number(order_id, data.get("tracking_number") or "")
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update tracking number")
        return internal_error()


@orders_bp.patch("/<int:order_id>/packing-media")
def update_packing_media_route(order_id: int):
    try:
        data = json_body()
        order = order_service.update_packing_media(order_id, data.get("media_path"))
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update packing media")
        return internal_error()


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    """
    Cancel a pending or paid order; stock is returned.

    Returns:
        200: Cancelled order
        409: Order is past the cancellable stage
    """
    try:
        data = json_body()
        order = order_service.cancel_order(order_id, cancelled_by=data.get("cancelled_by"))
        return jsonify({"order": order.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return internal_error()
