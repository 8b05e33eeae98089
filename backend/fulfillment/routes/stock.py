# Overview: Flask API routes for stock operations; ledger history and manual adjustments.

from flask import Blueprint, current_app, jsonify

from ..errors import FulfillmentError, ValidationError
from ..services import stock_service
from .common import error_response, int_arg, internal_error, json_body


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/products/<int:product_id>/history")
def stock_history_route(product_id: int):
    """Query params: limit (default 50), offset"""
    try:
        rows, total = stock_service.list_stock_history(
            product_id,
            limit=min(int_arg("limit", 50), 500),
            offset=max(int_arg("offset", 0), 0),
        )
        return jsonify({"history": [r.to_dict() for r in rows], "total": total}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock history")
        return internal_error()


@stock_bp.post("/products/<int:product_id>/adjust")
def adjust_stock_route(product_id: int):
    """
    Manual stock change.

    Request body:
    {
        "quantity_change": -3,
        "change_type": "adjustment",   (or "restock")
        "notes": "Damaged in storage",
        "created_by": 2
    }

    Returns:
        201: Ledger row
        409: Change would take stock below zero
    """
    try:
        data = json_body()
        change_type = data.get("change_type", stock_service.CHANGE_ADJUSTMENT)
        if change_type not in (stock_service.CHANGE_ADJUSTMENT, stock_service.CHANGE_RESTOCK):
            raise ValidationError(
                "change_type must be adjustment or restock",
                details={"field": "change_type"},
            )

        entry = stock_service.adjust_stock(
            product_id,
            data.get("quantity_change"),
            change_type,
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )
        product = stock_service.get_product(product_id)
        return jsonify({"entry": entry.to_dict(), "product": product.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return internal_error()
