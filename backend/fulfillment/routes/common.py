# Overview: Shared request-parsing and error-response helpers for the API blueprints.

from flask import jsonify, request

from ..errors import FulfillmentError, ValidationError


def error_response(exc: FulfillmentError):
    """Typed service error -> {"error": {code, message, details}} with its HTTP status."""
    return jsonify({"error": exc.to_dict()}), exc.http_status


def internal_error():
    return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_arg(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={"field": name})


def bool_arg(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    return raw.lower() in ("1", "true", "yes")
