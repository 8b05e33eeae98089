# Overview: Typed error taxonomy shared by the order, payment, and stock services.

"""
Fulfillment Errors

Every failure raised by the service layer is a FulfillmentError carrying:
- code: a member of the closed ErrorCode enum (machine-readable)
- message: human-readable text
- details: structured payload (product, statuses, reason, ...)

Routes map codes to HTTP statuses through ERROR_HTTP_STATUS, which covers
every ErrorCode member.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    CANNOT_CANCEL = "CANNOT_CANCEL"
    VOUCHER_NOT_APPLICABLE = "VOUCHER_NOT_APPLICABLE"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"


ERROR_HTTP_STATUS = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INSUFFICIENT_STOCK: 409,
    ErrorCode.INVALID_STATUS_TRANSITION: 409,
    ErrorCode.CANNOT_CANCEL: 409,
    ErrorCode.VOUCHER_NOT_APPLICABLE: 422,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.PERSISTENCE_ERROR: 503,
}


class FulfillmentError(Exception):
    """Base class for service-layer failures."""
    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return ERROR_HTTP_STATUS[self.code]

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(FulfillmentError):
    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(FulfillmentError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier=None):
        message = f"{resource.capitalize()} not found"
        if identifier is not None:
            message = f"{resource.capitalize()} {identifier} not found"
        super().__init__(message, details={"resource": resource, "id": identifier})
        self.resource = resource


class InsufficientStock(FulfillmentError):
    code = ErrorCode.INSUFFICIENT_STOCK

    def __init__(self, product_id: int, product_name: str | None, requested: int, available: int):
        name = product_name or f"#{product_id}"
        super().__init__(
            f"Insufficient stock for product: {name}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )
        self.product_id = product_id


class InvalidStatusTransition(FulfillmentError):
    code = ErrorCode.INVALID_STATUS_TRANSITION

    def __init__(self, entity: str, current: str, attempted: str, message: str | None = None):
        super().__init__(
            message or f"Cannot move {entity} from '{current}' to '{attempted}'",
            details={"entity": entity, "current_status": current, "attempted_status": attempted},
        )
        self.current = current
        self.attempted = attempted


class CannotCancel(InvalidStatusTransition):
    code = ErrorCode.CANNOT_CANCEL

    def __init__(self, current: str):
        super().__init__(
            "order",
            current,
            "cancelled",
            message=f"Order cannot be cancelled at this stage (status '{current}')",
        )


class VoucherNotApplicable(FulfillmentError):
    code = ErrorCode.VOUCHER_NOT_APPLICABLE

    def __init__(self, voucher_code: str, reason: str, message: str):
        super().__init__(message, details={"voucher_code": voucher_code, "reason": reason})
        self.reason = reason


class ExternalServiceError(FulfillmentError):
    code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, service: str, message: str, details: dict | None = None):
        payload = {"service": service}
        payload.update(details or {})
        super().__init__(message, details=payload)
        self.service = service


class PersistenceError(FulfillmentError):
    code = ErrorCode.PERSISTENCE_ERROR
