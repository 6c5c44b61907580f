# Overview: Application error taxonomy mapped onto HTTP status codes and envelope codes.

"""
Every error raised deliberately by a service derives from AppError.

Routes never build error responses by hand for these: the handlers
registered in create_app() render them into the standard envelope

    {"success": false, "error": {"message": ..., "code": ...}}

Anything that is NOT an AppError is treated as an internal error: the
session is rolled back, the traceback is logged, and the caller only sees
a generic message (no schema details leak out).
"""

from __future__ import annotations


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"message": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    """Missing or malformed input."""
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"


class AuthorizationError(AppError):
    """Role or warehouse-scope check failed."""
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(AppError):
    """Entity or tenant could not be resolved (in the caller's company)."""
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    """A status-transition or quantity precondition failed."""
    status_code = 409
    code = "CONFLICT"


class InsufficientStockError(ConflictError):
    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        *,
        warehouse_id: int,
        product_id: int,
        variant_id: int,
        available: int,
        requested: int,
    ):
        super().__init__(
            f"Insufficient stock for product {product_id} variant {variant_id} "
            f"in warehouse {warehouse_id}. Available: {available}, requested: {requested}",
            details={
                "warehouse_id": warehouse_id,
                "product_id": product_id,
                "variant_id": variant_id,
                "available": available,
                "requested": requested,
            },
        )
        self.available = available
        self.requested = requested


class PaymentProcessorError(AppError):
    status_code = 502
    code = "PAYMENT_PROCESSOR_ERROR"
