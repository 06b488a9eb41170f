"""
Shop Errors
===========
Every failure the API reports to a caller is one of these. Each class
carries the HTTP status and the stable ``error`` code used in the
``{error, message}`` response body.
"""

from typing import Optional


class ShopError(Exception):
    status_code: int = 500
    error: str = "internal_server_error"
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(ShopError):
    status_code = 400
    error = "validation_error"
    default_message = "Invalid request"


class Unauthorized(ShopError):
    status_code = 401
    error = "unauthorized"
    default_message = "Unauthorized"


class NotFoundError(ShopError):
    status_code = 404
    error = "not_found"
    default_message = "Not found"


class ConflictError(ShopError):
    status_code = 409
    error = "conflict"
    default_message = "Resource already exists"


class PaymentNotCompleted(ShopError):
    status_code = 400
    error = "payment_not_completed"
    default_message = "Payment not completed"


class MissingBuyerEmail(ShopError):
    status_code = 400
    error = "missing_buyer_email"
    default_message = "No customer email in session"


class PaymentProviderError(ShopError):
    status_code = 502
    error = "payment_provider_error"
    default_message = "Payment provider error"


class DependencyUnavailable(ShopError):
    status_code = 503
    error = "dependency_unavailable"
    default_message = "A backing service is unavailable"
