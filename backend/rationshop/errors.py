"""
Domain error taxonomy. Each error carries the HTTP status and the user-facing message
that the API layer renders; internal detail stays in the logs.
"""
from typing import Optional


class RationShopError(Exception):
    """Base class for failures scoped to a single user action."""
    status_code = 500
    code = "unexpected_error"
    default_message = "Something went wrong. Please try again later."

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class NotFound(RationShopError):
    status_code = 404
    code = "not_found"
    default_message = "The requested record was not found."


class InsufficientStock(RationShopError):
    status_code = 409
    code = "insufficient_stock"
    default_message = "Not enough stock to fulfil this order."


class QuotaExceeded(RationShopError):
    status_code = 409
    code = "quota_exceeded"
    default_message = "Requested quantity exceeds your remaining monthly quota."


class InvalidTransition(RationShopError):
    status_code = 409
    code = "invalid_transition"
    default_message = "This status change is not allowed."


class Forbidden(RationShopError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to perform this action."


class Unauthorized(RationShopError):
    status_code = 401
    code = "unauthorized"
    default_message = "Could not validate credentials."


class TransactionConflict(RationShopError):
    status_code = 503
    code = "transaction_conflict"
    default_message = "The records changed while we were saving. Please try again."


class ValidationFailed(RationShopError):
    status_code = 400
    code = "validation_failed"
    default_message = "The request is not valid."


class UnexpectedError(RationShopError):
    pass


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (NotFound, InsufficientStock, QuotaExceeded, InvalidTransition, Forbidden,
                Unauthorized, TransactionConflict, ValidationFailed, UnexpectedError)
}
