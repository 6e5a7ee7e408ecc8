# loyalty/errors.py
"""
Domain errors raised by the service layer.

Each error carries the HTTP status it maps to; `main.py` registers a single
exception handler that renders them as `{"detail": message}`.
"""

from starlette import status


class LoyaltyError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LoyaltyError):
    """Bad field values; the caller can fix the request and retry."""
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientFundsError(LoyaltyError):
    status_code = status.HTTP_400_BAD_REQUEST


class BudgetExceededError(LoyaltyError):
    """Event award larger than the event's remaining points."""
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(LoyaltyError):
    """Bad credentials or a reset token that belongs to someone else."""
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(LoyaltyError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(LoyaltyError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(LoyaltyError):
    """Concurrent or repeated state change (double processing, reused promotion)."""
    status_code = status.HTTP_409_CONFLICT


class GoneError(LoyaltyError):
    """Event has ended or is full."""
    status_code = status.HTTP_410_GONE


class PayloadTooLargeError(LoyaltyError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class UnsupportedMediaError(LoyaltyError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
