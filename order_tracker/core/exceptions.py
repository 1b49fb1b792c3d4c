"""
Domain Exceptions

Every failure the order core reports to a caller maps onto one of these
classes. The FastAPI layer renders them with a single exception handler,
so services raise them freely without knowing about HTTP.

Version: 1.0.0
"""

from typing import Optional


class OrderTrackerError(Exception):
    """Base class for all expected, caller-facing failures."""

    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.error
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert to the standard error payload."""
        return {
            "success": False,
            "error": self.message,
            "detail": self.detail,
        }


class NotFoundError(OrderTrackerError):
    """Id does not resolve to a live (non-tombstoned) row."""
    status_code = 404
    error = "Not found"


class InvalidRequestError(OrderTrackerError):
    """Missing required fields, empty patch, or an illegal transition."""
    status_code = 400
    error = "Invalid request"


class UnauthorizedError(OrderTrackerError):
    """No session, or the session token could not be verified."""
    status_code = 401
    error = "Not authenticated"


class ForbiddenError(OrderTrackerError):
    """Session exists but its role is not allowed to do this."""
    status_code = 403
    error = "You do not have permission to perform this action"


class ConflictError(OrderTrackerError):
    """The row changed since the caller read it."""
    status_code = 409
    error = "Order was modified concurrently"
