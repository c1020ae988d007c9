"""
Error handling utilities for Lambda functions.

Provides standardized error responses with error codes and the HTTP status
each code maps to.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """
    Application error with error code and message.

    Raised anywhere below a handler and turned into a JSON envelope by the
    API middleware.
    """

    def __init__(self, error_code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        """HTTP status code for this error."""
        return http_status_for(self.error_code)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the API response body."""
        return {
            "errorCode": self.error_code,
            "message": self.message,
            **self.details,
        }


# Common error codes
class ErrorCode:
    """Standard error codes for the application."""

    # Authorization errors
    UNAUTHORIZED = "UNAUTHORIZED"
    USER_EXPIRED = "USER_EXPIRED"
    CSRF_INVALID = "CSRF_INVALID"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"

    # Validation errors
    INVALID_INPUT = "INVALID_INPUT"

    # Business logic errors
    LIMIT_REACHED = "LIMIT_REACHED"
    INSUFFICIENT_TOKENS = "INSUFFICIENT_TOKENS"
    GIFT_UNAVAILABLE = "GIFT_UNAVAILABLE"

    # System errors
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_BY_CODE: Dict[str, int] = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.CSRF_INVALID: 400,
    ErrorCode.PERMISSION_DENIED: 400,
    ErrorCode.GIFT_UNAVAILABLE: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.USER_EXPIRED: 401,
    ErrorCode.LIMIT_REACHED: 403,
    ErrorCode.INSUFFICIENT_TOKENS: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.UPSTREAM_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}


def http_status_for(error_code: str) -> int:
    """Map an error code to its HTTP status (unknown codes are server errors)."""
    return _STATUS_BY_CODE.get(error_code, 500)


def handle_error(error: Exception) -> Dict[str, Any]:
    """
    Convert exception to standardized error response.

    Args:
        error: Exception to handle

    Returns:
        Error dictionary for the API response body
    """
    if isinstance(error, AppError):
        return error.to_dict()

    # Unexpected error - return generic message
    return {
        "errorCode": ErrorCode.INTERNAL_ERROR,
        "message": "An unexpected error occurred. Please try again.",
    }
