"""
Error taxonomy and secure error handling

Every error a sync unit can raise is a ServiceError carrying the HTTP status
and machine-readable code it maps to. Unexpected failures go through
log_and_sanitize_error so clients never see internals.
"""

import logging
import uuid
from typing import Optional

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors that map one-to-one onto an HTTP response."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class ValidationError(ServiceError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class UnauthorizedError(ServiceError):
    """Strava rejected the access token; the owner must re-authorize."""

    status_code = 401
    error_code = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    status_code = 403
    error_code = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "NOT_FOUND"


class RateLimitedError(ServiceError):
    """Strava returned 429. The caller must back off before re-invoking."""

    status_code = 429
    error_code = "RATE_LIMITED"


class ConfigurationError(ServiceError):
    error_code = "CONFIGURATION_ERROR"


class TokenRefreshError(ServiceError):
    error_code = "TOKEN_REFRESH_FAILED"


class UpstreamError(ServiceError):
    """Any other non-success answer (or no answer) from Strava."""

    error_code = "UPSTREAM_ERROR"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["status"] = self.status
        return body


class StorageError(ServiceError):
    error_code = "STORAGE_ERROR"


def log_and_sanitize_error(
    error: Exception,
    context: str,
    user_message: Optional[str] = None
) -> tuple[str, str]:
    """
    Log full error details server-side and return sanitized message for client.

    Args:
        error: The exception that occurred
        context: Description of what operation failed (e.g., "Token exchange")
        user_message: Optional custom message to show user. If None, uses generic message.

    Returns:
        Tuple of (sanitized_message, error_id) for client response
    """
    # Generate unique error ID for correlation
    error_id = str(uuid.uuid4())[:8]

    logger.error(
        f"{context} failed [{error_id}]: {type(error).__name__}: {str(error)}",
        exc_info=error
    )

    if user_message:
        sanitized = f"{user_message} (Error ID: {error_id})"
    else:
        sanitized = f"{context} failed. Please try again later. (Error ID: {error_id})"

    return sanitized, error_id
