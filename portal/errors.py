"""
Domain errors raised by the auth layer, the workflow engine and the scheduler.

Each error carries the HTTP status and the stable ``error_code`` the API
handler renders, so services never import FastAPI.
"""
from typing import Any, Dict, Optional


class PortalError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class Unauthorized(PortalError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Authentication required"


class InvalidOrExpiredToken(Unauthorized):
    """Magic link or session token rejected.

    ``reason`` is for logs only; callers always see the same message.
    """

    default_message = "Invalid or expired token"

    def __init__(self, reason: str = "unknown"):
        self.reason = reason
        super().__init__()


class Forbidden(PortalError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Access denied"


class NotFound(PortalError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Resource not found"


class ValidationFailed(PortalError):
    status_code = 422
    error_code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class InvalidTransition(PortalError):
    status_code = 409
    error_code = "INVALID_TRANSITION"
    default_message = "Campaign is not in a state that allows this action"


class PrematureGoLive(InvalidTransition):
    error_code = "PREMATURE_GO_LIVE"
    default_message = "Go-live date has not been reached yet"


class DeliveryFailure(PortalError):
    status_code = 502
    error_code = "DELIVERY_FAILURE"
    default_message = "Notification delivery failed"
