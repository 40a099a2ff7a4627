"""
Error Taxonomy

Closed set of errors produced by the top-up flow, the SideShift client and
the webhook ingress. Each error is raised where the failure originates and
carries enough structure for the normalizer to render it without guessing.
"""

from typing import Any, Dict, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Coarse error codes shared by provider and local failures."""

    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TOO_EARLY = "TOO_EARLY"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    SESSION_CORRUPTION = "SESSION_CORRUPTION"


_STATUS_CODES: Dict[int, ErrorCode] = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMITED,
    500: ErrorCode.INTERNAL_ERROR,
    502: ErrorCode.SERVICE_UNAVAILABLE,
    503: ErrorCode.SERVICE_UNAVAILABLE,
    504: ErrorCode.SERVICE_UNAVAILABLE,
}


def code_for_status(status: int) -> ErrorCode:
    """Map an HTTP status returned by the provider to an error code."""
    return _STATUS_CODES.get(status, ErrorCode.UNKNOWN_ERROR)


# =============================================================================
# Provider errors
# =============================================================================


class SideShiftError(Exception):
    """
    Failure talking to SideShift.

    ``status`` is the HTTP status (None for failures that never reached the
    provider), ``details`` the decoded error body when there was one.
    """

    def __init__(
        self,
        status: Optional[int],
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status = status
        self.message = message
        self.code = code
        self.details = details

    @property
    def is_transient(self) -> bool:
        return self.code in (
            ErrorCode.NETWORK_ERROR,
            ErrorCode.SERVICE_UNAVAILABLE,
            ErrorCode.RATE_LIMITED,
        )

    def __repr__(self) -> str:
        return f"SideShiftError(status={self.status!r}, code={self.code.value}, message={self.message!r})"


# =============================================================================
# Local domain errors
# =============================================================================


class TopupError(Exception):
    """Base class for failures raised by the top-up flow itself."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    clears_session: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TopupError):
    """Bad chain alias, amount or address. The user is re-prompted."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ServiceUnavailableError(TopupError):
    """SideShift could not be reached; the session survives for a retry."""

    code = ErrorCode.SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str = "SideShift API is currently unavailable. Please try again later.",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.cause = cause


class ForbiddenError(TopupError):
    """SideShift refuses to create shifts for this caller (jurisdiction)."""

    code = ErrorCode.FORBIDDEN

    def __init__(
        self,
        message: str = "SideShift does not allow creating orders from your location.",
    ):
        super().__init__(message)


class SessionCorruptionError(TopupError):
    """Stored session is missing data required to finish the order."""

    code = ErrorCode.SESSION_CORRUPTION
    clears_session = True


# =============================================================================
# Ingress errors
# =============================================================================


class IngressError(Exception):
    """Webhook delivery rejected before reaching the orchestrator."""

    status_code: int = 400
    title: str = "Bad Request"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.title)
        self.message = message or self.title


class ServerMisconfigurationError(IngressError):
    status_code = 500
    title = "Server configuration error"


class MissingSecretError(IngressError):
    status_code = 400
    title = "Missing secret parameter"


class UnauthorizedError(IngressError):
    status_code = 401
    title = "Unauthorized"


class InvalidEnvelopeError(IngressError):
    status_code = 400
    title = "Invalid update structure"
