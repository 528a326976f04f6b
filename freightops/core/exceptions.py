"""
FreightOps Exception Hierarchy

Structured exception classes for the carrier session layer.
All exceptions include code, message, and details for audit trail and
debugging.

Exception Hierarchy:
    LogisticsError
    └── ApiError
        ├── AuthError           (401/403 - token invalid/expired)
        ├── ValidationError     (400)
        ├── RateLimitError      (429, carries retry_after)
        ├── ServerError         (5xx)
        ├── NetworkError        (transport failure, no response)
        └── TokenMissingError   (2xx but no parseable token)

retry_after is always a timezone-aware UTC datetime (or None).
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class LogisticsError(Exception):
    """
    Base exception for all FreightOps custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "LOGISTICS_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# API ERRORS
# =============================================================================

class ApiError(LogisticsError):
    """
    Error returned by the logistics backend or a carrier API.

    Plain ApiError covers statuses outside the taxonomy (404, 409, ...).
    """
    default_code = "API_ERROR"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after: Optional[datetime] = None,
        **kwargs
    ):
        self.status = status
        self.retry_after = retry_after
        details = kwargs.pop("details", {})
        details["status"] = status
        super().__init__(message, details=details, **kwargs)

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_validation_error(self) -> bool:
        return self.status == 400

    @property
    def is_rate_limit_error(self) -> bool:
        return self.status == 429

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after.isoformat() if self.retry_after else None
        return data


class AuthError(ApiError):
    """Token invalid or expired, or credentials rejected."""
    default_code = "AUTH_FAILED"
    default_severity = "P1"


class ValidationError(ApiError):
    """Request rejected as malformed."""
    default_code = "VALIDATION_FAILED"
    default_severity = "P3"


class RateLimitError(ApiError):
    """Too many requests. The only error class the executor retries."""
    default_code = "RATE_LIMITED"
    default_severity = "P2"

    def __init__(self, message: str, retry_after: Optional[datetime] = None, **kwargs):
        kwargs.setdefault("status", 429)
        details = kwargs.pop("details", {})
        details["retry_after"] = retry_after.isoformat() if retry_after else None
        super().__init__(message, retry_after=retry_after, details=details, **kwargs)


class ServerError(ApiError):
    """Upstream 5xx."""
    default_code = "SERVER_ERROR"
    default_severity = "P1"


class NetworkError(ApiError):
    """Transport failure - no response was received."""
    default_code = "NETWORK_ERROR"
    default_severity = "P1"


class TokenMissingError(ApiError):
    """Authenticate succeeded but no token could be extracted."""
    default_code = "TOKEN_MISSING"
    default_severity = "P1"


# Status -> exception class. Anything >= 500 is a ServerError.
STATUS_ERROR_MAP = {
    400: ValidationError,
    401: AuthError,
    403: AuthError,
    429: RateLimitError,
}


def error_class_for_status(status: int) -> type:
    """Pick the taxonomy class for an HTTP status code."""
    if status in STATUS_ERROR_MAP:
        return STATUS_ERROR_MAP[status]
    if status >= 500:
        return ServerError
    return ApiError
