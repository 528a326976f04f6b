"""
Error presentation helpers

Turns any exception into what the console shows the operator:
- auth failures -> actionable message with a manual re-login affordance
- rate limits   -> countdown to the computed retry time
- everything else -> the upstream message, sanitized
"""
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from freightops.core.config import settings
from freightops.core.exceptions import ApiError
from freightops.services.encryption import sanitize_for_logging

logger = logging.getLogger(__name__)

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "bearer",
    "traceback",
    "file \"",
]

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"

MAX_MESSAGE_LENGTH = 200


@dataclass
class ErrorInfo:
    """Flattened view of an error for display."""
    message: str
    status: Optional[int] = None
    is_auth_error: bool = False
    is_rate_limit_error: bool = False
    retry_after: Optional[datetime] = None


def is_sensitive_error(message: str) -> bool:
    """Check if error message contains sensitive information."""
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """
    Sanitize an error message for operator display.

    Args:
        error: The error string or exception

    Returns:
        Sanitized message
    """
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message

    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."

    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH] + "..."

    return message


def sanitize_upstream_message(message: str) -> str:
    """
    Prepare a carrier/backend message for display.

    Upstream wording is kept ("Invalid username or password"); only secret
    values such as bearer tokens are redacted, and long bodies are capped.
    """
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return sanitize_for_logging(message, max_length=MAX_MESSAGE_LENGTH + 3)


def extract_error_info(error: object) -> ErrorInfo:
    """Extract message, status and retry hints from any error."""
    if isinstance(error, ApiError):
        return ErrorInfo(
            message=sanitize_upstream_message(error.message) or GENERIC_ERROR_MESSAGE,
            status=error.status,
            is_auth_error=error.is_auth_error,
            is_rate_limit_error=error.is_rate_limit_error,
            retry_after=error.retry_after,
        )

    if isinstance(error, Exception):
        return ErrorInfo(message=sanitize_error_message(error) or GENERIC_ERROR_MESSAGE)

    return ErrorInfo(message=GENERIC_ERROR_MESSAGE)


def _plural(n: int, unit: str) -> str:
    return f"in {n} {unit}{'s' if n != 1 else ''}"


def format_retry_after(retry_after: Optional[datetime], now: Optional[float] = None) -> str:
    """
    Human countdown to a retry time ("in 5 seconds", "in 2 minutes").

    Rounds up. Returns "" when there is nothing to wait for.
    """
    if retry_after is None:
        return ""

    now = time.time() if now is None else now
    diff = retry_after.timestamp() - now
    if diff <= 0:
        return ""

    seconds = math.ceil(diff)
    if seconds < 60:
        return _plural(seconds, "second")

    minutes = math.ceil(seconds / 60)
    if minutes < 60:
        return _plural(minutes, "minute")

    return _plural(math.ceil(minutes / 60), "hour")


def describe_error(error: object, now: Optional[float] = None) -> str:
    """One-line operator message for an error."""
    info = extract_error_info(error)

    if info.is_auth_error:
        return f"{info.message.rstrip('.')}. Please log in to the carrier again."

    if info.is_rate_limit_error:
        countdown = format_retry_after(info.retry_after, now=now)
        if countdown:
            return f"{info.message.rstrip('.')}. The request will be retried automatically {countdown}."
        return f"{info.message.rstrip('.')}. The request will be retried automatically."

    return info.message
