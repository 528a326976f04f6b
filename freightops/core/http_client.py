"""
Rate-limit aware request execution for carrier API calls

- 429 detection with Retry-After header respect (body retryAfter as fallback)
- Exponential backoff when the server gives no hint
- Every other error class propagates immediately, no retry
- Carrier-agnostic: wraps any zero-argument coroutine function

retry_after values are timezone-aware UTC datetimes:
- Retry-After: <seconds>   -> now + seconds
- Retry-After: <HTTP-date> -> parsed as-is
- body {"retryAfter": ...} -> ISO-8601 or HTTP-date, only when the header
  is absent; any other shape is ignored and backoff applies
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from freightops.core.config import settings
from freightops.core.exceptions import (
    ApiError,
    RateLimitError,
    error_class_for_status,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[RateLimitError, int, Optional[datetime]], Any]


@dataclass
class RetryConfig:
    """Configuration for rate limit retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0           # Base delay in seconds
    max_delay: float = 30.0           # Maximum delay cap
    exponential_base: float = 2.0     # Exponential backoff multiplier

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_retry_after_header(value: Optional[str], now: Optional[float] = None) -> Optional[datetime]:
    """Parse a Retry-After header, returns absolute UTC datetime."""
    if not value:
        return None
    value = value.strip()
    now = time.time() if now is None else now

    try:
        # Try as seconds first
        seconds = int(value)
    except ValueError:
        seconds = None

    if seconds is not None:
        try:
            return datetime.fromtimestamp(now + seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning(f"[429] Retry-After out of range, using backoff: {value[:32]!r}")
            return None

    try:
        # Try as HTTP date
        return _utc(parsedate_to_datetime(value))
    except (ValueError, TypeError, OverflowError):
        pass

    logger.warning(f"[429] Unparseable Retry-After header: {value!r}")
    return None


def parse_retry_after_body(value: Any) -> Optional[datetime]:
    """Parse a body-level retryAfter. Accepts ISO-8601 or HTTP-date strings."""
    if not value or not isinstance(value, str):
        if value:
            logger.warning(f"[429] Ignoring non-string body retryAfter: {value!r}")
        return None

    try:
        return _utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except (ValueError, OverflowError):
        pass

    try:
        return _utc(parsedate_to_datetime(value))
    except (ValueError, TypeError, OverflowError):
        pass

    logger.warning(f"[429] Ignoring unparseable body retryAfter: {value!r}")
    return None


def _read_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def classify_response(response: httpx.Response, now: Optional[float] = None) -> Optional[ApiError]:
    """
    Convert a non-2xx response into the error taxonomy.

    Returns:
        ApiError subclass instance, or None for a successful response
    """
    if response.is_success:
        return None

    status = response.status_code
    body = _read_json(response)
    message = body.get("message") or f"Request failed with status {status}"

    retry_after = parse_retry_after_header(response.headers.get("Retry-After"), now=now)
    if retry_after is None and "Retry-After" not in response.headers:
        retry_after = parse_retry_after_body(body.get("retryAfter"))

    error_cls = error_class_for_status(status)
    return error_cls(message, status=status, retry_after=retry_after)


def raise_for_api_error(response: httpx.Response) -> httpx.Response:
    """Raise the classified error for a non-2xx response."""
    error = classify_response(response)
    if error is not None:
        raise error
    return response


class ResilientRequestExecutor:
    """
    Retry wrapper that understands exactly one retryable error: 429.

    Usage:
        executor = ResilientRequestExecutor()
        quote = await executor.execute(lambda: client.create_rate_quote(token, payload))
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retry_config = retry_config or RetryConfig.from_settings()
        self._clock = clock
        self._sleep = sleep

    def _calculate_backoff(self, attempt: int) -> float:
        """min(base * exp_base ^ attempt, max_delay), in seconds."""
        cfg = self.retry_config
        delay = cfg.base_delay * (cfg.exponential_base ** attempt)
        return min(delay, cfg.max_delay)

    def compute_delay(self, error: RateLimitError, attempt: int) -> float:
        """Seconds to wait before retrying after a rate limit failure."""
        if error.retry_after is not None:
            return max(0.0, error.retry_after.timestamp() - self._clock())
        return self._calculate_backoff(attempt)

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        on_retry: Optional[OnRetry] = None,
    ) -> T:
        """
        Invoke fn, retrying only on RateLimitError.

        Args:
            fn: Zero-argument coroutine function performing the request
            max_retries: Overrides the configured retry count
            on_retry: Called as on_retry(error, attempt_number, retry_after)
                before each sleep. May be sync or async.

        Returns:
            Whatever fn returns

        Raises:
            The first non-rate-limit error, or the last RateLimitError once
            retries are exhausted
        """
        retries = self.retry_config.max_retries if max_retries is None else max_retries
        attempt = 0

        while True:
            try:
                return await fn()
            except RateLimitError as e:
                if attempt >= retries:
                    logger.error(f"[429] Giving up after {attempt + 1} attempts: {e.message}")
                    raise

                delay = self.compute_delay(e, attempt)
                attempt += 1
                logger.warning(
                    f"[429] Rate limited, retry {attempt}/{retries} in {delay:.1f}s"
                    + (f" (retry after {e.retry_after.isoformat()})" if e.retry_after else "")
                )

                if on_retry is not None:
                    result = on_retry(e, attempt, e.retry_after)
                    if inspect.isawaitable(result):
                        await result

                await self._sleep(delay)

