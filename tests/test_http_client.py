from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from freightops.core.exceptions import (
    ApiError,
    AuthError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from freightops.core.http_client import (
    ResilientRequestExecutor,
    RetryConfig,
    classify_response,
    parse_retry_after_body,
    parse_retry_after_header,
)

NOW = 1_700_000_000.0


def _at(offset: float) -> datetime:
    return datetime.fromtimestamp(NOW + offset, tz=timezone.utc)


class TestRetryAfterParsing:
    def test_header_seconds(self):
        assert parse_retry_after_header("5", now=NOW) == _at(5)

    def test_header_http_date(self):
        parsed = parse_retry_after_header("Wed, 21 Oct 2015 07:28:00 GMT", now=NOW)
        assert parsed == datetime(2015, 10, 21, 7, 28, tzinfo=timezone.utc)

    def test_header_garbage(self):
        assert parse_retry_after_header("soon", now=NOW) is None
        assert parse_retry_after_header(None, now=NOW) is None

    def test_header_out_of_range_seconds(self):
        assert parse_retry_after_header("9" * 25, now=NOW) is None

    def test_body_out_of_range_date(self):
        assert parse_retry_after_body("9999-12-31T23:59:59-23:00") is None

    def test_body_iso(self):
        parsed = parse_retry_after_body("2030-01-01T00:00:00Z")
        assert parsed == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_body_naive_iso_is_utc(self):
        parsed = parse_retry_after_body("2030-01-01T00:00:00")
        assert parsed.tzinfo is not None
        assert parsed == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_body_numeric_is_ignored(self):
        assert parse_retry_after_body(30) is None
        assert parse_retry_after_body("later") is None


class TestClassifyResponse:
    @pytest.mark.parametrize("status,error_cls", [
        (400, ValidationError),
        (401, AuthError),
        (403, AuthError),
        (429, RateLimitError),
        (500, ServerError),
        (503, ServerError),
        (404, ApiError),
    ])
    def test_status_mapping(self, status, error_cls):
        error = classify_response(httpx.Response(status, json={}), now=NOW)
        assert type(error) is error_cls
        assert error.status == status

    def test_success_is_none(self):
        assert classify_response(httpx.Response(200, json={"ok": True})) is None

    def test_message_from_body(self):
        error = classify_response(httpx.Response(400, json={"message": "Bad weight"}))
        assert error.message == "Bad weight"

    def test_default_message(self):
        error = classify_response(httpx.Response(502, text="<html>"))
        assert error.message == "Request failed with status 502"

    def test_header_wins_over_body(self):
        response = httpx.Response(
            429,
            headers={"Retry-After": "10"},
            json={"retryAfter": "2030-01-01T00:00:00Z"},
        )
        error = classify_response(response, now=NOW)
        assert error.retry_after == _at(10)

    def test_out_of_range_header_falls_back_to_backoff(self, clock, fake_sleep):
        response = httpx.Response(429, headers={"Retry-After": "9" * 25}, json={})
        error = classify_response(response, now=NOW)
        assert isinstance(error, RateLimitError)
        assert error.retry_after is None

        executor = ResilientRequestExecutor(
            retry_config=RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0),
            clock=clock,
            sleep=fake_sleep,
        )
        assert executor.compute_delay(error, 0) == 1.0

    def test_body_used_without_header(self):
        response = httpx.Response(429, json={"retryAfter": "2030-01-01T00:00:00Z"})
        error = classify_response(response, now=NOW)
        assert error.retry_after == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert error.is_rate_limit_error


class TestResilientRequestExecutor:
    @pytest.fixture
    def executor(self, clock, fake_sleep):
        return ResilientRequestExecutor(
            retry_config=RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0),
            clock=clock,
            sleep=fake_sleep,
        )

    @pytest.mark.asyncio
    async def test_success_without_retry(self, executor, fake_sleep):
        fn = AsyncMock(return_value="ok")
        assert await executor.execute(fn) == "ok"
        assert fn.await_count == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_three_rate_limits_then_success(self, executor, clock, fake_sleep):
        """Each 429 says retry in 2s; three waits of ~2s then success."""
        calls = 0

        async def fn():
            nonlocal calls
            calls += 1
            if calls <= 3:
                retry_at = datetime.fromtimestamp(clock() + 2, tz=timezone.utc)
                raise RateLimitError("Too many requests", retry_after=retry_at)
            return "ok"

        on_retry = AsyncMock()
        start = clock()
        assert await executor.execute(fn, on_retry=on_retry) == "ok"

        assert calls == 4
        assert on_retry.await_count == 3
        assert [c.args[1] for c in on_retry.await_args_list] == [1, 2, 3]
        assert all(isinstance(c.args[2], datetime) for c in on_retry.await_args_list)
        assert fake_sleep.delays == pytest.approx([2.0, 2.0, 2.0])
        assert clock() - start == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self, executor, fake_sleep):
        fn = AsyncMock(side_effect=RateLimitError("slow down"))
        with pytest.raises(RateLimitError):
            await executor.execute(fn)
        assert fn.await_count == 4
        assert len(fake_sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_backoff_without_retry_after(self, executor, fake_sleep):
        fn = AsyncMock(side_effect=[RateLimitError("a"), RateLimitError("b"), RateLimitError("c"), "ok"])
        assert await executor.execute(fn) == "ok"
        assert fake_sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, clock, fake_sleep):
        executor = ResilientRequestExecutor(
            retry_config=RetryConfig(max_retries=6, base_delay=10.0, max_delay=30.0),
            clock=clock,
            sleep=fake_sleep,
        )
        assert executor._calculate_backoff(0) == 10.0
        assert executor._calculate_backoff(5) == 30.0

    @pytest.mark.asyncio
    async def test_past_retry_after_is_immediate(self, executor, clock, fake_sleep):
        past = datetime.fromtimestamp(clock() - 5, tz=timezone.utc)
        fn = AsyncMock(side_effect=[RateLimitError("a", retry_after=past), "ok"])
        assert await executor.execute(fn) == "ok"
        assert fake_sleep.delays == [0.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ServerError("boom", status=500),
        AuthError("expired", status=401),
        ValidationError("bad", status=400),
    ])
    async def test_other_errors_are_not_retried(self, executor, fake_sleep, error):
        fn = AsyncMock(side_effect=error)
        on_retry = AsyncMock()
        with pytest.raises(type(error)):
            await executor.execute(fn, on_retry=on_retry)
        assert fn.await_count == 1
        assert on_retry.await_count == 0
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_sync_on_retry_is_supported(self, executor):
        seen = []
        fn = AsyncMock(side_effect=[RateLimitError("a"), "ok"])
        await executor.execute(fn, on_retry=lambda e, n, r: seen.append(n))
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_zero_retries(self, executor):
        fn = AsyncMock(side_effect=RateLimitError("a"))
        with pytest.raises(RateLimitError):
            await executor.execute(fn, max_retries=0)
        assert fn.await_count == 1
