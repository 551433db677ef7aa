"""
Tests for centralized retry strategy.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from collectors.retry_strategy import (
    RateLimitedError,
    RetryConfig,
    get_retry_after_seconds,
    is_retryable_error,
    with_retry,
)


def status_error(status: int, headers=None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example.com/thing")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestRetryConfig:

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.backoff_base == 2.0
        assert config.backoff_max == 30.0

    def test_wait_is_exponential(self):
        config = RetryConfig(initial_delay=1.0, backoff_base=2.0, jitter=0)
        assert config.get_wait_seconds(1) == 1.0
        assert config.get_wait_seconds(2) == 2.0
        assert config.get_wait_seconds(3) == 4.0

    def test_wait_is_capped(self):
        config = RetryConfig(backoff_max=5.0, jitter=0)
        assert config.get_wait_seconds(10) == 5.0

    def test_jitter_stays_within_spread(self):
        config = RetryConfig(initial_delay=1.0, jitter=0.5)
        for _ in range(20):
            assert 1.0 <= config.get_wait_seconds(1) <= 1.5


class TestErrorClassification:

    def test_transport_errors_are_retryable(self):
        assert is_retryable_error(httpx.ConnectError("refused"))
        assert is_retryable_error(httpx.ReadTimeout("slow"))
        assert is_retryable_error(ConnectionError())

    def test_server_errors_are_retryable(self):
        assert is_retryable_error(status_error(500))
        assert is_retryable_error(status_error(503))
        assert is_retryable_error(status_error(429))

    def test_client_errors_are_permanent(self):
        assert not is_retryable_error(status_error(400))
        assert not is_retryable_error(status_error(404))
        assert not is_retryable_error(ValueError("bad json"))

    def test_rate_limited_is_permanent(self):
        assert not is_retryable_error(RateLimitedError("exa", 2000))

    def test_retry_after_header(self):
        assert get_retry_after_seconds(status_error(429, {"Retry-After": "7"})) == 7.0
        assert get_retry_after_seconds(status_error(429, {"Retry-After": "Wed, 21 Oct 2026"})) is None
        assert get_retry_after_seconds(ValueError()) is None


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        func = AsyncMock(return_value="ok")
        assert await with_retry(func) == "ok"
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        func = AsyncMock(side_effect=[httpx.ConnectError("down"), status_error(502), "ok"])
        retries = []

        with patch("collectors.retry_strategy.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await with_retry(
                func,
                RetryConfig(max_attempts=3, jitter=0),
                on_retry=lambda attempt, error: retries.append(attempt),
            )

        assert result == "ok"
        assert retries == [1, 2]
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self):
        func = AsyncMock(side_effect=httpx.ConnectError("down"))

        with patch("collectors.retry_strategy.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(httpx.ConnectError):
                await with_retry(func, RetryConfig(max_attempts=2, jitter=0))

        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        func = AsyncMock(side_effect=status_error(401))
        with pytest.raises(httpx.HTTPStatusError):
            await with_retry(func)
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_honours_retry_after(self):
        func = AsyncMock(side_effect=[status_error(429, {"Retry-After": "3"}), "ok"])
        with patch("collectors.retry_strategy.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await with_retry(func, RetryConfig(jitter=0)) == "ok"
        sleep.assert_awaited_once_with(3.0)
