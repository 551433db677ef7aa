"""
Retry strategy for outbound API calls.

Provides:
- RetryConfig: attempt budget and backoff shape
- RateLimitedError: upstream said "slow down"; callers stop their loop
- is_retryable_error: transient vs permanent classification
- get_retry_after_seconds: Retry-After header parsing
- with_retry: async wrapper with exponential backoff plus jitter

Backoff for attempt n (1-based) is `initial_delay * base^(n-1)` plus up to
`jitter` seconds of random spread, capped at `backoff_max`:
    1s, 2s, 4s ... 30s

Usage:
    from collectors.retry_strategy import with_retry, RetryConfig

    async def fetch():
        response = await client.get(url)
        response.raise_for_status()
        return response.json()

    data = await with_retry(fetch, RetryConfig(max_attempts=3))
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedError(Exception):
    """An API refused a request for quota reasons (HTTP 429/403 or local budget)."""

    def __init__(self, api_name: str, retry_after_ms: Optional[int] = None):
        self.api_name = api_name
        self.retry_after_ms = retry_after_ms
        detail = f", retry after {retry_after_ms}ms" if retry_after_ms else ""
        super().__init__(f"{api_name} rate limited{detail}")


@dataclass
class RetryConfig:
    """Retry behaviour for one call site."""

    max_attempts: int = 3  # total tries, including the first
    initial_delay: float = 1.0
    backoff_base: float = 2.0
    backoff_max: float = 30.0
    jitter: float = 1.0  # seconds of random spread added to each wait

    def get_wait_seconds(self, attempt: int) -> float:
        """
        Wait before the retry that follows `attempt` (1-based).

        Args:
            attempt: Number of the attempt that just failed

        Returns:
            Seconds to sleep
        """
        wait = self.initial_delay * (self.backoff_base ** (attempt - 1))
        if self.jitter:
            wait += random.random() * self.jitter
        return min(wait, self.backoff_max)


def is_retryable_error(error: Exception) -> bool:
    """
    Transient failures worth another attempt.

    Retryable: connection/timeout errors (stdlib or httpx transport), HTTP 5xx,
    HTTP 429 with no local handling. Everything else, including
    RateLimitedError, is permanent for the current attempt loop.
    """
    if isinstance(error, RateLimitedError):
        return False

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    if isinstance(error, httpx.TransportError):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status == 429

    return False


def get_retry_after_seconds(error: Exception) -> Optional[float]:
    """Numeric Retry-After from an HTTP error response, if any."""
    if not isinstance(error, httpx.HTTPStatusError):
        return None

    retry_after = error.response.headers.get("Retry-After")
    if retry_after is None:
        return None

    try:
        return float(retry_after)
    except ValueError:
        # HTTP-date form; fall back to computed backoff
        return None


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """
    Await `func()` until it succeeds or the attempt budget is spent.

    Args:
        func: Zero-argument coroutine factory
        config: Retry configuration (default RetryConfig())
        retry_on: Exception types to retry instead of is_retryable_error
        on_retry: Called with (attempt, error) before each sleep

    Returns:
        The first successful result

    Raises:
        The last error once attempts are exhausted, or any non-retryable error
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func()
        except Exception as e:
            should_retry = isinstance(e, retry_on) if retry_on else is_retryable_error(e)
            if not should_retry:
                raise

            if attempt >= config.max_attempts:
                logger.error(f"Giving up after {attempt} attempts: {e}")
                raise

            wait_time = get_retry_after_seconds(e)
            if wait_time is None:
                wait_time = config.get_wait_seconds(attempt)

            logger.warning(
                f"Attempt {attempt}/{config.max_attempts} failed: {e}. "
                f"Retrying in {wait_time:.2f}s..."
            )
            if on_retry:
                on_retry(attempt, e)

            await asyncio.sleep(wait_time)

    raise RuntimeError("with_retry called with max_attempts < 1")
