"""
Base API Client for outbound integrations.

Provides common functionality for every external API the pipeline calls:
- Shared httpx.AsyncClient with async context manager lifecycle
- Per-user rate-limit gating through the store-backed RateLimiter
- Retry with exponential backoff for idempotent requests
- 429 handling: raised as RateLimitedError so batch loops can stop early
- "No data" status codes mapped to an empty result instead of an error

Subclasses set `api_name` and build requests with `_get_json` / `_post_json`.

Usage:
    class ExaClient(BaseApiClient):
        api_name = "exa"

        async def search(self, query: str):
            return await self._post_json(EXA_SEARCH_URL, json={"query": query})

    async with ExaClient(user_id="u1", rate_limiter=limiter) as client:
        data = await client.search("ada lovelace")
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

import httpx

from collectors.retry_strategy import RateLimitedError, RetryConfig, with_retry
from utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
USER_AGENT = "dealflow-engine/1.0"


def _retry_after_ms(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


class BaseApiClient:
    """
    Base class for rate-limited, retrying HTTP clients.

    Args:
        user_id: Owner whose rate-limit budget is consumed
        rate_limiter: Store-backed limiter; None disables gating (tests, one-off scripts)
        retry_config: Backoff for idempotent requests (default RetryConfig())
        client: Pre-built httpx.AsyncClient to share; otherwise one is created on enter
        timeout: Request timeout in seconds for an owned client
    """

    api_name: str = "unknown"

    def __init__(
        self,
        user_id: str = "default_user",
        rate_limiter: Optional[RateLimiter] = None,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.user_id = user_id
        self.rate_limiter = rate_limiter
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None
        self.request_count = 0
        self.retry_count = 0

    async def __aenter__(self):
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=self.timeout, headers={"User-Agent": USER_AGENT}
            )
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self.client is None:
            raise RuntimeError(f"{type(self).__name__} used outside 'async with'")
        return self.client

    async def _gate(self) -> None:
        """Consume one unit of this user's budget or raise RateLimitedError."""
        if self.rate_limiter is None:
            return
        decision = await self.rate_limiter.acquire(self.user_id, self.api_name)
        if not decision.allowed:
            raise RateLimitedError(self.api_name, decision.retry_after_ms)

    async def _request(
        self,
        method: str,
        url: str,
        empty_statuses: Iterable[int] = (),
        rate_limit_statuses: Iterable[int] = (429,),
        **kwargs: Any,
    ) -> Optional[httpx.Response]:
        """
        Send one request.

        Returns None for any status in `empty_statuses`. Raises
        RateLimitedError for `rate_limit_statuses`, httpx.HTTPStatusError
        for other failures.
        """
        client = self._require_client()
        await self._gate()

        self.request_count += 1
        logger.debug(f"{self.api_name}: {method} {url}")
        response = await client.request(method, url, **kwargs)

        if response.status_code in set(empty_statuses):
            return None

        if response.status_code in set(rate_limit_statuses):
            raise RateLimitedError(self.api_name, _retry_after_ms(response))

        response.raise_for_status()
        return response

    async def _with_retry(self, func: Callable[[], Awaitable[T]]) -> T:
        def count_retry(attempt: int, error: Exception) -> None:
            self.retry_count += 1

        return await with_retry(func, self.retry_config, on_retry=count_retry)

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        empty_statuses: Iterable[int] = (),
        rate_limit_statuses: Iterable[int] = (429,),
        retry: bool = True,
    ) -> Any:
        """GET and parse JSON. Retried on transient failures unless retry=False."""
        async def do_request() -> Any:
            response = await self._request(
                "GET",
                url,
                params=params,
                headers=headers,
                empty_statuses=empty_statuses,
                rate_limit_statuses=rate_limit_statuses,
            )
            return response.json() if response is not None else None

        if not retry:
            return await do_request()
        return await self._with_retry(do_request)

    async def _post_json(
        self,
        url: str,
        json: Any,
        headers: Optional[Dict[str, str]] = None,
        empty_statuses: Iterable[int] = (),
    ) -> Any:
        """POST and parse JSON. Never retried; POSTs may not be idempotent."""
        response = await self._request(
            "POST", url, json=json, headers=headers, empty_statuses=empty_statuses
        )
        return response.json() if response is not None else None
