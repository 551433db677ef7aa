"""
Per-user, per-API sliding-window rate limiter.

Counters live in the DealStore `rate_limits` collection so every scheduler
tick sees the same budget. A counter is valid for one window from its
start; the first request after the window expires opens a fresh one.

The check and the record are separate calls (check-then-act). Two stages
running for the same user at once can over-admit briefly; stages for one
user are serialized by the Job Guard so this stays theoretical.

Usage:
    from utils.rate_limiter import RateLimiter

    limiter = RateLimiter(store)

    decision = await limiter.allowed("user-1", "exa")
    if decision.allowed:
        await limiter.record("user-1", "exa")
        response = await client.post(url, json=payload)
    else:
        logger.info(f"exa budget spent, retry in {decision.retry_after_ms}ms")

API limits:
    - Companies House: 600 / 5 min
    - Exa: 100 / min
    - Resend: 10 / min
    - Apollo: 50 / min
    - Hunter: 25 / min
    - GitHub (anonymous): 10 / min
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from storage.deal_store import DealStore
from storage.models import RateLimitCounter, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiLimit:
    """Quota for one external API."""
    max_requests: int
    window_seconds: int
    retry_after_ms: int  # suggested pause when a call is refused upstream

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)


API_LIMITS: Dict[str, ApiLimit] = {
    "companies_house": ApiLimit(max_requests=600, window_seconds=300, retry_after_ms=1000),
    "exa": ApiLimit(max_requests=100, window_seconds=60, retry_after_ms=2000),
    "resend": ApiLimit(max_requests=10, window_seconds=60, retry_after_ms=5000),
    "apollo": ApiLimit(max_requests=50, window_seconds=60, retry_after_ms=3000),
    "hunter": ApiLimit(max_requests=25, window_seconds=60, retry_after_ms=3000),
    "github": ApiLimit(max_requests=10, window_seconds=60, retry_after_ms=6000),
}


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after_ms: Optional[int] = None


@dataclass
class RateLimitStatus:
    used: int
    limit: int
    resets_at: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class RateLimiter:
    """
    Sliding-window limiter backed by the record store.

    Args:
        store: Initialized DealStore
        limits: Override table (defaults to API_LIMITS)
    """

    def __init__(self, store: DealStore, limits: Optional[Dict[str, ApiLimit]] = None):
        self.store = store
        self.limits = dict(limits or API_LIMITS)

    def limit_for(self, api_name: str) -> ApiLimit:
        try:
            return self.limits[api_name]
        except KeyError:
            raise KeyError(f"No rate limit configured for API '{api_name}'") from None

    async def _counter(self, user_id: str, api_name: str) -> Optional[RateLimitCounter]:
        return await self.store.first(RateLimitCounter, user_id=user_id, api_name=api_name)

    @staticmethod
    def _expired(counter: RateLimitCounter, limit: ApiLimit, now: datetime) -> bool:
        return counter.window_start < now - limit.window

    async def allowed(
        self, user_id: str, api_name: str, now: Optional[datetime] = None
    ) -> RateLimitDecision:
        """Read-only check; does not consume budget."""
        limit = self.limit_for(api_name)
        now = now or utc_now()
        counter = await self._counter(user_id, api_name)

        if counter is None or self._expired(counter, limit, now):
            return RateLimitDecision(allowed=True)

        if counter.request_count < limit.max_requests:
            return RateLimitDecision(allowed=True)

        resets_at = counter.window_start + limit.window
        retry_after_ms = max(1, int((resets_at - now).total_seconds() * 1000))
        return RateLimitDecision(allowed=False, retry_after_ms=retry_after_ms)

    async def record(self, user_id: str, api_name: str, now: Optional[datetime] = None) -> None:
        """Consume one unit, opening a new window when needed."""
        limit = self.limit_for(api_name)
        now = now or utc_now()
        counter = await self._counter(user_id, api_name)

        if counter is None:
            await self.store.insert(
                RateLimitCounter(
                    user_id=user_id,
                    api_name=api_name,
                    window_start=now,
                    request_count=1,
                    last_request_at=now,
                )
            )
        elif self._expired(counter, limit, now):
            await self.store.patch(
                RateLimitCounter,
                counter.id,
                window_start=now,
                request_count=1,
                last_request_at=now,
            )
        else:
            await self.store.patch(
                RateLimitCounter,
                counter.id,
                request_count=counter.request_count + 1,
                last_request_at=now,
            )

    async def acquire(
        self, user_id: str, api_name: str, now: Optional[datetime] = None
    ) -> RateLimitDecision:
        """Check and, when allowed, record in one call."""
        decision = await self.allowed(user_id, api_name, now=now)
        if decision.allowed:
            await self.record(user_id, api_name, now=now)
        else:
            logger.warning(
                f"Rate limit reached for {api_name} (user={user_id}); "
                f"retry in {decision.retry_after_ms}ms"
            )
        return decision

    async def status(
        self, user_id: str, api_name: str, now: Optional[datetime] = None
    ) -> RateLimitStatus:
        limit = self.limit_for(api_name)
        now = now or utc_now()
        counter = await self._counter(user_id, api_name)

        if counter is None or self._expired(counter, limit, now):
            return RateLimitStatus(used=0, limit=limit.max_requests)

        return RateLimitStatus(
            used=counter.request_count,
            limit=limit.max_requests,
            resets_at=counter.window_start + limit.window,
        )

    async def reset(self, user_id: str, api_name: str) -> None:
        """Drop the counter (for tests and operator resets)."""
        counter = await self._counter(user_id, api_name)
        if counter:
            await self.store.delete(RateLimitCounter, counter.id)
