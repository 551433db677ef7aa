"""
Job Guard: per-(user, job type) mutual exclusion plus a run ledger.

A stage calls `is_running` before starting and skips the user if a run of
the same type is still marked `running`. This is check-then-act over the
record store, not a lease: two ticks landing on the same completion
boundary can both start. Tick spacing (30 minutes to 6 hours) keeps that
rare and harmless.

Usage:
    guard = JobGuard(store)

    async with guard.guarded("user-1", JobType.ENRICHMENT, items_total=5) as run:
        if run is None:
            return  # another enrichment run holds the guard
        for company in companies:
            ...
            await run.progress(processed=1)
        run.results["founders_enriched"] = 3
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Optional

from storage.deal_store import DealStore
from storage.models import JobRun, JobStatus, JobType, format_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_PER_USER = 50
EXPIRED_AFTER_DAYS = 7
CLEANUP_BATCH_SIZE = 100


@dataclass
class RunHandle:
    """Handle yielded by `JobGuard.guarded` for an active run."""
    guard: JobGuard
    job_id: int
    results: Dict[str, Any] = field(default_factory=dict)
    items_processed: int = 0
    items_failed: int = 0

    async def progress(self, processed: int = 0, failed: int = 0) -> None:
        self.items_processed += processed
        self.items_failed += failed
        await self.guard.update(
            self.job_id,
            items_processed=self.items_processed,
            items_failed=self.items_failed,
        )


class JobGuard:
    """Advisory lock and progress ledger over the `job_runs` collection."""

    def __init__(self, store: DealStore):
        self.store = store

    async def is_running(self, user_id: str, job_type: JobType) -> bool:
        count = await self.store.count(
            JobRun, user_id=user_id, job_type=job_type, status=JobStatus.RUNNING
        )
        return count > 0

    async def start(
        self, user_id: str, job_type: JobType, items_total: Optional[int] = None
    ) -> int:
        job = JobRun(
            user_id=user_id,
            job_type=job_type,
            status=JobStatus.RUNNING,
            items_total=items_total,
            started_at=utc_now(),
        )
        job_id = await self.store.insert(job)
        logger.debug(f"Started {job_type.value} job {job_id} for {user_id}")
        return job_id

    async def update(
        self,
        job_id: int,
        items_processed: Optional[int] = None,
        items_failed: Optional[int] = None,
        items_total: Optional[int] = None,
    ) -> None:
        changes: Dict[str, Any] = {}
        if items_processed is not None:
            changes["items_processed"] = items_processed
        if items_failed is not None:
            changes["items_failed"] = items_failed
        if items_total is not None:
            changes["items_total"] = items_total
        if changes:
            await self.store.patch(JobRun, job_id, **changes)

    async def complete(self, job_id: int, results: Optional[Dict[str, Any]] = None) -> None:
        await self.store.patch(
            JobRun,
            job_id,
            status=JobStatus.COMPLETED,
            completed_at=utc_now(),
            results=results or {},
        )

    async def fail(self, job_id: int, error: str) -> None:
        await self.store.patch(
            JobRun,
            job_id,
            status=JobStatus.FAILED,
            completed_at=utc_now(),
            error=error,
        )

    async def recent(self, user_id: str, limit: int = 10) -> List[JobRun]:
        return await self.store.query(JobRun, user_id=user_id, order_by="-id", limit=limit)

    async def last_completed(
        self, user_id: str, job_type: Optional[JobType] = None
    ) -> Optional[JobRun]:
        criteria: Dict[str, Any] = {"user_id": user_id, "status": JobStatus.COMPLETED}
        if job_type is not None:
            criteria["job_type"] = job_type
        runs = await self.store.query(JobRun, order_by="-completed_at", limit=1, **criteria)
        return runs[0] if runs else None

    @asynccontextmanager
    async def guarded(
        self,
        user_id: str,
        job_type: JobType,
        items_total: Optional[int] = None,
    ) -> AsyncIterator[Optional[RunHandle]]:
        """
        Run a block under the guard.

        Yields None when a run of this type is already active for the user.
        Otherwise the run is completed with `handle.results` on normal exit,
        or failed with the exception text before it propagates.
        """
        if await self.is_running(user_id, job_type):
            logger.info(f"Skipping {job_type.value} for {user_id}: already running")
            yield None
            return

        job_id = await self.start(user_id, job_type, items_total=items_total)
        handle = RunHandle(guard=self, job_id=job_id)
        try:
            yield handle
        except Exception as e:
            await self.fail(job_id, str(e) or type(e).__name__)
            raise
        await self.complete(job_id, handle.results)

    # =========================================================================
    # CLEANUP
    # =========================================================================

    async def cleanup_user(self, user_id: str, keep: int = DEFAULT_HISTORY_PER_USER) -> int:
        """Keep the newest `keep` finished runs for a user; delete the rest."""
        runs = await self.store.query(JobRun, user_id=user_id, order_by="-id")
        finished = [r for r in runs if r.status != JobStatus.RUNNING]
        deleted = 0
        for run in finished[keep:]:
            if await self.store.delete(JobRun, run.id):
                deleted += 1
        return deleted

    async def cleanup_expired(
        self,
        older_than_days: int = EXPIRED_AFTER_DAYS,
        batch_size: int = CLEANUP_BATCH_SIZE,
        now: Optional[datetime] = None,
    ) -> int:
        """Delete finished runs that completed before the cutoff, one batch per call."""
        cutoff = (now or utc_now()) - timedelta(days=older_than_days)
        cursor = await self.store.db.execute(
            """
            SELECT id FROM job_runs
            WHERE status != ? AND completed_at IS NOT NULL AND completed_at < ?
            ORDER BY completed_at ASC
            LIMIT ?
            """,
            (JobStatus.RUNNING.value, format_timestamp(cutoff), batch_size),
        )
        ids = [row["id"] for row in await cursor.fetchall()]
        for job_id in ids:
            await self.store.delete(JobRun, job_id)
        if ids:
            logger.info(f"Cleaned up {len(ids)} job runs completed before {cutoff.date()}")
        return len(ids)
