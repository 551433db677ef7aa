"""
APScheduler wiring for the deal pipeline.

Every job calls a DealPipeline stage, which walks all eligible users and
never raises. Jobs are single-instance and coalesce missed runs.

    discovery            every 6 hours
    enrichment           every 2 hours (qualifies afterwards)
    qualification        every 3 hours
    outreach_queue       every 4 hours
    outreach_dispatch    every 30 minutes
    matching             every 6 hours, 30 minutes after discovery
    investor_discovery   Mondays 09:00 UTC
    cleanup              daily 03:00 UTC

Usage:
    scheduler = build_scheduler(pipeline)
    scheduler.start()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from workflows.pipeline import DealPipeline

logger = logging.getLogger(__name__)

JOB_DEFAULTS = {
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 600,
}

MATCHING_OFFSET = timedelta(minutes=30)


def _logged(name: str, stage: Callable[[], Awaitable[Any]]) -> Callable[[], Awaitable[None]]:
    async def job() -> None:
        logger.info(f"Scheduled {name} starting")
        result = await stage()
        reports = result if isinstance(result, list) else [result]
        for report in reports:
            logger.info(f"Scheduled {report.stage} finished: {report.users}")

    job.__name__ = f"{name}_job"
    return job


def build_scheduler(
    pipeline: DealPipeline,
    scheduler: Optional[AsyncIOScheduler] = None,
    start_at: Optional[datetime] = None,
) -> AsyncIOScheduler:
    """Register every pipeline job on an AsyncIOScheduler (not started)."""
    scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc, job_defaults=JOB_DEFAULTS)
    start_at = start_at or datetime.now(timezone.utc)

    jobs = [
        ("discovery", pipeline.run_discovery, IntervalTrigger(hours=6, start_date=start_at)),
        ("enrichment", pipeline.run_enrichment, IntervalTrigger(hours=2, start_date=start_at)),
        ("qualification", pipeline.run_qualification, IntervalTrigger(hours=3, start_date=start_at)),
        ("outreach_queue", pipeline.run_outreach_queue, IntervalTrigger(hours=4, start_date=start_at)),
        ("outreach_dispatch", pipeline.run_dispatch, IntervalTrigger(minutes=30, start_date=start_at)),
        (
            "matching",
            pipeline.run_matching,
            IntervalTrigger(hours=6, start_date=start_at + MATCHING_OFFSET),
        ),
        (
            "investor_discovery",
            pipeline.run_investor_discovery,
            CronTrigger(day_of_week="mon", hour=9, minute=0, timezone=timezone.utc),
        ),
        ("cleanup", pipeline.run_cleanup, CronTrigger(hour=3, minute=0, timezone=timezone.utc)),
    ]

    for job_id, stage, trigger in jobs:
        scheduler.add_job(
            _logged(job_id, stage),
            trigger=trigger,
            id=job_id,
            name=job_id.replace("_", " "),
            replace_existing=True,
        )
    return scheduler


async def run_forever(pipeline: DealPipeline) -> None:
    """Start the scheduler and block until cancelled."""
    await pipeline.initialize()
    scheduler = build_scheduler(pipeline)
    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")

    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")
