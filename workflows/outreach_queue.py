"""
Outreach queue: auto-queueing, dispatch with retry, operator actions.

Auto-queueing
    For each qualified company, render the user's default template for
    every founder with a usable address and queue one item per founder,
    30 minutes apart after the user's latest queued item. A company with
    at least one queued item moves to `contacted`.

Dispatch
    A sweep takes up to 10 due `queued` email items belonging to users
    with an email key and no dispatch in flight, grouped by user, each
    user under an `outreach` job run. Items are sent one at a time.

    success  -> sent, copied into outreach history
    failure  -> attempts + 1; failed once attempts >= max_attempts,
                otherwise requeued 2 ** attempts minutes later
    no email -> failed ("Founder has no email address")
    error    -> failed with the exception text

Usage:
    queue = OutreachQueue(store)
    await queue.queue_qualified(snapshot)

    dispatcher = OutreachDispatcher(store, JobGuard(store))
    result = await dispatcher.dispatch({snapshot.user_id: snapshot})
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional

from connectors.resend import ResendConnector
from scoring.company_score import tier_priority
from storage.deal_store import DealStore
from storage.models import (
    Company,
    CompanyStage,
    Founder,
    JobType,
    MessageTemplate,
    OutreachChannel,
    OutreachHistory,
    OutreachItem,
    OutreachStatus,
    utc_now,
)
from utils.job_guard import JobGuard
from utils.rate_limiter import RateLimiter
from utils.results import StageResult
from workflows.settings import SettingsSnapshot

logger = logging.getLogger(__name__)

SEND_SPACING = timedelta(minutes=30)
DISPATCH_BATCH_SIZE = 10
DEFAULT_SUBJECT = "Introduction"
NO_EMAIL_ERROR = "Founder has no email address"

PENDING_STATUSES = [OutreachStatus.QUEUED, OutreachStatus.SENDING]


def render_template(text: Optional[str], variables: Mapping[str, str]) -> str:
    """Substitute `{{key}}` and `{key}` placeholders."""
    result = text or ""
    for key, value in variables.items():
        result = result.replace("{{" + key + "}}", value)
        result = result.replace("{" + key + "}", value)
    return result


def template_variables(
    founder: Founder,
    company: Optional[Company],
    sender_name: str = "",
) -> Dict[str, str]:
    return {
        "firstName": founder.first_name,
        "lastName": founder.last_name,
        "fullName": founder.full_name,
        "companyName": company.company_name if company else "",
        "headline": founder.headline or "",
        "senderName": sender_name,
    }


def retry_delay(attempts: int) -> timedelta:
    """Backoff after the given number of failed attempts: 2, 4, 8... minutes."""
    return timedelta(minutes=2 ** attempts)


def _reachable(founder: Founder, channel: OutreachChannel) -> bool:
    if channel == OutreachChannel.EMAIL:
        return bool(founder.email)
    return bool(founder.linkedin_url)


@dataclass
class QueueResult(StageResult):
    companies_considered: int = 0
    companies_contacted: int = 0
    items_queued: int = 0
    companies_skipped: int = 0


@dataclass
class DispatchResult(StageResult):
    items_due: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0


# =============================================================================
# QUEUEING
# =============================================================================

class OutreachQueue:
    """Builds queue items and exposes the operator actions."""

    def __init__(self, store: DealStore, spacing: timedelta = SEND_SPACING):
        self.store = store
        self.spacing = spacing

    async def next_slot(self, user_id: str, now: Optional[datetime] = None) -> datetime:
        """First send time after the user's latest queued item (or now)."""
        now = now or utc_now()
        latest = await self.store.latest_outreach_time(user_id)
        if latest is not None and latest + self.spacing > now:
            return latest + self.spacing
        return now

    async def _already_pending(self, user_id: str, founder_id: int) -> bool:
        count = await self.store.count(
            OutreachItem, user_id=user_id, founder_id=founder_id, status=PENDING_STATUSES
        )
        return count > 0

    async def queue_for_company(
        self,
        company: Company,
        template: MessageTemplate,
        settings: SettingsSnapshot,
        now: Optional[datetime] = None,
    ) -> int:
        """Queue one item per reachable founder; returns how many were queued."""
        now = now or utc_now()
        founders = await self.store.founders_for_company(company.id)
        scheduled = await self.next_slot(company.user_id, now)
        base_priority = tier_priority(company.qualification_tier)
        queued = 0

        for founder in founders:
            if not _reachable(founder, template.channel):
                continue
            if await self._already_pending(company.user_id, founder.id):
                continue

            variables = template_variables(founder, company, settings.email_from_name)
            await self.store.insert(
                OutreachItem(
                    user_id=company.user_id,
                    founder_id=founder.id,
                    company_id=company.id,
                    channel=template.channel,
                    subject=render_template(template.subject, variables) or None,
                    message=render_template(template.body, variables),
                    template_id=template.id,
                    status=OutreachStatus.QUEUED,
                    priority=base_priority + queued,
                    scheduled_for=scheduled,
                    queued_at=now,
                )
            )
            queued += 1
            scheduled += self.spacing

        return queued

    async def queue_qualified(
        self, settings: SettingsSnapshot, now: Optional[datetime] = None
    ) -> QueueResult:
        """Auto-queue outreach for every qualified company of one user."""
        result = QueueResult()
        user_id = settings.user_id
        template = await self.store.default_template(user_id)
        if template is None:
            logger.warning(f"No default template for {user_id}, skipping auto-outreach")
            result.finish()
            return result

        companies = await self.store.companies_in_stages(user_id, [CompanyStage.QUALIFIED])
        for company in companies:
            result.companies_considered += 1
            try:
                queued = await self.queue_for_company(company, template, settings, now)
                if queued:
                    await self.store.advance_stage(company.id, CompanyStage.CONTACTED)
                    result.companies_contacted += 1
                    result.items_queued += queued
                else:
                    result.companies_skipped += 1
            except Exception as e:
                logger.error(f"Failed to queue outreach for {company.company_name}: {e}")
                result.add_error(f"{company.company_number}: {e}")

        result.finish()
        logger.info(
            f"Auto-outreach for {user_id}: {result.items_queued} items queued for "
            f"{result.companies_contacted}/{result.companies_considered} qualified companies"
        )
        return result

    # =========================================================================
    # OPERATOR ACTIONS
    # =========================================================================

    async def cancel(self, item_id: int) -> None:
        item = await self.store.get(OutreachItem, item_id)
        if item is None:
            raise KeyError(f"Outreach item {item_id} not found")
        if item.status != OutreachStatus.QUEUED:
            raise ValueError("Can only cancel queued items")
        await self.store.delete(OutreachItem, item_id)

    async def retry(self, item_id: int, now: Optional[datetime] = None) -> OutreachItem:
        item = await self.store.get(OutreachItem, item_id)
        if item is None:
            raise KeyError(f"Outreach item {item_id} not found")
        if item.status != OutreachStatus.FAILED:
            raise ValueError("Can only retry failed items")
        return await self.store.patch(
            OutreachItem,
            item_id,
            status=OutreachStatus.QUEUED,
            attempts=0,
            last_error=None,
            scheduled_for=now or utc_now(),
        )

    async def clear_failed(self, user_id: str) -> int:
        failed = await self.store.query(OutreachItem, user_id=user_id, status=OutreachStatus.FAILED)
        for item in failed:
            await self.store.delete(OutreachItem, item.id)
        return len(failed)

    async def stats(self, user_id: str) -> Dict[str, int]:
        items = await self.store.query(OutreachItem, user_id=user_id)
        counts = {status.value: 0 for status in OutreachStatus}
        for item in items:
            counts[item.status.value] += 1
        counts["total"] = len(items)
        return counts


# =============================================================================
# DISPATCH
# =============================================================================

SenderFactory = Callable[[SettingsSnapshot], ResendConnector]


class OutreachDispatcher:
    """
    Sends due outreach items.

    Args:
        store: Initialized DealStore
        guard: JobGuard holding the per-user `outreach` run
        rate_limiter: Passed to the default Resend connector
        sender_factory: Builds a connector for a user (tests inject one)
    """

    def __init__(
        self,
        store: DealStore,
        guard: JobGuard,
        rate_limiter: Optional[RateLimiter] = None,
        sender_factory: Optional[SenderFactory] = None,
    ):
        self.store = store
        self.guard = guard
        self.rate_limiter = rate_limiter
        self.sender_factory = sender_factory or self._default_sender

    def _default_sender(self, settings: SettingsSnapshot) -> ResendConnector:
        return ResendConnector(
            settings.email_api_key,
            user_id=settings.user_id,
            rate_limiter=self.rate_limiter,
        )

    async def dispatch(
        self,
        settings: Mapping[str, SettingsSnapshot],
        now: Optional[datetime] = None,
        limit: int = DISPATCH_BATCH_SIZE,
    ) -> DispatchResult:
        now = now or utc_now()
        result = DispatchResult()
        senders = await self._sending_users(settings)
        due = await self.store.due_outreach(now, limit=limit, user_ids=senders)
        result.items_due = len(due)

        by_user: Dict[str, List[OutreachItem]] = defaultdict(list)
        for item in due:
            by_user[item.user_id].append(item)

        for user_id, items in by_user.items():
            await self._dispatch_user(settings[user_id], items, result, now)

        result.finish()
        if result.items_due:
            logger.info(
                f"Outreach dispatch: {result.sent} sent, {result.retried} requeued, "
                f"{result.failed} failed, {result.skipped} skipped"
            )
        return result

    async def _sending_users(self, settings: Mapping[str, SettingsSnapshot]) -> List[str]:
        """Users with an email key and no outreach run in flight."""
        users = []
        for user_id, snapshot in settings.items():
            if not snapshot.can_send_email:
                logger.info(f"Skipping outreach for {user_id}: no email configured")
            elif await self.guard.is_running(user_id, JobType.OUTREACH):
                logger.info(f"Skipping outreach for {user_id}: dispatch already running")
            else:
                users.append(user_id)
        return users

    async def _dispatch_user(
        self,
        snapshot: SettingsSnapshot,
        items: List[OutreachItem],
        result: DispatchResult,
        now: datetime,
    ) -> None:
        async with self.guard.guarded(snapshot.user_id, JobType.OUTREACH, items_total=len(items)) as run:
            if run is None:
                result.skipped += len(items)
                return

            counts = {"sent": 0, "retried": 0, "failed": 0}
            async with self.sender_factory(snapshot) as sender:
                for item in items:
                    outcome = await self.send_item(item, sender, snapshot, now)
                    if outcome == OutreachStatus.SENT:
                        counts["sent"] += 1
                    elif outcome == OutreachStatus.QUEUED:
                        counts["retried"] += 1
                    else:
                        counts["failed"] += 1
                    await run.progress(
                        processed=1, failed=0 if outcome == OutreachStatus.SENT else 1
                    )
            run.results = counts
            result.sent += counts["sent"]
            result.retried += counts["retried"]
            result.failed += counts["failed"]

    async def send_item(
        self,
        item: OutreachItem,
        sender: ResendConnector,
        snapshot: SettingsSnapshot,
        now: Optional[datetime] = None,
    ) -> OutreachStatus:
        """Send one item and record the outcome; returns the item's new status."""
        now = now or utc_now()
        try:
            await self.store.patch(OutreachItem, item.id, status=OutreachStatus.SENDING)

            founder = await self.store.get(Founder, item.founder_id)
            if founder is None or not founder.email:
                await self._fail(item, NO_EMAIL_ERROR)
                return OutreachStatus.FAILED

            sent = await sender.send(
                from_address=snapshot.email_from_address,
                from_name=snapshot.email_from_name,
                to=founder.email,
                subject=item.subject or DEFAULT_SUBJECT,
                text=item.message,
            )

            if sent.success:
                await self.store.patch(OutreachItem, item.id, status=OutreachStatus.SENT, sent_at=now)
                await self.store.insert(
                    OutreachHistory(
                        user_id=item.user_id,
                        founder_id=item.founder_id,
                        company_id=item.company_id,
                        channel=item.channel,
                        subject=item.subject,
                        message=item.message,
                        status=OutreachStatus.SENT,
                        sent_at=now,
                    )
                )
                logger.info(f"Outreach {item.id} sent to {founder.email}")
                return OutreachStatus.SENT

            return await self._record_failure(item, sent.error or "Unknown error", now)
        except Exception as e:
            logger.error(f"Outreach {item.id} failed: {e}")
            await self._fail(item, str(e) or type(e).__name__)
            return OutreachStatus.FAILED

    async def _record_failure(self, item: OutreachItem, error: str, now: datetime) -> OutreachStatus:
        attempts = item.attempts + 1
        if attempts >= item.max_attempts:
            await self._fail(item, error, attempts=attempts)
            logger.warning(f"Outreach {item.id} failed after {attempts} attempts: {error}")
            return OutreachStatus.FAILED

        next_attempt = now + retry_delay(attempts)
        await self.store.patch(
            OutreachItem,
            item.id,
            status=OutreachStatus.QUEUED,
            attempts=attempts,
            last_error=error,
            scheduled_for=next_attempt,
        )
        logger.info(f"Outreach {item.id} requeued for {next_attempt.isoformat()} ({error})")
        return OutreachStatus.QUEUED

    async def _fail(self, item: OutreachItem, error: str, attempts: Optional[int] = None) -> None:
        changes = {"status": OutreachStatus.FAILED, "last_error": error}
        if attempts is not None:
            changes["attempts"] = attempts
        await self.store.patch(OutreachItem, item.id, **changes)
