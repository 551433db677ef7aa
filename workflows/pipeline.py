"""
Pipeline Orchestrator for the deal-sourcing engine

Ties the stages together, one user at a time:
  discover() → enrich() → qualify() → queue_outreach() → dispatch() → match()

Each stage:
- loads every user's settings once into a SettingsSnapshot
- skips users whose keys or flags rule the stage out
- runs the user under the Job Guard (skipped if a run is already active)
- catches per-user failures so the scheduler never sees an exception

Usage:
    from workflows.pipeline import DealPipeline, PipelineConfig

    async with DealPipeline(PipelineConfig.from_env()) as pipeline:
        report = await pipeline.run_discovery()
        report = await pipeline.run_enrichment()
        print(report.to_dict())
"""

from __future__ import annotations

import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from collectors.companies_house import (
    CompaniesHouseClient,
    RegistryDiscovery,
    SCHEDULED_LIMIT,
    SCHEDULED_LOOKBACK_DAYS,
    SCHEDULED_PAGE_SIZE,
    SCHEDULED_SIC_CODES,
)
from collectors.email_finder import ApolloClient, EmailFinder, HunterClient
from collectors.exa import ExaClient
from collectors.github import GitHubClient
from collectors.investor_directory import InvestorDirectoryClient
from connectors.resend import ResendConnector
from enrichment.company_enrichment import CompanyEnricher
from enrichment.founder_enrichment import FounderEnricher
from enrichment.stage import EnrichmentStage
from matching.matcher import Matcher
from scoring.qualification import Qualifier
from storage.deal_store import DealStore
from storage.models import JobType, UserSettings, utc_now
from storage.seed import seed_user_defaults
from utils.job_guard import JobGuard
from utils.rate_limiter import RateLimiter
from utils.results import StageResult
from workflows.investor_discovery import InvestorDiscovery
from workflows.outreach_queue import OutreachDispatcher, OutreachQueue
from workflows.settings import SettingsSnapshot

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class PipelineConfig:
    """Configuration for the deal pipeline"""

    # Storage
    db_path: str = "dealflow.db"
    user_id: str = "default_user"

    # Seeds for the default user's settings
    companies_house_api_key: Optional[str] = None
    exa_api_key: Optional[str] = None
    email_api_key: Optional[str] = None
    email_from_address: Optional[str] = None
    email_from_name: Optional[str] = None
    apollo_api_key: Optional[str] = None
    hunter_api_key: Optional[str] = None

    # Behaviour
    auto_outreach_enabled: bool = True
    scoring_policy: str = "pipeline"
    request_delays: bool = True      # Sleep between external calls

    # Batch sizes
    discovery_batch_size: int = SCHEDULED_LIMIT
    enrichment_batch_size: int = 5
    qualification_batch_size: int = 50

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Load configuration from environment variables"""
        return cls(
            db_path=os.getenv("DEALFLOW_DB_PATH", "dealflow.db"),
            user_id=os.getenv("DEALFLOW_USER_ID", "default_user"),
            companies_house_api_key=os.getenv("COMPANIES_HOUSE_API_KEY"),
            exa_api_key=os.getenv("EXA_API_KEY"),
            email_api_key=os.getenv("RESEND_API_KEY"),
            email_from_address=os.getenv("EMAIL_FROM_ADDRESS"),
            email_from_name=os.getenv("EMAIL_FROM_NAME"),
            apollo_api_key=os.getenv("APOLLO_API_KEY"),
            hunter_api_key=os.getenv("HUNTER_API_KEY"),
            auto_outreach_enabled=_env_flag("AUTO_OUTREACH_ENABLED"),
            scoring_policy=os.getenv("SCORING_POLICY", "pipeline"),
            discovery_batch_size=int(os.getenv("DISCOVERY_BATCH_SIZE", str(SCHEDULED_LIMIT))),
            enrichment_batch_size=int(os.getenv("ENRICHMENT_BATCH_SIZE", "5")),
            qualification_batch_size=int(os.getenv("QUALIFICATION_BATCH_SIZE", "50")),
        )

    def seed_settings(self) -> UserSettings:
        return UserSettings(
            user_id=self.user_id,
            companies_house_api_key=self.companies_house_api_key,
            exa_api_key=self.exa_api_key,
            email_api_key=self.email_api_key,
            email_from_address=self.email_from_address,
            email_from_name=self.email_from_name,
            apollo_api_key=self.apollo_api_key,
            hunter_api_key=self.hunter_api_key,
            auto_outreach_enabled=self.auto_outreach_enabled,
            qualification_policy=self.scoring_policy,
        )


@dataclass
class StageReport:
    """Outcome of one stage across all users"""

    stage: str
    users: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def record(self, user_id: str, result: Dict[str, Any]) -> None:
        self.users[user_id] = result

    def complete(self) -> StageReport:
        self.completed_at = utc_now()
        return self

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "users": self.users,
            "timing": {
                "started_at": self.started_at.isoformat(),
                "completed_at": self.completed_at.isoformat() if self.completed_at else None,
                "duration_seconds": self.duration_seconds,
            },
        }


UserStage = Callable[[SettingsSnapshot], Awaitable[StageResult]]


# =============================================================================
# PIPELINE ORCHESTRATOR
# =============================================================================

class DealPipeline:
    """
    Main pipeline orchestrator.

    Args:
        config: Pipeline configuration (defaults to environment variables)
        store: Pre-built DealStore (otherwise opened from config.db_path)
        http_client: Shared httpx.AsyncClient passed to every API client
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        store: Optional[DealStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or PipelineConfig.from_env()
        self.store = store or DealStore(self.config.db_path)
        self._owns_store = store is None
        self.http_client = http_client
        self.guard = JobGuard(self.store)
        self.rate_limiter = RateLimiter(self.store)
        self._initialized = False

    async def __aenter__(self) -> DealPipeline:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.store.initialize()
        await seed_user_defaults(self.store, self.config.user_id, self.config.seed_settings())
        self._initialized = True
        logger.info(f"Pipeline initialized (db: {self.config.db_path})")

    async def close(self) -> None:
        if self._owns_store:
            await self.store.close()
        self._initialized = False

    def _delay(self, seconds: float) -> float:
        return seconds if self.config.request_delays else 0.0

    def _client_kwargs(self, user_id: str) -> Dict[str, Any]:
        return {"user_id": user_id, "rate_limiter": self.rate_limiter, "client": self.http_client}

    async def load_settings(self) -> List[SettingsSnapshot]:
        """Read every user's settings once for this tick."""
        return [SettingsSnapshot.from_settings(s) for s in await self.store.all_settings()]

    async def _for_each_user(
        self,
        stage: str,
        job_type: JobType,
        eligible: Callable[[SettingsSnapshot], Optional[str]],
        runner: UserStage,
        snapshots: Optional[Sequence[SettingsSnapshot]] = None,
    ) -> StageReport:
        """Run `runner` per eligible user under the guard. Never raises."""
        await self.initialize()
        report = StageReport(stage=stage)
        for snapshot in snapshots or await self.load_settings():
            user_id = snapshot.user_id
            reason = eligible(snapshot)
            if reason:
                logger.warning(f"Skipping {stage} for {user_id}: {reason}")
                report.record(user_id, {"status": "skipped", "skip_reason": reason})
                continue
            try:
                async with self.guard.guarded(user_id, job_type) as run:
                    if run is None:
                        report.record(user_id, {"status": "skipped", "skip_reason": "already running"})
                        continue
                    result = await runner(snapshot)
                    run.results = result.to_dict()
                    report.record(user_id, run.results)
            except Exception as e:
                logger.error(f"{stage} failed for {user_id}: {e}", exc_info=True)
                report.record(user_id, {"status": "error", "errors": [str(e)]})
        return report.complete()

    # =========================================================================
    # STAGES
    # =========================================================================

    async def run_discovery(
        self,
        days: int = SCHEDULED_LOOKBACK_DAYS,
        sic_codes: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        page_size: int = SCHEDULED_PAGE_SIZE,
    ) -> StageReport:
        def eligible(s: SettingsSnapshot) -> Optional[str]:
            if not s.companies_house_api_key:
                return "no Companies House API key"
            if not s.auto_discovery_enabled:
                return "discovery disabled"
            return None

        async def runner(s: SettingsSnapshot) -> StageResult:
            client = CompaniesHouseClient(s.companies_house_api_key, **self._client_kwargs(s.user_id))
            async with client:
                discovery = RegistryDiscovery(
                    self.store,
                    client,
                    search_delay=self._delay(0.2),
                    officer_delay=self._delay(0.3),
                )
                return await discovery.discover(
                    s.user_id,
                    days=days,
                    sic_codes=sic_codes or SCHEDULED_SIC_CODES,
                    limit=limit or self.config.discovery_batch_size,
                    page_size=page_size,
                )

        return await self._for_each_user("discovery", JobType.DISCOVERY, eligible, runner)

    async def run_enrichment(self) -> StageReport:
        """Enrich discovered companies, then qualify the same user's pending companies."""
        def eligible(s: SettingsSnapshot) -> Optional[str]:
            if not s.exa_api_key:
                return "no Exa API key"
            if not s.auto_enrichment_enabled:
                return "enrichment disabled"
            return None

        async def runner(s: SettingsSnapshot) -> StageResult:
            kwargs = self._client_kwargs(s.user_id)
            async with AsyncExitStack() as stack:
                exa = await stack.enter_async_context(ExaClient(s.exa_api_key, **kwargs))
                github = await stack.enter_async_context(GitHubClient(**kwargs))
                apollo = hunter = None
                if s.apollo_api_key:
                    apollo = await stack.enter_async_context(ApolloClient(s.apollo_api_key, **kwargs))
                if s.hunter_api_key:
                    hunter = await stack.enter_async_context(HunterClient(s.hunter_api_key, **kwargs))

                stage = EnrichmentStage(
                    self.store,
                    FounderEnricher(exa, github=github, email_finder=EmailFinder(apollo, hunter)),
                    CompanyEnricher(exa),
                    founder_delay=self._delay(1.0),
                    github_delay=self._delay(6.0),
                )
                result = await stage.run(s.user_id, limit=self.config.enrichment_batch_size)

            await self._qualify_user(s)
            return result

        return await self._for_each_user("enrichment", JobType.ENRICHMENT, eligible, runner)

    async def _qualify_user(self, s: SettingsSnapshot, policy: Optional[str] = None) -> StageResult:
        qualifier = Qualifier(self.store, policy or s.qualification_policy)
        return await qualifier.qualify_pending(s.user_id, limit=self.config.qualification_batch_size)

    async def run_qualification(self, policy: Optional[str] = None) -> StageReport:
        async def runner(s: SettingsSnapshot) -> StageResult:
            return await self._qualify_user(s, policy)

        return await self._for_each_user(
            "qualification", JobType.QUALIFICATION, lambda s: None, runner
        )

    async def run_outreach_queue(self, now: Optional[datetime] = None) -> StageReport:
        def eligible(s: SettingsSnapshot) -> Optional[str]:
            if not (self.config.auto_outreach_enabled and s.auto_outreach_enabled):
                return "auto-outreach disabled"
            return None

        async def runner(s: SettingsSnapshot) -> StageResult:
            return await OutreachQueue(self.store).queue_qualified(s, now=now)

        return await self._for_each_user(
            "outreach_queue", JobType.OUTREACH_QUEUE, eligible, runner
        )

    def _sender(self, s: SettingsSnapshot) -> ResendConnector:
        return ResendConnector(s.email_api_key, **self._client_kwargs(s.user_id))

    async def run_dispatch(self, now: Optional[datetime] = None) -> StageReport:
        """Send due outreach; the dispatcher takes the per-user guard itself."""
        await self.initialize()
        report = StageReport(stage="dispatch")
        try:
            settings = {s.user_id: s for s in await self.load_settings()}
            dispatcher = OutreachDispatcher(
                self.store, self.guard, self.rate_limiter, sender_factory=self._sender
            )
            result = await dispatcher.dispatch(settings, now=now)
            report.record("*", result.to_dict())
        except Exception as e:
            logger.error(f"Outreach dispatch failed: {e}", exc_info=True)
            report.record("*", {"status": "error", "errors": [str(e)]})
        return report.complete()

    async def run_matching(self, now: Optional[datetime] = None) -> StageReport:
        async def runner(s: SettingsSnapshot) -> StageResult:
            return await Matcher(self.store).run(s.user_id, now=now)

        return await self._for_each_user("matching", JobType.MATCHING, lambda s: None, runner)

    async def run_investor_discovery(self) -> StageReport:
        def eligible(s: SettingsSnapshot) -> Optional[str]:
            return None if s.can_discover_emails else "no Apollo or Hunter API key"

        async def runner(s: SettingsSnapshot) -> StageResult:
            kwargs = self._client_kwargs(s.user_id)
            async with AsyncExitStack() as stack:
                directory = await stack.enter_async_context(
                    InvestorDirectoryClient(client=self.http_client, user_id=s.user_id)
                )
                hunter = None
                if s.hunter_api_key:
                    hunter = await stack.enter_async_context(HunterClient(s.hunter_api_key, **kwargs))
                discovery = InvestorDiscovery(
                    self.store, directory, hunter, firm_delay=self._delay(1.0)
                )
                return await discovery.run(s.user_id)

        return await self._for_each_user(
            "investor_discovery", JobType.INVESTOR_DISCOVERY, eligible, runner
        )

    async def run_cleanup(self) -> StageReport:
        """Delete expired job runs and trim each user's run history."""
        await self.initialize()
        report = StageReport(stage="cleanup")
        try:
            expired = await self.guard.cleanup_expired()
            report.record("*", {"status": "success", "expired_deleted": expired})
            for snapshot in await self.load_settings():
                trimmed = await self.guard.cleanup_user(snapshot.user_id)
                report.record(snapshot.user_id, {"status": "success", "trimmed": trimmed})
        except Exception as e:
            logger.error(f"Cleanup failed: {e}", exc_info=True)
            report.record("*", {"status": "error", "errors": [str(e)]})
        return report.complete()

    async def run_full(self) -> List[StageReport]:
        """Every stage once, in pipeline order."""
        reports = [
            await self.run_discovery(),
            await self.run_enrichment(),
            await self.run_qualification(),
            await self.run_outreach_queue(),
            await self.run_dispatch(),
            await self.run_matching(),
        ]
        for report in reports:
            logger.info(f"{report.stage}: {report.users}")
        return reports
