"""
Tests for the pipeline orchestrator and the scheduler wiring.

Run:
    python -m pytest workflows/test_pipeline.py -v
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from collectors.test_companies_house import company_item, registry_transport
from storage.models import (
    Company,
    CompanyStage,
    Founder,
    JobRun,
    JobStatus,
    JobType,
    MessageTemplate,
    UserSettings,
)
from utils.job_guard import JobGuard
from workflows.pipeline import DealPipeline, PipelineConfig, StageReport
from workflows.scheduler import JOB_DEFAULTS, build_scheduler


@pytest.fixture
def config(temp_db_path):
    return PipelineConfig(db_path=temp_db_path, user_id="u1", request_delays=False)


class TestPipelineConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DEALFLOW_DB_PATH", "/tmp/deals.db")
        monkeypatch.setenv("DEALFLOW_USER_ID", "grace")
        monkeypatch.setenv("COMPANIES_HOUSE_API_KEY", "ch-key")
        monkeypatch.setenv("AUTO_OUTREACH_ENABLED", "false")
        monkeypatch.setenv("SCORING_POLICY", "tiered")
        monkeypatch.setenv("ENRICHMENT_BATCH_SIZE", "3")
        monkeypatch.delenv("EXA_API_KEY", raising=False)

        config = PipelineConfig.from_env()

        assert config.db_path == "/tmp/deals.db"
        assert config.user_id == "grace"
        assert config.companies_house_api_key == "ch-key"
        assert config.exa_api_key is None
        assert config.auto_outreach_enabled is False
        assert config.enrichment_batch_size == 3

        settings = config.seed_settings()
        assert settings.user_id == "grace"
        assert settings.qualification_policy == "tiered"

    def test_stage_report_timing(self):
        report = StageReport(stage="discovery")
        report.record("u1", {"status": "success"})
        data = report.complete().to_dict()
        assert data["users"] == {"u1": {"status": "success"}}
        assert data["timing"]["duration_seconds"] >= 0


class TestDealPipeline:

    @pytest.mark.asyncio
    async def test_initialize_seeds_default_user(self, config, store):
        async with DealPipeline(config, store=store) as pipeline:
            snapshots = await pipeline.load_settings()

        assert [s.user_id for s in snapshots] == ["u1"]
        assert snapshots[0].default_template_id is not None
        assert await store.count(MessageTemplate, user_id="u1") == 4

    @pytest.mark.asyncio
    async def test_discovery_skipped_without_key(self, config, store):
        async with DealPipeline(config, store=store) as pipeline:
            report = await pipeline.run_discovery()

        assert report.users["u1"] == {"status": "skipped", "skip_reason": "no Companies House API key"}
        assert await store.count(JobRun) == 0

    @pytest.mark.asyncio
    async def test_discovery_runs_under_job_guard(self, config, store):
        config.companies_house_api_key = "ch-key"
        transport, _ = registry_transport({"62012": [company_item("111", "Acme AI Ltd")]})

        async with httpx.AsyncClient(transport=transport) as http:
            async with DealPipeline(config, store=store, http_client=http) as pipeline:
                report = await pipeline.run_discovery(sic_codes=["62012"])

        assert report.users["u1"]["status"] == "success"
        assert report.users["u1"]["companies_added"] == 1
        assert await store.count(Company, user_id="u1") == 1

        runs = await store.query(JobRun, user_id="u1", job_type=JobType.DISCOVERY)
        assert runs[0].status == JobStatus.COMPLETED
        assert runs[0].results["companies_added"] == 1

    @pytest.mark.asyncio
    async def test_active_run_is_skipped(self, config, store):
        async with DealPipeline(config, store=store) as pipeline:
            await JobGuard(store).start("u1", JobType.QUALIFICATION)
            report = await pipeline.run_qualification()

        assert report.users["u1"]["skip_reason"] == "already running"

    @pytest.mark.asyncio
    async def test_stage_failure_is_reported_not_raised(self, config, store):
        async with DealPipeline(config, store=store) as pipeline:
            report = await pipeline.run_qualification(policy="no-such-policy")

        assert report.users["u1"]["status"] == "error"
        runs = await store.query(JobRun, user_id="u1", job_type=JobType.QUALIFICATION)
        assert runs[0].status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_qualification_uses_user_policy(self, config, store):
        await store.save_settings(UserSettings(user_id="u2", qualification_policy="tiered"))
        company_id = await store.insert(
            Company(user_id="u2", company_number="9", company_name="Nine Ltd", sic_codes=["62090"])
        )

        async with DealPipeline(config, store=store) as pipeline:
            report = await pipeline.run_qualification()

        assert report.users["u2"]["qualified"] == 1
        company = await store.get(Company, company_id)
        assert company.qualification_policy == "tiered"
        assert company.stage == CompanyStage.QUALIFIED

    @pytest.mark.asyncio
    async def test_outreach_queue_respects_global_flag(self, config, store):
        config.auto_outreach_enabled = False
        async with DealPipeline(config, store=store) as pipeline:
            report = await pipeline.run_outreach_queue()

        assert report.users["u1"]["skip_reason"] == "auto-outreach disabled"

    @pytest.mark.asyncio
    async def test_dispatch_and_cleanup_report(self, config, store):
        async with DealPipeline(config, store=store) as pipeline:
            dispatch = await pipeline.run_dispatch()
            cleanup = await pipeline.run_cleanup()

        assert dispatch.users["*"]["items_due"] == 0
        assert cleanup.users["*"]["expired_deleted"] == 0
        assert cleanup.users["u1"]["trimmed"] == 0

    @pytest.mark.asyncio
    async def test_matching_per_user(self, config, store):
        company_id = await store.insert(
            Company(user_id="u1", company_number="1", company_name="A", stage=CompanyStage.QUALIFIED)
        )
        await store.insert(Founder(user_id="u1", company_id=company_id, first_name="A", last_name="B"))

        async with DealPipeline(config, store=store) as pipeline:
            report = await pipeline.run_matching()

        assert report.users["u1"]["status"] == "success"
        assert report.users["u1"]["companies_considered"] == 0

    @pytest.mark.asyncio
    async def test_investor_discovery_needs_email_provider(self, config, store):
        async with DealPipeline(config, store=store) as pipeline:
            report = await pipeline.run_investor_discovery()

        assert report.users["u1"]["skip_reason"] == "no Apollo or Hunter API key"


class TestScheduler:

    START = datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc)

    def make_pipeline(self):
        pipeline = MagicMock()
        for name in (
            "run_discovery", "run_enrichment", "run_qualification", "run_outreach_queue",
            "run_dispatch", "run_matching", "run_investor_discovery", "run_cleanup",
        ):
            setattr(pipeline, name, AsyncMock(return_value=StageReport(stage=name[4:])))
        return pipeline

    @pytest.mark.asyncio
    async def test_registers_every_job(self):
        scheduler = build_scheduler(self.make_pipeline(), start_at=self.START)
        jobs = {job.id: job for job in scheduler.get_jobs()}

        assert set(jobs) == {
            "discovery", "enrichment", "qualification", "outreach_queue",
            "outreach_dispatch", "matching", "investor_discovery", "cleanup",
        }
        intervals = {
            job_id: job.trigger.interval
            for job_id, job in jobs.items()
            if isinstance(job.trigger, IntervalTrigger)
        }
        assert intervals == {
            "discovery": timedelta(hours=6),
            "enrichment": timedelta(hours=2),
            "qualification": timedelta(hours=3),
            "outreach_queue": timedelta(hours=4),
            "outreach_dispatch": timedelta(minutes=30),
            "matching": timedelta(hours=6),
        }
        assert jobs["matching"].trigger.start_date == self.START + timedelta(minutes=30)
        assert isinstance(jobs["investor_discovery"].trigger, CronTrigger)
        assert isinstance(jobs["cleanup"].trigger, CronTrigger)

    @pytest.mark.asyncio
    async def test_cron_fields(self):
        scheduler = build_scheduler(self.make_pipeline(), start_at=self.START)
        weekly = {f.name: str(f) for f in scheduler.get_job("investor_discovery").trigger.fields}
        daily = {f.name: str(f) for f in scheduler.get_job("cleanup").trigger.fields}

        assert weekly["day_of_week"] == "mon"
        assert weekly["hour"] == "9"
        assert daily["hour"] == "3"
        assert daily["minute"] == "0"

    def test_job_defaults(self):
        assert JOB_DEFAULTS == {"coalesce": True, "max_instances": 1, "misfire_grace_time": 600}

    @pytest.mark.asyncio
    async def test_job_calls_pipeline_stage(self):
        pipeline = self.make_pipeline()
        scheduler = build_scheduler(pipeline, start_at=self.START)

        await scheduler.get_job("outreach_dispatch").func()

        pipeline.run_dispatch.assert_awaited_once()
