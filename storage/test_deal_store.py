"""
Tests for the DealStore record store.

Run:
    python -m pytest storage/test_deal_store.py -v
"""

import json
from datetime import date, datetime, timedelta, timezone

import aiosqlite
import pytest

from storage.deal_store import MIGRATIONS, DealStore, InvalidTransitionError
from storage.models import (
    Company,
    CompanyStage,
    EducationEntry,
    Founder,
    MessageTemplate,
    OutreachChannel,
    OutreachItem,
    OutreachStatus,
    UserSettings,
    format_timestamp,
    from_document,
    to_document,
)
from storage.seed import seed_user_defaults


def make_company(number="12345678", user_id="u1", **kwargs) -> Company:
    return Company(
        user_id=user_id,
        company_number=number,
        company_name=kwargs.pop("company_name", f"Company {number} Ltd"),
        **kwargs,
    )


class TestDocumentCodec:

    def test_nested_types_survive_encoding(self):
        founder = Founder(
            user_id="u1",
            first_name="Ada",
            last_name="Lovelace",
            education=[EducationEntry(school="University of Cambridge", is_top_tier=True, tier="tier1")],
        )
        payload = to_document(founder)

        assert payload["education"][0]["school"] == "University of Cambridge"
        assert "id" not in payload

        again = from_document(Founder, payload)
        assert isinstance(again.education[0], EducationEntry)
        assert again.has_top_tier_education

    def test_dates_and_enums_decode(self):
        company = make_company(incorporation_date=date(2024, 1, 15), stage=CompanyStage.RESEARCHING)
        again = from_document(Company, to_document(company))

        assert again.incorporation_date == date(2024, 1, 15)
        assert again.stage is CompanyStage.RESEARCHING

    def test_unknown_keys_are_dropped(self):
        payload = to_document(make_company())
        payload["retired_field"] = "x"
        assert from_document(Company, payload).company_number == "12345678"


class TestGenericOperations:

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        company = make_company()
        company_id = await store.insert(company)

        loaded = await store.get(Company, company_id)
        assert loaded.id == company_id
        assert loaded.company_name == "Company 12345678 Ltd"
        assert loaded.created_at is not None

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get(Company, 999) is None

    @pytest.mark.asyncio
    async def test_patch_updates_fields(self, store):
        company_id = await store.insert(make_company())
        patched = await store.patch(Company, company_id, overall_score=72, website="https://acme.io")

        assert patched.overall_score == 72
        loaded = await store.get(Company, company_id)
        assert loaded.website == "https://acme.io"

    @pytest.mark.asyncio
    async def test_patch_rejects_unknown_field(self, store):
        company_id = await store.insert(make_company())
        with pytest.raises(ValueError):
            await store.patch(Company, company_id, not_a_field=1)

    @pytest.mark.asyncio
    async def test_patch_missing_record(self, store):
        with pytest.raises(KeyError):
            await store.patch(Company, 42, overall_score=1)

    @pytest.mark.asyncio
    async def test_query_criteria_and_ordering(self, store):
        for number in ("001", "002", "003"):
            await store.insert(make_company(number))
        await store.insert(make_company("004", user_id="u2"))

        newest_first = await store.query(Company, user_id="u1", order_by="-id")
        assert [c.company_number for c in newest_first] == ["003", "002", "001"]

        limited = await store.query(Company, user_id="u1", limit=2)
        assert [c.company_number for c in limited] == ["001", "002"]

    @pytest.mark.asyncio
    async def test_query_list_means_in(self, store):
        await store.insert(make_company("001"))
        await store.insert(make_company("002", stage=CompanyStage.RESEARCHING))
        await store.insert(make_company("003", stage=CompanyStage.PASSED))

        pending = await store.query(
            Company, stage=[CompanyStage.DISCOVERED, CompanyStage.RESEARCHING]
        )
        assert {c.company_number for c in pending} == {"001", "002"}
        assert await store.query(Company, stage=[]) == []

    @pytest.mark.asyncio
    async def test_query_unindexed_column_rejected(self, store):
        with pytest.raises(ValueError):
            await store.query(Company, company_name="Acme")

    @pytest.mark.asyncio
    async def test_count_and_delete(self, store):
        company_id = await store.insert(make_company())
        assert await store.count(Company, user_id="u1") == 1

        assert await store.delete(Company, company_id) is True
        assert await store.delete(Company, company_id) is False
        assert await store.count(Company, user_id="u1") == 0


class TestCompanies:

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store):
        first_id, created = await store.upsert_company(make_company())
        second_id, created_again = await store.upsert_company(
            make_company(company_name="Renamed Ltd")
        )

        assert created is True
        assert created_again is False
        assert first_id == second_id
        loaded = await store.get(Company, first_id)
        assert loaded.company_name == "Company 12345678 Ltd"

    @pytest.mark.asyncio
    async def test_same_number_different_users(self, store):
        _, created_a = await store.upsert_company(make_company(user_id="a"))
        _, created_b = await store.upsert_company(make_company(user_id="b"))
        assert created_a and created_b
        assert await store.existing_company_numbers("a") == {"12345678"}

    @pytest.mark.asyncio
    async def test_advance_stage_follows_graph(self, store):
        company_id = await store.insert(make_company())

        company = await store.advance_stage(company_id, CompanyStage.RESEARCHING)
        assert company.stage == CompanyStage.RESEARCHING

        # Already there is a no-op
        company = await store.advance_stage(company_id, CompanyStage.RESEARCHING)
        assert company.stage == CompanyStage.RESEARCHING

        await store.advance_stage(company_id, CompanyStage.QUALIFIED)
        with pytest.raises(InvalidTransitionError):
            await store.advance_stage(company_id, CompanyStage.DISCOVERED)

    @pytest.mark.asyncio
    async def test_skipping_a_stage_is_rejected(self, store):
        company_id = await store.insert(make_company())
        with pytest.raises(InvalidTransitionError):
            await store.advance_stage(company_id, CompanyStage.QUALIFIED)

    @pytest.mark.asyncio
    async def test_pipeline_stats(self, store):
        await store.insert(make_company("001", overall_score=70, is_stealth_mode=True))
        await store.insert(make_company("002", stage=CompanyStage.QUALIFIED, overall_score=50))
        await store.insert(make_company("003", recently_announced=True))

        stats = await store.pipeline_stats("u1")
        assert stats["total"] == 3
        assert stats["discovered"] == 2
        assert stats["qualified"] == 1
        assert stats["stealth"] == 1
        assert stats["recently_announced"] == 1
        assert stats["average_score"] == 60


class TestOutreachLookups:

    @pytest.mark.asyncio
    async def test_due_outreach_orders_by_schedule_then_priority(self, store):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        company_id = await store.insert(make_company())
        founder_id = await store.insert(Founder(user_id="u1", first_name="A", last_name="B", company_id=company_id))

        def item(minutes, priority, status=OutreachStatus.QUEUED):
            return OutreachItem(
                user_id="u1",
                founder_id=founder_id,
                message="hi",
                scheduled_for=now + timedelta(minutes=minutes),
                priority=priority,
                status=status,
            )

        late = await store.insert(item(-5, 50))
        early_low = await store.insert(item(-10, 100))
        early_high = await store.insert(item(-10, 10))
        await store.insert(item(10, 1))  # not yet due
        await store.insert(item(-20, 1, status=OutreachStatus.SENT))

        due = await store.due_outreach(now)
        assert [i.id for i in due] == [early_high, early_low, late]
        assert await store.latest_outreach_time("u1") == now + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_due_outreach_filters_channel_and_users(self, store):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        earlier = now - timedelta(hours=1)

        linkedin = [
            await store.insert(
                OutreachItem(
                    user_id="u1", founder_id=1, message="hi", scheduled_for=earlier, channel=OutreachChannel.LINKEDIN
                )
            )
            for _ in range(10)
        ]
        email = await store.insert(OutreachItem(user_id="u1", founder_id=1, message="hi", scheduled_for=now))
        other_user = await store.insert(OutreachItem(user_id="u2", founder_id=2, message="hi", scheduled_for=earlier))

        assert [i.id for i in await store.due_outreach(now, user_ids=["u1"])] == [email]
        assert [i.id for i in await store.due_outreach(now)] == [other_user, email]
        assert await store.due_outreach(now, user_ids=[]) == []

        due_linkedin = await store.due_outreach(now, channel=OutreachChannel.LINKEDIN)
        assert [i.id for i in due_linkedin] == linkedin


class TestMigrations:

    @pytest.mark.asyncio
    async def test_v1_database_is_upgraded(self, temp_db_path):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        scored = make_company(last_scored_at=now)
        queued = OutreachItem(
            user_id="u1", founder_id=1, message="hi", scheduled_for=now, channel=OutreachChannel.LINKEDIN
        )
        stamp = format_timestamp(now)

        async with aiosqlite.connect(temp_db_path) as db:
            await db.executescript(MIGRATIONS[1])
            await db.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (1, ?)", (stamp,)
            )
            await db.execute(
                "INSERT INTO companies (user_id, company_number, stage, data, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                ("u1", scored.company_number, "discovered", json.dumps(to_document(scored)), stamp, stamp),
            )
            await db.execute(
                "INSERT INTO outreach_queue (user_id, founder_id, status, scheduled_for, data, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                ("u1", 1, "queued", stamp, json.dumps(to_document(queued)), stamp, stamp),
            )
            await db.commit()

        store = DealStore(temp_db_path)
        await store.initialize()
        try:
            companies = await store.query(Company, user_id="u1", last_scored_at=now)
            assert [c.company_number for c in companies] == [scored.company_number]
            assert await store.due_outreach(now) == []
            assert len(await store.due_outreach(now, channel=OutreachChannel.LINKEDIN)) == 1
        finally:
            await store.close()


class TestSettingsAndSeeding:

    @pytest.mark.asyncio
    async def test_seed_creates_templates_and_settings(self, store):
        settings = await seed_user_defaults(store, "u1")

        templates = await store.query(MessageTemplate, user_id="u1")
        assert len(templates) == 4
        default = await store.default_template("u1")
        assert default.is_default
        assert settings.default_template_id == default.id

    @pytest.mark.asyncio
    async def test_seed_is_idempotent_and_keeps_stored_values(self, store):
        await seed_user_defaults(store, "u1", UserSettings(user_id="u1", exa_api_key="first"))
        await seed_user_defaults(
            store, "u1", UserSettings(user_id="u1", exa_api_key="second", hunter_api_key="h")
        )

        assert await store.count(MessageTemplate, user_id="u1") == 4
        assert len(await store.all_settings()) == 1
        stored = await store.get_settings("u1")
        assert stored.exa_api_key == "first"
        assert stored.hunter_api_key == "h"


@pytest.mark.asyncio
async def test_store_reopens_existing_database(temp_db_path):
    async with DealStore(temp_db_path) as first:
        await first.insert(make_company())

    async with DealStore(temp_db_path) as second:
        assert await second.count(Company) == 1
