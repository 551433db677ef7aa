"""
Tests for company-investor matching.

Run:
    python -m pytest matching/test_matcher.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from matching.matcher import Matcher, match_company, score_pair
from storage.models import (
    Company,
    CompanyStage,
    Founder,
    Introduction,
    IntroductionStatus,
    Investor,
    RelationshipStrength,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_company(**kwargs) -> Company:
    defaults = dict(
        user_id="u1",
        company_number="111",
        company_name="Acme Ltd",
        sic_codes=["62012"],
        overall_score=65,
        stage=CompanyStage.QUALIFIED,
    )
    defaults.update(kwargs)
    return Company(**defaults)


def warm_investor(**kwargs) -> Investor:
    defaults = dict(
        user_id="u1",
        vc_name="Jane Doe",
        firm_name="Warm Ventures",
        stages=["pre-seed", "seed"],
        sectors=["Software", "AI"],
        relationship_strength=RelationshipStrength.STRONG,
        last_contact_at=NOW - timedelta(days=10),
    )
    defaults.update(kwargs)
    return Investor(**defaults)


def cold_investor(**kwargs) -> Investor:
    defaults = dict(user_id="u1", vc_name="Sam Roe", firm_name="Cold Capital", stages=["series-a"], sectors=["fintech"])
    defaults.update(kwargs)
    return Investor(**defaults)


def edge_investor(**kwargs) -> Investor:
    defaults = dict(
        user_id="u1",
        vc_name="Kim Poe",
        firm_name="Edge Partners",
        stages=["Pre-Seed"],
        relationship_strength=RelationshipStrength.MODERATE,
    )
    defaults.update(kwargs)
    return Investor(**defaults)


class TestScorePair:

    def test_all_components(self):
        candidate = score_pair(make_company(), warm_investor(), now=NOW)
        assert candidate.components == {
            "stage": 40,
            "sector": 20,
            "relationship": 25,
            "recent_contact": 10,
            "company_score": 5,
        }
        assert candidate.score == 100
        assert candidate.is_match

    def test_weak_default_relationship(self):
        candidate = score_pair(make_company(), cold_investor(), now=NOW)
        assert candidate.components == {"relationship": 5, "company_score": 5}
        assert candidate.score == 10
        assert not candidate.is_match

    def test_threshold_is_inclusive(self):
        candidate = score_pair(make_company(), edge_investor(), now=NOW)
        assert candidate.score == 60
        assert candidate.is_match

    def test_old_contact_earns_nothing(self):
        investor = warm_investor(last_contact_at=NOW - timedelta(days=30))
        assert "recent_contact" not in score_pair(make_company(), investor, now=NOW).components

    def test_sector_counted_once(self):
        company = make_company(sic_codes=["14131", "62012"])
        investor = cold_investor(sectors=["fashion", "software"])
        candidate = score_pair(company, investor, now=NOW)
        assert candidate.components["sector"] == 20
        assert candidate.score == sum(candidate.components.values())

    def test_match_company_orders_best_first(self):
        company = make_company(id=1)
        investors = [cold_investor(id=1), warm_investor(id=2), edge_investor(id=3)]
        ranked = match_company(company, investors, now=NOW)
        assert [c.investor_id for c in ranked] == [2, 3, 1]


class TestMatcher:

    async def seed(self, store):
        company_id = await store.insert(make_company())
        await store.insert(make_company(company_number="222", stage=CompanyStage.DISCOVERED))
        await store.insert(Founder(user_id="u1", company_id=company_id, first_name="A", last_name="B", overall_score=50))
        best = await store.insert(Founder(user_id="u1", company_id=company_id, first_name="C", last_name="D", overall_score=80))
        for investor in (warm_investor(), cold_investor(), edge_investor()):
            await store.insert(investor)
        return company_id, best

    @pytest.mark.asyncio
    async def test_creates_introductions_for_matches(self, store):
        company_id, best_founder_id = await self.seed(store)

        result = await Matcher(store).run("u1", now=NOW)

        assert result.companies_considered == 1
        assert result.pairs_scored == 3
        assert result.matches_found == 2
        assert result.introductions_created == 2

        intros = await store.query(Introduction, user_id="u1")
        assert sorted(i.match_score for i in intros) == [60, 100]
        assert all(i.status == IntroductionStatus.CONSIDERING for i in intros)
        assert all(i.founder_id == best_founder_id for i in intros)
        assert all(i.company_id == company_id for i in intros)

    @pytest.mark.asyncio
    async def test_rerun_skips_existing_pairs(self, store):
        await self.seed(store)
        await Matcher(store).run("u1", now=NOW)

        again = await Matcher(store).run("u1", now=NOW)

        assert again.already_introduced == 2
        assert again.pairs_scored == 1
        assert again.introductions_created == 0
        assert await store.count(Introduction, user_id="u1") == 2

    @pytest.mark.asyncio
    async def test_no_investors(self, store):
        await store.insert(make_company())
        result = await Matcher(store).run("u1", now=NOW)
        assert result.companies_considered == 0

    @pytest.mark.asyncio
    async def test_sent_stamps_investor_contact(self, store):
        await self.seed(store)
        await Matcher(store).run("u1", now=NOW)
        intro = (await store.query(Introduction, user_id="u1"))[0]

        updated = await Matcher(store).update_status(intro.id, IntroductionStatus.SENT, now=NOW)

        assert updated.status == IntroductionStatus.SENT
        assert updated.introduced_at == NOW
        investor = await store.get(Investor, intro.investor_id)
        assert investor.last_contact_at == NOW
