"""
Tests for weekly investor discovery, firm validation and investor import.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from collectors.email_finder import EmailMatch
from collectors.investor_directory import FirmWebsite, InvestorDirectoryClient
from collectors.retry_strategy import RateLimitedError
from collectors.test_investor_directory import DIRECTORY_HTML, FIRM_HTML
from storage.models import Investor, RelationshipStrength, ValidationStatus
from workflows.investor_discovery import InvestorDiscovery, import_investor_records, validate_firm

PORTFOLIO = [{"name": "A"}, {"name": "B"}, {"name": "C"}]
ONE_EMAIL = [EmailMatch(email="jane@fund.vc", source="hunter")]


def directory_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "directory.test":
            return httpx.Response(200, text=DIRECTORY_HTML)
        if request.url.host == "www.northernseed.co.uk":
            return httpx.Response(200, text=FIRM_HTML)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


async def run_discovery(store, hunter=None):
    async with httpx.AsyncClient(transport=directory_transport()) as http:
        async with InvestorDirectoryClient("https://directory.test/members", client=http) as directory:
            discovery = InvestorDiscovery(store, directory, hunter=hunter, firm_delay=0)
            return await discovery.run("u1", current_year=2026)


class TestValidation:

    def test_clean_firm_is_validated(self):
        site = FirmWebsite(portfolio_companies=PORTFOLIO, stages=["seed"], latest_year=2025)
        validation = validate_firm("https://fund.vc", site, ONE_EMAIL, current_year=2026)
        assert validation.status == ValidationStatus.VALIDATED
        # portfolio 15 + recent 30 + early stage 20 + one email 5
        assert validation.activity_score == 70

    def test_stale_firm_needs_review(self):
        site = FirmWebsite(portfolio_companies=PORTFOLIO, stages=["seed"], latest_year=2021)
        validation = validate_firm("https://fund.vc", site, ONE_EMAIL, current_year=2026)
        assert validation.errors == ["no_recent_activity"]
        assert validation.status == ValidationStatus.NEEDS_REVIEW

    def test_thin_portfolio_without_emails_is_rejected(self):
        site = FirmWebsite(portfolio_companies=PORTFOLIO[:1], stages=["seed"], latest_year=2026)
        validation = validate_firm("https://fund.vc", site, [], current_year=2026)
        assert validation.errors == ["insufficient_portfolio", "no_emails"]
        assert validation.status == ValidationStatus.REJECTED

    def test_stage_and_website_errors(self):
        site = FirmWebsite(portfolio_companies=PORTFOLIO, stages=["series-b"], latest_year=2025)
        validation = validate_firm("https://fund.de", site, ONE_EMAIL, current_year=2026)
        assert validation.errors == ["non_uk_website", "late_stage_only"]
        assert validation.status == ValidationStatus.NEEDS_REVIEW

        unknown = validate_firm(None, FirmWebsite(), [], current_year=2026)
        assert "missing_website" in unknown.errors
        assert "unknown_stages" in unknown.errors
        assert "unknown_activity" in unknown.errors


class TestInvestorDiscovery:

    @pytest.mark.asyncio
    async def test_imports_validated_firm_with_guessed_emails(self, store):
        result = await run_discovery(store)

        assert result.firms_found == 2
        assert result.imported == 1
        assert result.skipped == 1

        northern = await store.investor_by_firm("u1", "Northern Seed Ventures")
        assert northern.validation_status == ValidationStatus.VALIDATED
        assert northern.relationship_strength == RelationshipStrength.WEAK
        assert northern.discovered_from == "bvca"
        assert [e["email"] for e in northern.partner_emails] == [
            "jane.doe@northernseed.co.uk", "john.smith@northernseed.co.uk",
        ]
        assert len(northern.portfolio_companies) == 3

        quiet = await store.investor_by_firm("u1", "Quiet Capital")
        assert quiet.validation_status == ValidationStatus.REJECTED

    @pytest.mark.asyncio
    async def test_rerun_skips_known_firms(self, store):
        await run_discovery(store)
        again = await run_discovery(store)

        assert again.imported == 0
        assert again.skipped == 2
        assert await store.count(Investor, user_id="u1") == 2

    @pytest.mark.asyncio
    async def test_hunter_results_preferred(self, store):
        hunter = AsyncMock()
        hunter.domain_search.return_value = [EmailMatch(email="jane@northernseed.co.uk", source="hunter")]

        await run_discovery(store, hunter=hunter)

        hunter.domain_search.assert_awaited_once_with("northernseed.co.uk")
        northern = await store.investor_by_firm("u1", "Northern Seed Ventures")
        assert [e["email"] for e in northern.partner_emails] == ["jane@northernseed.co.uk"]

    @pytest.mark.asyncio
    async def test_hunter_rate_limit_falls_back_to_guesses(self, store):
        hunter = AsyncMock()
        hunter.domain_search.side_effect = RateLimitedError("hunter")

        await run_discovery(store, hunter=hunter)

        northern = await store.investor_by_firm("u1", "Northern Seed Ventures")
        assert northern.partner_emails[0]["email_source"] == "pattern_unverified"


class TestImportRecords:

    @pytest.mark.asyncio
    async def test_import_skips_known_and_invalid(self, store):
        records = [
            {"firm_name": "Seedcamp", "stages": ["pre-seed", "seed"], "relationship_strength": "strong", "id": 42},
            {"firm_name": "Seedcamp"},
            {"vc_name": "No Firm"},
        ]

        counts = await import_investor_records(store, "u1", records)

        assert counts == {"imported": 1, "skipped": 1, "invalid": 1}
        seedcamp = await store.investor_by_firm("u1", "Seedcamp")
        assert seedcamp.vc_name == "Seedcamp"
        assert seedcamp.relationship_strength == RelationshipStrength.STRONG
        assert seedcamp.stages == ["pre-seed", "seed"]
