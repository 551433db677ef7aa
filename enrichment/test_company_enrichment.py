"""
Tests for company web-profile extraction.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from collectors.exa import SearchResult
from collectors.retry_strategy import RateLimitedError
from enrichment.company_enrichment import (
    CompanyEnricher,
    extract_company_profile,
    investor_pattern,
    parse_funding_round,
    team_size_bucket,
)
from enrichment.lexicon import default_lexicon
from storage.models import Company

GENERAL = [
    SearchResult(url="https://www.linkedin.com/company/acme", text="short"),
    SearchResult(
        url="https://www.acme.ai/about",
        text=(
            "Acme builds machine learning tooling for finance teams. We are a B2B SaaS "
            "platform built with Python and React on AWS. 25 employees."
        ),
    ),
]
NEWS = [
    SearchResult(url="https://techcrunch.com/acme", title=" Acme raises seed ", published_date="2026-01-10"),
    SearchResult(url="https://techcrunch.com/acme", title="Acme raises seed"),
    SearchResult(url="https://sifted.eu/untitled"),
]
FUNDING = [
    SearchResult(
        url="https://sifted.eu/acme-seed",
        title="Acme raises £2.5m seed round",
        text="The round was led by Northern Seed Ventures in 2025.",
    ),
    SearchResult(url="https://uktech.news/acme", title="Acme lands £2.5m seed"),
    SearchResult(url="https://example.com/other", text="Nothing about money here."),
]


class TestExtraction:

    def test_profile_from_results(self):
        profile = extract_company_profile(GENERAL, NEWS, FUNDING)

        assert profile.description.startswith("Acme builds machine learning tooling")
        assert profile.website == "https://www.acme.ai"
        assert profile.tech_stack == ["React", "Python", "AWS"]
        assert profile.business_model == "B2B"
        assert profile.team_size == "11-50"

        assert len(profile.news) == 1
        assert profile.news[0].title == "Acme raises seed"
        assert profile.news[0].source == "techcrunch.com"

        assert len(profile.funding_rounds) == 1
        seed = profile.funding_rounds[0]
        assert seed.amount == 2_500_000
        assert seed.currency == "GBP"
        assert seed.round_label == "seed"
        assert seed.year == 2025
        assert seed.investors == ["Northern Seed Ventures"]

        # funding 15 + news 10 + website 10
        assert profile.traction_score == 35
        assert profile.sources[0] == "https://www.linkedin.com/company/acme"

    def test_no_signals_scores_zero(self):
        profile = extract_company_profile([SearchResult(url="https://linkedin.com/x", text="tiny")])
        assert not profile.has_signals
        assert profile.traction_score == 0

    def test_funding_without_amount_or_label(self):
        pattern = investor_pattern(default_lexicon().investor_suffixes)
        assert parse_funding_round("They are hiring", pattern) is None

        funding = parse_funding_round("Series A of $12 million backed by Blue Sky Capital", pattern)
        assert funding.round_label == "series a"
        assert funding.amount == 12_000_000
        assert funding.currency == "USD"
        assert funding.investors == ["Blue Sky Capital"]

    def test_team_size_buckets(self):
        assert team_size_bucket("8 staff") == "1-10"
        assert team_size_bucket("1,200 employees") == "500+"
        assert team_size_bucket("a small team") is None


class TestCompanyEnricher:

    @pytest.mark.asyncio
    async def test_runs_three_searches_then_fetches_site(self):
        def search(query, num_results=5, include_domains=None):
            if query.endswith("startup news"):
                return NEWS
            if query.endswith("funding round raised"):
                return FUNDING
            return GENERAL

        exa = AsyncMock()
        exa.search.side_effect = search
        exa.contents.return_value = [
            SearchResult(
                url="https://www.acme.ai",
                text="Acme Copilot reconciles ledgers automatically for finance teams.",
            )
        ]

        profile = await CompanyEnricher(exa).enrich(Company(user_id="u1", company_number="1", company_name="Acme"))

        assert exa.search.await_count == 3
        news_call = [c for c in exa.search.await_args_list if c.args[0] == "Acme startup news"][0]
        assert news_call.kwargs["include_domains"] == default_lexicon().news_domains
        exa.contents.assert_awaited_once_with(["https://www.acme.ai"])

        assert profile.product_description.startswith("Acme Copilot")
        assert profile.traction_score == 40
        assert profile.enriched_at is not None

    @pytest.mark.asyncio
    async def test_rate_limit_cancels_other_searches(self):
        cancelled = []

        async def search(query, num_results=5, include_domains=None):
            if query.endswith("startup news"):
                raise RateLimitedError("exa")
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(query)
                raise

        exa = AsyncMock()
        exa.search.side_effect = search

        with pytest.raises(RateLimitedError):
            await CompanyEnricher(exa).enrich(Company(user_id="u1", company_number="1", company_name="Acme"))

        assert "Acme company" in cancelled
        exa.contents.assert_not_awaited()
