"""
Enrichment stage for one user.

For each discovered company (newest first, small batches):
1. enrich every founder's profile (1 s apart), then GitHub (6 s apart)
   and email where configured
2. enrich the company itself from web search
3. roll founder signals up into the company and move it to researching
   once enrichment was attempted, founders or not. Only a rate limit hit
   before any founder was looked at leaves it discovered for the next run

A profile-search 429 stops the batch after the current company is rolled
up. GitHub and email rate limits only switch those optional steps off for
the rest of the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from collectors.retry_strategy import RateLimitedError
from enrichment.company_enrichment import CompanyEnricher
from enrichment.founder_enrichment import FounderEnricher
from enrichment.results import CompanyEnrichment, EnrichmentOutcome, EnrichmentResult
from scoring.company_score import average_founder_score
from storage.deal_store import DealStore
from storage.models import Company, CompanyStage, Founder, to_document

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
FOUNDER_DELAY = 1.0
GITHUB_DELAY = 6.0


def roll_up(
    company: Company,
    founders: List[Founder],
    profile: Optional[CompanyEnrichment] = None,
) -> Dict[str, Any]:
    """Company field changes implied by its founders and its web profile."""
    changes: Dict[str, Any] = {}

    if not company.is_stealth_mode and any(f.stealth_signals for f in founders):
        changes["is_stealth_mode"] = True
    if not company.recently_announced and any(f.announcement_signals for f in founders):
        changes["recently_announced"] = True

    team = average_founder_score(founders)
    if team is not None:
        changes["team_score"] = team

    if profile is not None:
        changes["company_enrichment"] = to_document(profile)
        changes["traction_score"] = profile.traction_score
        if profile.website and not company.website:
            changes["website"] = profile.website
        if profile.description:
            changes["description"] = profile.description
            if profile.description not in (company.notes or ""):
                notes = f"{company.notes}\n" if company.notes else ""
                changes["notes"] = f"{notes}{profile.description}"
    return changes


class EnrichmentStage:
    """
    Args:
        store: Initialized DealStore
        founder_enricher: Profile/GitHub/email enricher
        company_enricher: Optional company web-profile enricher
        founder_delay: Seconds between profile searches
        github_delay: Seconds between GitHub lookups
    """

    def __init__(
        self,
        store: DealStore,
        founder_enricher: FounderEnricher,
        company_enricher: Optional[CompanyEnricher] = None,
        founder_delay: float = FOUNDER_DELAY,
        github_delay: float = GITHUB_DELAY,
    ):
        self.store = store
        self.founders = founder_enricher
        self.companies = company_enricher
        self.founder_delay = founder_delay
        self.github_delay = github_delay
        self._github_enabled = True
        self._email_enabled = True

    async def run(self, user_id: str, limit: int = DEFAULT_BATCH_SIZE) -> EnrichmentResult:
        result = EnrichmentResult()
        self._github_enabled = self.founders.github is not None
        self._email_enabled = self.founders.email_finder is not None

        companies = await self.store.query(
            Company, user_id=user_id, stage=CompanyStage.DISCOVERED, order_by="-id", limit=limit
        )
        logger.info(f"Enriching {len(companies)} discovered companies for {user_id}")

        for company in companies:
            try:
                await self.enrich_company(company, result)
            except Exception as e:
                logger.error(f"Enrichment failed for {company.company_name} ({company.id}): {e}")
                result.add_error(f"{company.company_number}: {e}")
            if result.rate_limited:
                logger.warning("Profile search rate limited, stopping enrichment batch")
                break

        result.finish(truncated=result.rate_limited)
        logger.info(
            f"Enrichment for {user_id}: {result.companies_processed} companies, "
            f"{result.founders_enriched} founders enriched, {result.founders_not_found} not found, "
            f"{result.github_enriched} GitHub, {result.emails_found} emails"
        )
        return result

    async def enrich_company(self, company: Company, result: EnrichmentResult) -> None:
        founders = await self.store.founders_for_company(company.id)
        looked_at = False
        searched = 0

        for founder in founders:
            if result.rate_limited:
                break

            outcome = await self._enrich_founder_profile(founder, company, result, searched)
            if outcome is None:
                continue
            looked_at = True
            if outcome != EnrichmentOutcome.SKIPPED:
                searched += 1

            changed = outcome == EnrichmentOutcome.ENRICHED
            changed |= await self._enrich_github(founder, result)
            changed |= await self._find_email(founder, company, result)
            if changed:
                await self.store.save(founder)

        profile = None
        if self.companies is not None and not result.rate_limited and company.company_enrichment is None:
            try:
                profile = await self.companies.enrich(company)
                if profile.has_signals:
                    result.companies_enriched += 1
            except RateLimitedError:
                result.rate_limited = True
            except httpx.HTTPError as e:
                logger.warning(f"Company search failed for {company.company_name}: {e}")
                result.add_error(f"{company.company_number} company search: {e}")

        changes = roll_up(company, founders, profile)
        if changes:
            company = await self.store.patch(Company, company.id, **changes)

        attempted = looked_at or not result.rate_limited
        if attempted and company.stage == CompanyStage.DISCOVERED:
            await self.store.advance_stage(company.id, CompanyStage.RESEARCHING)
            result.moved_to_researching += 1
        result.companies_processed += 1

    async def _enrich_founder_profile(
        self, founder: Founder, company: Company, result: EnrichmentResult, searched: int
    ) -> Optional[EnrichmentOutcome]:
        """Profile step. None means the founder was not looked at (error or rate limit)."""
        try:
            if searched and self.founder_delay:
                await asyncio.sleep(self.founder_delay)
            enrichment = await self.founders.enrich_profile(founder, company.company_name)
        except RateLimitedError as e:
            logger.warning(f"Profile search rate limited at {founder.full_name}: {e}")
            result.rate_limited = True
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Profile search failed for {founder.full_name}: {e}")
            result.add_error(f"founder {founder.id}: {e}")
            return None

        if enrichment.outcome == EnrichmentOutcome.ENRICHED:
            result.founders_enriched += 1
        elif enrichment.outcome == EnrichmentOutcome.NOT_FOUND:
            result.founders_not_found += 1
        else:
            result.founders_skipped += 1
        return enrichment.outcome

    async def _enrich_github(self, founder: Founder, result: EnrichmentResult) -> bool:
        if not self._github_enabled or founder.github_url:
            return False
        try:
            if self.github_delay:
                await asyncio.sleep(self.github_delay)
            findings = await self.founders.enrich_github(founder)
        except RateLimitedError:
            logger.warning("GitHub rate limited, skipping GitHub for the rest of this run")
            self._github_enabled = False
            return False
        except httpx.HTTPError as e:
            logger.warning(f"GitHub lookup failed for {founder.full_name}: {e}")
            return False
        if findings:
            result.github_enriched += 1
            return True
        return False

    async def _find_email(self, founder: Founder, company: Company, result: EnrichmentResult) -> bool:
        if not self._email_enabled or founder.email:
            return False
        try:
            match = await self.founders.find_email(founder, company.company_name)
        except RateLimitedError:
            logger.warning("Email discovery rate limited, skipping emails for the rest of this run")
            self._email_enabled = False
            return False
        if match:
            result.emails_found += 1
            return True
        return False
