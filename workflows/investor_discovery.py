"""
Weekly investor discovery.

Scrapes the investor-association member directory, then for each new firm
(at most 20 per run, 1 s apart):

1. scrape its website for partners, portfolio, sectors and stages
2. find partner emails (Hunter domain search, else first.last@domain guesses)
3. validate it into an activity score and a status
4. import it as a weak-relationship Investor

Validation errors:
    missing_website, non_uk_website, insufficient_portfolio,
    no_recent_activity, unknown_activity, unknown_stages,
    late_stage_only, no_emails

Status: validated with no errors; rejected when the portfolio is thin and
no email was found; needs_review with at most two errors; rejected
otherwise.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import httpx

from collectors.email_finder import EmailMatch, HunterClient, guess_pattern_emails
from collectors.investor_directory import (
    DirectoryFirm,
    FirmWebsite,
    InvestorDirectoryClient,
    website_domain,
)
from collectors.retry_strategy import RateLimitedError
from storage.deal_store import DealStore
from storage.models import ROW_FIELDS, Investor, RelationshipStrength, ValidationStatus, from_document
from utils.results import StageResult

logger = logging.getLogger(__name__)

MAX_FIRMS_PER_RUN = 20
FIRM_DELAY = 1.0
MIN_PORTFOLIO = 3
RECENT_ACTIVITY_YEARS = 2
EARLY_STAGES = {"pre-seed", "seed", "series-a"}
ACCEPTED_WEBSITE_SUFFIXES = (".co.uk", ".uk", ".com", ".vc")
DISCOVERY_SOURCE = "bvca"


@dataclass
class FirmValidation:
    status: ValidationStatus
    errors: List[str] = field(default_factory=list)
    activity_score: int = 0


@dataclass
class InvestorDiscoveryResult(StageResult):
    firms_found: int = 0
    imported: int = 0
    flagged: int = 0
    skipped: int = 0
    imported_ids: List[int] = field(default_factory=list)
    flagged_ids: List[int] = field(default_factory=list)


def validate_firm(
    website: Optional[str],
    site: FirmWebsite,
    partner_emails: List[EmailMatch],
    current_year: Optional[int] = None,
) -> FirmValidation:
    errors: List[str] = []
    score = 0
    current_year = current_year or date.today().year

    if not website:
        errors.append("missing_website")
    elif not any(suffix in website for suffix in ACCEPTED_WEBSITE_SUFFIXES):
        errors.append("non_uk_website")

    portfolio = len(site.portfolio_companies)
    if portfolio < MIN_PORTFOLIO:
        errors.append("insufficient_portfolio")
    else:
        score += min(portfolio * 5, 30)

    if site.latest_year is None:
        errors.append("unknown_activity")
    elif current_year - site.latest_year <= RECENT_ACTIVITY_YEARS:
        score += 30
    else:
        errors.append("no_recent_activity")

    stages = [s.lower() for s in site.stages]
    if any(s in EARLY_STAGES for s in stages):
        score += 20
    elif not stages:
        errors.append("unknown_stages")
    else:
        errors.append("late_stage_only")

    if not partner_emails:
        errors.append("no_emails")
    else:
        score += min(len(partner_emails) * 5, 20)

    if not errors:
        status = ValidationStatus.VALIDATED
    elif "insufficient_portfolio" in errors and "no_emails" in errors:
        status = ValidationStatus.REJECTED
    elif len(errors) <= 2:
        status = ValidationStatus.NEEDS_REVIEW
    else:
        status = ValidationStatus.REJECTED

    return FirmValidation(status=status, errors=errors, activity_score=min(score, 100))


class InvestorDiscovery:
    """
    Args:
        store: Initialized DealStore
        directory: Entered InvestorDirectoryClient
        hunter: Optional entered HunterClient for domain search
        firm_delay: Seconds between firms
        max_firms: Firms processed per run
    """

    def __init__(
        self,
        store: DealStore,
        directory: InvestorDirectoryClient,
        hunter: Optional[HunterClient] = None,
        firm_delay: float = FIRM_DELAY,
        max_firms: int = MAX_FIRMS_PER_RUN,
    ):
        self.store = store
        self.directory = directory
        self.hunter = hunter
        self.firm_delay = firm_delay
        self.max_firms = max_firms

    async def partner_emails(self, website: str, partner_names: List[str]) -> List[EmailMatch]:
        domain = website_domain(website)
        if not domain:
            return []
        if self.hunter is not None:
            try:
                found = await self.hunter.domain_search(domain)
                if found:
                    return found
            except (RateLimitedError, httpx.HTTPError) as e:
                logger.warning(f"Hunter domain search failed for {domain}: {e}")
        return guess_pattern_emails(domain, partner_names)

    async def run(self, user_id: str, current_year: Optional[int] = None) -> InvestorDiscoveryResult:
        result = InvestorDiscoveryResult()
        firms = await self.directory.list_members()
        result.firms_found = len(firms)

        for index, firm in enumerate(firms[: self.max_firms]):
            try:
                if await self.store.investor_by_firm(user_id, firm.firm_name):
                    result.skipped += 1
                    continue
                if index and self.firm_delay:
                    await asyncio.sleep(self.firm_delay)
                await self._import_firm(user_id, firm, result, current_year)
            except Exception as e:
                logger.error(f"Error processing investor {firm.firm_name}: {e}")
                result.add_error(f"{firm.firm_name}: {e}")

        result.finish()
        logger.info(
            f"Investor discovery for {user_id}: found {result.firms_found}, imported {result.imported}, "
            f"flagged {result.flagged}, skipped {result.skipped}"
        )
        return result

    async def _import_firm(
        self,
        user_id: str,
        firm: DirectoryFirm,
        result: InvestorDiscoveryResult,
        current_year: Optional[int],
    ) -> None:
        site = FirmWebsite()
        emails: List[EmailMatch] = []
        if firm.website:
            site = await self.directory.scrape_website(firm.website)
            emails = await self.partner_emails(firm.website, site.partner_names)

        validation = validate_firm(firm.website, site, emails, current_year)
        investor_id = await self.store.insert(
            Investor(
                user_id=user_id,
                vc_name=firm.firm_name,
                firm_name=firm.firm_name,
                website=firm.website,
                stages=site.stages,
                sectors=site.sectors,
                relationship_strength=RelationshipStrength.WEAK,
                partner_emails=[e.to_dict() for e in emails],
                portfolio_companies=site.portfolio_companies,
                discovered_from=DISCOVERY_SOURCE,
                activity_score=validation.activity_score,
                validation_status=validation.status,
                validation_errors=validation.errors,
            )
        )

        if validation.status == ValidationStatus.VALIDATED:
            result.imported += 1
            result.imported_ids.append(investor_id)
        elif validation.status == ValidationStatus.NEEDS_REVIEW:
            result.flagged += 1
            result.flagged_ids.append(investor_id)
        else:
            result.skipped += 1
        logger.debug(
            f"{firm.firm_name}: {validation.status.value} "
            f"(activity {validation.activity_score}, errors {validation.errors})"
        )


async def import_investor_records(
    store: DealStore, user_id: str, records: Iterable[Dict[str, Any]]
) -> Dict[str, int]:
    """Import investor dicts (e.g. from a JSON file); firms already stored are skipped."""
    counts = {"imported": 0, "skipped": 0, "invalid": 0}
    for record in records:
        firm_name = (record.get("firm_name") or "").strip()
        if not firm_name:
            counts["invalid"] += 1
            continue
        if await store.investor_by_firm(user_id, firm_name):
            counts["skipped"] += 1
            continue
        data = {k: v for k, v in record.items() if k not in ROW_FIELDS}
        data.update(user_id=user_id, firm_name=firm_name)
        data.setdefault("vc_name", firm_name)
        try:
            investor = from_document(Investor, data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid investor record {firm_name}: {e}")
            counts["invalid"] += 1
            continue
        await store.insert(investor)
        counts["imported"] += 1
    return counts
