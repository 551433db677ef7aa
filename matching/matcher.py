"""
Company-investor matching.

Pair score (0-100):
    +40  company funding stage in the investor's stage list
    +20  an inferred company sector overlaps an investor sector
         (substring either way, counted once)
    +25 / +15 / +5  strong / moderate / weak relationship
    +10  investor contacted within the last 30 days
    +5   company overall score >= 60

Pairs scoring 60 or more become Introductions in `considering` status,
linked to the company's best-scoring founder. A pair that already has an
introduction is never scored again.

Usage:
    matcher = Matcher(store)
    result = await matcher.run("user-1")
    print(result.introductions_created)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from scoring.industry import infer_sectors
from storage.deal_store import DealStore
from storage.models import (
    Company,
    CompanyStage,
    Founder,
    Introduction,
    IntroductionStatus,
    Investor,
    RelationshipStrength,
    utc_now,
)
from utils.results import StageResult

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 60
RECENT_CONTACT_DAYS = 30
HIGH_COMPANY_SCORE = 60
DEFAULT_FUNDING_STAGE = "pre-seed"

STAGE_POINTS = 40
SECTOR_POINTS = 20
RECENT_CONTACT_POINTS = 10
COMPANY_SCORE_POINTS = 5
RELATIONSHIP_POINTS = {
    RelationshipStrength.STRONG: 25,
    RelationshipStrength.MODERATE: 15,
    RelationshipStrength.WEAK: 5,
}

MATCHABLE_STAGES = (
    CompanyStage.QUALIFIED,
    CompanyStage.CONTACTED,
    CompanyStage.MEETING,
    CompanyStage.INTRODUCED,
)


@dataclass
class MatchCandidate:
    company_id: int
    investor_id: int
    score: int
    reasons: List[str] = field(default_factory=list)
    components: Dict[str, int] = field(default_factory=dict)

    @property
    def is_match(self) -> bool:
        return self.score >= MATCH_THRESHOLD


@dataclass
class MatchingResult(StageResult):
    companies_considered: int = 0
    pairs_scored: int = 0
    matches_found: int = 0
    introductions_created: int = 0
    already_introduced: int = 0


def _sector_overlap(company_sectors: Sequence[str], investor_sectors: Sequence[str]) -> Optional[str]:
    wanted = [s.lower() for s in investor_sectors if s]
    for sector in company_sectors:
        sector = sector.lower()
        if any(w in sector or sector in w for w in wanted):
            return sector
    return None


def score_pair(
    company: Company,
    investor: Investor,
    sectors: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> MatchCandidate:
    """Score one company against one investor; components always sum to the score."""
    now = now or utc_now()
    sectors = infer_sectors(company.sic_codes) if sectors is None else sectors
    components: Dict[str, int] = {}
    reasons: List[str] = []

    stage = (company.funding_stage or DEFAULT_FUNDING_STAGE).lower()
    if stage in [s.lower() for s in investor.stages]:
        components["stage"] = STAGE_POINTS
        reasons.append(f"Invests at {stage}")

    sector = _sector_overlap(sectors, investor.sectors)
    if sector:
        components["sector"] = SECTOR_POINTS
        reasons.append(f"Sector: {sector}")

    strength = investor.relationship_strength or RelationshipStrength.WEAK
    components["relationship"] = RELATIONSHIP_POINTS[strength]
    reasons.append(f"{strength.value.capitalize()} relationship")

    if investor.last_contact_at and now - investor.last_contact_at < timedelta(days=RECENT_CONTACT_DAYS):
        components["recent_contact"] = RECENT_CONTACT_POINTS
        reasons.append("Recent contact")

    if (company.overall_score or 0) >= HIGH_COMPANY_SCORE:
        components["company_score"] = COMPANY_SCORE_POINTS
        reasons.append("High company score")

    return MatchCandidate(
        company_id=company.id,
        investor_id=investor.id,
        score=sum(components.values()),
        reasons=reasons,
        components=components,
    )


def match_company(
    company: Company,
    investors: Sequence[Investor],
    now: Optional[datetime] = None,
) -> List[MatchCandidate]:
    """Score a company against every investor, best first."""
    sectors = infer_sectors(company.sic_codes)
    candidates = [score_pair(company, investor, sectors, now) for investor in investors]
    return sorted(candidates, key=lambda c: c.score, reverse=True)


def best_founder(founders: Sequence[Founder]) -> Optional[Founder]:
    scored = [f for f in founders if f.is_scored]
    if not scored:
        return None
    return max(scored, key=lambda f: f.overall_score)


class Matcher:
    """Materializes introductions for a user's qualified companies."""

    def __init__(self, store: DealStore, threshold: int = MATCH_THRESHOLD):
        self.store = store
        self.threshold = threshold

    async def run(self, user_id: str, now: Optional[datetime] = None) -> MatchingResult:
        result = MatchingResult()
        companies = await self.store.companies_in_stages(user_id, MATCHABLE_STAGES)
        investors = await self.store.query(Investor, user_id=user_id)
        if not companies or not investors:
            logger.info(f"Matching for {user_id}: {len(companies)} companies, {len(investors)} investors")
            result.finish()
            return result

        for company in companies:
            result.companies_considered += 1
            try:
                await self._match(user_id, company, investors, result, now)
            except Exception as e:
                logger.error(f"Matching failed for {company.company_name} ({company.id}): {e}")
                result.add_error(f"{company.company_number}: {e}")

        result.finish()
        logger.info(
            f"Matching for {user_id}: {result.matches_found} matches across "
            f"{result.companies_considered} companies, {result.introductions_created} introductions created"
        )
        return result

    async def _match(
        self,
        user_id: str,
        company: Company,
        investors: Sequence[Investor],
        result: MatchingResult,
        now: Optional[datetime],
    ) -> None:
        open_investors = []
        for investor in investors:
            if await self.store.find_introduction(user_id, company.id, investor.id):
                result.already_introduced += 1
            else:
                open_investors.append(investor)

        candidates = match_company(company, open_investors, now)
        result.pairs_scored += len(candidates)
        matches = [c for c in candidates if c.score >= self.threshold]
        if not matches:
            return

        result.matches_found += len(matches)
        founder = best_founder(await self.store.founders_for_company(company.id))
        for candidate in matches:
            created = await self.create_introduction(user_id, candidate, founder)
            if created is not None:
                result.introductions_created += 1

    async def create_introduction(
        self,
        user_id: str,
        candidate: MatchCandidate,
        founder: Optional[Founder] = None,
    ) -> Optional[int]:
        """Insert a `considering` introduction unless the pair already has one."""
        if await self.store.find_introduction(user_id, candidate.company_id, candidate.investor_id):
            return None
        intro_id = await self.store.insert(
            Introduction(
                user_id=user_id,
                company_id=candidate.company_id,
                investor_id=candidate.investor_id,
                founder_id=founder.id if founder else None,
                status=IntroductionStatus.CONSIDERING,
                match_score=candidate.score,
                match_reasons=candidate.reasons,
            )
        )
        logger.debug(
            f"Introduction {intro_id}: company {candidate.company_id} -> investor "
            f"{candidate.investor_id} ({candidate.score}: {', '.join(candidate.reasons)})"
        )
        return intro_id

    async def update_status(
        self,
        introduction_id: int,
        status: IntroductionStatus,
        now: Optional[datetime] = None,
    ) -> Introduction:
        """Move an introduction; sending it stamps the introduction and the investor contact."""
        now = now or utc_now()
        changes: Dict[str, object] = {"status": status}
        if status == IntroductionStatus.SENT:
            changes["introduced_at"] = now
        intro = await self.store.patch(Introduction, introduction_id, **changes)
        if status == IntroductionStatus.SENT:
            await self.store.patch(Investor, intro.investor_id, last_contact_at=now)
        return intro
