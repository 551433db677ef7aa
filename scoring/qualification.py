"""
Qualification: score a company, store the scores and advance its stage.

Usage:
    qualifier = Qualifier(store, policy="pipeline")
    result = await qualifier.qualify_company(company_id)
    summary = await qualifier.qualify_pending("user-1", limit=50)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from scoring.company_score import CompanyScore, QualificationDecision, get_policy
from storage.deal_store import DealStore
from storage.models import Company, CompanyStage, utc_now
from utils.results import StageResult

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
NOTES_PREFIX = "Qualification:"

PENDING_STAGES = (CompanyStage.DISCOVERED, CompanyStage.RESEARCHING)


@dataclass
class QualificationResult:
    company_id: int
    decision: QualificationDecision
    tier: Optional[str]
    scores: CompanyScore
    reasons: List[str] = field(default_factory=list)
    stage: Optional[CompanyStage] = None


@dataclass
class QualificationSummary(StageResult):
    companies_processed: int = 0
    qualified: int = 0
    watchlist: int = 0
    passed: int = 0
    needs_research: int = 0
    qualified_company_ids: List[int] = field(default_factory=list)


def merge_notes(notes: Optional[str], reasons: List[str]) -> str:
    """Replace any previous qualification line in `notes` with the new reasons."""
    kept = [
        line for line in (notes or "").splitlines()
        if line.strip() and not line.startswith(NOTES_PREFIX)
    ]
    kept.append(f"{NOTES_PREFIX} {'; '.join(reasons)}")
    return "\n".join(kept)


class Qualifier:
    """Applies one scoring policy to stored companies."""

    def __init__(self, store: DealStore, policy: Optional[str] = None):
        self.store = store
        self.policy = get_policy(policy)

    async def qualify_company(
        self, company_id: int, now: Optional[datetime] = None
    ) -> QualificationResult:
        now = now or utc_now()
        company = await self.store.get(Company, company_id)
        if company is None:
            raise KeyError(f"Company {company_id} not found")

        founders = await self.store.founders_for_company(company_id)
        scores = self.policy.score(company, founders)

        changes = dict(
            overall_score=scores.overall_score,
            team_score=scores.team_score,
            market_score=scores.market_score,
            traction_score=scores.traction_score,
            bonus_score=scores.bonus_score,
            qualification_tier=scores.tier,
            qualification_policy=scores.policy,
            notes=merge_notes(company.notes, scores.reasons),
            last_scored_at=now,
        )
        if scores.decision == QualificationDecision.QUALIFIED:
            changes["qualified_at"] = now
        company = await self.store.patch(Company, company_id, **changes)

        if company.stage in PENDING_STAGES:
            company = await self._advance(company, scores.decision)

        return QualificationResult(
            company_id=company_id,
            decision=scores.decision,
            tier=scores.tier,
            scores=scores,
            reasons=scores.reasons,
            stage=company.stage,
        )

    async def _advance(self, company: Company, decision: QualificationDecision) -> Company:
        if decision == QualificationDecision.QUALIFIED:
            if company.stage == CompanyStage.DISCOVERED:
                company = await self.store.advance_stage(company.id, CompanyStage.RESEARCHING)
            return await self.store.advance_stage(company.id, CompanyStage.QUALIFIED)
        if decision == QualificationDecision.PASSED:
            return await self.store.advance_stage(company.id, CompanyStage.PASSED)
        return company

    async def qualify_pending(
        self, user_id: str, limit: int = DEFAULT_BATCH_SIZE, now: Optional[datetime] = None
    ) -> QualificationSummary:
        """Score discovered and researching companies for one user, least recently scored first."""
        summary = QualificationSummary()
        companies = await self.store.companies_in_stages(
            user_id, PENDING_STAGES, limit=limit, order_by="last_scored_at"
        )

        for company in companies:
            try:
                result = await self.qualify_company(company.id, now)
            except Exception as e:
                logger.error(f"Failed to qualify {company.company_name} ({company.id}): {e}")
                summary.add_error(f"{company.company_number}: {e}")
                continue

            summary.companies_processed += 1
            if result.decision == QualificationDecision.QUALIFIED:
                summary.qualified += 1
                summary.qualified_company_ids.append(company.id)
                if result.scores.watchlist:
                    summary.watchlist += 1
            elif result.decision == QualificationDecision.PASSED:
                summary.passed += 1
            else:
                summary.needs_research += 1

            logger.debug(
                f"{company.company_name}: {result.decision.value} "
                f"(score {result.scores.overall_score}, tier {result.tier})"
            )

        summary.finish()
        logger.info(
            f"Qualification for {user_id} ({self.policy.name}): {summary.companies_processed} processed, "
            f"{summary.qualified} qualified, {summary.passed} passed, "
            f"{summary.needs_research} need research"
        )
        return summary
