"""
Company scoring under two named qualification policies.

pipeline (default, used by the background stages):
    overall = round(team * 0.40 + market * 0.25 + traction * 0.15 + bonuses)
    bonuses: +5 stealth, +3 recently announced, +3 top-tier education,
             +5 repeat founder, +2 technical founder, +5 exceptional founder
    qualified  - a founder is scored, market >= 65, and team >= 35 or any
                 strong signal (top-tier school, high-growth employer,
                 repeat founder, exceptional tier, stealth, announced)
    passed     - founders scored but market < 65
    researching - otherwise

tiered (stricter manual scorer):
    enriched:   0.5 * team + 0.4 * market + bonus
    unenriched: 0.3 * 50   + 0.6 * market + bonus
    bonus: +10 stealth, +5 recently announced, +5 for 2+ founders all >= 60
    tiers A >= 80, B >= 65, C >= 50 (watchlist), else D
    A/B/C are qualified, D is passed

Both take the market score from scoring.industry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from scoring.industry import MarketScore, market_score
from storage.models import Company, Founder, FounderTier

NEUTRAL_TEAM_SCORE = 50

PIPELINE_MARKET_FLOOR = 65
PIPELINE_TEAM_FLOOR = 35

# Tier cut-offs for pipeline-qualified companies, used to order outreach.
PIPELINE_TIER_CUTOFFS = [(60, "A"), (45, "B")]

TIERED_CUTOFFS = [(80, "A"), (65, "B"), (50, "C")]

TIER_PRIORITY = {"A": 10, "B": 50, "C": 100, "D": 200}


class QualificationDecision(str, Enum):
    QUALIFIED = "qualified"
    PASSED = "passed"
    RESEARCHING = "researching"


@dataclass
class CompanyScore:
    team_score: int
    market_score: int
    traction_score: int
    bonus_score: int
    overall_score: int
    decision: QualificationDecision
    tier: Optional[str] = None
    watchlist: bool = False
    policy: str = "pipeline"
    market_category: str = ""
    reasons: List[str] = field(default_factory=list)


def tier_priority(tier: Optional[str]) -> int:
    """Outreach priority for a tier (lower sends first)."""
    return TIER_PRIORITY.get(tier or "", 100)


def scored_founders(founders: Sequence[Founder]) -> List[Founder]:
    return [f for f in founders if f.is_scored]


def average_founder_score(founders: Sequence[Founder]) -> Optional[int]:
    scored = scored_founders(founders)
    if not scored:
        return None
    return round(sum(f.overall_score for f in scored) / len(scored))


# =============================================================================
# PIPELINE POLICY
# =============================================================================

class PipelinePolicy:
    """Background-stage formula."""

    name = "pipeline"

    def bonuses(self, company: Company, founders: Sequence[Founder]) -> Dict[str, int]:
        scored = scored_founders(founders)
        applied: Dict[str, int] = {}
        if company.is_stealth_mode:
            applied["Stealth mode"] = 5
        if company.recently_announced:
            applied["Recently announced"] = 3
        if any(f.has_top_tier_education for f in scored):
            applied["Top-tier education"] = 3
        if any(f.is_repeat_founder for f in scored):
            applied["Repeat founder"] = 5
        if any(f.is_technical for f in scored):
            applied["Technical founder"] = 2
        if any(f.founder_tier == FounderTier.EXCEPTIONAL for f in scored):
            applied["Exceptional founder"] = 5
        return applied

    def score(self, company: Company, founders: Sequence[Founder]) -> CompanyScore:
        scored = scored_founders(founders)
        average = average_founder_score(founders)
        team = average if average is not None else NEUTRAL_TEAM_SCORE
        market: MarketScore = market_score(company.sic_codes)
        traction = company.traction_score or 0
        bonuses = self.bonuses(company, founders)
        bonus = sum(bonuses.values())

        overall = min(100, round(team * 0.40 + market.score * 0.25 + traction * 0.15 + bonus))

        reasons = [f"Team: {team}" + ("" if scored else " (no founders scored)")]
        reasons.append(f"Market: {market.score} ({market.reasoning})")
        if traction:
            reasons.append(f"Traction: {traction}")
        reasons.extend(f"{label} +{points}" for label, points in bonuses.items())

        has_signal = (
            any(f.has_top_tier_education for f in scored)
            or any(f.has_high_growth_experience for f in scored)
            or any(f.is_repeat_founder for f in scored)
            or any(f.founder_tier == FounderTier.EXCEPTIONAL for f in scored)
            or company.is_stealth_mode
            or company.recently_announced
        )

        if scored and market.score >= PIPELINE_MARKET_FLOOR and (
            team >= PIPELINE_TEAM_FLOOR or has_signal
        ):
            decision = QualificationDecision.QUALIFIED
            tier = next((t for cutoff, t in PIPELINE_TIER_CUTOFFS if overall >= cutoff), "C")
        elif scored and market.score < PIPELINE_MARKET_FLOOR:
            decision = QualificationDecision.PASSED
            tier = "D"
            reasons.append(f"Market below {PIPELINE_MARKET_FLOOR}")
        else:
            decision = QualificationDecision.RESEARCHING
            tier = None

        return CompanyScore(
            team_score=team,
            market_score=market.score,
            traction_score=traction,
            bonus_score=bonus,
            overall_score=overall,
            decision=decision,
            tier=tier,
            policy=self.name,
            market_category=market.category,
            reasons=reasons,
        )


# =============================================================================
# TIERED POLICY
# =============================================================================

class TieredPolicy:
    """Manual-path formula with A/B/C/D buckets."""

    name = "tiered"

    def score(self, company: Company, founders: Sequence[Founder]) -> CompanyScore:
        reasons: List[str] = []
        team_members = [f for f in founders if f.is_founder and f.is_scored]
        enriched = bool(team_members)

        if enriched:
            team = round(sum(f.overall_score for f in team_members) / len(team_members))
            reasons.append(f"Team: {team} ({len(team_members)} scored founders)")
        else:
            team = NEUTRAL_TEAM_SCORE
            reasons.append("Team: not enriched")

        market = market_score(company.sic_codes)
        reasons.append(f"Market: {market.score} ({market.reasoning})")

        bonus = 0
        if company.is_stealth_mode:
            bonus += 10
            reasons.append("Stealth mode +10")
        if company.recently_announced:
            bonus += 5
            reasons.append("Recently announced +5")
        if len(team_members) >= 2 and all(f.overall_score >= 60 for f in team_members):
            bonus += 5
            reasons.append("Strong founding team +5")

        if enriched:
            raw = team * 0.5 + market.score * 0.4 + bonus
        else:
            raw = NEUTRAL_TEAM_SCORE * 0.3 + market.score * 0.6 + bonus
        overall = min(100, round(raw))

        tier = next((t for cutoff, t in TIERED_CUTOFFS if overall >= cutoff), "D")
        if tier == "D":
            decision = QualificationDecision.PASSED
        else:
            decision = QualificationDecision.QUALIFIED

        return CompanyScore(
            team_score=team,
            market_score=market.score,
            traction_score=company.traction_score or 0,
            bonus_score=bonus,
            overall_score=overall,
            decision=decision,
            tier=tier,
            watchlist=tier == "C",
            policy=self.name,
            market_category=market.category,
            reasons=reasons,
        )


POLICIES = {
    PipelinePolicy.name: PipelinePolicy(),
    TieredPolicy.name: TieredPolicy(),
}


def get_policy(name: Optional[str]):
    """Look up a policy by name; None means the pipeline default."""
    key = name or PipelinePolicy.name
    if key not in POLICIES:
        raise ValueError(f"Unknown scoring policy: {name} (expected one of {sorted(POLICIES)})")
    return POLICIES[key]
