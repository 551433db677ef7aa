"""
Founder scoring.

Scores are always recomputed from the parsed `education` / `experience`
entries plus the derived profile signals; they are never edited on their
own.

Education:
    0 with no entries, 30 with entries but no top-tier school, otherwise
    min(100, 50 + 25 * top_tier_count); +15 for a PhD, +10 for an MBA.

Experience (by number of high-growth employers):
    0 none at all, 30 only other employers, 60 / 80 / 100 for 1 / 2 / 3+;
    +15 leadership title, +15 repeat founder, +10 prior exit,
    +5 for 10+ years.

Overall:
    round(0.4 * education + 0.6 * experience)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from storage.models import EducationEntry, ExperienceEntry, Founder, FounderTier

EDUCATION_WEIGHT = 0.4
EXPERIENCE_WEIGHT = 0.6


@dataclass
class FounderScore:
    education_score: int
    experience_score: int
    overall_score: int
    tier: FounderTier


def education_score(education: List[EducationEntry]) -> int:
    if not education:
        return 0

    top_tier = sum(1 for e in education if e.is_top_tier)
    score = min(100, 50 + 25 * top_tier) if top_tier else 30

    if any(e.degree == "phd" for e in education):
        score += 15
    if any(e.degree == "mba" for e in education):
        score += 10
    return min(100, score)


def experience_score(
    experience: List[ExperienceEntry],
    is_repeat_founder: bool = False,
    prior_exits: int = 0,
    years_experience: Optional[int] = None,
) -> int:
    high_growth = sum(1 for e in experience if e.is_high_growth)
    if high_growth >= 3:
        score = 100
    elif high_growth == 2:
        score = 80
    elif high_growth == 1:
        score = 60
    elif experience:
        score = 30
    else:
        score = 0

    if any(e.is_leadership_role for e in experience):
        score += 15
    if is_repeat_founder:
        score += 15
    if prior_exits > 0:
        score += 10
    if years_experience is not None and years_experience >= 10:
        score += 5
    return min(100, score)


def founder_tier(
    overall: int,
    is_repeat_founder: bool,
    prior_exits: int,
    high_growth_count: int,
    top_tier_count: int,
) -> FounderTier:
    if overall >= 80 or (is_repeat_founder and prior_exits > 0):
        return FounderTier.EXCEPTIONAL
    if overall >= 65 or (is_repeat_founder and high_growth_count >= 1):
        return FounderTier.STRONG
    if overall >= 45 or high_growth_count >= 1 or top_tier_count >= 1:
        return FounderTier.PROMISING
    return FounderTier.STANDARD


def score_profile(
    education: List[EducationEntry],
    experience: List[ExperienceEntry],
    is_repeat_founder: bool = False,
    prior_exits: int = 0,
    years_experience: Optional[int] = None,
) -> FounderScore:
    edu = education_score(education)
    exp = experience_score(experience, is_repeat_founder, prior_exits, years_experience)
    overall = round(EDUCATION_WEIGHT * edu + EXPERIENCE_WEIGHT * exp)
    tier = founder_tier(
        overall,
        is_repeat_founder,
        prior_exits,
        high_growth_count=sum(1 for e in experience if e.is_high_growth),
        top_tier_count=sum(1 for e in education if e.is_top_tier),
    )
    return FounderScore(edu, exp, overall, tier)


def score_founder(founder: Founder) -> FounderScore:
    return score_profile(
        founder.education,
        founder.experience,
        is_repeat_founder=founder.is_repeat_founder,
        prior_exits=founder.prior_exits,
        years_experience=founder.years_experience,
    )


def apply_scores(founder: Founder) -> FounderScore:
    """Recompute and write the derived score fields onto `founder`."""
    scores = score_founder(founder)
    founder.education_score = scores.education_score
    founder.experience_score = scores.experience_score
    founder.overall_score = scores.overall_score
    founder.founder_tier = scores.tier
    return scores
