"""Founder and company scoring, qualification policies and industry-code tables."""

from scoring.company_score import (
    CompanyScore,
    PipelinePolicy,
    QualificationDecision,
    TieredPolicy,
    get_policy,
)
from scoring.founder_score import FounderScore, apply_scores, score_founder, score_profile
from scoring.industry import infer_sectors, market_score
from scoring.qualification import QualificationResult, QualificationSummary, Qualifier

__all__ = [
    "CompanyScore",
    "FounderScore",
    "PipelinePolicy",
    "QualificationDecision",
    "QualificationResult",
    "QualificationSummary",
    "Qualifier",
    "TieredPolicy",
    "apply_scores",
    "get_policy",
    "infer_sectors",
    "market_score",
    "score_founder",
    "score_profile",
]
