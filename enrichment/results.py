"""
Typed enrichment results.

Founder and company enrichment each return their own result type, so the
scorers downstream never pick fields out of loosely shaped dicts:

- ProfileSignals: what the heuristic parser read from one profile text
- FounderEnrichment: outcome of enriching one founder
- CompanyEnrichment: aggregated company profile from web search
- EnrichmentResult: stage summary for one user's run
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from storage.models import EducationEntry, ExperienceEntry
from utils.results import StageResult

if TYPE_CHECKING:
    from collectors.github import GitHubFindings
    from scoring.founder_score import FounderScore


@dataclass
class ProfileSignals:
    """Structured signals parsed from free profile text."""
    profile_url: Optional[str] = None
    headline: Optional[str] = None
    location: Optional[str] = None
    is_stealth: bool = False
    stealth_signals: List[str] = field(default_factory=list)
    is_recently_announced: bool = False
    announcement_signals: List[str] = field(default_factory=list)
    education: List[EducationEntry] = field(default_factory=list)
    experience: List[ExperienceEntry] = field(default_factory=list)
    is_repeat_founder: bool = False
    is_technical: bool = False
    prior_exits: int = 0
    years_experience: Optional[int] = None
    domain_expertise: List[str] = field(default_factory=list)
    has_phd: bool = False
    has_mba: bool = False
    confidence: str = "low"


class EnrichmentOutcome(str, Enum):
    ENRICHED = "enriched"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FounderEnrichment:
    founder_id: Optional[int]
    outcome: EnrichmentOutcome
    signals: Optional[ProfileSignals] = None
    scores: Optional[FounderScore] = None
    github: Optional[GitHubFindings] = None
    email: Optional[str] = None
    error: Optional[str] = None

    @property
    def attempted(self) -> bool:
        return self.outcome != EnrichmentOutcome.SKIPPED


@dataclass
class NewsItem:
    title: str
    url: str
    source: Optional[str] = None
    published_date: Optional[str] = None


@dataclass
class FundingRound:
    amount: Optional[float] = None
    currency: Optional[str] = None
    round_label: Optional[str] = None
    year: Optional[int] = None
    investors: List[str] = field(default_factory=list)
    source_url: Optional[str] = None


@dataclass
class CompanyEnrichment:
    description: Optional[str] = None
    website: Optional[str] = None
    product_description: Optional[str] = None
    tech_stack: List[str] = field(default_factory=list)
    business_model: Optional[str] = None
    team_size: Optional[str] = None
    news: List[NewsItem] = field(default_factory=list)
    funding_rounds: List[FundingRound] = field(default_factory=list)
    traction_score: int = 0
    sources: List[str] = field(default_factory=list)
    enriched_at: Optional[datetime] = None

    @property
    def has_signals(self) -> bool:
        return bool(self.funding_rounds or self.news or self.website or self.product_description)


@dataclass
class EnrichmentResult(StageResult):
    companies_processed: int = 0
    companies_enriched: int = 0
    moved_to_researching: int = 0
    founders_enriched: int = 0
    founders_not_found: int = 0
    founders_skipped: int = 0
    github_enriched: int = 0
    emails_found: int = 0
    rate_limited: bool = False
