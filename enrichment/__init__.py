"""
Founder and company enrichment.

- profile_parser: pure heuristic parser for profile text
- founder_enrichment: profile search, GitHub and email lookups per founder
- company_enrichment: web-search company profile and traction score
- stage: per-user enrichment run with the company roll-up
"""

from enrichment.profile_parser import parse_profile
from enrichment.results import (
    CompanyEnrichment,
    EnrichmentOutcome,
    EnrichmentResult,
    FounderEnrichment,
    ProfileSignals,
)

__all__ = [
    "CompanyEnrichment",
    "EnrichmentOutcome",
    "EnrichmentResult",
    "FounderEnrichment",
    "ProfileSignals",
    "parse_profile",
]
