"""
Founder enrichment: professional profile, code hosting and email.

Profile step
    Semantic search for "first last company site:linkedin.com" restricted
    to linkedin.com. The chosen result is the first whose text contains
    both names, else the first linkedin.com/in result. Its text goes
    through the heuristic parser and the founder is rescored.

GitHub step (optional)
    Name search on the anonymous GitHub API for founders without a
    GitHub URL.

Email step (optional)
    Apollo, then Hunter, for founders without an email.

The enricher mutates the Founder it is given and leaves persistence to the
caller. RateLimitedError from the profile search propagates so the caller
can stop the batch.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from collectors.email_finder import EmailFinder, EmailMatch
from collectors.exa import ExaClient, SearchResult
from collectors.github import GitHubClient, GitHubFindings
from enrichment.lexicon import Lexicon, default_lexicon
from enrichment.profile_parser import parse_profile
from enrichment.results import EnrichmentOutcome, FounderEnrichment, ProfileSignals
from scoring.founder_score import apply_scores, score_founder
from storage.models import Founder, utc_now

logger = logging.getLogger(__name__)

PROFILE_DOMAIN = "linkedin.com"
PROFILE_PATH = "linkedin.com/in/"
PROFILE_RESULTS = 3
GITHUB_TECHNICAL_THRESHOLD = 50


def needs_enrichment(founder: Founder) -> bool:
    """Founders with both a profile URL and a score are left alone."""
    return not (founder.linkedin_url and founder.overall_score is not None)


def profile_query(founder: Founder, company_name: Optional[str] = None) -> str:
    parts = [founder.first_name, founder.last_name]
    if company_name:
        parts.append(company_name)
    parts.append(f"site:{PROFILE_DOMAIN}")
    return " ".join(p for p in parts if p)


def select_profile(results: Sequence[SearchResult], first_name: str, last_name: str) -> Optional[SearchResult]:
    first, last = first_name.lower(), last_name.lower()
    for result in results:
        text = (result.text or "").lower()
        if first in text and last in text:
            return result
    for result in results:
        if PROFILE_PATH in (result.url or "").lower():
            return result
    return None


def apply_signals(founder: Founder, signals: ProfileSignals, now: Optional[datetime] = None) -> None:
    """Copy parsed signals onto the founder and recompute its scores."""
    founder.linkedin_url = signals.profile_url or founder.linkedin_url
    founder.headline = signals.headline or founder.headline
    founder.location = signals.location or founder.location
    founder.education = signals.education
    founder.experience = signals.experience
    founder.stealth_signals = signals.stealth_signals
    founder.announcement_signals = signals.announcement_signals
    founder.is_repeat_founder = signals.is_repeat_founder
    founder.is_technical = founder.is_technical or signals.is_technical
    founder.prior_exits = signals.prior_exits
    founder.years_experience = signals.years_experience
    founder.domain_expertise = signals.domain_expertise
    founder.enrichment_confidence = signals.confidence
    founder.enriched_at = now or utc_now()
    apply_scores(founder)


def apply_github(founder: Founder, findings: GitHubFindings) -> None:
    profile = findings.profile
    founder.github_username = profile.login
    founder.github_url = profile.html_url or f"https://github.com/{profile.login}"
    founder.public_repos = profile.public_repos
    founder.followers = profile.followers
    founder.top_languages = findings.languages
    founder.organizations = findings.organizations
    founder.technical_score = findings.technical_score
    founder.contribution_level = findings.contribution_level
    if findings.technical_score >= GITHUB_TECHNICAL_THRESHOLD or findings.has_strong_tech_signals:
        founder.is_technical = True


def apply_email(founder: Founder, match: EmailMatch) -> None:
    founder.email = match.email
    founder.email_source = match.source
    if match.linkedin_url and not founder.linkedin_url:
        founder.linkedin_url = match.linkedin_url


class FounderEnricher:
    """
    Enrich one founder at a time.

    Args:
        exa: Entered ExaClient for profile search
        github: Optional entered GitHubClient
        email_finder: Optional EmailFinder (Apollo/Hunter)
        lexicon: Keyword lists for the parser
        current_year: Fixed year for experience maths (tests)
    """

    def __init__(
        self,
        exa: ExaClient,
        github: Optional[GitHubClient] = None,
        email_finder: Optional[EmailFinder] = None,
        lexicon: Optional[Lexicon] = None,
        current_year: Optional[int] = None,
    ):
        self.exa = exa
        self.github = github
        self.email_finder = email_finder
        self.lexicon = lexicon or default_lexicon()
        self.current_year = current_year

    async def enrich_profile(self, founder: Founder, company_name: Optional[str] = None) -> FounderEnrichment:
        if not needs_enrichment(founder):
            return FounderEnrichment(founder.id, EnrichmentOutcome.SKIPPED)

        results = await self.exa.search(
            profile_query(founder, company_name),
            num_results=PROFILE_RESULTS,
            include_domains=[PROFILE_DOMAIN],
        )
        chosen = select_profile(results, founder.first_name, founder.last_name)
        if chosen is None:
            logger.info(f"No profile found for {founder.full_name}")
            return FounderEnrichment(founder.id, EnrichmentOutcome.NOT_FOUND)

        signals = parse_profile(
            chosen.text,
            profile_url=chosen.url,
            current_year=self.current_year,
            lexicon=self.lexicon,
        )
        apply_signals(founder, signals)
        logger.info(
            f"Enriched {founder.full_name}: score {founder.overall_score} "
            f"({founder.founder_tier.value}), confidence {signals.confidence}"
        )
        return FounderEnrichment(
            founder.id,
            EnrichmentOutcome.ENRICHED,
            signals=signals,
            scores=score_founder(founder),
        )

    async def enrich_github(self, founder: Founder) -> Optional[GitHubFindings]:
        if self.github is None or founder.github_url:
            return None
        findings = await self.github.lookup(founder.first_name, founder.last_name, founder.location)
        if findings:
            apply_github(founder, findings)
        return findings

    async def find_email(self, founder: Founder, company_name: str) -> Optional[EmailMatch]:
        if self.email_finder is None or not self.email_finder.available or founder.email:
            return None
        match = await self.email_finder.find(
            founder.first_name, founder.last_name, company_name, founder.linkedin_url
        )
        if match:
            apply_email(founder, match)
            logger.info(f"Found email for {founder.full_name} via {match.source}")
        return match
