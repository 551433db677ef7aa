"""
GitHub profile lookup for founder technical signals.

Uses the unauthenticated REST API, which allows roughly 10 search requests a
minute. Callers space founders several seconds apart; this client also
gates every request through the "github" rate-limit budget.

Lookup:
1. Search users by "<first> <last> in:name" (plus location when known)
2. Fetch the first hit's profile
3. Count languages across the 10 most recently pushed repos (top 5 kept)
4. List organization memberships

A 403 from GitHub means the anonymous quota is spent and is raised as
RateLimitedError; callers stop GitHub lookups for the rest of the run.

Usage:
    async with GitHubClient(user_id="u1", rate_limiter=limiter) as gh:
        found = await gh.lookup("Ada", "Lovelace", location="London")
        if found:
            print(found.profile.login, found.technical_score)
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from collectors.base import BaseApiClient
from collectors.retry_strategy import is_retryable_error
from storage.models import utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

GITHUB_API = "https://api.github.com"
GITHUB_MAX_RETRIES = 3

STRONG_TECH_SIGNALS = [
    "machine learning", "ml", "ai", "artificial intelligence",
    "blockchain", "web3", "crypto",
    "startup", "founder", "cto", "engineer", "developer",
    "fullstack", "full-stack", "backend", "frontend",
    "deep learning", "data science", "devops", "sre",
]

MAJOR_TECH_ORGS = [
    "google", "meta", "facebook", "microsoft", "amazon", "apple",
    "stripe", "netflix", "uber", "airbnb", "spotify",
    "deepmind", "openai", "anthropic", "figma", "notion",
    "vercel", "supabase", "planetscale",
]

HIGH_VALUE_LANGUAGES = {
    "TypeScript", "Python", "Rust", "Go", "Kotlin", "Swift",
    "JavaScript", "Java", "C++", "Scala",
}

REPO_POINTS = [(50, 20), (20, 15), (10, 10), (5, 5)]
FOLLOWER_POINTS = [(1000, 25), (500, 20), (100, 15), (50, 10), (10, 5)]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class GitHubProfile:
    login: str
    name: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    public_repos: int = 0
    followers: int = 0
    created_at: Optional[datetime] = None
    html_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> GitHubProfile:
        created = data.get("created_at")
        return cls(
            login=data.get("login", ""),
            name=data.get("name"),
            bio=data.get("bio"),
            company=data.get("company"),
            location=data.get("location"),
            public_repos=int(data.get("public_repos") or 0),
            followers=int(data.get("followers") or 0),
            created_at=datetime.fromisoformat(created.replace("Z", "+00:00")) if created else None,
            html_url=data.get("html_url"),
        )


@dataclass
class GitHubFindings:
    """Everything learned about one founder from GitHub."""
    profile: GitHubProfile
    languages: List[str] = field(default_factory=list)
    organizations: List[str] = field(default_factory=list)
    technical_score: int = 0
    contribution_level: str = "none"
    has_strong_tech_signals: bool = False


# =============================================================================
# SCORING
# =============================================================================

def _stepped(value: int, steps: List[tuple]) -> int:
    for threshold, points in steps:
        if value >= threshold:
            return points
    return 0


def tech_signals(profile: GitHubProfile) -> List[str]:
    text = f"{profile.bio or ''} {profile.company or ''}".lower()
    return [s for s in STRONG_TECH_SIGNALS if s in text]


def calculate_technical_score(
    profile: GitHubProfile, languages: List[str], orgs: List[str]
) -> int:
    """0-100 from repo count, followers, languages, org affiliations and bio."""
    score = _stepped(profile.public_repos, REPO_POINTS)
    score += _stepped(profile.followers, FOLLOWER_POINTS)

    high_value = sum(1 for lang in languages if lang in HIGH_VALUE_LANGUAGES)
    score += min(high_value * 5, 20)

    major_orgs = sum(
        1 for org in orgs if any(major in org.lower() for major in MAJOR_TECH_ORGS)
    )
    score += min(major_orgs * 10, 20)

    score += min(len(tech_signals(profile)) * 5, 15)
    return min(score, 100)


def contribution_level(profile: GitHubProfile, now: Optional[datetime] = None) -> str:
    """none / low / medium / high from repos per account-year and followers."""
    if profile.public_repos == 0:
        return "none"

    now = now or utc_now()
    age_years = 0.0
    if profile.created_at:
        age_years = (now - profile.created_at).total_seconds() / (365 * 24 * 3600)
    repos_per_year = profile.public_repos / max(age_years, 0.5)

    if repos_per_year >= 10 and profile.followers >= 50:
        return "high"
    if repos_per_year >= 5 or profile.followers >= 20:
        return "medium"
    return "low"


def top_languages(repos: List[Dict[str, Any]], limit: int = 5) -> List[str]:
    counts = Counter(repo["language"] for repo in repos if repo.get("language"))
    return [lang for lang, _ in counts.most_common(limit)]


# =============================================================================
# CLIENT
# =============================================================================

class GitHubClient(BaseApiClient):
    """Anonymous GitHub REST client."""

    api_name = "github"

    def __init__(self, base_url: str = GITHUB_API, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "dealflow-engine",
        }

    @retry(
        stop=stop_after_attempt(GITHUB_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(is_retryable_error),
        reraise=True,
    )
    async def _github_get(self, endpoint: str, **params: Any) -> Any:
        """GET with 403 raised as RateLimitedError and 404 mapped to None."""
        response = await self._request(
            "GET",
            f"{self.base_url}{endpoint}",
            params=params or None,
            headers=self.headers,
            empty_statuses=(404,),
            rate_limit_statuses=(403, 429),
        )
        if response is None:
            return None

        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining and remaining.isdigit() and int(remaining) < 3:
            logger.warning(f"GitHub rate limit low: {remaining} remaining")
        return response.json()

    async def search_user(
        self, first_name: str, last_name: str, location: Optional[str] = None
    ) -> Optional[str]:
        """Login of the best name match, or None."""
        query = f"{first_name} {last_name} in:name"
        if location:
            query += f" location:{location}"
        data = await self._github_get("/search/users", q=query, per_page=5)
        items = (data or {}).get("items") or []
        return items[0]["login"] if items else None

    async def get_user(self, login: str) -> Optional[GitHubProfile]:
        data = await self._github_get(f"/users/{login}")
        return GitHubProfile.from_api(data) if data else None

    async def get_languages(self, login: str) -> List[str]:
        repos = await self._github_get(f"/users/{login}/repos", sort="pushed", per_page=10)
        return top_languages(repos or [])

    async def get_orgs(self, login: str) -> List[str]:
        orgs = await self._github_get(f"/users/{login}/orgs")
        return [org["login"] for org in orgs or [] if org.get("login")]

    async def lookup(
        self,
        first_name: str,
        last_name: str,
        location: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[GitHubFindings]:
        """Search, fetch and score one person. None when nobody matches."""
        if not first_name or not last_name:
            return None

        login = await self.search_user(first_name, last_name, location)
        if not login:
            logger.info(f"No GitHub profile found for {first_name} {last_name}")
            return None

        profile = await self.get_user(login)
        if profile is None:
            return None

        languages = await self.get_languages(login)
        orgs = await self.get_orgs(login)

        findings = GitHubFindings(
            profile=profile,
            languages=languages,
            organizations=orgs,
            technical_score=calculate_technical_score(profile, languages, orgs),
            contribution_level=contribution_level(profile, now=now),
            has_strong_tech_signals=bool(tech_signals(profile)),
        )
        logger.info(
            f"GitHub: {first_name} {last_name} -> @{login} "
            f"(score: {findings.technical_score}, repos: {profile.public_repos}, "
            f"followers: {profile.followers})"
        )
        return findings
