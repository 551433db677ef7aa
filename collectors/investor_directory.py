"""
Investor directory scraping.

Reads the BVCA member directory for UK investment firms, then reads each
firm's website for partner LinkedIn links, portfolio-like headings, sector
and stage keywords. HTML is handled with regular expressions; pages that
change layout simply yield fewer fields.

Usage:
    async with InvestorDirectoryClient() as directory:
        firms = await directory.list_members()
        profile = await directory.scrape_website(firms[0].website)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from collectors.base import BaseApiClient
from collectors.retry_strategy import RateLimitedError

logger = logging.getLogger(__name__)

BVCA_DIRECTORY_URL = "https://www.bvca.co.uk/Member-Directory"
BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

MAX_PORTFOLIO_COMPANIES = 20

MEMBER_BLOCK = re.compile(r'<div[^>]*class="[^"]*member[^"]*"[^>]*>([\s\S]*?)</div>', re.I)
HEADING = re.compile(r"<h[2-4][^>]*>(.*?)</h[2-4]>", re.I | re.S)
WEBSITE = re.compile(r"https?://(?:www\.)?[a-zA-Z0-9-]+\.[a-zA-Z]{2,}[^\s\"'<>]*", re.I)
FIRM_NAME_PATTERNS = [
    re.compile(r"([A-Z][a-zA-Z]+ (?:Capital|Ventures|Partners|Investments|VC))\b"),
    re.compile(r"([A-Z][a-zA-Z]+ [A-Z][a-zA-Z]+ (?:Capital|Ventures|Partners))\b"),
]
LINKEDIN_PROFILE = re.compile(r"linkedin\.com/in/([a-zA-Z0-9-]+)", re.I)
COMPANY_HEADING = re.compile(
    r"<(?:h[2-4]|strong|a)[^>]*>([A-Z][a-zA-Z0-9]+(?: [A-Z][a-zA-Z0-9]+)*)</(?:h[2-4]|strong|a)>"
)
NAVIGATION_WORDS = re.compile(r"^(Home|About|Team|Portfolio|Contact|News|Blog)$", re.I)
TAG = re.compile(r"<[^>]+>")
ACTIVITY_YEAR = re.compile(r"\b(199\d|20\d{2})\b")

SECTOR_KEYWORDS = [
    "fintech", "healthtech", "edtech", "proptech", "insurtech", "deeptech",
    "cleantech", "biotech", "saas", "enterprise", "consumer", "marketplace",
    "ai", "machine learning", "blockchain", "crypto", "climate",
    "sustainability", "foodtech", "agtech", "medtech", "cybersecurity",
    "b2b", "b2c", "ecommerce", "logistics", "mobility",
]

STAGE_KEYWORDS = [
    ("pre-seed", "pre-seed"),
    ("preseed", "pre-seed"),
    ("seed", "seed"),
    ("series a", "series-a"),
    ("series-a", "series-a"),
    ("series b", "series-b"),
    ("early stage", "seed"),
    ("early-stage", "seed"),
    ("growth", "growth"),
]


@dataclass
class DirectoryFirm:
    firm_name: str
    website: Optional[str] = None


@dataclass
class FirmWebsite:
    """What a firm's homepage says about it."""
    partners: List[Dict[str, Any]] = field(default_factory=list)
    portfolio_companies: List[Dict[str, Any]] = field(default_factory=list)
    sectors: List[str] = field(default_factory=list)
    stages: List[str] = field(default_factory=list)
    latest_year: Optional[int] = None

    @property
    def partner_names(self) -> List[str]:
        return [p["name"] for p in self.partners if p.get("name")]


def normalize_url(website: str) -> str:
    return website if website.startswith("http") else f"https://{website}"


def website_domain(website: str) -> str:
    host = urlparse(normalize_url(website)).hostname or ""
    return host[4:] if host.startswith("www.") else host


def strip_tags(html: str) -> str:
    return TAG.sub("", html).strip()


# =============================================================================
# PARSING
# =============================================================================

def parse_member_directory(html: str) -> List[DirectoryFirm]:
    """Firm names (and websites when linked) from the directory page."""
    firms: List[DirectoryFirm] = []
    for block in MEMBER_BLOCK.finditer(html):
        member_html = block.group(1)
        heading = HEADING.search(member_html)
        if not heading:
            continue
        name = strip_tags(heading.group(1))
        if len(name) <= 2:
            continue
        website = WEBSITE.search(member_html)
        firms.append(DirectoryFirm(firm_name=name, website=website.group(0) if website else None))

    if firms:
        return firms

    seen = set()
    for pattern in FIRM_NAME_PATTERNS:
        for match in pattern.finditer(html):
            name = match.group(1).strip()
            if name not in seen:
                seen.add(name)
                firms.append(DirectoryFirm(firm_name=name))
    return firms


def parse_firm_website(html: str) -> FirmWebsite:
    result = FirmWebsite()

    for match in LINKEDIN_PROFILE.finditer(html):
        slug = match.group(1)
        result.partners.append(
            {"name": slug.replace("-", " "), "linkedin_url": f"https://linkedin.com/in/{slug}"}
        )

    seen = set()
    for match in COMPANY_HEADING.finditer(html):
        name = match.group(1).strip()
        key = name.lower()
        if 2 < len(name) < 50 and key not in seen and not NAVIGATION_WORDS.match(name):
            seen.add(key)
            result.portfolio_companies.append({"name": name})
    result.portfolio_companies = result.portfolio_companies[:MAX_PORTFOLIO_COMPANIES]

    lowered = html.lower()
    result.sectors = [s for s in SECTOR_KEYWORDS if s in lowered]
    for keyword, stage in STAGE_KEYWORDS:
        if keyword in lowered and stage not in result.stages:
            result.stages.append(stage)

    years = [int(y) for y in ACTIVITY_YEAR.findall(strip_tags(html))]
    result.latest_year = max(years) if years else None
    return result


# =============================================================================
# CLIENT
# =============================================================================

class InvestorDirectoryClient(BaseApiClient):
    """Plain HTML fetches; not gated by a per-user API budget."""

    api_name = "investor_directory"

    def __init__(self, directory_url: str = BVCA_DIRECTORY_URL, **kwargs: Any):
        super().__init__(**kwargs)
        self.directory_url = directory_url

    async def _fetch_html(self, url: str) -> Optional[str]:
        response = await self._request(
            "GET",
            url,
            headers={"User-Agent": BROWSER_USER_AGENT},
            follow_redirects=True,
        )
        return response.text if response is not None else None

    async def list_members(self) -> List[DirectoryFirm]:
        try:
            html = await self._with_retry(lambda: self._fetch_html(self.directory_url))
        except (httpx.HTTPError, RateLimitedError) as e:
            logger.error(f"Directory fetch failed: {e}")
            return []
        firms = parse_member_directory(html or "")
        logger.info(f"Directory: found {len(firms)} potential investors")
        return firms

    async def scrape_website(self, website: str) -> FirmWebsite:
        """Empty result when the site cannot be fetched."""
        try:
            html = await self._fetch_html(normalize_url(website))
        except (httpx.HTTPError, RateLimitedError) as e:
            logger.warning(f"Could not scrape {website}: {e}")
            return FirmWebsite()
        return parse_firm_website(html or "")
