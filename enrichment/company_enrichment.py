"""
Company enrichment from semantic web search.

Three searches run side by side for one company:
- general info (description, website, tech stack, business model, team size)
- news, restricted to the news allow-list
- funding mentions (amount, currency, round, year, lead investors)

If a website turns up, its page text supplies a product description.
Extraction is split out as `extract_company_profile` so it can be tested
against fixed search results.

Usage:
    enricher = CompanyEnricher(exa)
    profile = await enricher.enrich(company)
    print(profile.website, profile.traction_score)
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, List, Optional, Pattern, Sequence
from urllib.parse import urlparse

from collectors.exa import ExaClient, SearchResult
from enrichment.lexicon import Lexicon, default_lexicon, matching_terms
from enrichment.results import CompanyEnrichment, FundingRound, NewsItem
from storage.models import Company, utc_now

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 500
MIN_PRODUCT_LENGTH = 40
MAX_NEWS = 5
MAX_FUNDING_ROUNDS = 5

GENERAL_RESULTS = 5
NEWS_RESULTS = 5
FUNDING_RESULTS = 5

AMOUNT = re.compile(
    r"([£$€])\s?(\d+(?:\.\d+)?)\s?(k|m|mn|million|bn|billion)?\b", re.IGNORECASE
)
ROUND_LABEL = re.compile(r"\b(pre-seed|seed|series [a-e])\b", re.IGNORECASE)
FUNDING_YEAR = re.compile(r"\b(20\d{2})\b")
EMPLOYEES = re.compile(r"(\d[\d,]*)\+?\s*(?:employees|staff|people on the team)", re.IGNORECASE)

CURRENCIES = {"£": "GBP", "$": "USD", "€": "EUR"}
MULTIPLIERS = {
    "k": 1_000,
    "m": 1_000_000,
    "mn": 1_000_000,
    "million": 1_000_000,
    "bn": 1_000_000_000,
    "billion": 1_000_000_000,
}
TEAM_SIZE_BUCKETS = [(10, "1-10"), (50, "11-50"), (200, "51-200"), (500, "201-500")]


def investor_pattern(suffixes: Sequence[str]) -> Pattern[str]:
    """`led by|from|backed by <Name> <Suffix>`; names are capitalised words."""
    suffix = "|".join(re.escape(s) for s in suffixes)
    return re.compile(
        rf"(?i:led by|from|backed by)\s+((?:[A-Z][\w&'\-]*\s+){{0,3}}?(?:{suffix}))\b"
    )


def domain_of(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


def _domain_matches(host: str, domains: Sequence[str]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


# =============================================================================
# EXTRACTION
# =============================================================================

def first_text_block(results: Sequence[SearchResult], min_length: int) -> Optional[str]:
    for result in results:
        for block in re.split(r"\n\s*\n|\n", result.text or ""):
            block = block.strip()
            if len(block) > min_length:
                return block[:MAX_DESCRIPTION_LENGTH]
    return None


def find_website(results: Sequence[SearchResult], excluded: Sequence[str]) -> Optional[str]:
    for result in results:
        if not result.url:
            continue
        host = domain_of(result.url)
        if host and not _domain_matches(host, excluded):
            scheme = urlparse(result.url).scheme or "https"
            return f"{scheme}://{urlparse(result.url).netloc}"
    return None


def team_size_bucket(text: str) -> Optional[str]:
    match = EMPLOYEES.search(text)
    if not match:
        return None
    count = int(match.group(1).replace(",", ""))
    for ceiling, label in TEAM_SIZE_BUCKETS:
        if count <= ceiling:
            return label
    return "500+"


def business_model(text: str, lexicon: Lexicon) -> Optional[str]:
    for model, keywords in lexicon.business_models.items():
        if matching_terms(text, keywords):
            return model
    return None


def extract_news(results: Sequence[SearchResult]) -> List[NewsItem]:
    news: List[NewsItem] = []
    seen = set()
    for result in results:
        if not result.url or not result.title or result.url in seen:
            continue
        seen.add(result.url)
        news.append(
            NewsItem(
                title=result.title.strip(),
                url=result.url,
                source=domain_of(result.url),
                published_date=result.published_date,
            )
        )
        if len(news) >= MAX_NEWS:
            break
    return news


def parse_funding_round(text: str, investors: Pattern[str], source_url: Optional[str] = None) -> Optional[FundingRound]:
    amount_match = AMOUNT.search(text)
    label_match = ROUND_LABEL.search(text)
    if not amount_match and not label_match:
        return None

    funding = FundingRound(source_url=source_url)
    if amount_match:
        symbol, number, unit = amount_match.groups()
        funding.currency = CURRENCIES.get(symbol)
        funding.amount = float(number) * MULTIPLIERS.get((unit or "").lower(), 1)
    if label_match:
        funding.round_label = label_match.group(1).lower()
    year_match = FUNDING_YEAR.search(text)
    if year_match:
        funding.year = int(year_match.group(1))
    names = [m.group(1).strip() for m in investors.finditer(text)]
    funding.investors = list(dict.fromkeys(names))
    return funding


def extract_funding(results: Sequence[SearchResult], lexicon: Lexicon) -> List[FundingRound]:
    pattern = investor_pattern(lexicon.investor_suffixes)
    rounds: List[FundingRound] = []
    seen = set()
    for result in results:
        funding = parse_funding_round(f"{result.title or ''}\n{result.text}", pattern, result.url)
        if funding is None:
            continue
        key = (funding.amount, funding.round_label)
        if key in seen:
            continue
        seen.add(key)
        rounds.append(funding)
        if len(rounds) >= MAX_FUNDING_ROUNDS:
            break
    return rounds


def traction_score(profile: CompanyEnrichment) -> int:
    """0 without signals; funding, news, website and product text add up to 100."""
    if not profile.has_signals:
        return 0
    score = min(45, 15 * len(profile.funding_rounds))
    score += min(30, 10 * len(profile.news))
    score += 10 if profile.website else 0
    score += 5 if profile.product_description else 0
    return min(100, score)


def extract_company_profile(
    general: Sequence[SearchResult],
    news: Sequence[SearchResult] = (),
    funding: Sequence[SearchResult] = (),
    lexicon: Optional[Lexicon] = None,
) -> CompanyEnrichment:
    """Build a CompanyEnrichment from raw search results (no product page yet)."""
    lexicon = lexicon or default_lexicon()
    text = "\n".join(r.text for r in general if r.text)

    profile = CompanyEnrichment(
        description=first_text_block(general, MIN_DESCRIPTION_LENGTH),
        website=find_website(general, lexicon.excluded_website_domains),
        tech_stack=matching_terms(text, lexicon.tech_stack),
        business_model=business_model(text, lexicon),
        team_size=team_size_bucket(text),
        news=extract_news(news),
        funding_rounds=extract_funding(funding, lexicon),
    )
    profile.sources = list(
        dict.fromkeys(r.url for r in [*general, *news, *funding] if r.url)
    )
    profile.traction_score = traction_score(profile)
    return profile


# =============================================================================
# ENRICHER
# =============================================================================

async def search_all(*searches: Awaitable[List[SearchResult]]) -> List[List[SearchResult]]:
    """Run searches concurrently. The first failure cancels the rest."""
    tasks = [asyncio.ensure_future(search) for search in searches]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class CompanyEnricher:
    """Runs the company searches through an entered ExaClient."""

    def __init__(self, exa: ExaClient, lexicon: Optional[Lexicon] = None):
        self.exa = exa
        self.lexicon = lexicon or default_lexicon()

    async def enrich(self, company: Company) -> CompanyEnrichment:
        """Search, extract and score. RateLimitedError propagates to the caller."""
        name = company.company_name
        general, news, funding = await search_all(
            self.exa.search(f"{name} company", num_results=GENERAL_RESULTS),
            self.exa.search(
                f"{name} startup news",
                num_results=NEWS_RESULTS,
                include_domains=self.lexicon.news_domains,
            ),
            self.exa.search(f"{name} funding round raised", num_results=FUNDING_RESULTS),
        )

        profile = extract_company_profile(general, news, funding, self.lexicon)

        if profile.website:
            pages = await self.exa.contents([profile.website])
            profile.product_description = first_text_block(pages, MIN_PRODUCT_LENGTH)
            profile.traction_score = traction_score(profile)

        profile.enriched_at = utc_now()
        logger.info(
            f"Company enrichment for {name}: website={profile.website or '-'}, "
            f"news={len(profile.news)}, funding={len(profile.funding_rounds)}, "
            f"traction={profile.traction_score}"
        )
        return profile
