"""
Keyword lists used by the profile parser and company enrichment.

The lists live in `enrichment/data/lexicon.json` so reputation lists and
keyword sets can change without touching parsing code. Term matching is
case-insensitive on word boundaries, so "mit" does not hit "submit" and
"wise" does not hit "otherwise".
"""

from __future__ import annotations

import functools
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_LEXICON_PATH = DATA_DIR / "lexicon.json"


@functools.lru_cache(maxsize=2048)
def term_pattern(term: str) -> Pattern[str]:
    """Case-insensitive whole-term regex for a keyword or multi-word phrase."""
    escaped = re.escape(term.strip())
    prefix = r"\b" if term[:1].isalnum() else ""
    suffix = r"\b" if term[-1:].isalnum() else ""
    return re.compile(f"{prefix}{escaped}{suffix}", re.IGNORECASE)


def contains_term(text: str, term: str) -> bool:
    return term_pattern(term).search(text) is not None


def count_term(text: str, term: str) -> int:
    return len(term_pattern(term).findall(text))


def matching_terms(text: str, terms: Iterable[str]) -> List[str]:
    """Terms present in `text`, in list order."""
    return [t for t in terms if contains_term(text, t)]


@dataclass(frozen=True)
class Lexicon:
    top_tier_universities: List[str] = field(default_factory=list)
    tier2_universities: List[str] = field(default_factory=list)
    high_growth_companies: List[str] = field(default_factory=list)
    stealth_keywords: List[str] = field(default_factory=list)
    announcement_keywords: List[str] = field(default_factory=list)
    headline_pattern: str = ""
    location_pattern: str = ""
    education_keywords: List[str] = field(default_factory=list)
    degree_keywords: Dict[str, List[str]] = field(default_factory=dict)
    technical_fields: List[str] = field(default_factory=list)
    technical_titles: List[str] = field(default_factory=list)
    founder_titles: List[str] = field(default_factory=list)
    leadership_titles: List[str] = field(default_factory=list)
    exit_keywords: List[str] = field(default_factory=list)
    domain_keywords: Dict[str, List[str]] = field(default_factory=dict)
    tech_stack: List[str] = field(default_factory=list)
    business_models: Dict[str, List[str]] = field(default_factory=dict)
    news_domains: List[str] = field(default_factory=list)
    non_company_domains: List[str] = field(default_factory=list)
    investor_suffixes: List[str] = field(default_factory=list)

    @property
    def headline_regex(self) -> Pattern[str]:
        return re.compile(self.headline_pattern, re.IGNORECASE)

    @property
    def location_regex(self) -> Pattern[str]:
        return re.compile(self.location_pattern, re.IGNORECASE)

    @property
    def excluded_website_domains(self) -> List[str]:
        return list(dict.fromkeys(self.non_company_domains + self.news_domains))

    def university_tier(self, text: str) -> Optional[str]:
        if matching_terms(text, self.top_tier_universities):
            return "tier1"
        if matching_terms(text, self.tier2_universities):
            return "tier2"
        return None

    def high_growth_company(self, text: str) -> Optional[str]:
        """Display name of the first high-growth employer mentioned."""
        for company in self.high_growth_companies:
            if contains_term(text, company):
                return company
        return None


def load_lexicon(path: Optional[Path] = None) -> Lexicon:
    """Load a lexicon file; the bundled default is cached."""
    if path is None:
        return default_lexicon()
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return Lexicon(**data)


@functools.lru_cache(maxsize=1)
def default_lexicon() -> Lexicon:
    with open(DEFAULT_LEXICON_PATH, "r", encoding="utf-8") as f:
        data = json.load(f)
    return Lexicon(**data)
