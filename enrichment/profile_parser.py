"""
Heuristic parser for professional-profile text.

`parse_profile` turns the raw page text returned by semantic search into a
ProfileSignals bundle. It is a pure function of its inputs: no network and
no randomness, and the clock is read only when no current year is passed.
Same text in, same signals out.

Line-oriented rules:
- stealth / announcement: any keyword anywhere in the text
- headline: first of the first 10 lines matching the role-title pattern
- location: first of the first 10 lines matching the city/region pattern
- education: every line holding an education keyword (max 5)
- experience: lines naming a high-growth employer, then "at X" / "@ X"
  mentions, deduplicated by company (max 10)

Derived signals: repeat founder, technical founder, prior exits, years of
experience, domain expertise and an overall confidence level.

Usage:
    signals = parse_profile(text, profile_url="https://linkedin.com/in/ada", current_year=2025)
    print(signals.headline, [e.school for e in signals.education])
"""

from __future__ import annotations

import re
from datetime import date
from typing import List, Optional

from enrichment.lexicon import (
    Lexicon,
    count_term,
    default_lexicon,
    matching_terms,
)
from enrichment.results import ProfileSignals
from storage.models import EducationEntry, ExperienceEntry

MAX_EDUCATION = 5
MAX_EXPERIENCE = 10
HEADLINE_SCAN_LINES = 10
MAX_HEADLINE_LENGTH = 100
MAX_LOCATION_LENGTH = 50
MAX_SCHOOL_LENGTH = 100
MAX_EXITS = 5
EARLIEST_CAREER_YEAR = 1980

AT_COMPANY = re.compile(
    r"(?:\bat\b|@)\s+([A-Z][\w&.'\-]*(?:\s+(?:[A-Z][\w&.'\-]*|&))*)"
)
YEAR = re.compile(r"\b(19\d{2}|20\d{2})\b")
TITLE_PREFIX_MAX = 60


# =============================================================================
# LINE RULES
# =============================================================================

def _lines(text: str) -> List[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def _degree(line: str, lexicon: Lexicon) -> Optional[str]:
    for degree, keywords in lexicon.degree_keywords.items():
        if matching_terms(line, keywords):
            return degree
    return None


def _field_of_study(line: str, lexicon: Lexicon) -> Optional[str]:
    fields = matching_terms(line, lexicon.technical_fields)
    return fields[0] if fields else None


def parse_education(lines: List[str], lexicon: Lexicon) -> List[EducationEntry]:
    entries = []
    for line in lines:
        if not any(keyword in line for keyword in lexicon.education_keywords):
            continue
        tier = lexicon.university_tier(line)
        field_of_study = _field_of_study(line, lexicon)
        entries.append(
            EducationEntry(
                school=line[:MAX_SCHOOL_LENGTH],
                is_top_tier=tier == "tier1",
                tier=tier,
                degree=_degree(line, lexicon),
                field_of_study=field_of_study,
                is_technical_field=field_of_study is not None,
            )
        )
        if len(entries) >= MAX_EDUCATION:
            break
    return entries


def _title_before(line: str, start: int) -> str:
    """Job title is whatever precedes "at"/"@" on the line, when short."""
    prefix = line[:start].strip(" -|,:@")
    if prefix.lower().endswith(" at"):
        prefix = prefix[:-3].strip()
    if 0 < len(prefix) <= TITLE_PREFIX_MAX:
        return prefix
    return "Unknown"


def _experience_entry(company: str, title: str, line: str, high_growth: bool, lexicon: Lexicon) -> ExperienceEntry:
    role_text = line if title == "Unknown" else title
    return ExperienceEntry(
        company=company,
        title=title,
        is_high_growth=high_growth,
        is_founder_role=bool(matching_terms(role_text, lexicon.founder_titles)),
        is_leadership_role=bool(matching_terms(role_text, lexicon.leadership_titles)),
        is_technical_role=bool(matching_terms(role_text, lexicon.technical_titles)),
    )


def parse_experience(lines: List[str], lexicon: Lexicon) -> List[ExperienceEntry]:
    entries: List[ExperienceEntry] = []
    seen = set()

    for line in lines:
        company = lexicon.high_growth_company(line)
        if company and company.lower() not in seen:
            seen.add(company.lower())
            match = re.search(re.escape(company), line, re.IGNORECASE)
            title = _title_before(line, match.start()) if match else "Unknown"
            entries.append(_experience_entry(company, title, line, True, lexicon))

    for line in lines:
        if any(keyword in line for keyword in lexicon.education_keywords):
            continue
        for match in AT_COMPANY.finditer(line):
            company = match.group(1).strip(" .,-")
            key = company.lower()
            if len(company) < 2 or key in seen:
                continue
            seen.add(key)
            title = _title_before(line, match.start())
            entries.append(_experience_entry(company, title, line, False, lexicon))

    return entries[:MAX_EXPERIENCE]


# =============================================================================
# DERIVED SIGNALS
# =============================================================================

def count_exits(text: str, experience: List[ExperienceEntry], lexicon: Lexicon) -> int:
    mentions = sum(count_term(text, keyword) for keyword in lexicon.exit_keywords)
    if not any(e.is_founder_role for e in experience):
        return min(mentions, 1)
    return min(mentions, MAX_EXITS)


def years_of_experience(text: str, current_year: int) -> Optional[int]:
    years = [
        int(y) for y in YEAR.findall(text)
        if EARLIEST_CAREER_YEAR <= int(y) <= current_year
    ]
    if len(years) < 2:
        return None
    return current_year - min(years)


def domain_expertise(text: str, lexicon: Lexicon) -> List[str]:
    domains = []
    for domain, keywords in lexicon.domain_keywords.items():
        hits = sum(count_term(text, keyword) for keyword in keywords)
        if hits >= 2:
            domains.append(domain)
    return domains


def confidence_level(signals: ProfileSignals) -> str:
    points = 0
    points += 1 if signals.headline else 0
    points += 1 if signals.location else 0
    points += 2 if signals.education else 0
    points += 2 if signals.experience else 0
    points += 1 if len(signals.experience) >= 3 else 0
    points += 1 if any(e.degree for e in signals.education) else 0

    if points >= 6:
        return "high"
    if points >= 3:
        return "medium"
    return "low"


# =============================================================================
# ENTRY POINT
# =============================================================================

def parse_profile(
    text: str,
    profile_url: Optional[str] = None,
    current_year: Optional[int] = None,
    lexicon: Optional[Lexicon] = None,
) -> ProfileSignals:
    """Parse one profile's text into structured signals."""
    lexicon = lexicon or default_lexicon()
    text = text or ""
    current_year = current_year or date.today().year
    lines = _lines(text)
    signals = ProfileSignals(profile_url=profile_url)

    signals.stealth_signals = matching_terms(text, lexicon.stealth_keywords)
    signals.is_stealth = bool(signals.stealth_signals)
    signals.announcement_signals = matching_terms(text, lexicon.announcement_keywords)
    signals.is_recently_announced = bool(signals.announcement_signals)

    headline_regex = lexicon.headline_regex
    location_regex = lexicon.location_regex
    for line in lines[:HEADLINE_SCAN_LINES]:
        if signals.headline is None and headline_regex.search(line):
            signals.headline = line[:MAX_HEADLINE_LENGTH]
        if signals.location is None and location_regex.search(line):
            signals.location = line[:MAX_LOCATION_LENGTH]

    signals.education = parse_education(lines, lexicon)
    signals.experience = parse_experience(lines, lexicon)

    founder_roles = sum(1 for e in signals.experience if e.is_founder_role)
    signals.is_repeat_founder = founder_roles >= 2
    signals.is_technical = (
        any(e.is_technical_field for e in signals.education)
        or any(e.is_technical_role for e in signals.experience)
        or bool(signals.headline and matching_terms(signals.headline, lexicon.technical_titles))
    )
    signals.prior_exits = count_exits(text, signals.experience, lexicon)
    signals.years_experience = years_of_experience(text, current_year)
    signals.domain_expertise = domain_expertise(text, lexicon)
    signals.has_phd = any(e.degree == "phd" for e in signals.education)
    signals.has_mba = any(e.degree == "mba" for e in signals.education)
    signals.confidence = confidence_level(signals)
    return signals