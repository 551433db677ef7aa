"""
Industry-code (SIC) tables: market scalability scores and sector tags.

Both tables live in `scoring/data/industry_codes.json`.

Market score lookup for one code:
1. exact 5-digit entry
2. otherwise the best entry sharing the longest leading prefix (4, 3, then 2 digits)

A company's market score is the best over its codes; 50 when it has no
codes, 40 when none of its codes match.
"""

from __future__ import annotations

import functools
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

DATA_PATH = Path(__file__).parent / "data" / "industry_codes.json"

PREFIX_LENGTHS = (4, 3, 2)


@functools.lru_cache(maxsize=1)
def industry_tables() -> Dict[str, Any]:
    with open(DATA_PATH, "r", encoding="utf-8") as f:
        return json.load(f)


@dataclass
class MarketScore:
    score: int
    category: str
    matched_code: Optional[str] = None
    reasoning: str = ""


def lookup_code(sic_code: str) -> Optional[MarketScore]:
    """Score for one code: exact hit, else best entry under the longest shared prefix."""
    table = industry_tables()["market_scores"]
    code = sic_code.strip()

    if code in table:
        entry = table[code]
        return MarketScore(entry["score"], entry["category"], code, f"{entry['category']} ({code})")

    for length in PREFIX_LENGTHS:
        if len(code) < length:
            continue
        prefix = code[:length]
        candidates = [(k, v) for k, v in table.items() if k.startswith(prefix)]
        if candidates:
            key, entry = max(candidates, key=lambda kv: (kv[1]["score"], kv[0]))
            return MarketScore(
                entry["score"],
                entry["category"],
                key,
                f"{entry['category']} (prefix {prefix} via {key})",
            )
    return None


def market_score(sic_codes: Optional[Sequence[str]]) -> MarketScore:
    defaults = industry_tables()["default_market_score"]
    if not sic_codes:
        return MarketScore(defaults["no_codes"], "Unknown", reasoning="No SIC codes available")

    best: Optional[MarketScore] = None
    for code in sic_codes:
        found = lookup_code(code)
        if found and (best is None or found.score > best.score):
            best = found

    if best is None:
        return MarketScore(defaults["unmatched"], "Traditional", reasoning="Non-tech SIC codes")
    return best


def infer_sectors(sic_codes: Optional[Sequence[str]]) -> List[str]:
    """Sector tags for matching, plus composite tags such as "fashion-tech"."""
    tables = industry_tables()
    by_class = tables["sector_by_class"]
    by_prefix = tables["sector_by_prefix"]

    sectors: List[str] = []
    for code in sic_codes or []:
        sector = by_class.get(code[:4]) or by_prefix.get(code[:2])
        if sector and sector not in sectors:
            sectors.append(sector)

    for composite in tables["composite_sectors"]:
        if composite["requires"] in sectors and any(s in sectors for s in composite["any_of"]):
            sectors.append(composite["tag"])
    return sectors
