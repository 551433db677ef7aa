"""
UK Companies House registry discovery.

Finds newly incorporated limited companies in target industry codes and
persists each one, with its active officers as founders, into the DealStore.

Companies House API:
- Base: https://api.company-information.service.gov.uk
- Auth: Basic auth (API key as username, empty password)
- Search: GET /advanced-search/companies
- Officers: GET /company/{number}/officers
- 416 from search means "no results"; 429 means back off
- Rate limit: 600 requests per 5 minutes

Flow:
1. Search each SIC code over the incorporation window
2. Merge results keyed by company number (last write wins)
3. Keep active limited companies not already stored
4. Fetch officers for up to `limit` companies, dropping resigned ones
5. Upsert the company (idempotent on company number) and its founders

Usage:
    async with CompaniesHouseClient(api_key, user_id="u1", rate_limiter=limiter) as client:
        discovery = RegistryDiscovery(store, client)
        result = await discovery.discover("u1", days=30)
        print(result.companies_found, result.companies_added)
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from collectors.base import BaseApiClient
from collectors.retry_strategy import RateLimitedError
from storage.deal_store import DealStore
from storage.models import Company, CompanyStage, Founder, utc_now
from utils.results import StageResult, StageStatus

logger = logging.getLogger(__name__)


COMPANIES_HOUSE_BASE_URL = "https://api.company-information.service.gov.uk"

# =============================================================================
# INDUSTRY CODES
# =============================================================================

TECH_AI_SIC_CODES = [
    "62011",  # Ready-made interactive leisure and entertainment software
    "62012",  # Business and domestic software development
    "62020",  # Information technology consultancy
    "62030",  # Computer facilities management
    "62090",  # Other information technology service activities
    "63110",  # Data processing, hosting
    "63120",  # Web portals
    "72110",  # Research and experimental development on biotechnology
    "72190",  # Other research and experimental development on natural sciences
    "72200",  # Research and experimental development on social sciences
]

FINTECH_SIC_CODES = [
    "64209",  # Activities of other holding companies
    "64303",  # Activities of venture and development capital companies
    "64921",  # Credit granting by non-deposit taking finance houses
    "64999",  # Financial intermediation not elsewhere classified
    "66190",  # Activities auxiliary to financial intermediation
    "66300",  # Fund management activities
]

DEFAULT_SIC_CODES = TECH_AI_SIC_CODES + FINTECH_SIC_CODES

SCHEDULED_SIC_CODES = [
    "62011", "62012", "62020", "62030", "62090",
    "63110", "63120", "63990",
    "72190", "72200",
    "64999", "66190",
]

DEFAULT_LOOKBACK_DAYS = 30
SCHEDULED_LOOKBACK_DAYS = 90
ON_DEMAND_LIMIT = 50
SCHEDULED_LIMIT = 5
ON_DEMAND_PAGE_SIZE = 50
SCHEDULED_PAGE_SIZE = 100

STEALTH_MAX_AGE_DAYS = 90
RECENTLY_ANNOUNCED_MAX_AGE_DAYS = 180

FOUNDER_ROLES = {"director", "secretary"}


# =============================================================================
# DATA CLASSES
# =============================================================================

def format_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    """Join the registered-office parts that are present."""
    if not address:
        return None
    parts = [
        address.get(key)
        for key in ("premises", "address_line_1", "address_line_2", "locality", "region", "postal_code")
    ]
    joined = ", ".join(p.strip() for p in parts if p and p.strip())
    return joined or None


def split_officer_name(name: str) -> Tuple[str, str]:
    """
    Registry officer names are "SURNAME, Given Names".

    Returns:
        (first_name, last_name) with the surname title-cased
    """
    if "," in name:
        surname, given = name.split(",", 1)
        given_names = given.strip().split()
        first = given_names[0] if given_names else ""
        return first.title(), surname.strip().title()

    parts = name.strip().split()
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0].title(), ""
    return parts[0].title(), " ".join(parts[1:]).title()


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


@dataclass
class RegistryOfficer:
    name: str
    officer_role: str = ""
    appointed_on: Optional[date] = None
    resigned_on: Optional[date] = None
    occupation: Optional[str] = None
    nationality: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.resigned_on is None

    @property
    def is_founder(self) -> bool:
        role = self.officer_role.lower()
        return role in FOUNDER_ROLES or "director" in role

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> RegistryOfficer:
        return cls(
            name=item.get("name", ""),
            officer_role=item.get("officer_role", "") or "",
            appointed_on=_parse_date(item.get("appointed_on")),
            resigned_on=_parse_date(item.get("resigned_on")),
            occupation=item.get("occupation"),
            nationality=item.get("nationality"),
        )


@dataclass
class RegistryCompany:
    """One company as returned by advanced search."""
    company_number: str
    company_name: str
    company_status: str = ""
    company_type: str = ""
    incorporation_date: Optional[date] = None
    sic_codes: List[str] = field(default_factory=list)
    registered_address: Optional[str] = None
    officers: List[RegistryOfficer] = field(default_factory=list)

    @property
    def is_active_limited(self) -> bool:
        company_type = self.company_type.lower()
        return self.company_status == "active" and (
            "ltd" in company_type or "private-limited" in company_type
        )

    def age_days(self, today: Optional[date] = None) -> Optional[int]:
        if not self.incorporation_date:
            return None
        return ((today or utc_now().date()) - self.incorporation_date).days

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> RegistryCompany:
        return cls(
            company_number=item.get("company_number", ""),
            company_name=item.get("company_name", ""),
            company_status=item.get("company_status", "") or "",
            company_type=item.get("company_type") or item.get("type") or "",
            incorporation_date=_parse_date(item.get("date_of_creation")),
            sic_codes=list(item.get("sic_codes") or []),
            registered_address=format_address(item.get("registered_office_address")),
        )


def incorporation_flags(age_days: Optional[int]) -> Tuple[bool, bool]:
    """(is_stealth_mode, recently_announced) from company age alone."""
    if age_days is None:
        return False, False
    if age_days < STEALTH_MAX_AGE_DAYS:
        return True, False
    if age_days <= RECENTLY_ANNOUNCED_MAX_AGE_DAYS:
        return False, True
    return False, False


def merge_by_company_number(batches: Iterable[Iterable[RegistryCompany]]) -> Dict[str, RegistryCompany]:
    """Deduplicate search results across codes; the last occurrence wins."""
    merged: Dict[str, RegistryCompany] = {}
    for batch in batches:
        for company in batch:
            if company.company_number:
                merged[company.company_number] = company
    return merged


@dataclass
class DiscoveryResult(StageResult):
    codes_searched: int = 0
    companies_found: int = 0
    companies_added: int = 0
    founders_added: int = 0
    rate_limited: bool = False
    added_company_ids: List[int] = field(default_factory=list)


# =============================================================================
# API CLIENT
# =============================================================================

class CompaniesHouseClient(BaseApiClient):
    """Authenticated Companies House client."""

    api_name = "companies_house"

    def __init__(self, api_key: str, base_url: str = COMPANIES_HOUSE_BASE_URL, **kwargs: Any):
        if not api_key:
            raise ValueError("Companies House API key required")
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def auth_headers(self) -> Dict[str, str]:
        token = base64.b64encode(f"{self.api_key}:".encode("utf-8")).decode("utf-8")
        return {"Authorization": f"Basic {token}", "Accept": "application/json"}

    async def search_companies(
        self,
        sic_code: str,
        incorporated_from: date,
        incorporated_to: date,
        size: int = ON_DEMAND_PAGE_SIZE,
    ) -> List[RegistryCompany]:
        """One advanced-search page for a single SIC code. 416 yields []."""
        data = await self._get_json(
            f"{self.base_url}/advanced-search/companies",
            params={
                "incorporated_from": incorporated_from.isoformat(),
                "incorporated_to": incorporated_to.isoformat(),
                "sic_codes": sic_code,
                "size": size,
                "status": "active",
            },
            headers=self.auth_headers,
            empty_statuses=(416,),
        )
        if not data:
            return []
        return [RegistryCompany.from_api(item) for item in data.get("items", [])]

    async def get_officers(self, company_number: str) -> List[RegistryOfficer]:
        """Current officers; resigned officers are dropped."""
        data = await self._get_json(
            f"{self.base_url}/company/{company_number}/officers",
            headers=self.auth_headers,
            empty_statuses=(404,),
        )
        if not data:
            return []
        officers = [RegistryOfficer.from_api(item) for item in data.get("items", [])]
        return [o for o in officers if o.is_active]


# =============================================================================
# DISCOVERY
# =============================================================================

class RegistryDiscovery:
    """
    Registry discovery stage for one user.

    Args:
        store: Initialized DealStore
        client: Entered CompaniesHouseClient
        search_delay: Seconds between SIC code searches
        officer_delay: Seconds between officer fetches
    """

    def __init__(
        self,
        store: DealStore,
        client: CompaniesHouseClient,
        search_delay: float = 0.2,
        officer_delay: float = 0.3,
    ):
        self.store = store
        self.client = client
        self.search_delay = search_delay
        self.officer_delay = officer_delay

    async def discover(
        self,
        user_id: str,
        days: int = DEFAULT_LOOKBACK_DAYS,
        sic_codes: Optional[Sequence[str]] = None,
        limit: int = ON_DEMAND_LIMIT,
        page_size: int = ON_DEMAND_PAGE_SIZE,
        today: Optional[date] = None,
    ) -> DiscoveryResult:
        """Search, filter, enrich with officers and persist. Never raises on API errors."""
        result = DiscoveryResult()
        today = today or utc_now().date()
        codes = list(sic_codes or DEFAULT_SIC_CODES)
        start = today - timedelta(days=days)

        batches: List[List[RegistryCompany]] = []
        for index, code in enumerate(codes):
            if index and self.search_delay:
                await asyncio.sleep(self.search_delay)
            try:
                batch = await self.client.search_companies(code, start, today, size=page_size)
            except RateLimitedError as e:
                logger.warning(f"Registry rate limited after {index} codes: {e}")
                result.rate_limited = True
                break
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Registry search failed for SIC {code}: {e}")
                result.add_error(f"SIC {code}: {e}")
                continue
            result.codes_searched += 1
            batches.append(batch)

        merged = merge_by_company_number(batches)
        existing = await self.store.existing_company_numbers(user_id)
        candidates = [
            c for c in merged.values()
            if c.is_active_limited and c.company_number not in existing
        ]
        result.companies_found = len(candidates)
        logger.info(
            f"Registry: {len(merged)} unique companies, {len(candidates)} new active limited "
            f"(codes searched: {result.codes_searched}/{len(codes)})"
        )

        for index, candidate in enumerate(candidates[:limit]):
            if result.rate_limited:
                break
            if index and self.officer_delay:
                await asyncio.sleep(self.officer_delay)
            try:
                candidate.officers = await self.client.get_officers(candidate.company_number)
            except RateLimitedError as e:
                logger.warning(f"Registry rate limited while fetching officers: {e}")
                result.rate_limited = True
                break
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Officers unavailable for {candidate.company_number}: {e}")
                candidate.officers = []

            try:
                company_id, created, founders = await self.persist(user_id, candidate, today)
            except Exception as e:
                logger.error(f"Failed to save {candidate.company_number}: {e}")
                result.add_error(f"{candidate.company_number}: {e}")
                continue

            if created:
                result.companies_added += 1
                result.founders_added += founders
                result.added_company_ids.append(company_id)

        result.finish(truncated=result.rate_limited)
        logger.info(
            f"Discovery for {user_id}: found {result.companies_found}, "
            f"added {result.companies_added} companies / {result.founders_added} founders"
        )
        return result

    async def persist(
        self, user_id: str, candidate: RegistryCompany, today: Optional[date] = None
    ) -> Tuple[int, bool, int]:
        """
        Idempotent save of a company and its officers.

        Returns:
            (company_id, created, founders_added)
        """
        stealth, announced = incorporation_flags(candidate.age_days(today))
        company = Company(
            user_id=user_id,
            company_number=candidate.company_number,
            company_name=candidate.company_name,
            incorporation_date=candidate.incorporation_date,
            company_status=candidate.company_status,
            company_type=candidate.company_type,
            registered_address=candidate.registered_address,
            sic_codes=candidate.sic_codes,
            stage=CompanyStage.DISCOVERED,
            is_stealth_mode=stealth,
            recently_announced=announced,
            discovered_at=utc_now(),
        )
        company_id, created = await self.store.upsert_company(company)
        if not created:
            return company_id, False, 0

        added = 0
        for officer in candidate.officers:
            first, last = split_officer_name(officer.name)
            if not first and not last:
                continue
            await self.store.insert(
                Founder(
                    user_id=user_id,
                    company_id=company_id,
                    first_name=first,
                    last_name=last,
                    role=officer.officer_role or None,
                    is_founder=officer.is_founder,
                    source="companies_house",
                )
            )
            added += 1
        return company_id, True, added
