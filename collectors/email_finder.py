"""
Email discovery for founders and investor partners.

Waterfall:
1. Apollo person match (POST, name + organization, optional LinkedIn URL)
2. Hunter email finder (GET, name + company) when Apollo has nothing

Hunter's domain search also lists published addresses for a firm domain,
which investor discovery uses before falling back to pattern guessing.

Usage:
    finder = EmailFinder(apollo=apollo_client, hunter=hunter_client)
    match = await finder.find("Ada", "Lovelace", "Analytical Engines Ltd")
    if match:
        print(match.email, match.source)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from collectors.base import BaseApiClient
from collectors.retry_strategy import RateLimitedError

logger = logging.getLogger(__name__)

APOLLO_MATCH_URL = "https://api.apollo.io/v1/people/match"
HUNTER_BASE_URL = "https://api.hunter.io/v2"


@dataclass
class EmailMatch:
    email: str
    source: str  # "apollo", "hunter", "pattern_unverified"
    name: Optional[str] = None
    role: Optional[str] = None
    linkedin_url: Optional[str] = None
    verified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name or "",
            "email": self.email,
            "role": self.role,
            "linkedin_url": self.linkedin_url,
            "email_verified": self.verified,
            "email_source": self.source,
        }


class ApolloClient(BaseApiClient):
    api_name = "apollo"

    def __init__(self, api_key: str, **kwargs: Any):
        if not api_key:
            raise ValueError("Apollo API key required")
        super().__init__(**kwargs)
        self.api_key = api_key

    async def match_person(
        self,
        first_name: str,
        last_name: str,
        organization: str,
        linkedin_url: Optional[str] = None,
    ) -> Optional[EmailMatch]:
        payload: Dict[str, Any] = {
            "first_name": first_name,
            "last_name": last_name,
            "organization_name": organization,
        }
        if linkedin_url:
            payload["linkedin_url"] = linkedin_url

        data = await self._post_json(
            APOLLO_MATCH_URL,
            json=payload,
            headers={"X-Api-Key": self.api_key, "Content-Type": "application/json"},
            empty_statuses=(404,),
        )
        person = (data or {}).get("person") or {}
        email = person.get("email")
        if not email:
            return None
        return EmailMatch(
            email=email,
            source="apollo",
            name=person.get("name"),
            role=person.get("title"),
            linkedin_url=person.get("linkedin_url"),
            verified=person.get("email_status") == "verified",
        )


class HunterClient(BaseApiClient):
    api_name = "hunter"

    def __init__(self, api_key: str, base_url: str = HUNTER_BASE_URL, **kwargs: Any):
        if not api_key:
            raise ValueError("Hunter API key required")
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def find_email(
        self, first_name: str, last_name: str, company: str
    ) -> Optional[EmailMatch]:
        data = await self._get_json(
            f"{self.base_url}/email-finder",
            params={
                "first_name": first_name,
                "last_name": last_name,
                "company": company,
                "api_key": self.api_key,
            },
            empty_statuses=(404,),
        )
        found = (data or {}).get("data") or {}
        email = found.get("email")
        if not email:
            return None
        return EmailMatch(
            email=email,
            source="hunter",
            name=f"{first_name} {last_name}".strip(),
            role=found.get("position"),
            linkedin_url=found.get("linkedin_url"),
            verified=(found.get("verification") or {}).get("status") == "valid",
        )

    async def domain_search(self, domain: str) -> List[EmailMatch]:
        data = await self._get_json(
            f"{self.base_url}/domain-search",
            params={"domain": domain, "api_key": self.api_key},
            empty_statuses=(404,),
        )
        emails = ((data or {}).get("data") or {}).get("emails") or []
        matches = []
        for item in emails:
            if not item.get("value"):
                continue
            name = f"{item.get('first_name') or ''} {item.get('last_name') or ''}".strip()
            matches.append(
                EmailMatch(
                    email=item["value"],
                    source="hunter",
                    name=name or None,
                    role=item.get("position"),
                    linkedin_url=item.get("linkedin"),
                    verified=(item.get("verification") or {}).get("status") == "valid",
                )
            )
        return matches


def guess_pattern_emails(domain: str, names: Sequence[str], limit: int = 5) -> List[EmailMatch]:
    """first.last@domain for up to `limit` two-part names. Unverified."""
    guesses = []
    for name in list(names)[:limit]:
        parts = name.lower().split()
        if len(parts) < 2:
            continue
        first = re.sub(r"[^a-z]", "", parts[0])
        last = re.sub(r"[^a-z]", "", parts[-1])
        if not first or not last:
            continue
        guesses.append(
            EmailMatch(email=f"{first}.{last}@{domain}", source="pattern_unverified", name=name)
        )
    return guesses


class EmailFinder:
    """Apollo first, Hunter second. Either client may be absent."""

    def __init__(
        self,
        apollo: Optional[ApolloClient] = None,
        hunter: Optional[HunterClient] = None,
    ):
        self.apollo = apollo
        self.hunter = hunter

    @property
    def available(self) -> bool:
        return self.apollo is not None or self.hunter is not None

    async def find(
        self,
        first_name: str,
        last_name: str,
        company: str,
        linkedin_url: Optional[str] = None,
    ) -> Optional[EmailMatch]:
        """
        Best email for a person.

        Raises RateLimitedError only when every configured provider is
        rate limited; other provider failures are logged and skipped.
        """
        limited: List[RateLimitedError] = []
        configured = 0

        if self.apollo is not None:
            configured += 1
            try:
                match = await self.apollo.match_person(first_name, last_name, company, linkedin_url)
                if match:
                    return match
            except RateLimitedError as e:
                limited.append(e)
            except httpx.HTTPError as e:
                logger.warning(f"Apollo lookup failed for {first_name} {last_name}: {e}")

        if self.hunter is not None:
            configured += 1
            try:
                match = await self.hunter.find_email(first_name, last_name, company)
                if match:
                    return match
            except RateLimitedError as e:
                limited.append(e)
            except httpx.HTTPError as e:
                logger.warning(f"Hunter lookup failed for {first_name} {last_name}: {e}")

        if configured and len(limited) == configured:
            raise limited[-1]
        return None
