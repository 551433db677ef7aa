"""
Exa semantic search client.

Two endpoints are used:
- POST /search: free-text neural search, optionally restricted to domains,
  with page text inlined in each result
- POST /contents: page text for known URLs

A 429 is raised as RateLimitedError so enrichment loops can stop the batch.
Searches are POSTs, so they are not retried.

Usage:
    async with ExaClient(api_key, user_id="u1", rate_limiter=limiter) as exa:
        results = await exa.search(
            "Ada Lovelace Analytical Ltd site:linkedin.com",
            num_results=3,
            include_domains=["linkedin.com"],
        )
        for r in results:
            print(r.url, len(r.text))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from collectors.base import BaseApiClient

logger = logging.getLogger(__name__)

EXA_BASE_URL = "https://api.exa.ai"


@dataclass
class SearchResult:
    url: str
    title: Optional[str] = None
    text: str = ""
    published_date: Optional[str] = None
    score: Optional[float] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> SearchResult:
        return cls(
            url=item.get("url", "") or "",
            title=item.get("title"),
            text=item.get("text") or "",
            published_date=item.get("publishedDate"),
            score=item.get("score"),
        )


class ExaClient(BaseApiClient):
    """Semantic web search used by profile and company enrichment."""

    api_name = "exa"

    def __init__(self, api_key: str, base_url: str = EXA_BASE_URL, **kwargs: Any):
        if not api_key:
            raise ValueError("Exa API key required")
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key, "Content-Type": "application/json"}

    async def search(
        self,
        query: str,
        num_results: int = 5,
        include_domains: Optional[Sequence[str]] = None,
        search_type: str = "neural",
        with_text: bool = True,
    ) -> List[SearchResult]:
        """Run one search and return its results in rank order."""
        payload: Dict[str, Any] = {
            "query": query,
            "numResults": num_results,
            "type": search_type,
        }
        if include_domains:
            payload["includeDomains"] = list(include_domains)
        if with_text:
            payload["contents"] = {"text": True}

        data = await self._post_json(f"{self.base_url}/search", json=payload, headers=self.headers)
        results = [SearchResult.from_api(item) for item in (data or {}).get("results", [])]
        logger.debug(f"Exa search '{query[:60]}' returned {len(results)} results")
        return results

    async def contents(self, urls: Sequence[str]) -> List[SearchResult]:
        """Fetch page text for the given URLs."""
        if not urls:
            return []
        data = await self._post_json(
            f"{self.base_url}/contents",
            json={"ids": list(urls), "text": True},
            headers=self.headers,
        )
        return [SearchResult.from_api(item) for item in (data or {}).get("results", [])]
