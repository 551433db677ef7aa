"""
Resend email delivery connector.

POST https://api.resend.com/emails with Bearer auth. `send` never raises:
every outcome, including network errors and local rate limiting, comes
back as a SendResult so the dispatch loop can record it on the queue item.

Usage:
    async with ResendConnector(api_key, user_id="u1", rate_limiter=limiter) as resend:
        result = await resend.send(
            from_address="deals@example.com",
            from_name="Sam",
            to="ada@example.com",
            subject="Quick intro",
            text="Hi Ada...",
        )
        if not result.success:
            print(result.error)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from collectors.base import BaseApiClient
from collectors.retry_strategy import RateLimitedError

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"


@dataclass
class SendResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


def format_sender(address: str, name: Optional[str] = None) -> str:
    return f"{name} <{address}>" if name else address


class ResendConnector(BaseApiClient):
    """Transactional email over the Resend HTTP API."""

    api_name = "resend"

    def __init__(self, api_key: str, url: str = RESEND_EMAILS_URL, **kwargs: Any):
        if not api_key:
            raise ValueError("Resend API key required")
        super().__init__(**kwargs)
        self.api_key = api_key
        self.url = url

    async def send(
        self,
        from_address: str,
        to: str,
        subject: str,
        text: str,
        from_name: Optional[str] = None,
    ) -> SendResult:
        payload = {
            "from": format_sender(from_address, from_name),
            "to": [to],
            "subject": subject,
            "text": text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            client = self._require_client()
            await self._gate()
            self.request_count += 1
            response = await client.post(self.url, json=payload, headers=headers)
        except RateLimitedError as e:
            return SendResult(success=False, error=str(e))
        except httpx.HTTPError as e:
            logger.warning(f"Resend request failed: {e}")
            return SendResult(success=False, error=str(e) or "Network error")

        if response.is_error:
            return SendResult(success=False, error=_error_message(response))

        try:
            data = response.json()
        except ValueError:
            data = {}
        return SendResult(success=True, id=data.get("id"))


def _error_message(response: httpx.Response) -> str:
    try:
        message = response.json().get("message")
    except ValueError:
        message = None
    return message or f"Resend error: {response.status_code}"
