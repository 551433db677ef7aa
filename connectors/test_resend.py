"""
Tests for the Resend email connector.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from connectors.resend import ResendConnector, format_sender
from utils.rate_limiter import ApiLimit, RateLimiter


def resend_transport(status=200, body=None, error=None):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if error is not None:
            raise error
        return httpx.Response(status, json=body if body is not None else {"id": "email_123"})

    return httpx.MockTransport(handler), calls


async def send(transport, **kwargs):
    async with httpx.AsyncClient(transport=transport) as http:
        async with ResendConnector("re_key", client=http, **kwargs) as resend:
            return await resend.send(
                from_address="deals@example.com",
                from_name="Sam Partner",
                to="ada@analytical.io",
                subject="Quick intro",
                text="Hi Ada",
            )


class TestResendConnector:

    def test_format_sender(self):
        assert format_sender("deals@example.com", "Sam") == "Sam <deals@example.com>"
        assert format_sender("deals@example.com") == "deals@example.com"

    def test_api_key_required(self):
        with pytest.raises(ValueError):
            ResendConnector("")

    @pytest.mark.asyncio
    async def test_successful_send(self):
        transport, calls = resend_transport()
        result = await send(transport)

        assert result.success
        assert result.id == "email_123"
        request = calls[0]
        assert request.headers["Authorization"] == "Bearer re_key"
        payload = json.loads(request.content)
        assert payload == {
            "from": "Sam Partner <deals@example.com>",
            "to": ["ada@analytical.io"],
            "subject": "Quick intro",
            "text": "Hi Ada",
        }

    @pytest.mark.asyncio
    async def test_api_error_message(self):
        transport, _ = resend_transport(status=422, body={"message": "Invalid `to` field"})
        result = await send(transport)
        assert not result.success
        assert result.error == "Invalid `to` field"

    @pytest.mark.asyncio
    async def test_api_error_without_message(self):
        transport, _ = resend_transport(status=500, body={})
        result = await send(transport)
        assert result.error == "Resend error: 500"

    @pytest.mark.asyncio
    async def test_network_error_never_raises(self):
        transport, _ = resend_transport(error=httpx.ConnectError("unreachable"))
        result = await send(transport)
        assert not result.success
        assert "unreachable" in result.error

    @pytest.mark.asyncio
    async def test_local_budget_spent(self, store):
        limiter = RateLimiter(store, limits={"resend": ApiLimit(max_requests=1, window_seconds=60, retry_after_ms=5000)})
        await limiter.record("u1", "resend", now=datetime.now(timezone.utc))

        transport, calls = resend_transport()
        result = await send(transport, user_id="u1", rate_limiter=limiter)

        assert not result.success
        assert "rate limited" in result.error
        assert calls == []
