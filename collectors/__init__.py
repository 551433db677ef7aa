"""
API clients for the deal pipeline.

Each client:
- Extends BaseApiClient (shared httpx client, per-user rate-limit gate)
- Retries idempotent requests with exponential backoff
- Returns parsed dataclasses rather than raw JSON
"""

__version__ = "0.1.0"
