"""
Storage layer for the deal-sourcing pipeline.

Main components:
- DealStore: async SQLite record store with typed collections
- models: dataclass records and lifecycle enums
- seed: default templates and settings for a user

Quick start:
    from storage import DealStore
    from storage.models import Company

    async with DealStore("dealflow.db") as store:
        company_id, created = await store.upsert_company(
            Company(user_id="u1", company_number="12345678", company_name="Acme Ltd")
        )
"""

from storage.deal_store import DealStore, InvalidTransitionError, SCHEMA_VERSION

__all__ = [
    "DealStore",
    "InvalidTransitionError",
    "SCHEMA_VERSION",
]

__version__ = "1.0.0"
