"""
Root-level pytest configuration for the deal pipeline.

Configures:
- pytest-asyncio for async test support
- Custom markers (integration)
- Shared temp-database fixtures
"""

import os
import tempfile

import pytest
import pytest_asyncio

from storage.deal_store import DealStore


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (may require network access)"
    )
    config.addinivalue_line(
        "markers",
        "asyncio: marks tests as async (automatically handled by pytest-asyncio)"
    )


pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def temp_db_path():
    """Path to a throwaway SQLite file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest_asyncio.fixture
async def store(temp_db_path):
    """Initialized DealStore on a temp database."""
    deal_store = DealStore(temp_db_path)
    await deal_store.initialize()
    yield deal_store
    await deal_store.close()
