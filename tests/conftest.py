"""Pytest configuration and shared fixtures.

Usage Guide:
- For ORM model tests: import model factories from tests.factories
- For API payload parsing: use payload factories (make_work_item_payload, ...)
- For client and sync tests: use the fake_server and client fixtures, which
  serve an in-memory Azure DevOps through httpx.MockTransport
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from ado_mirror.azure_devops import AzureDevOpsClient
from ado_mirror.config import get_settings
from ado_mirror.db.engine import create_session_factory
from ado_mirror.db.models import Base

# -----------------------------------------------------------------------------
# Test Timeline Constants
#
# Define a consistent "test epoch" for deterministic date matching across tests.
# All hardcoded dates should reference these constants for consistency.
# -----------------------------------------------------------------------------

# Base dates (datetime objects for Pydantic/ORM)
JAN_10 = datetime(2024, 1, 10, 9, 0, 0, tzinfo=UTC)  # Work item created
JAN_15 = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)  # Work item changed, first comment
JAN_16 = datetime(2024, 1, 16, 14, 0, 0, tzinfo=UTC)  # Comment edited
FEB_01 = datetime(2024, 2, 1, 12, 0, 0, tzinfo=UTC)  # First sync pass
FEB_02 = datetime(2024, 2, 2, 12, 0, 0, tzinfo=UTC)  # Work item changed again
FEB_03 = datetime(2024, 2, 3, 12, 0, 0, tzinfo=UTC)  # Later sync pass

# ISO 8601 strings (for Azure DevOps API mocks)
JAN_10_ISO = "2024-01-10T09:00:00Z"
JAN_15_ISO = "2024-01-15T10:00:00Z"
JAN_16_ISO = "2024-01-16T14:00:00Z"
FEB_02_ISO = "2024-02-02T12:00:00Z"

# Connection used by every client built in tests
TEST_ORG = "contoso"
TEST_PROJECT = "Fabrikam"
TEST_PAT = "test-pat-123"


# -----------------------------------------------------------------------------
# Settings isolation
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Settings are cached process-wide; start and end every test uncached."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
async def test_engine():
    """Create an in-memory SQLite engine for tests.

    Each test gets a fresh database with all tables created. StaticPool
    keeps one connection so every session sees the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test engine (used by the sync engine)."""
    return create_session_factory(test_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create an async session with auto-rollback.

    Changes are rolled back after each test to ensure isolation.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# -----------------------------------------------------------------------------
# Azure DevOps Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def fake_server():
    """In-memory Azure DevOps organization."""
    from tests.fakes import FakeAzureDevOps

    return FakeAzureDevOps()


@pytest.fixture
async def client(fake_server) -> AsyncIterator[AzureDevOpsClient]:
    """Client wired to the fake server with retries that never sleep."""
    from tests.fakes import make_client

    async with make_client(fake_server) as client:
        yield client


# -----------------------------------------------------------------------------
# Utility Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def utc_now() -> datetime:
    """Current UTC datetime for tests."""
    return datetime.now(UTC)
