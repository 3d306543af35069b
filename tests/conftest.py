"""Root-level pytest fixtures for all tests.

Provides shared fixtures for:
- Database fixtures (in-memory async SQLite)
- The dual-layer job store
- A fake agent client and the agent it answers for
"""

import os
import tempfile
from collections.abc import AsyncGenerator

# Keep the module-level engine and default paths away from the user's data dir
os.environ.setdefault("CONVOSIM_HOME", tempfile.mkdtemp(prefix="convosim-test-"))

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from convosim.db.connection import (
    async_init_db,
    create_engine_for_url,
    create_session_factory,
)
from convosim.services.dialogflow_client import AgentLocator
from convosim.services.job_store import (
    DurableJobStore,
    LiveJobRegistry,
    SimulationJobStore,
)
from tests.helpers import FakeAgentClient


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: tests that exercise several layers together"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with all tables created.

    Each session gets its own connection from the default pool, so
    concurrent sessions never roll back each other's uncommitted writes.
    """
    eng = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await async_init_db(eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def durable(session_factory) -> DurableJobStore:
    return DurableJobStore(session_factory)


@pytest.fixture
def store(durable: DurableJobStore) -> SimulationJobStore:
    """Job store with its own empty live registry."""
    return SimulationJobStore(LiveJobRegistry(), durable)


# ============================================================================
# Agent Fixtures
# ============================================================================


@pytest.fixture
def agent() -> AgentLocator:
    return AgentLocator(project_id="test-project", agent_id="agent-123")


@pytest.fixture
def fake_client() -> FakeAgentClient:
    return FakeAgentClient()
