"""Pytest fixtures for API tests.

Provides an async HTTP client bound to the FastAPI app with a
SimulationService built on the in-memory database and the fake agent.
"""

from collections.abc import AsyncGenerator

import httpx
import pytest

from convosim.api.main import app
from convosim.services.concurrency import ConcurrencyLimiter
from convosim.services.simulation_service import SimulationService
from convosim.services.turn_executor import RemoteTurnExecutor

SAMPLE_CSV = (
    "conversation_id,user_input,turn_number\n"
    "conv_2,hi,1\n"
    "conv_10,hello,1\n"
    "conv_10,order pizza,2\n"
)


@pytest.fixture
def service(store, fake_client, agent) -> SimulationService:
    """Simulation service wired to the fake agent and in-memory store."""
    return SimulationService(
        store,
        RemoteTurnExecutor(fake_client, timeout_seconds=1),
        agent,
        ConcurrencyLimiter(2),
    )


@pytest.fixture
async def client(service: SimulationService) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async client for the app with the test service installed.

    The lifespan is not run, so no config file, data dir or real agent
    client is touched.
    """
    app.state.simulation_service = service
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        await service.shutdown()
        del app.state.simulation_service


@pytest.fixture
async def completed_job_id(client: httpx.AsyncClient, service: SimulationService) -> str:
    """Id of a job created from SAMPLE_CSV that has finished running."""
    response = await client.post(
        "/api/v1/simulations/upload",
        files={"file": ("tests.csv", SAMPLE_CSV, "text/csv")},
    )
    job_id = response.json()["job_id"]
    await service.wait_for(job_id)
    return job_id
