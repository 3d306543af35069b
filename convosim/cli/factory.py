"""Factories wiring configuration into a ready SimulationService.

Shared by the CLI ``run`` command and the API lifespan so both build the
same object graph: DialogflowClient -> RemoteTurnExecutor, and a
SimulationJobStore owning its own live registry.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from convosim.cli.config import ConvoSimConfig
from convosim.services.concurrency import ConcurrencyLimiter
from convosim.services.dialogflow_client import DialogflowClient
from convosim.services.job_store import (
    DurableJobStore,
    LiveJobRegistry,
    SimulationJobStore,
)
from convosim.services.simulation_service import SimulationService
from convosim.services.turn_executor import AgentClient, RemoteTurnExecutor


def build_client(config: ConvoSimConfig) -> DialogflowClient:
    """Create the Dialogflow client described by ``config.agent``."""
    return DialogflowClient(
        access_token=config.agent.access_token,
        api_endpoint=config.agent.api_endpoint,
        timeout=config.execution.timeout_seconds,
    )


def build_service(
    config: ConvoSimConfig,
    session_factory: async_sessionmaker[AsyncSession],
    client: AgentClient,
    max_concurrency: int | None = None,
) -> SimulationService:
    """Assemble a SimulationService.

    Args:
        config: Loaded configuration.
        session_factory: Session factory for the durable store.
        client: Agent client the executor calls.
        max_concurrency: Override for ``config.execution.max_concurrency``.

    Returns:
        A service with a fresh live registry.
    """
    store = SimulationJobStore(LiveJobRegistry(), DurableJobStore(session_factory))
    executor = RemoteTurnExecutor(client, timeout_seconds=config.execution.timeout_seconds)
    limiter = ConcurrencyLimiter(max_concurrency or config.execution.max_concurrency)
    return SimulationService(store, executor, config.agent.to_locator(), limiter)
