"""Service layer for ConvoSim.

Provides conversation grouping, bounded concurrency, remote turn
execution, the dual-layer job store and the simulation orchestrator.
"""

from convosim.services.concurrency import ConcurrencyLimiter, resolve_concurrency
from convosim.services.conversation_grouper import Turn, group_conversations
from convosim.services.job_models import (
    ConversationRecord,
    JobSummary,
    SimulationJob,
    TurnResult,
)
from convosim.services.job_store import (
    DurableJobStore,
    LiveJobRegistry,
    SimulationJobStore,
)
from convosim.services.simulation_service import SimulationService
from convosim.services.turn_executor import RemoteTurnExecutor, TurnRequest

__all__ = [
    "ConcurrencyLimiter",
    "resolve_concurrency",
    "Turn",
    "group_conversations",
    "ConversationRecord",
    "JobSummary",
    "SimulationJob",
    "TurnResult",
    "DurableJobStore",
    "LiveJobRegistry",
    "SimulationJobStore",
    "SimulationService",
    "RemoteTurnExecutor",
    "TurnRequest",
]
