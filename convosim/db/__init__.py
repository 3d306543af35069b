"""Database module for ConvoSim state management and persistence."""

from convosim.db.connection import (
    AsyncSessionLocal,
    async_engine,
    async_init_db,
    close_async_db,
    create_engine_for_url,
    create_session_factory,
)
from convosim.db.models import (
    Base,
    ConversationResult,
    ConversationStatus,
    JobStatus,
    SimulationRun,
)

__all__ = [
    # Models
    "Base",
    "SimulationRun",
    "ConversationResult",
    # Enums
    "JobStatus",
    "ConversationStatus",
    # Connection
    "async_engine",
    "AsyncSessionLocal",
    "create_engine_for_url",
    "create_session_factory",
    "async_init_db",
    "close_async_db",
]
