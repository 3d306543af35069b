"""SQLAlchemy ORM models for the ConvoSim state database.

This module defines the durable side of simulation job tracking: one
summary row per bulk simulation run and one append-only row per
simulated conversation. Uses SQLAlchemy 2.0 style with Mapped and
mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class JobStatus(str, Enum):
    """Status values for bulk simulation jobs.

    Lifecycle: pending -> processing -> completed/failed
    """

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class ConversationStatus(str, Enum):
    """Outcome label stored alongside each conversation result."""

    PASSED = "PASSED"
    FAILED = "FAILED"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class SimulationRun(Base):
    """Bulk simulation run summary.

    Attributes:
        id: UUID primary key (the job id handed to callers)
        name: Display name for the run
        status: Current job status (pending, processing, completed, failed)
        agent_id: Agent the run was replayed against
        total_conversations: Conversations discovered in the input
        processed_conversations: Conversations finished so far
        passed_conversations: Conversations with no failed turn
        failed_conversations: Conversations with at least one failed turn
        started_at: ISO8601 timestamp when the job was created
        completed_at: ISO8601 timestamp when the job reached a terminal state
        error_message: Job-fatal error message, if any
    """

    __tablename__ = "simulation_runs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.pending.value
    )
    agent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Conversation counts
    total_conversations: Mapped[int] = mapped_column(default=0, nullable=False)
    processed_conversations: Mapped[int] = mapped_column(default=0, nullable=False)
    passed_conversations: Mapped[int] = mapped_column(default=0, nullable=False)
    failed_conversations: Mapped[int] = mapped_column(default=0, nullable=False)

    # Timestamps (ISO8601 strings for SQLite compatibility)
    started_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    completed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    conversations: Mapped[list["ConversationResult"]] = relationship(
        "ConversationResult",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="ConversationResult.sequence",
    )

    __table_args__ = (
        Index("idx_simulation_runs_status", "status"),
        Index("idx_simulation_runs_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<SimulationRun(id={self.id!r}, status={self.status!r})>"


class ConversationResult(Base):
    """One simulated conversation within a run. Written once, never updated.

    Attributes:
        id: UUID primary key
        run_id: Foreign key to parent run
        sequence: 1-based completion order within the run
        conversation_id: Conversation identifier, unique within the run only
        status: PASSED or FAILED
        overall_passed: True iff no turn reported an error
        turn_count: Number of turn results in turns_json
        execution_time_ms: Wall time spent replaying the conversation
        turns_json: Ordered turn results serialised as a JSON array
        error_message: Task-level error when the conversation task crashed
    """

    __tablename__ = "conversation_results"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    run_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("simulation_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    overall_passed: Mapped[bool] = mapped_column(nullable=False)
    turn_count: Mapped[int] = mapped_column(default=0, nullable=False)
    execution_time_ms: Mapped[int] = mapped_column(default=0, nullable=False)
    turns_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    run: Mapped["SimulationRun"] = relationship(
        "SimulationRun", back_populates="conversations"
    )

    __table_args__ = (
        UniqueConstraint("run_id", "conversation_id", name="uq_run_conversation"),
        Index("idx_conversation_results_run_id", "run_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ConversationResult(run_id={self.run_id!r}, "
            f"conversation_id={self.conversation_id!r}, status={self.status!r})>"
        )
