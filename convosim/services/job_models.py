"""In-memory job, turn and conversation records for bulk simulation.

SimulationJob is the volatile mirror the orchestrator mutates while a run
is in flight. TurnResult and ConversationRecord are immutable once built.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from convosim.db.models import JobStatus
from convosim.services.errors import InvalidStateTransition

DEFAULT_JOB_NAME = "Bulk Simulation"
ERROR_RESPONSE_TEXT = "ERROR"

# Valid state transitions for job lifecycle
VALID_TRANSITIONS: dict[JobStatus, list[JobStatus]] = {
    JobStatus.pending: [JobStatus.processing],
    JobStatus.processing: [JobStatus.completed, JobStatus.failed],
    JobStatus.completed: [],  # terminal
    JobStatus.failed: [],  # terminal
}

TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed})


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(UTC)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class TurnResult:
    """Outcome of replaying one turn."""

    conversation_id: str
    turn_number: int
    user_input: str
    agent_response: str
    intent: str | None
    confidence: float
    page: str | None
    timestamp: datetime
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form used for storage and API output."""
        return {
            "conversationId": self.conversation_id,
            "turnNumber": self.turn_number,
            "userInput": self.user_input,
            "agentResponse": self.agent_response,
            "intent": self.intent,
            "confidence": self.confidence,
            "page": self.page,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TurnResult":
        return cls(
            conversation_id=str(data["conversationId"]),
            turn_number=int(data["turnNumber"]),
            user_input=data.get("userInput", ""),
            agent_response=data.get("agentResponse", ""),
            intent=data.get("intent"),
            confidence=float(data.get("confidence") or 0.0),
            page=data.get("page"),
            timestamp=_parse_timestamp(data.get("timestamp")) or utc_now(),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class ConversationRecord:
    """Ordered turn results of one conversation.

    Attributes:
        overall_passed: True iff no turn failed and the task itself did not crash.
        error: Task-level error message when the conversation task crashed.
    """

    conversation_id: str
    turns: tuple[TurnResult, ...]
    execution_time_ms: int
    overall_passed: bool
    error: str | None = None

    @classmethod
    def build(
        cls,
        conversation_id: str,
        turns: list[TurnResult],
        execution_time_ms: int,
        error: str | None = None,
    ) -> "ConversationRecord":
        """Build a record, deriving overall_passed from the turns."""
        passed = error is None and all(t.error is None for t in turns)
        return cls(
            conversation_id=conversation_id,
            turns=tuple(turns),
            execution_time_ms=execution_time_ms,
            overall_passed=passed,
            error=error,
        )


@dataclass
class JobSummary:
    """Durable summary row of one run, as listed most-recent-first."""

    id: str
    name: str
    status: JobStatus
    total: int
    progress: int
    passed: int
    failed: int
    started_at: datetime
    completed_at: datetime | None
    created_at: datetime
    error: str | None = None


@dataclass
class SimulationJob:
    """Live state of one bulk simulation run.

    Mutated only by the orchestrator that created it, between awaits, so
    no locking is needed.
    """

    id: str
    total: int
    name: str = DEFAULT_JOB_NAME
    agent_id: str | None = None
    status: JobStatus = JobStatus.pending
    progress: int = 0
    passed: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=utc_now)
    ended_at: datetime | None = None
    error: str | None = None
    results: list[TurnResult] = field(default_factory=list)
    conversations: list[ConversationRecord] = field(default_factory=list)
    _sequence: int = field(default=0, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, target: JobStatus) -> bool:
        """Check if a state transition is valid."""
        return target in VALID_TRANSITIONS.get(self.status, [])

    def check_transition(self, target: JobStatus) -> None:
        """Raise InvalidStateTransition unless ``target`` is reachable."""
        if not self.can_transition(target):
            raise InvalidStateTransition(
                self.status, target, VALID_TRANSITIONS.get(self.status, [])
            )

    def transition(self, target: JobStatus) -> None:
        """Move to ``target`` or raise InvalidStateTransition."""
        self.check_transition(target)
        self.status = target
        if target in TERMINAL_STATUSES:
            self.ended_at = utc_now()

    def claim_sequence(self) -> int:
        """Next 1-based storage sequence for a finished conversation."""
        self._sequence += 1
        return self._sequence

    def record_conversation(self, record: ConversationRecord) -> None:
        """Count a finished conversation. Progress never passes total."""
        if self.progress >= self.total:
            raise ValueError(
                f"Job {self.id} already has {self.progress}/{self.total} conversations"
            )
        self.conversations.append(record)
        self.progress += 1
        if record.overall_passed:
            self.passed += 1
        else:
            self.failed += 1

    def abandon_remaining(self) -> None:
        """Count every unfinished conversation as failed.

        Used when a job-fatal error stops dispatch, so progress still
        reaches total at the terminal state.
        """
        remaining = self.total - self.progress
        if remaining > 0:
            self.failed += remaining
            self.progress = self.total
