"""Shared service-layer error types.

Centralised here to avoid circular imports between service modules.
Every type carries an E-XXXX code from the error registry.
"""

from convosim.db.models import JobStatus
from convosim.errors import ConvoSimError, registry_fields


class MalformedInputError(ConvoSimError):
    """CSV text could not be parsed. Raised before any job exists."""

    def __init__(self, details: str) -> None:
        super().__init__(code="E-1001", **registry_fields("E-1001", details=details))


class EmptyInputError(ConvoSimError):
    """Input produced zero usable rows. Raised before any job exists."""

    def __init__(self) -> None:
        super().__init__(code="E-1002", **registry_fields("E-1002"))


class TurnExecutionError(ConvoSimError):
    """One remote agent call failed. Recorded inline on the turn result.

    Attributes:
        remote_message: The message reported by the agent client.
    """

    def __init__(self, remote_message: str, code: str = "E-3001", **context: object) -> None:
        fields = registry_fields(code, details=remote_message, **context)
        # The turn result shows the remote message as-is.
        fields["message"] = remote_message
        super().__init__(code=code, **fields)
        self.remote_message = remote_message


class TurnTimeoutError(TurnExecutionError):
    """The agent did not answer within the per-call timeout."""

    def __init__(self, seconds: float) -> None:
        message = registry_fields("E-3002", seconds=f"{seconds:g}")["message"]
        super().__init__(message, code="E-3002", seconds=f"{seconds:g}")
        self.seconds = seconds


class DialogflowAPIError(ConvoSimError):
    """The Dialogflow REST API rejected or failed a request.

    Attributes:
        status_code: HTTP status code, or None for transport failures.
    """

    def __init__(self, details: str, status_code: int | None = None) -> None:
        super().__init__(code="E-3003", **registry_fields("E-3003", details=details))
        self.status_code = status_code


class ConversationTaskError(ConvoSimError):
    """A per-conversation task raised instead of recording a turn failure.

    Attributes:
        conversation_id: The conversation whose task crashed.
    """

    def __init__(self, conversation_id: str, cause: BaseException) -> None:
        super().__init__(
            code="E-4002",
            **registry_fields(
                "E-4002", conversation_id=conversation_id, details=str(cause) or type(cause).__name__
            ),
        )
        self.conversation_id = conversation_id


class StoreError(ConvoSimError):
    """A durable-store read or write failed. Job-fatal when raised mid-run."""

    def __init__(self, details: str) -> None:
        super().__init__(code="E-4001", **registry_fields("E-4001", details=details))


class InvalidStateTransition(ConvoSimError):
    """Raised when attempting an invalid job state transition.

    Attributes:
        current_state: The current state of the job.
        attempted_state: The state that was attempted.
        allowed_transitions: List of valid transition targets from current state.
    """

    def __init__(
        self,
        current_state: JobStatus,
        attempted_state: JobStatus,
        allowed_transitions: list[JobStatus],
    ) -> None:
        allowed_str = ", ".join(s.value for s in allowed_transitions) or "none (terminal)"
        super().__init__(
            code="E-4003",
            **registry_fields(
                "E-4003",
                current=current_state.value,
                attempted=attempted_state.value,
                allowed=allowed_str,
            ),
        )
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.allowed_transitions = allowed_transitions
