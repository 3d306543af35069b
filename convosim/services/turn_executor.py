"""Execute one conversational turn against the remote agent.

Every call is independent: no retry, no rate limiting, no caching. A
failure comes back as a TurnOutcome carrying a TurnExecutionError instead
of raising, so the caller can record it and move on to the next turn.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from convosim.errors import ConvoSimError
from convosim.services.dialogflow_client import AgentLocator, DetectIntentResult
from convosim.services.errors import TurnExecutionError, TurnTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TURN_TIMEOUT_SECONDS = 30.0


class AgentClient(Protocol):
    """Anything that can answer one utterance within a session."""

    async def detect_intent(
        self, agent: AgentLocator, session_id: str, text: str
    ) -> DetectIntentResult: ...


@dataclass(frozen=True)
class TurnRequest:
    """One utterance to send within a session."""

    session_id: str
    text: str
    agent: AgentLocator


@dataclass(frozen=True)
class TurnOutcome:
    """Structured reply, or the typed failure that replaced it."""

    response_text: str = ""
    intent: str | None = None
    confidence: float = 0.0
    page: str | None = None
    error: TurnExecutionError | None = None

    @property
    def ok(self) -> bool:
        """True when the agent answered."""
        return self.error is None

    @classmethod
    def success(cls, result: DetectIntentResult) -> "TurnOutcome":
        return cls(
            response_text=result.response_text,
            intent=result.intent_display_name,
            confidence=result.confidence,
            page=result.current_page,
        )

    @classmethod
    def failure(cls, error: TurnExecutionError) -> "TurnOutcome":
        return cls(error=error)


class RemoteTurnExecutor:
    """Send single turns to the agent client under a per-call timeout.

    Args:
        client: Agent client (DialogflowClient or a test double).
        timeout_seconds: Upper bound for one call. A call that exceeds it
            is reported as a TurnTimeoutError.
    """

    def __init__(
        self, client: AgentClient, timeout_seconds: float = DEFAULT_TURN_TIMEOUT_SECONDS
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds

    async def execute(self, request: TurnRequest) -> TurnOutcome:
        """Run one turn.

        Args:
            request: Session, utterance and agent for this turn.

        Returns:
            TurnOutcome with either the reply or the failure.
        """
        try:
            result = await asyncio.wait_for(
                self._client.detect_intent(
                    request.agent, request.session_id, request.text
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Turn timed out after %ss: session=%s", self._timeout, request.session_id
            )
            return TurnOutcome.failure(TurnTimeoutError(self._timeout))
        except ConvoSimError as e:
            logger.warning("Turn failed: session=%s error=%s", request.session_id, e)
            return TurnOutcome.failure(TurnExecutionError(e.message))
        except Exception as e:
            logger.warning(
                "Turn failed: session=%s error=%s: %s",
                request.session_id,
                type(e).__name__,
                e,
            )
            return TurnOutcome.failure(TurnExecutionError(str(e) or type(e).__name__))

        return TurnOutcome.success(result)
