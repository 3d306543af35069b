"""Dialogflow CX client over the REST API.

Thin wrapper around httpx that calls ``sessions:detectIntent`` for one
utterance and flattens the query result into a DetectIntentResult.
Error responses raise DialogflowAPIError. No retries happen here: turn
order and session continuity make a blind resend unsafe.

Example:
    agent = AgentLocator(project_id="my-proj", agent_id="abc-123")
    async with DialogflowClient(access_token=token) as client:
        result = await client.detect_intent(agent, "session-1", "hello")
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from convosim.services.errors import DialogflowAPIError

logger = logging.getLogger(__name__)

GLOBAL_ENDPOINT = "https://dialogflow.googleapis.com"


@dataclass(frozen=True)
class AgentLocator:
    """Coordinates of a Dialogflow CX agent."""

    project_id: str
    agent_id: str
    location: str = "global"
    language_code: str = "en"

    @property
    def agent_path(self) -> str:
        """Resource name of the agent."""
        return (
            f"projects/{self.project_id}/locations/{self.location}"
            f"/agents/{self.agent_id}"
        )

    def session_path(self, session_id: str) -> str:
        """Resource name of a session on this agent."""
        return f"{self.agent_path}/sessions/{session_id}"


@dataclass
class DetectIntentResult:
    """Flattened detectIntent query result."""

    response_text: str
    matched_intent: str | None = None
    intent_display_name: str | None = None
    confidence: float = 0.0
    parameters: dict[str, Any] = field(default_factory=dict)
    current_page: str | None = None


def regional_endpoint(location: str) -> str:
    """Base URL serving an agent in the given location."""
    if not location or location == "global":
        return GLOBAL_ENDPOINT
    return f"https://{location}-dialogflow.googleapis.com"


def parse_query_result(query_result: dict[str, Any]) -> DetectIntentResult:
    """Flatten a REST ``queryResult`` object.

    Text response messages are joined with single spaces; non-text
    messages (payloads, handoffs) are ignored.
    """
    texts = []
    for message in query_result.get("responseMessages") or []:
        text = message.get("text")
        if text:
            texts.append(" ".join(text.get("text") or []))

    match = query_result.get("match") or {}
    intent = match.get("intent") or {}
    page = query_result.get("currentPage") or {}

    return DetectIntentResult(
        response_text=" ".join(texts),
        matched_intent=intent.get("name") or None,
        intent_display_name=intent.get("displayName") or None,
        confidence=float(match.get("confidence") or 0.0),
        parameters=dict(query_result.get("parameters") or {}),
        current_page=page.get("displayName") or None,
    )


class DialogflowClient:
    """Async Dialogflow CX REST client.

    Args:
        access_token: OAuth bearer token. Sent only when non-empty.
        api_endpoint: Override for the base URL (defaults per location).
        timeout: httpx transport timeout in seconds.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        access_token: str = "",
        api_endpoint: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._api_endpoint = api_endpoint.rstrip("/") if api_endpoint else None
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "DialogflowClient":
        """Open the underlying httpx client."""
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the underlying httpx client."""
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._access_token:
                headers["Authorization"] = f"Bearer {self._access_token}"
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Release pooled connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def detect_intent(
        self, agent: AgentLocator, session_id: str, text: str
    ) -> DetectIntentResult:
        """Send one text query to a session.

        Args:
            agent: Target agent.
            session_id: Session to continue (created on first use).
            text: The user utterance.

        Returns:
            DetectIntentResult for this turn.

        Raises:
            DialogflowAPIError: On transport failure, non-2xx status, or a
                response without a query result.
        """
        base = self._api_endpoint or regional_endpoint(agent.location)
        url = f"{base}/v3/{agent.session_path(session_id)}:detectIntent"
        body = {
            "queryInput": {
                "text": {"text": text},
                "languageCode": agent.language_code,
            }
        }

        client = self._ensure_client()
        try:
            resp = await client.post(url, json=body)
        except httpx.HTTPError as e:
            raise DialogflowAPIError(str(e) or type(e).__name__) from e

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error", {}).get("message", resp.text)
            except ValueError:
                detail = resp.text
            logger.debug(
                "detectIntent failed: session=%s status=%d", session_id, resp.status_code
            )
            raise DialogflowAPIError(str(detail), status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise DialogflowAPIError("Response was not valid JSON") from e

        query_result = payload.get("queryResult")
        if not query_result:
            raise DialogflowAPIError("No query result returned")
        return parse_query_result(query_result)
