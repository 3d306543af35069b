"""Tests for the Dialogflow CX REST client."""

import json

import httpx
import pytest

from convosim.services.dialogflow_client import (
    AgentLocator,
    DialogflowClient,
    parse_query_result,
    regional_endpoint,
)
from convosim.services.errors import DialogflowAPIError

QUERY_RESULT = {
    "text": "hello",
    "languageCode": "en",
    "responseMessages": [
        {"text": {"text": ["Hi there!"]}},
        {"payload": {"richContent": []}},
        {"text": {"text": ["How can I help?"]}},
    ],
    "match": {
        "intent": {
            "name": "projects/p/locations/global/agents/a/intents/123",
            "displayName": "Default Welcome Intent",
        },
        "confidence": 0.93,
    },
    "currentPage": {"name": "pages/START", "displayName": "Start Page"},
    "parameters": {"size": "large"},
}


def make_client(handler, **kwargs) -> DialogflowClient:
    return DialogflowClient(transport=httpx.MockTransport(handler), **kwargs)


class TestAgentLocator:
    """Resource names and endpoints."""

    def test_session_path(self):
        agent = AgentLocator(project_id="p", agent_id="a", location="europe-west1")

        assert agent.session_path("s1") == (
            "projects/p/locations/europe-west1/agents/a/sessions/s1"
        )

    def test_regional_endpoint(self):
        assert regional_endpoint("global") == "https://dialogflow.googleapis.com"
        assert (
            regional_endpoint("us-central1")
            == "https://us-central1-dialogflow.googleapis.com"
        )


class TestParseQueryResult:
    """Flattening the REST query result."""

    def test_joins_text_messages(self):
        result = parse_query_result(QUERY_RESULT)

        assert result.response_text == "Hi there! How can I help?"
        assert result.intent_display_name == "Default Welcome Intent"
        assert result.confidence == 0.93
        assert result.current_page == "Start Page"
        assert result.parameters == {"size": "large"}

    def test_missing_fields_default(self):
        result = parse_query_result({})

        assert result.response_text == ""
        assert result.matched_intent is None
        assert result.confidence == 0.0
        assert result.current_page is None


class TestDetectIntent:
    """HTTP behaviour of detect_intent."""

    async def test_posts_query_to_session(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"queryResult": QUERY_RESULT})

        agent = AgentLocator(project_id="p", agent_id="a", language_code="de")
        async with make_client(handler, access_token="tok") as client:
            result = await client.detect_intent(agent, "sim-1", "hallo")

        assert seen["url"] == (
            "https://dialogflow.googleapis.com/v3/projects/p/locations/global"
            "/agents/a/sessions/sim-1:detectIntent"
        )
        assert seen["body"] == {
            "queryInput": {"text": {"text": "hallo"}, "languageCode": "de"}
        }
        assert seen["auth"] == "Bearer tok"
        assert result.response_text == "Hi there! How can I help?"

    async def test_api_endpoint_override(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"queryResult": QUERY_RESULT})

        agent = AgentLocator(project_id="p", agent_id="a")
        async with make_client(handler, api_endpoint="http://localhost:9000/") as client:
            await client.detect_intent(agent, "s", "hi")

        assert seen["url"].startswith("http://localhost:9000/v3/projects/p/")

    async def test_error_status_raises_with_remote_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404, json={"error": {"code": 404, "message": "Agent not found"}}
            )

        agent = AgentLocator(project_id="p", agent_id="missing")
        async with make_client(handler) as client:
            with pytest.raises(DialogflowAPIError) as exc_info:
                await client.detect_intent(agent, "s", "hi")

        assert exc_info.value.status_code == 404
        assert "Agent not found" in exc_info.value.message

    async def test_missing_query_result_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        agent = AgentLocator(project_id="p", agent_id="a")
        async with make_client(handler) as client:
            with pytest.raises(DialogflowAPIError, match="No query result"):
                await client.detect_intent(agent, "s", "hi")

    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        agent = AgentLocator(project_id="p", agent_id="a")
        async with make_client(handler) as client:
            with pytest.raises(DialogflowAPIError) as exc_info:
                await client.detect_intent(agent, "s", "hi")

        assert exc_info.value.status_code is None
