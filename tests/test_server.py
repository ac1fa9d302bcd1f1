"""
HTTP surface tests using FastAPI's TestClient.
"""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from genai_mcp.config import Settings
from genai_mcp.server import LIVENESS_TEXT, create_app

GREETING_CALL = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "tools/call",
    "params": {"name": "get_random_greeting", "userPrompt": "hi"},
}


@pytest.fixture
def client():
    app = create_app(Settings(gemini_api_key="", connpass_api_key=""))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def streaming_client():
    app = create_app(Settings(json_response=False))
    with TestClient(app) as test_client:
        yield test_client


def sse_messages(body: str):
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


class TestLiveness:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.text == LIVENESS_TEXT

    def test_health(self, client):
        response = client.get("/health")
        assert response.json()["status"] == "healthy"
        assert response.json()["tools_loaded"] == 8


class TestToolsCall:

    def test_greeting_scenario(self, client):
        response = client.post("/mcp", json=GREETING_CALL)
        assert response.status_code == 200
        body = response.json()
        assert body["id"] == 1
        assert body["result"]["content"][0]["kind"] == "text"
        assert "hi" in body["result"]["content"][0]["text"]

    @pytest.mark.parametrize("accept", [None, "application/json", "text/event-stream", "text/html"])
    def test_any_accept_header_is_served(self, client, accept):
        headers = {"Accept": accept} if accept else {}
        response = client.post("/mcp", json=GREETING_CALL, headers=headers)
        assert response.status_code == 200
        assert response.json()["result"]["isError"] is False

    def test_missing_credential_is_error_envelope_with_200(self, client):
        response = client.post("/mcp", json={
            "jsonrpc": "2.0",
            "id": "g1",
            "method": "tools/call",
            "params": {"name": "call_gemini", "arguments": {"userMessage": "hello"}},
        })
        assert response.status_code == 200
        result = response.json()["result"]
        assert result["isError"] is True
        assert result["content"][0]["type"] == "text"
        assert "GEMINI_API_KEY" in result["content"][0]["text"]

    def test_unknown_tool(self, client):
        response = client.post("/mcp", json={
            "jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "does_not_exist"},
        })
        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32602
        assert response.json()["id"] == 2

    def test_tools_list(self, client):
        response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        names = [t["name"] for t in response.json()["result"]["tools"]]
        assert "get_random_greeting" in names
        assert "call_google_search" in names


class TestProtocolErrors:

    def test_malformed_json(self, client):
        response = client.post(
            "/mcp",
            content=b'{"jsonrpc": "2.0", "method": ',
            headers={"Content-Type": "application/json"},
        )
        body = response.json()
        assert response.status_code == 400
        assert body["error"]["code"] is not None
        assert body["id"] is None

    def test_notification_is_accepted_without_body(self, client):
        response = client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response.status_code == 202
        assert response.content == b""

    def test_internal_error_envelope(self, client):
        with patch("genai_mcp.session.ProtocolSession.handle", side_effect=RuntimeError("boom")):
            response = client.post("/mcp", json=GREETING_CALL)
        assert response.status_code == 500
        assert response.json() == {
            "jsonrpc": "2.0",
            "error": {"code": -32603, "message": "Internal server error"},
            "id": None,
        }

    def test_other_methods_not_allowed(self, client):
        assert client.delete("/mcp").status_code == 405

    def test_failing_registry_factory_returns_fixed_envelope(self):
        async def factory(settings):
            raise RuntimeError("tool construction failed")

        app = create_app(Settings(), registry_factory=factory)
        with TestClient(app) as test_client:
            response = test_client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert response.status_code == 500
        assert response.json() == {
            "jsonrpc": "2.0",
            "error": {"code": -32603, "message": "Internal server error"},
            "id": None,
        }

    def test_argument_named_self_is_ignored(self, client):
        call = {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": "get_random_greeting", "arguments": {"userPrompt": "hi", "self": 1}},
        }
        response = client.post("/mcp", json=call)
        assert response.status_code == 200
        assert '(Your message: "hi")' in response.json()["result"]["content"][0]["text"]


class TestStreaming:

    def test_post_as_event_stream(self, streaming_client):
        response = streaming_client.post("/mcp", json=GREETING_CALL)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "event: message" in response.text

        messages = sse_messages(response.text)
        assert len(messages) == 1
        assert messages[0]["id"] == 1
        assert messages[0]["result"]["content"][0]["kind"] == "text"

    def test_batch_as_event_stream(self, streaming_client):
        response = streaming_client.post("/mcp", json=[
            {"jsonrpc": "2.0", "id": "a", "method": "ping"},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": "b", "method": "ping"},
        ])
        assert [m["id"] for m in sse_messages(response.text)] == ["a", "b"]
