"""Tests for the chat HTTP API."""

import json

import httpx
import pytest_asyncio

from main import create_app
from streamchat.core.exceptions import ModelInvocationError, PersistenceError
from streamchat.llm.client import MockLLMClient
from streamchat.session import ConversationManager
from streamchat.tools import BaseTool, ToolRegistry
from streamchat.types import LLMResponse, ToolCall


def _events(body):
    """Split an SSE body into its data payloads."""
    return [
        line[len("data: "):]
        for line in body.split("\n\n")
        if line.startswith("data: ")
    ]


class PriceTool(BaseTool):
    """Tool answering with a fixed price."""

    name = "get_product_info"
    description = "Look up a product"
    parameters = {
        "type": "object",
        "properties": {"productName": {"type": "string"}},
        "required": ["productName"],
    }

    async def execute(self, arguments):
        return f"{arguments['productName']}: 999.00"


@pytest_asyncio.fixture
async def llm_client():
    """Mock model client."""
    return MockLLMClient(stream_replies=["Hello there, friend!"])


@pytest_asyncio.fixture
async def manager(history_store, estimator, chat_settings, llm_client):
    """Conversation manager over a temporary database."""
    manager = ConversationManager(
        store=history_store,
        llm_client=llm_client,
        estimator=estimator,
        settings=chat_settings,
    )
    yield manager
    await manager.shutdown()


@pytest_asyncio.fixture
async def client(manager):
    """HTTP client bound to an app with the injected manager."""
    app = create_app(conversation_manager=manager)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestChatStream:
    """POST /api/v1/chat"""

    async def test_stream_new_session(self, client, manager):
        """Test deltas, terminator and session header."""
        response = await client.post(
            "/api/v1/chat",
            json={"ownerId": "u1", "message": {"role": "user", "text": "Hello"}},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        session_id = response.headers["x-session-id"]
        assert session_id

        events = _events(response.text)
        assert events[-1] == "[DONE]"
        deltas = [json.loads(e) for e in events[:-1]]
        assert all(d["type"] == "text-delta" for d in deltas)
        assert "".join(d["delta"] for d in deltas) == "Hello there, friend!"

        await manager.wait_for_background()
        history = await client.get("/api/v1/chat/history", params={"sessionId": session_id})
        assert [m["role"] for m in history.json()["messages"]] == ["user", "assistant"]

    async def test_message_parts(self, client, llm_client):
        """Test UI parts are normalized to text."""
        response = await client.post(
            "/api/v1/chat",
            json={
                "ownerId": "u1",
                "message": {
                    "role": "user",
                    "parts": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}],
                },
            },
        )

        assert response.status_code == 200
        assert llm_client.calls_of("stream")[0]["messages"][-1]["content"] == "Hi there"

    async def test_missing_owner(self, client, llm_client):
        """Test a new session without ownerId is rejected."""
        response = await client.post(
            "/api/v1/chat",
            json={"message": {"role": "user", "text": "Hello"}},
        )

        assert response.status_code == 400
        assert llm_client.call_count == 0

    async def test_non_user_role_rejected(self, client):
        """Test only user turns are accepted."""
        response = await client.post(
            "/api/v1/chat",
            json={"ownerId": "u1", "message": {"role": "assistant", "text": "Hello"}},
        )
        assert response.status_code == 400

    async def test_unsupported_parts_rejected(self, client):
        """Test malformed parts are rejected."""
        response = await client.post(
            "/api/v1/chat",
            json={"ownerId": "u1", "message": {"role": "user", "parts": [{"type": "text"}]}},
        )
        assert response.status_code == 400

    async def test_model_failure_before_first_token(self, client, llm_client, manager):
        """Test a 502 with the session header, user turn kept."""
        llm_client.stream_error = ModelInvocationError("provider down")

        response = await client.post(
            "/api/v1/chat",
            json={"ownerId": "u1", "message": {"role": "user", "text": "Hello"}},
        )

        assert response.status_code == 502
        session_id = response.headers["x-session-id"]

        await manager.wait_for_background()
        history = await client.get("/api/v1/chat/history", params={"sessionId": session_id})
        assert [m["role"] for m in history.json()["messages"]] == ["user"]

    async def test_model_failure_mid_stream(self, client, llm_client):
        """Test an error event followed by the terminator."""
        llm_client.stream_error = ModelInvocationError("connection reset")
        llm_client.stream_error_after = 2

        response = await client.post(
            "/api/v1/chat",
            json={"ownerId": "u1", "message": {"role": "user", "text": "Hello"}},
        )

        assert response.status_code == 200
        events = _events(response.text)
        assert events[-1] == "[DONE]"
        payloads = [json.loads(e) for e in events[:-1]]
        assert [p["type"] for p in payloads] == ["text-delta", "text-delta", "error"]
        assert "connection reset" in payloads[-1]["errorText"]

    async def test_tool_start_event(self, history_store, estimator, chat_settings):
        """Test a tool call is announced before the answer."""
        registry = ToolRegistry()
        registry.register(PriceTool())
        llm_client = MockLLMClient(complete_replies=[
            LLMResponse(
                content="",
                model="mock-model",
                tool_calls=[ToolCall(id="call_1", name="get_product_info", arguments={"productName": "iPad"})],
            ),
            "The iPad costs 999.00.",
        ])
        manager = ConversationManager(
            store=history_store,
            llm_client=llm_client,
            estimator=estimator,
            settings=chat_settings,
            tools=registry,
        )
        app = create_app(conversation_manager=manager)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/v1/chat",
                json={"ownerId": "u1", "message": {"role": "user", "text": "How much is the iPad?"}},
            )

            assert response.status_code == 200
            events = _events(response.text)
            assert events[-1] == "[DONE]"
            payloads = [json.loads(e) for e in events[:-1]]
            assert payloads == [
                {
                    "type": "tool-start",
                    "toolName": "get_product_info",
                    "toolCallId": "call_1",
                    "input": {"productName": "iPad"},
                },
                {"type": "text-delta", "delta": "The iPad costs 999.00."},
            ]

            await manager.wait_for_background()
            history = await client.get(
                "/api/v1/chat/history",
                params={"sessionId": response.headers["x-session-id"]},
            )

        messages = history.json()["messages"]
        assert [m["role"] for m in messages] == ["user", "tool", "assistant"]
        assert messages[1]["toolName"] == "get_product_info"
        assert messages[1]["content"] == "iPad: 999.00"
        await manager.shutdown()


class TestPersistenceFailures:
    """Store outages map to 503."""

    async def test_session_create_failure(self, client, history_store, llm_client, monkeypatch):
        """Test a failed session insert returns 503 and calls no model."""
        async def failing_create(owner_id, title):
            raise PersistenceError("database is locked", operation="create_session")

        monkeypatch.setattr(history_store, "create_session", failing_create)

        response = await client.post(
            "/api/v1/chat",
            json={"ownerId": "u1", "message": {"role": "user", "text": "Hello"}},
        )

        assert response.status_code == 503
        assert "database is locked" in response.json()["detail"]
        assert llm_client.call_count == 0

    async def test_history_load_failure(self, client, history_store, monkeypatch):
        """Test a failed history read returns 503."""
        async def failing_load(session_id):
            raise PersistenceError("connection refused", operation="load_all")

        monkeypatch.setattr(history_store, "load_all", failing_load)

        response = await client.get("/api/v1/chat/history", params={"sessionId": "s1"})
        assert response.status_code == 503

    async def test_list_sessions_failure(self, client, history_store, monkeypatch):
        """Test a failed session listing returns 503."""
        async def failing_list(owner_id, limit=100):
            raise PersistenceError("connection refused", operation="list_sessions")

        monkeypatch.setattr(history_store, "list_sessions", failing_list)

        response = await client.get("/api/v1/chat/sessions", params={"ownerId": "u1"})
        assert response.status_code == 503


class TestHistoryAndSessions:
    """History, listing and deletion endpoints."""

    async def test_history_requires_session_id(self, client):
        """Test missing sessionId."""
        response = await client.get("/api/v1/chat/history")
        assert response.status_code == 400

    async def test_history_of_unknown_session(self, client):
        """Test unknown session has no messages."""
        response = await client.get("/api/v1/chat/history", params={"sessionId": "nope"})
        assert response.status_code == 200
        assert response.json() == {"messages": []}

    async def test_list_and_delete(self, client, manager):
        """Test listing an owner's sessions and deleting one."""
        created = await client.post(
            "/api/v1/chat",
            json={"ownerId": "u1", "message": {"role": "user", "text": "Hello"}},
        )
        session_id = created.headers["x-session-id"]
        await manager.wait_for_background()

        listed = await client.get("/api/v1/chat/sessions", params={"ownerId": "u1"})
        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert listed.json()["sessions"][0]["id"] == session_id
        assert listed.json()["sessions"][0]["title"] == "Hello"

        deleted = await client.delete(f"/api/v1/chat/sessions/{session_id}")
        assert deleted.status_code == 200

        missing = await client.delete(f"/api/v1/chat/sessions/{session_id}")
        assert missing.status_code == 404

    async def test_list_requires_owner(self, client):
        """Test missing ownerId."""
        response = await client.get("/api/v1/chat/sessions")
        assert response.status_code == 400


class TestHealth:
    """GET /api/health"""

    async def test_health(self, client):
        """Test health endpoint."""
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
