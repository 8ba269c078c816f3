"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage

from src.db.session import reset_db
from src.server import app, rate_limiter
from src.services.quota import QuotaExceededError
from src.services.rate_limit import SlidingWindowRateLimiter

CHAT_BODY = {"messages": [{"role": "user", "content": "Hello!"}]}


class ProviderRateLimit(Exception):
    status_code = 429


@pytest.fixture
def mock_agent():
    """A mock compiled graph that answers every request the same way."""
    agent = MagicMock()
    agent.invoke.return_value = {
        "messages": [
            HumanMessage(content="Hello!"),
            AIMessage(
                content="Hi! How can I help with your order today?",
                response_metadata={"stop_reason": "end_turn"},
                usage_metadata={"input_tokens": 12, "output_tokens": 9, "total_tokens": 21},
            ),
        ]
    }
    agent.stream.side_effect = lambda *args, **kwargs: iter([
        (AIMessageChunk(content="Hi! "), {"langgraph_node": "chatbot"}),
        (AIMessageChunk(content="How can I help?"), {"langgraph_node": "chatbot"}),
    ])
    return agent


@pytest.fixture
def client(mock_agent, seeded_db):
    """Test client with every agent id wired to the mock (mirrors the lifespan)."""
    rate_limiter.reset()
    app.state.agents = {agent_id: mock_agent for agent_id in ("router", "order", "billing", "support")}
    yield TestClient(app)
    app.state.agents = None


class TestHealthEndpoint:
    def test_health_returns_ok_and_timestamp(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert isinstance(data["timestamp"], str)


class TestRootEndpoint:
    def test_root_reports_backend_active(self, client):
        data = client.get("/").json()
        assert data["message"] == "Backend is active"
        assert "docs" in data


class TestChatSync:
    def test_returns_text_finish_reason_and_usage(self, client):
        response = client.post("/api/chat/sync", json=CHAT_BODY)
        assert response.status_code == 200
        data = response.json()
        assert data["text"] == "Hi! How can I help with your order today?"
        assert data["finish_reason"] == "stop"
        assert data["usage"]["total_tokens"] == 21

    def test_passes_converted_messages_to_agent(self, client, mock_agent):
        client.post("/api/chat/sync", json=CHAT_BODY)
        inputs = mock_agent.invoke.call_args[0][0]
        assert isinstance(inputs["messages"][0], HumanMessage)
        assert inputs["messages"][0].content == "Hello!"

    def test_rejects_empty_body(self, client):
        response = client.post("/api/chat/sync", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"
        assert response.json()["issues"]

    def test_rejects_empty_message_list(self, client):
        response = client.post("/api/chat/sync", json={"messages": []})
        assert response.status_code == 400

    def test_rejects_unknown_role(self, client):
        response = client.post(
            "/api/chat/sync", json={"messages": [{"role": "tool", "content": "x"}]},
        )
        assert response.status_code == 400

    def test_rejects_empty_content(self, client):
        response = client.post(
            "/api/chat/sync", json={"messages": [{"role": "user", "content": ""}]},
        )
        assert response.status_code == 400

    def test_rejects_malformed_json(self, client):
        response = client.post(
            "/api/chat/sync",
            content="{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    def test_unknown_agent_returns_404(self, client):
        response = client.post("/api/chat/sync", json={**CHAT_BODY, "agent_id": "sales"})
        assert response.status_code == 404
        assert response.json()["error"] == "Agent not found"

    def test_quota_error_returns_429_with_retry_after(self, client, mock_agent):
        mock_agent.invoke.side_effect = ProviderRateLimit("Quota exceeded. Please retry in 12.3s.")
        response = client.post("/api/chat/sync", json=CHAT_BODY)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "13"
        data = response.json()
        assert data["error"] == "AI quota exceeded. Please try again shortly."
        assert data["retry_after_seconds"] == 12.3

    def test_quota_error_without_hint_has_no_retry_header(self, client, mock_agent):
        mock_agent.invoke.side_effect = QuotaExceededError("AI quota exceeded.")
        response = client.post("/api/chat/sync", json=CHAT_BODY)
        assert response.status_code == 429
        assert "Retry-After" not in response.headers
        assert response.json()["retry_after_seconds"] is None

    def test_internal_errors_are_not_leaked(self, client, mock_agent):
        mock_agent.invoke.side_effect = RuntimeError("LLM exploded")
        response = client.post("/api/chat/sync", json=CHAT_BODY)
        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error"}


class TestChatStream:
    def test_streams_plain_text(self, client):
        response = client.post("/api/chat", json=CHAT_BODY)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Hi! How can I help?"

    def test_routes_to_requested_agent(self, client, mock_agent):
        billing = MagicMock()
        billing.stream.return_value = iter([
            (AIMessageChunk(content="Invoice INV-2001 is paid."), {"langgraph_node": "chatbot"}),
        ])
        app.state.agents["billing"] = billing

        response = client.post("/api/chat", json={**CHAT_BODY, "agent_id": "billing"})

        assert response.text == "Invoice INV-2001 is paid."
        mock_agent.stream.assert_not_called()

    def test_quota_error_before_first_chunk_returns_429(self, client, mock_agent):
        mock_agent.stream.side_effect = ProviderRateLimit("RESOURCE_EXHAUSTED, retry in 4s")
        response = client.post("/api/chat", json=CHAT_BODY)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "4"

    def test_error_before_first_chunk_returns_500(self, client, mock_agent):
        mock_agent.stream.side_effect = RuntimeError("boom")
        response = client.post("/api/chat", json=CHAT_BODY)
        assert response.status_code == 500
        assert "boom" not in response.text

    def test_error_mid_stream_truncates_body(self, client, mock_agent):
        def _stream(*args, **kwargs):
            yield AIMessageChunk(content="Partial"), {"langgraph_node": "chatbot"}
            raise RuntimeError("connection reset")

        mock_agent.stream.side_effect = _stream
        response = client.post("/api/chat", json=CHAT_BODY)
        assert response.status_code == 200
        assert response.text == "Partial"

    def test_validates_body(self, client):
        response = client.post("/api/chat", json={"messages": "hi"})
        assert response.status_code == 400


class TestAgentsNotReady:
    def test_returns_503_when_agents_not_initialised(self, seeded_db):
        """If the graphs haven't been built by the lifespan yet, return 503."""
        with patch("src.server.create_all_agents", return_value={}), TestClient(app) as tc:
            app.state.agents = None
            response = tc.post("/api/chat/sync", json=CHAT_BODY)
            assert response.status_code == 503
            assert "starting up" in response.json()["error"].lower()


class TestAgentsEndpoints:
    def test_lists_four_agents(self, client):
        response = client.get("/api/agents")
        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == ["router", "order", "billing", "support"]

    def test_get_agent(self, client):
        data = client.get("/api/agents/billing").json()
        assert data["name"] == "Billing Agent"
        assert data["tools"] == ["get_invoice_details", "check_refund_status"]

    def test_unknown_agent_is_404(self, client):
        response = client.get("/api/agents/sales")
        assert response.status_code == 404
        assert response.json() == {"error": "Agent not found"}


class TestConversationEndpoints:
    def test_lists_conversations(self, client):
        response = client.get("/api/chat/conversations")
        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["last_message"] == "Please email it to me."

    def test_gets_conversation_detail(self, client):
        conversation_id = client.get("/api/chat/conversations").json()[0]["id"]
        response = client.get(f"/api/chat/conversations/{conversation_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == conversation_id
        assert len(data["messages"]) == 4
        assert data["messages"][0]["role"] == "system"

    def test_unknown_conversation_is_404(self, client):
        response = client.get("/api/chat/conversations/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "Conversation not found"}

    def test_create_message_reuses_latest_conversation(self, client):
        conversation_id = client.get("/api/chat/conversations").json()[0]["id"]
        response = client.post(
            "/api/chat/conversations/messages",
            json={"message": {"role": "user", "content": "Did you send it?"}},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["conversation_id"] == conversation_id
        assert data["message"]["role"] == "user"
        assert data["message"]["content"] == "Did you send it?"

        summaries = client.get("/api/chat/conversations").json()
        assert summaries[0]["last_message"] == "Did you send it?"

    def test_created_message_timestamp_matches_detail(self, client):
        created = client.post(
            "/api/chat/conversations/messages",
            json={"message": {"role": "user", "content": "Any news?"}},
        ).json()
        detail = client.get(f"/api/chat/conversations/{created['conversation_id']}").json()
        stored = next(m for m in detail["messages"] if m["id"] == created["message"]["id"])
        assert stored["created_at"] == created["message"]["created_at"]
        assert stored["created_at"].endswith("+00:00")

    def test_create_message_validates_body(self, client):
        response = client.post(
            "/api/chat/conversations/messages",
            json={"message": {"role": "robot", "content": "beep"}},
        )
        assert response.status_code == 400

    def test_create_message_without_users_fails_cleanly(self, client):
        reset_db()
        response = client.post(
            "/api/chat/conversations/messages",
            json={"message": {"role": "user", "content": "Hi"}},
        )
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to save message"}


class TestMiddleware:
    def test_response_includes_request_id_header(self, client):
        response = client.get("/api/health")
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "my-trace-id-123"})
        assert response.headers["X-Request-ID"] == "my-trace-id-123"

    def test_rate_limit_headers_present(self, client):
        response = client.get("/api/health")
        assert response.headers["RateLimit-Limit"] == str(rate_limiter.max_requests)
        assert "RateLimit-Remaining" in response.headers

    def test_rate_limit_rejects_excess_requests(self, client):
        with patch("src.server.rate_limiter", SlidingWindowRateLimiter(2, 60)):
            headers = {"X-Forwarded-For": "10.0.0.1"}
            assert client.get("/api/health", headers=headers).status_code == 200
            assert client.get("/api/health", headers=headers).status_code == 200
            response = client.get("/api/health", headers=headers)
            assert response.status_code == 429
            assert response.json() == {"error": "Rate limit exceeded"}
            # A different client is unaffected
            assert client.get("/api/health", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200

    def test_root_is_not_rate_limited(self, client):
        with patch("src.server.rate_limiter", SlidingWindowRateLimiter(1, 60)):
            for _ in range(3):
                assert client.get("/").status_code == 200
