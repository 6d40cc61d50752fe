"""Tests for chat turns over HTTP."""

from datetime import datetime, timezone

from advisor.models.conversation import Conversation
from advisor.services.llm.base import LLMResponse, ToolCall
from tests.conftest import seed, seed_user


def _headers(user_id):
    return {"X-User-Id": str(user_id)}


def test_start_conversation(client, llm, user_id):
    llm.responses = [LLMResponse(content="Hello! How can I help you today?")]

    response = client.post("/api/chat/conversations/start", json={"content": "hi"}, headers=_headers(user_id))

    assert response.status_code == 200
    data = response.json()
    assert data["conversation"]["title"] == "hi"
    assert data["userMessage"]["role"] == "user"
    assert data["userMessage"]["content"] == "hi"
    assert data["assistantMessage"]["content"] == "Hello! How can I help you today?"
    assert data["assistantMessage"]["tool_calls"] is None


def test_title_truncated(client, llm, user_id):
    text = "Please look through everything Sara sent me about the trust paperwork"
    llm.responses = [LLMResponse(content="On it.")]

    data = client.post("/api/chat/conversations/start", json={"content": text}, headers=_headers(user_id)).json()

    assert data["conversation"]["title"] == text[:50] + "..."


def test_tool_calls_persist_and_replay(client, llm, user_id):
    llm.responses = [
        LLMResponse(content="", tool_calls=[ToolCall(name="create_task", arguments={"title": "Call Sara"}, id="c1")]),
        LLMResponse(content="You have one task."),
    ]
    record = {"id": "c1", "name": "create_task", "arguments": {"title": "Call Sara"}}

    started = client.post(
        "/api/chat/conversations/start", json={"content": "Remind me to call Sara"}, headers=_headers(user_id)
    ).json()
    conv_id = started["conversation"]["id"]
    assert started["assistantMessage"]["tool_calls"] == [record]
    assert started["assistantMessage"]["content"] == "Created task: Call Sara (medium priority)"

    stored = client.get(f"/api/conversations/{conv_id}", headers=_headers(user_id)).json()
    assert stored["messages"][1]["tool_calls"] == [record]

    client.post(
        f"/api/chat/conversations/{conv_id}/messages", json={"content": "What tasks do I have?"},
        headers=_headers(user_id),
    )
    history = llm.calls[1]["messages"]
    assert [m.role for m in history[1:]] == ["user", "assistant", "user"]
    assert history[2].tool_calls[0].name == "create_task"
    assert history[2].tool_calls[0].arguments == {"title": "Call Sara"}


def test_content_required(client, user_id):
    response = client.post("/api/chat/conversations/start", json={"content": "   "}, headers=_headers(user_id))

    assert response.status_code == 400
    assert response.json()["detail"] == "Message content is required"


def test_content_too_long(client, user_id):
    response = client.post(
        "/api/chat/conversations/start", json={"content": "x" * 10001}, headers=_headers(user_id)
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Message content too long (max 10000 characters)"


def test_message_to_someone_elses_conversation(client, user_id):
    other = seed_user(email="other@firm.com")
    (conv_id,) = seed(Conversation(user_id=other, created_at=datetime.now(timezone.utc)))

    response = client.post(
        f"/api/chat/conversations/{conv_id}/messages", json={"content": "hello"}, headers=_headers(user_id)
    )

    assert response.status_code == 404


def test_agent_failure_still_replies(client, llm, user_id):
    llm.responses = [RuntimeError("model unavailable")]

    data = client.post("/api/chat/conversations/start", json={"content": "hi"}, headers=_headers(user_id)).json()

    assert data["assistantMessage"]["content"].startswith("I apologize")
