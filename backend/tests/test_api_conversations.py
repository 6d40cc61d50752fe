"""Tests for conversation CRUD endpoints."""

from datetime import datetime, timedelta, timezone

from sqlmodel import Session

from advisor.models.conversation import ChatMessage, Conversation
from tests.conftest import seed_user, test_engine


def _headers(user_id):
    return {"X-User-Id": str(user_id)}


def _seed_conversation(user_id, title="Test Chat", messages=None, age=timedelta(0)):
    """Insert a conversation + messages directly into the test DB."""
    created = datetime.now(timezone.utc) - age
    with Session(test_engine) as session:
        conv = Conversation(user_id=user_id, title=title, created_at=created, updated_at=created)
        session.add(conv)
        session.commit()
        session.refresh(conv)

        if messages:
            for role, content in messages:
                session.add(ChatMessage(conversation_id=conv.id, role=role, content=content))
            session.commit()

        return conv.id


def test_list_conversations_empty(client, user_id):
    response = client.get("/api/conversations/", headers=_headers(user_id))
    assert response.status_code == 200
    assert response.json() == []


def test_list_conversations(client, user_id):
    _seed_conversation(user_id, "Chat A", [("user", "hello"), ("assistant", "hi there")])
    _seed_conversation(user_id, "Chat B")
    _seed_conversation(seed_user(email="other@firm.com"), "Not mine")

    data = client.get("/api/conversations/", headers=_headers(user_id)).json()

    assert {c["title"] for c in data} == {"Chat A", "Chat B"}
    last = {c["title"]: c["last_message"] for c in data}
    assert last == {"Chat A": "hi there", "Chat B": None}


def test_list_purges_abandoned_conversations(client, user_id):
    _seed_conversation(user_id, "Abandoned", age=timedelta(hours=3))
    _seed_conversation(user_id, "Old but used", [("user", "hello")], age=timedelta(hours=3))

    data = client.get("/api/conversations/", headers=_headers(user_id)).json()

    assert [c["title"] for c in data] == ["Old but used"]


def test_create_conversation(client, user_id):
    response = client.post("/api/conversations/", json={"title": "Planning"}, headers=_headers(user_id))

    assert response.status_code == 200
    assert response.json()["title"] == "Planning"
    assert client.post("/api/conversations/", json={}, headers=_headers(user_id)).json()["title"] == "New Conversation"


def test_get_conversation(client, user_id):
    cid = _seed_conversation(user_id, "My Chat", [("user", "hello"), ("assistant", "hi there")])

    response = client.get(f"/api/conversations/{cid}", headers=_headers(user_id))

    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "My Chat"
    assert [(m["role"], m["content"]) for m in data["messages"]] == [("user", "hello"), ("assistant", "hi there")]


def test_get_conversation_not_found(client, user_id):
    assert client.get("/api/conversations/9999", headers=_headers(user_id)).status_code == 404


def test_other_users_conversation_hidden(client, user_id):
    cid = _seed_conversation(seed_user(email="other@firm.com"), "Private", [("user", "secret")])

    assert client.get(f"/api/conversations/{cid}", headers=_headers(user_id)).status_code == 404
    assert client.delete(f"/api/conversations/{cid}", headers=_headers(user_id)).status_code == 404


def test_delete_conversation(client, user_id):
    cid = _seed_conversation(user_id, "To Delete", [("user", "bye")])

    response = client.delete(f"/api/conversations/{cid}", headers=_headers(user_id))
    assert response.status_code == 200
    assert response.json()["status"] == "deleted"

    assert client.get(f"/api/conversations/{cid}", headers=_headers(user_id)).status_code == 404
