"""Tests for inbound provider events."""

from advisor.core.errors import ProviderError
from advisor.models.user import OngoingInstruction
from advisor.services.llm.base import LLMResponse, ToolCall
from tests.conftest import seed


def _headers(user_id):
    return {"X-User-Id": str(user_id)}


NEW_MAIL = {"source": "gmail", "payload": {"from": "nina@client.com", "subject": "Intro"}}


def test_event_without_instructions_is_ignored(client, llm, providers, user_id):
    providers.email.messages = [{"id": "m1", "from": "nina@client.com", "subject": "Intro"}]

    data = client.post("/api/events/", json=NEW_MAIL, headers=_headers(user_id)).json()

    assert data == {"status": "ignored", "synced": 1}
    assert llm.calls == []


def test_event_acted_on(client, llm, providers, user_id):
    seed(OngoingInstruction(user_id=user_id, instruction="Add new email senders to HubSpot"))
    llm.responses = [LLMResponse(content="", tool_calls=[
        ToolCall(name="create_hubspot_contact", arguments={"email": "nina@client.com"}, id="c1"),
    ])]

    data = client.post("/api/events/", json=NEW_MAIL, headers=_headers(user_id)).json()

    assert data["status"] == "processed"
    assert data["tool_calls"] == [{"id": "c1", "name": "create_hubspot_contact", "arguments": {"email": "nina@client.com"}}]
    assert "nina@client.com" in llm.calls[0]["messages"][-1].content


def test_sync_failure_does_not_block_processing(client, llm, providers, user_id):
    seed(OngoingInstruction(user_id=user_id, instruction="Add new email senders to HubSpot"))
    providers.email.fail = ProviderError("Gmail API rate limit reached.", "Gmail", code="RATE_LIMITED")
    llm.responses = [LLMResponse(content="Nothing to do.")]

    data = client.post("/api/events/", json=NEW_MAIL, headers=_headers(user_id)).json()

    assert data["status"] == "processed"
    assert data["synced"] is None
    assert data["content"] == "Nothing to do."


def test_sync_can_be_skipped(client, providers, user_id):
    data = client.post("/api/events/", json={**NEW_MAIL, "sync": False}, headers=_headers(user_id)).json()

    assert data["synced"] is None
    assert providers.email.searches == []


def test_unknown_source_rejected(client, user_id):
    response = client.post("/api/events/", json={"source": "slack", "payload": {}}, headers=_headers(user_id))

    assert response.status_code == 422
