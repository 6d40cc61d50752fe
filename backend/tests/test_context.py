"""Tests for the background context block given to the model."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from advisor.models.records import CalendarEvent, EmailMessage, HubspotContact
from advisor.models.task import Task, TaskStatus
from advisor.models.user import OngoingInstruction, User
from advisor.services.context import ContextAssembler
from advisor.services.retrieval import RelevantDocument
from tests.conftest import FIXED_NOW, FakeRetriever, seed, test_engine


class BrokenRetriever(FakeRetriever):
    async def search(self, user_id, query, limit=5, category=None):
        raise RuntimeError("index unavailable")


def _user(user_id):
    with Session(test_engine) as session:
        return session.get(User, user_id)


def _assembler(retriever=None, **kwargs):
    return ContextAssembler(test_engine, retriever or FakeRetriever(), clock=lambda: FIXED_NOW, **kwargs)


def _seed_mailbox(user_id):
    seed(
        OngoingInstruction(user_id=user_id, instruction="Copy new senders into HubSpot"),
        OngoingInstruction(user_id=user_id, instruction="Old rule", is_active=False),
        EmailMessage(user_id=user_id, gmail_id="g1", sender="Sara Smith <sara@realclient.com>",
                     subject="Portfolio question", received_at=FIXED_NOW - timedelta(hours=2)),
        EmailMessage(user_id=user_id, gmail_id="g2", sender="deals@newsletter.example.com",
                     subject="Spring sale", received_at=FIXED_NOW - timedelta(hours=1)),
        CalendarEvent(user_id=user_id, google_event_id="e1", title="Quarterly review",
                      start_time=FIXED_NOW + timedelta(days=1), end_time=FIXED_NOW + timedelta(days=1, hours=1)),
        CalendarEvent(user_id=user_id, google_event_id="e0", title="Last month's lunch",
                      start_time=FIXED_NOW - timedelta(days=30), end_time=FIXED_NOW - timedelta(days=30)),
        HubspotContact(user_id=user_id, hubspot_id="1", first_name="Sara", last_name="Smith",
                       email="sara@realclient.com"),
        Task(user_id=user_id, title="Call Sara", status=TaskStatus.pending),
        Task(user_id=user_id, title="Done already", status=TaskStatus.completed),
    )


@pytest.mark.asyncio
async def test_all_sections(user_id):
    _seed_mailbox(user_id)

    block = await _assembler().assemble(_user(user_id), "hi")

    assert block.text.startswith("User: Alex Advisor")
    assert "- Copy new senders into HubSpot" in block.text
    assert "Old rule" not in block.text
    assert "Portfolio question (Sara Smith <sara@realclient.com>, 2024-03-13)" in block.text
    assert "Spring sale" not in block.text
    assert "Quarterly review" in block.text
    assert "Last month's lunch" not in block.text
    assert "- Sara Smith (sara@realclient.com)" in block.text
    assert "- Call Sara (pending)" in block.text
    assert "Done already" not in block.text


@pytest.mark.asyncio
async def test_filter_limits_categories(user_id):
    _seed_mailbox(user_id)

    block = await _assembler().assemble(_user(user_id), "hi", context_filter="emails")

    assert [e.subject for e in block.emails] == ["Portfolio question"]
    assert block.events == []
    assert block.contacts == []
    assert block.tasks == []
    # instructions are always included
    assert len(block.instructions) == 1


@pytest.mark.asyncio
async def test_unknown_filter_means_all(user_id):
    _seed_mailbox(user_id)

    block = await _assembler().assemble(_user(user_id), "hi", context_filter="weather")

    assert block.events and block.contacts and block.tasks


@pytest.mark.asyncio
async def test_email_limit(user_id):
    seed(*[
        EmailMessage(user_id=user_id, gmail_id=f"g{i}", sender=f"client{i}@realclient.com",
                     subject=f"Message {i}", received_at=FIXED_NOW - timedelta(minutes=i))
        for i in range(12)
    ])

    narrow = await _assembler().assemble(_user(user_id), "hi")
    wide = await _assembler().assemble(_user(user_id), "hi", context_filter="emails")

    assert len(narrow.emails) == 5
    assert narrow.emails[0].subject == "Message 0"
    assert len(wide.emails) == 12


@pytest.mark.asyncio
async def test_retrieval_only_for_longer_queries(user_id):
    retriever = FakeRetriever([
        RelevantDocument(content="Sara prefers bonds over equities", source="hubspot_note", title="Note",
                         date=datetime(2024, 3, 1, tzinfo=timezone.utc)),
    ])
    assembler = _assembler(retriever)

    await assembler.assemble(_user(user_id), "hello")
    assert retriever.queries == []

    block = await assembler.assemble(_user(user_id), "What does Sara think about bonds?")
    assert retriever.queries == [("What does Sara think about bonds?", "all")]
    assert "1. [HubSpot Note (2024-03-01)] Note" in block.text
    assert "Sara prefers bonds over equities" in block.text


@pytest.mark.asyncio
async def test_retrieval_failure_is_ignored(user_id):
    block = await _assembler(BrokenRetriever()).assemble(_user(user_id), "What does Sara think about bonds?")

    assert block.documents == []
    assert block.text.startswith("User: Alex Advisor")


@pytest.mark.asyncio
async def test_failed_category_is_skipped(user_id, monkeypatch):
    _seed_mailbox(user_id)
    assembler = _assembler()

    def broken(*args):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(assembler, "_emails", broken)
    block = await assembler.assemble(_user(user_id), "hi")

    assert block.emails == []
    assert "Quarterly review" in block.text


@pytest.mark.asyncio
async def test_text_is_capped(user_id):
    _seed_mailbox(user_id)

    block = await _assembler(max_chars=60).assemble(_user(user_id), "hi")

    assert len(block.text) == 60
    assert block.text.endswith("...")
