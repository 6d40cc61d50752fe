"""Tests for email search, sending and contact email hand-off."""

from datetime import datetime, timezone

import pytest
from sqlmodel import Session, select

from advisor.core.errors import ProviderError
from advisor.models.records import EmailMessage, HubspotContact
from advisor.models.task import Task, TaskStatus
from advisor.services.retrieval import RelevantDocument
from advisor.services.tools.email_tools import SearchEmailsTool, SendEmailToContactTool, SendEmailTool
from tests.conftest import seed, test_engine


def _email(user_id, sender, subject, received, body="", recipients=None):
    return EmailMessage(
        user_id=user_id,
        gmail_id=f"{sender}-{received:%d%H}",
        sender=sender,
        subject=subject,
        body=body,
        recipients=recipients or ["advisor@firm.com"],
        received_at=received,
    )


def _at(day, hour):
    return datetime(2024, 3, day, hour, 0, tzinfo=timezone.utc)


def _tasks():
    with Session(test_engine) as session:
        return list(session.exec(select(Task)).all())


@pytest.mark.asyncio
async def test_promotional_senders_filtered(ctx, user_id):
    seed(
        _email(user_id, "promo@newsletter.example.com", "Big spring savings", _at(12, 8)),
        _email(user_id, "Sara Smith <sara@realclient.com>", "Portfolio question", _at(12, 9)),
    )

    result = await SearchEmailsTool(ctx).execute(user_id, query="emails from the last 7 days")

    senders = [e["from"] for e in result["emails"]]
    assert senders == ["Sara Smith <sara@realclient.com>"]
    assert result["filteredCount"] == 1
    assert "filtered out 1 promotional emails" in result["formattedResponse"]


@pytest.mark.asyncio
async def test_promotional_query_keeps_promotions(ctx, user_id):
    seed(
        _email(user_id, "promo@newsletter.example.com", "Big spring savings", _at(12, 8)),
        _email(user_id, "Sara Smith <sara@realclient.com>", "Portfolio question", _at(12, 9)),
    )

    result = await SearchEmailsTool(ctx).execute(user_id, query="promotional emails from the last 7 days")

    assert result["count"] == 2
    assert result["filteredCount"] == 0


@pytest.mark.asyncio
async def test_sender_and_yesterday_filter(ctx, user_id):
    seed(
        _email(user_id, "Greg Lee <greg@clientco.com>", "Quarterly numbers", _at(12, 10)),
        _email(user_id, "Greg Lee <greg@clientco.com>", "Follow up", _at(13, 9)),
        _email(user_id, "Sara Smith <sara@realclient.com>", "Portfolio question", _at(12, 11)),
    )

    result = await SearchEmailsTool(ctx).execute(user_id, query="What emails did I get from Greg yesterday?")

    assert result["filters"]["senderNames"] == ["Greg"]
    assert result["filters"]["dateRange"] == {
        "start": "2024-03-12T00:00:00+00:00",
        "end": "2024-03-12T23:59:59.999999+00:00",
    }
    assert [e["subject"] for e in result["emails"]] == ["Quarterly numbers"]


@pytest.mark.asyncio
async def test_plain_text_search_and_direction(ctx, user_id):
    seed(
        _email(user_id, "Sara Smith <sara@realclient.com>", "Rebalancing plan", _at(10, 9)),
        _email(user_id, "Alex Advisor <advisor@firm.com>", "Re: Rebalancing plan", _at(11, 9),
               recipients=["sara@realclient.com"]),
        _email(user_id, "Tom <tom@other.com>", "Golf", _at(11, 10)),
    )

    result = await SearchEmailsTool(ctx).execute(user_id, query="rebalancing")

    assert [e["direction"] for e in result["emails"]] == ["sent", "received"]
    assert "Sent to: sara@realclient.com" in result["formattedResponse"]


@pytest.mark.asyncio
async def test_no_results_messages(ctx, user_id):
    result = await SearchEmailsTool(ctx).execute(user_id, query="estate planning")
    assert result["formattedResponse"].startswith("No personal/business emails found")

    result = await SearchEmailsTool(ctx).execute(user_id, query="promotional offers")
    assert result["formattedResponse"] == "No promotional emails found matching your criteria."


@pytest.mark.asyncio
async def test_vector_matches_limited_to_emails(ctx, user_id, retriever):
    retriever.documents = [
        RelevantDocument(content="Sara asked about bonds", source="email", title="Bonds"),
        RelevantDocument(content="Met Sara at conference", source="hubspot_note"),
    ]

    result = await SearchEmailsTool(ctx).execute(user_id, query="bonds")

    assert retriever.queries == [("bonds", "emails")]
    assert result["vectorMatches"] == [{"content": "Sara asked about bonds", "source": "Bonds", "date": None}]


@pytest.mark.asyncio
async def test_send_email_records_task(ctx, user_id, providers):
    result = await SendEmailTool(ctx).execute(user_id, to="sara@realclient.com", subject="Hello", body="Hi Sara")

    assert result["success"] is True
    assert result["messageId"] == "msg-1"
    assert providers.email.sent == [{"to": "sara@realclient.com", "subject": "Hello", "body": "Hi Sara"}]
    (task,) = _tasks()
    assert task.status == TaskStatus.completed
    assert task.meta["type"] == "send_email"


@pytest.mark.asyncio
async def test_send_email_failure_leaves_pending_task(ctx, user_id, providers):
    providers.email.fail = ProviderError("Gmail authentication failed.", "Gmail", code="AUTH_REQUIRED")

    result = await SendEmailTool(ctx).execute(user_id, to="sara@realclient.com", subject="Hello", body="Hi")

    assert result == {"success": False, "error": "Failed to send email: Gmail authentication failed."}
    (task,) = _tasks()
    assert task.status == TaskStatus.pending
    assert task.meta["status"] == "failed"
    assert task.meta["error"] == "Gmail authentication failed."


@pytest.mark.asyncio
async def test_send_email_requires_address(ctx, user_id, providers):
    result = await SendEmailTool(ctx).execute(user_id, to="Sara", subject="Hello", body="Hi")

    assert result["needsInput"]["missing"] == ["to"]
    assert providers.email.sent == []


@pytest.mark.asyncio
async def test_send_email_to_contact_queues_task(ctx, user_id, providers):
    seed(HubspotContact(user_id=user_id, hubspot_id="1", email="sara@realclient.com", first_name="Sara", last_name="Smith"))

    result = await SendEmailToContactTool(ctx).execute(user_id, contactName="Sara", subject="Update", body="Hi")

    assert result["success"] is True
    assert result["task"]["metadata"]["status"] == "pending_send"
    assert result["task"]["metadata"]["contactEmail"] == "sara@realclient.com"
    assert providers.email.sent == []


@pytest.mark.asyncio
async def test_send_email_to_unknown_contact(ctx, user_id):
    result = await SendEmailToContactTool(ctx).execute(user_id, contactName="Nobody", subject="x", body="y")

    assert result == {"success": False, "error": 'Contact "Nobody" not found in HubSpot'}
    assert _tasks() == []
