"""Context assembly - a bounded digest of the user's recent data for the system prompt."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from advisor.core.config import settings
from advisor.core.timeutil import as_utc, utcnow
from advisor.models.records import CalendarEvent, EmailMessage, HubspotContact
from advisor.models.task import ACTIVE_STATUSES, Task
from advisor.models.user import OngoingInstruction, User
from advisor.services.retrieval import BaseRetriever, RelevantDocument
from advisor.services.tools.parsing import is_spam_sender

logger = logging.getLogger(__name__)

CONTEXT_FILTERS = ("all", "emails", "calendar", "contacts")

SOURCE_LABELS = {
    "email": "Email",
    "hubspot_note": "HubSpot Note",
    "hubspot_contact": "Contact Info",
    "calendar": "Calendar",
}

CALENDAR_LOOKBACK = timedelta(days=7)
MIN_RETRIEVAL_QUERY = 10
SNIPPET_CHARS = 200


@dataclass
class ContextBlock:
    text: str
    instructions: list[OngoingInstruction] = field(default_factory=list)
    emails: list[EmailMessage] = field(default_factory=list)
    events: list[CalendarEvent] = field(default_factory=list)
    contacts: list[HubspotContact] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    documents: list[RelevantDocument] = field(default_factory=list)


class ContextAssembler:
    def __init__(
        self,
        engine: Engine,
        retriever: BaseRetriever,
        clock: Callable[[], datetime] = utcnow,
        max_chars: int | None = None,
    ):
        self.engine = engine
        self.retriever = retriever
        self.clock = clock
        self.max_chars = max_chars or settings.context_max_chars

    def load_instructions(self, user_id: int) -> list[OngoingInstruction]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(OngoingInstruction).where(
                        OngoingInstruction.user_id == user_id,
                        OngoingInstruction.is_active == True,  # noqa: E712
                    ).order_by(OngoingInstruction.created_at)
                ).all()
            )

    def _emails(self, user_id: int, context_filter: str) -> list[EmailMessage]:
        wide = context_filter == "emails"
        with Session(self.engine) as session:
            emails = session.exec(
                select(EmailMessage)
                .where(EmailMessage.user_id == user_id)
                .order_by(EmailMessage.received_at.desc())
                .limit(30 if wide else 10)
            ).all()
        return [e for e in emails if not is_spam_sender(e.sender.lower())][: 20 if wide else 5]

    def _events(self, user_id: int, context_filter: str) -> list[CalendarEvent]:
        since = self.clock() - CALENDAR_LOOKBACK
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(CalendarEvent)
                    .where(CalendarEvent.user_id == user_id, CalendarEvent.start_time >= as_utc(since))
                    .order_by(CalendarEvent.start_time)
                    .limit(20 if context_filter == "calendar" else 5)
                ).all()
            )

    def _contacts(self, user_id: int, context_filter: str) -> list[HubspotContact]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(HubspotContact)
                    .where(HubspotContact.user_id == user_id)
                    .order_by(HubspotContact.created_at.desc())
                    .limit(20 if context_filter == "contacts" else 5)
                ).all()
            )

    def _tasks(self, user_id: int) -> list[Task]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(Task)
                    .where(Task.user_id == user_id, Task.status.in_(ACTIVE_STATUSES))  # type: ignore
                    .order_by(Task.created_at.desc())
                    .limit(5)
                ).all()
            )

    def _fetch(self, label: str, loader: Callable[[], list[Any]]) -> list[Any]:
        try:
            return loader()
        except Exception as e:
            logger.warning(f"Context: failed to load {label}: {e}")
            return []

    async def assemble(self, user: User, query: str, context_filter: str = "all") -> ContextBlock:
        if context_filter not in CONTEXT_FILTERS:
            context_filter = "all"
        user_id = user.id

        block = ContextBlock(text="")
        block.instructions = self._fetch("instructions", lambda: self.load_instructions(user_id))
        if context_filter in ("all", "emails"):
            block.emails = self._fetch("emails", lambda: self._emails(user_id, context_filter))
        if context_filter in ("all", "calendar"):
            block.events = self._fetch("calendar events", lambda: self._events(user_id, context_filter))
        if context_filter in ("all", "contacts"):
            block.contacts = self._fetch("contacts", lambda: self._contacts(user_id, context_filter))
        if context_filter == "all":
            block.tasks = self._fetch("tasks", lambda: self._tasks(user_id))

        if len(query) > MIN_RETRIEVAL_QUERY:
            try:
                block.documents = await self.retriever.search(user_id, query, 3, context_filter)
            except Exception as e:
                logger.warning(f"Context: retrieval failed: {e}")

        block.text = self.render(user, block)
        return block

    def render(self, user: User, block: ContextBlock) -> str:
        sections = [f"User: {user.display_name}"]

        if block.instructions:
            sections.append("Ongoing Instructions:\n" + "\n".join(f"- {i.instruction}" for i in block.instructions))
        if block.emails:
            sections.append("Recent Emails:\n" + "\n".join(
                f"- {e.subject} ({e.sender}, {as_utc(e.received_at):%Y-%m-%d})" for e in block.emails
            ))
        if block.events:
            sections.append("Upcoming Calendar Events:\n" + "\n".join(
                f"- {e.title} ({as_utc(e.start_time).isoformat()})" for e in block.events
            ))
        if block.contacts:
            sections.append("Recent HubSpot Contacts:\n" + "\n".join(
                f"- {c.full_name or 'Unknown'} ({c.email or 'no email'})" for c in block.contacts
            ))
        if block.tasks:
            sections.append("Recent Tasks:\n" + "\n".join(
                f"- {t.title} ({t.status.value})" for t in block.tasks
            ))
        if block.documents:
            lines = ["Relevant Information from Past Data:"]
            for index, doc in enumerate(block.documents, 1):
                label = SOURCE_LABELS.get(doc.source, "Calendar")
                date = f" ({as_utc(doc.date):%Y-%m-%d})" if doc.date else ""
                snippet = doc.content[:SNIPPET_CHARS] + ("..." if len(doc.content) > SNIPPET_CHARS else "")
                lines.append(f"{index}. [{label}{date}] {doc.title or ''}".rstrip())
                lines.append(f"   {snippet}")
            sections.append("\n".join(lines))

        text = "\n\n".join(sections)
        if len(text) > self.max_chars:
            text = text[: self.max_chars - 3] + "..."
        return text
