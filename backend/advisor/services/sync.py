"""Provider sync - fills the local store the assistant reads from.

Gmail messages and HubSpot contacts/notes are upserted into their tables and
mirrored into the retrieval corpus. Contacts created locally (``temp_`` ids) are
pushed to HubSpot and their pending audit tasks completed. Sync outcomes are
recorded per (user, service) in ``ProviderSyncState``.
"""

import logging
from datetime import datetime
from email.utils import parsedate_to_datetime

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from advisor.core.errors import ProviderError
from advisor.core.timeutil import as_utc, utcnow
from advisor.models.records import (
    EmailMessage,
    HubspotContact,
    HubspotNote,
    ProviderSyncState,
    VectorDocument,
)
from advisor.models.task import Task, TaskKind, TaskStatus
from advisor.services.integrations.base import Providers

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp_"


def record_sync_state(engine: Engine, user_id: int, service: str, error: str | None = None) -> None:
    with Session(engine) as session:
        state = session.exec(
            select(ProviderSyncState).where(
                ProviderSyncState.user_id == user_id,
                ProviderSyncState.service == service,
            )
        ).first() or ProviderSyncState(user_id=user_id, service=service)
        if error:
            state.failure_count += 1
            state.last_failure_at = utcnow()
            state.last_error = error[:500]
        else:
            state.failure_count = 0
            state.last_success_at = utcnow()
            state.last_error = None
        session.add(state)
        session.commit()


def _parse_date(value: str | None) -> datetime:
    if value:
        try:
            return as_utc(parsedate_to_datetime(value))
        except (TypeError, ValueError):
            pass
    return utcnow()


class SyncService:
    def __init__(self, engine: Engine, providers: Providers):
        self.engine = engine
        self.providers = providers

    async def sync_source(self, user_id: int, source: str) -> int:
        if source == "gmail":
            return await self.sync_emails(user_id)
        if source == "calendar":
            return await self.providers.calendar.sync(user_id)
        if source == "hubspot":
            return await self.sync_contacts(user_id)
        raise ValueError(f"Unknown sync source: {source}")

    async def sync_all(self, user_id: int) -> dict[str, int | str]:
        """Sync every source, recording failures instead of raising."""
        results: dict[str, int | str] = {}
        for source in ("gmail", "calendar", "hubspot"):
            try:
                results[source] = await self.sync_source(user_id, source)
            except ProviderError as e:
                logger.warning(f"{source} sync failed for user {user_id}: {e.message}")
                results[source] = e.code
        return results

    async def sync_emails(self, user_id: int, query: str = "newer_than:7d", max_results: int = 50) -> int:
        try:
            messages = await self.providers.email.search(user_id, query, max_results=max_results)
        except ProviderError as e:
            record_sync_state(self.engine, user_id, "gmail", e.message)
            raise

        added = 0
        with Session(self.engine) as session:
            for msg in messages:
                if not msg.get("id"):
                    continue
                existing = session.exec(
                    select(EmailMessage).where(
                        EmailMessage.user_id == user_id,
                        EmailMessage.gmail_id == msg["id"],
                    )
                ).first()
                if existing:
                    continue
                received = _parse_date(msg.get("date"))
                email = EmailMessage(
                    user_id=user_id,
                    gmail_id=msg["id"],
                    thread_id=msg.get("thread_id"),
                    subject=msg.get("subject", ""),
                    sender=msg.get("from", ""),
                    recipients=[r.strip() for r in (msg.get("to") or "").split(",") if r.strip()],
                    body=msg.get("body") or msg.get("snippet", ""),
                    received_at=received,
                )
                session.add(email)
                session.add(VectorDocument(
                    user_id=user_id,
                    content=f"From: {email.sender}\nSubject: {email.subject}\n\n{email.body}",
                    source="email",
                    source_id=msg["id"],
                    title=email.subject,
                    date=received,
                ))
                added += 1
            session.commit()

        record_sync_state(self.engine, user_id, "gmail")
        logger.info(f"Synced {added} new emails for user {user_id}")
        return added

    async def push_local_contacts(self, user_id: int) -> int:
        """Create locally added contacts in HubSpot and complete their pending tasks."""
        with Session(self.engine) as session:
            local = list(session.exec(
                select(HubspotContact).where(
                    HubspotContact.user_id == user_id,
                    HubspotContact.hubspot_id.startswith(TEMP_PREFIX),
                )
            ).all())

        pushed = 0
        for contact in local:
            created = await self.providers.crm.create_contact(
                user_id,
                contact.email or "",
                first_name=contact.first_name,
                last_name=contact.last_name,
                company=contact.company,
            )
            with Session(self.engine) as session:
                row = session.get(HubspotContact, contact.id)
                row.hubspot_id = created["id"]
                session.add(row)

                for task in session.exec(
                    select(Task).where(Task.user_id == user_id, Task.status == TaskStatus.pending)
                ).all():
                    meta = task.meta or {}
                    if (
                        meta.get("type") == TaskKind.create_hubspot_contact.value
                        and meta.get("contactId") == contact.id
                        and meta.get("status") == "pending_hubspot_sync"
                    ):
                        task.meta = {**meta, "status": "completed", "hubspotId": created["id"]}
                        task.status = TaskStatus.completed
                        task.completed_at = utcnow()
                        task.updated_at = utcnow()
                        session.add(task)
                session.commit()
            pushed += 1
        return pushed

    async def sync_contacts(self, user_id: int) -> int:
        try:
            await self.push_local_contacts(user_id)
            remote = await self.providers.crm.search_contacts(user_id, "")
        except ProviderError as e:
            record_sync_state(self.engine, user_id, "hubspot", e.message)
            raise

        synced = 0
        for item in remote:
            if not item.get("id"):
                continue
            with Session(self.engine) as session:
                contact = session.exec(
                    select(HubspotContact).where(
                        HubspotContact.user_id == user_id,
                        HubspotContact.hubspot_id == item["id"],
                    )
                ).first()
                is_new = contact is None
                contact = contact or HubspotContact(user_id=user_id, hubspot_id=item["id"])
                contact.email = item.get("email") or contact.email
                contact.first_name = item.get("first_name") or ""
                contact.last_name = item.get("last_name") or ""
                contact.company = item.get("company") or ""
                contact.phone = item.get("phone") or ""
                session.add(contact)
                if is_new:
                    session.add(VectorDocument(
                        user_id=user_id,
                        content=f"{contact.full_name} <{contact.email}> {contact.company}".strip(),
                        source="hubspot_contact",
                        source_id=item["id"],
                        title=contact.full_name or contact.email,
                    ))
                session.commit()
                session.refresh(contact)
                contact_id = contact.id

            try:
                notes = await self.providers.crm.list_notes(user_id, item["id"])
            except ProviderError as e:
                logger.warning(f"Could not load notes for contact {item['id']}: {e.message}")
                notes = []
            self._upsert_notes(user_id, contact_id, notes)
            synced += 1

        record_sync_state(self.engine, user_id, "hubspot")
        logger.info(f"Synced {synced} HubSpot contacts for user {user_id}")
        return synced

    def _upsert_notes(self, user_id: int, contact_id: int, notes: list[dict]) -> None:
        with Session(self.engine) as session:
            for note in notes:
                if not note.get("id") or not note.get("content"):
                    continue
                exists = session.exec(
                    select(HubspotNote).where(
                        HubspotNote.user_id == user_id,
                        HubspotNote.hubspot_note_id == note["id"],
                    )
                ).first()
                if exists:
                    continue
                session.add(HubspotNote(
                    user_id=user_id,
                    contact_id=contact_id,
                    hubspot_note_id=note["id"],
                    content=note["content"],
                ))
                session.add(VectorDocument(
                    user_id=user_id,
                    content=note["content"],
                    source="hubspot_note",
                    source_id=note["id"],
                ))
            session.commit()
