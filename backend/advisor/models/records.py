"""Locally synced provider data (Gmail, Calendar, HubSpot) and the retrieval corpus.

Tables are filled by the provider sync (see services/sync.py); tools only read
them, apart from calendar re-syncs and locally created contacts awaiting
HubSpot sync.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class EmailMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    gmail_id: str = Field(index=True)
    thread_id: Optional[str] = None
    subject: str = ""
    sender: str = ""  # raw From header, e.g. 'Sara Smith <sara@example.com>'
    recipients: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    body: str = ""
    received_at: datetime = Field(index=True)


class CalendarEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    google_event_id: str = Field(index=True)
    title: str = ""
    description: Optional[str] = None
    start_time: datetime = Field(index=True)
    end_time: datetime
    attendees: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    location: Optional[str] = None


class HubspotContact(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    hubspot_id: str
    email: Optional[str] = Field(default=None, index=True)
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    phone: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class HubspotNote(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    contact_id: int = Field(foreign_key="hubspotcontact.id")
    hubspot_note_id: str
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class VectorDocument(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    content: str
    source: str  # "email" | "hubspot_contact" | "hubspot_note" | "calendar"
    source_id: Optional[str] = None
    title: Optional[str] = None
    date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProviderSyncState(SQLModel, table=True):
    """Per (user, service) sync bookkeeping, kept in the database rather than process memory."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    service: str = Field(index=True)  # "gmail" | "calendar" | "hubspot"
    failure_count: int = Field(default=0)
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
