"""Provider collaborator interfaces: email, calendar and CRM.

Implementations wrap remote APIs and raise ``ProviderError`` on failure. Tools
depend only on these interfaces, so tests can swap in fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any


class EmailProvider(ABC):
    @abstractmethod
    async def search(self, user_id: int, query: str, max_results: int = 10) -> list[dict[str, Any]]:
        """Search the mailbox. Each result has id, subject, from, to, date, snippet, body."""
        ...

    @abstractmethod
    async def send(self, user_id: int, to: str, subject: str, body: str) -> dict[str, Any]:
        """Send a plain-text email. Returns {"message_id", "thread_id"}."""
        ...


class CalendarProvider(ABC):
    @abstractmethod
    async def list_events(
        self,
        user_id: int,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 50,
    ) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def create_event(
        self,
        user_id: int,
        title: str,
        start: datetime,
        end: datetime,
        attendees: list[str] | None = None,
        description: str | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        """Create an event. Returns at least {"event_id"}."""
        ...

    @abstractmethod
    async def delete_event(self, user_id: int, event_id: str) -> None:
        ...

    @abstractmethod
    async def sync(self, user_id: int) -> int:
        """Refresh the local calendar store from the provider. Returns the number of events synced."""
        ...


class CrmProvider(ABC):
    @abstractmethod
    async def search_contacts(self, user_id: int, query: str) -> list[dict[str, Any]]:
        """Each contact has id, email, first_name, last_name, company, phone."""
        ...

    @abstractmethod
    async def create_contact(
        self,
        user_id: int,
        email: str,
        first_name: str = "",
        last_name: str = "",
        company: str = "",
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def list_notes(self, user_id: int, contact_id: str) -> list[dict[str, Any]]:
        ...


@dataclass
class Providers:
    email: EmailProvider
    calendar: CalendarProvider
    crm: CrmProvider
