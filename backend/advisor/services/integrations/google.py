"""Google API integration - Gmail and Calendar.

Each user's OAuth tokens live on their ``User`` row; they are refreshed with
google-auth when expired and written back. Every call is rate limited per
service and retried on transient failures.
"""

import base64
import logging
from datetime import datetime, timedelta
from email.mime.text import MIMEText
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from advisor.core.config import settings
from advisor.core.errors import ProviderError, with_retry
from advisor.core.rate_limit import RateLimiter, RateLimiterRegistry
from advisor.core.timeutil import as_utc, utcnow
from advisor.models.records import CalendarEvent
from advisor.models.user import User
from advisor.services.integrations.base import CalendarProvider, EmailProvider
from advisor.services.sync import record_sync_state

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/gmail.modify",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class GoogleService:
    """Per-user Google credentials backed by the user table."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def _get_credentials(self, user_id: int) -> Credentials:
        with Session(self._engine) as session:
            user = session.get(User, user_id)
            if not user or not user.google_access_token:
                raise ProviderError(
                    "Google authentication required. Please connect your Google account.",
                    "Google", code="AUTH_REQUIRED", status_code=401,
                )
            creds = Credentials(
                token=user.google_access_token,
                refresh_token=user.google_refresh_token,
                token_uri=TOKEN_URI,
                client_id=settings.google_client_id or None,
                client_secret=settings.google_client_secret or None,
                scopes=SCOPES,
            )

            if creds.expired and creds.refresh_token:
                creds.refresh(Request())
                # Save refreshed token back to the user row
                user.google_access_token = creds.token
                session.add(user)
                session.commit()

        return creds

    async def _get_headers(self, user_id: int) -> dict[str, str]:
        """Get authorization headers with a valid access token."""
        creds = self._get_credentials(user_id)
        return {
            "Authorization": f"Bearer {creds.token}",
            "Content-Type": "application/json",
        }


class _GoogleClient:
    service_name = "Google"

    def __init__(self, google: GoogleService, limiter: RateLimiter):
        self._google = google
        self._limiter = limiter

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        async def limited() -> T:
            await self._limiter.acquire()
            return await operation()

        return await with_retry(
            limited,
            self.service_name,
            max_attempts=settings.provider_max_attempts,
            base_delay=settings.provider_base_delay_seconds,
        )


def _decode_body(payload: dict[str, Any]) -> str:
    data = (payload.get("body") or {}).get("data")
    if data:
        return base64.urlsafe_b64decode(data + "===").decode("utf-8", errors="replace")
    for part in payload.get("parts") or []:
        if part.get("mimeType") == "text/plain" and (part.get("body") or {}).get("data"):
            return _decode_body(part)
    for part in payload.get("parts") or []:
        nested = _decode_body(part)
        if nested:
            return nested
    return ""


class GmailProvider(_GoogleClient, EmailProvider):
    """Gmail API wrapper."""

    BASE_URL = "https://gmail.googleapis.com/gmail/v1"
    service_name = "Gmail"

    def __init__(self, google: GoogleService, limiters: RateLimiterRegistry):
        super().__init__(google, limiters.get("gmail", *settings.gmail_rate_limit))

    async def search(self, user_id: int, query: str, max_results: int = 10) -> list[dict[str, Any]]:
        async def run() -> list[dict[str, Any]]:
            headers = await self._google._get_headers(user_id)
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    f"{self.BASE_URL}/users/me/messages",
                    headers=headers,
                    params={"q": query, "maxResults": max_results},
                )
                resp.raise_for_status()
                messages = resp.json().get("messages", [])

                detailed = []
                for msg in messages[:max_results]:
                    detailed.append(await self._get_message(client, headers, msg["id"]))
                return detailed

        return await self._call(run)

    async def _get_message(
        self, client: httpx.AsyncClient, headers: dict, msg_id: str
    ) -> dict[str, Any]:
        resp = await client.get(
            f"{self.BASE_URL}/users/me/messages/{msg_id}",
            headers=headers,
            params={"format": "full"},
        )
        resp.raise_for_status()
        data = resp.json()
        payload = data.get("payload", {})

        result: dict[str, Any] = {
            "id": msg_id,
            "thread_id": data.get("threadId"),
            "snippet": data.get("snippet", ""),
            "subject": "",
            "from": "",
            "to": "",
            "date": "",
        }
        for header in payload.get("headers", []):
            name = header["name"].lower()
            if name in ("subject", "from", "to", "date"):
                result[name] = header["value"]

        body = _decode_body(payload)
        result["body"] = body[:500] + ("..." if len(body) > 500 else "")
        return result

    async def send(self, user_id: int, to: str, subject: str, body: str) -> dict[str, Any]:
        message = MIMEText(body)
        message["to"] = to
        message["subject"] = subject
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode()

        async def run() -> dict[str, Any]:
            headers = await self._google._get_headers(user_id)
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    f"{self.BASE_URL}/users/me/messages/send",
                    headers=headers,
                    json={"raw": raw},
                )
                resp.raise_for_status()
                data = resp.json()
                return {"message_id": data.get("id"), "thread_id": data.get("threadId")}

        return await self._call(run)


def _parse_event_time(value: dict[str, Any]) -> datetime | None:
    raw = value.get("dateTime") or value.get("date")
    if not raw:
        return None
    return as_utc(datetime.fromisoformat(raw))


class GoogleCalendarProvider(_GoogleClient, CalendarProvider):
    """Google Calendar API wrapper."""

    BASE_URL = "https://www.googleapis.com/calendar/v3"
    service_name = "Calendar"

    SYNC_LOOKBACK = timedelta(days=7)
    SYNC_LOOKAHEAD = timedelta(days=60)

    def __init__(
        self,
        google: GoogleService,
        limiters: RateLimiterRegistry,
        engine: Engine,
        calendar_id: str = "primary",
    ):
        super().__init__(google, limiters.get("calendar", *settings.calendar_rate_limit))
        self._engine = engine
        self._calendar_id = calendar_id

    async def list_events(
        self,
        user_id: int,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 50,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "maxResults": max_results,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if time_min:
            params["timeMin"] = as_utc(time_min).isoformat()
        if time_max:
            params["timeMax"] = as_utc(time_max).isoformat()

        async def run() -> list[dict[str, Any]]:
            headers = await self._google._get_headers(user_id)
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    f"{self.BASE_URL}/calendars/{self._calendar_id}/events",
                    headers=headers,
                    params=params,
                )
                resp.raise_for_status()
                return resp.json().get("items", [])

        return await self._call(run)

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
        body: dict[str, Any] = {
            "summary": title,
            "start": {"dateTime": as_utc(start).isoformat()},
            "end": {"dateTime": as_utc(end).isoformat()},
        }
        if description:
            body["description"] = description
        if location:
            body["location"] = location
        if attendees:
            body["attendees"] = [{"email": a} for a in attendees]

        async def run() -> dict[str, Any]:
            headers = await self._google._get_headers(user_id)
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    f"{self.BASE_URL}/calendars/{self._calendar_id}/events",
                    headers=headers,
                    params={"sendUpdates": "all"},
                    json=body,
                )
                resp.raise_for_status()
                data = resp.json()
                return {"event_id": data.get("id"), "html_link": data.get("htmlLink"), "event": data}

        return await self._call(run)

    async def delete_event(self, user_id: int, event_id: str) -> None:
        async def run() -> None:
            headers = await self._google._get_headers(user_id)
            async with httpx.AsyncClient() as client:
                resp = await client.delete(
                    f"{self.BASE_URL}/calendars/{self._calendar_id}/events/{event_id}",
                    headers=headers,
                )
                resp.raise_for_status()

        await self._call(run)

    async def sync(self, user_id: int) -> int:
        now = utcnow()
        try:
            items = await self.list_events(
                user_id,
                time_min=now - self.SYNC_LOOKBACK,
                time_max=now + self.SYNC_LOOKAHEAD,
                max_results=250,
            )
        except ProviderError as e:
            record_sync_state(self._engine, user_id, "calendar", e.message)
            raise

        synced = 0
        with Session(self._engine) as session:
            for item in items:
                start = _parse_event_time(item.get("start", {}))
                end = _parse_event_time(item.get("end", {}))
                if not item.get("id") or start is None or end is None:
                    continue
                event = session.exec(
                    select(CalendarEvent).where(
                        CalendarEvent.user_id == user_id,
                        CalendarEvent.google_event_id == item["id"],
                    )
                ).first() or CalendarEvent(user_id=user_id, google_event_id=item["id"], start_time=start, end_time=end)
                event.title = item.get("summary", "(No title)")
                event.description = item.get("description")
                event.location = item.get("location")
                event.start_time = start
                event.end_time = end
                event.attendees = [a["email"] for a in item.get("attendees", []) if a.get("email")]
                session.add(event)
                synced += 1
            session.commit()

        record_sync_state(self._engine, user_id, "calendar")
        logger.info(f"Synced {synced} calendar events for user {user_id}")
        return synced
