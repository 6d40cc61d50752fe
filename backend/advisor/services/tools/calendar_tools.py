"""Calendar tools - search, create and delete events."""

import logging
from typing import Any

from sqlalchemy import or_
from sqlmodel import Session, select

from advisor.core.errors import ProviderError
from advisor.core.timeutil import as_utc
from advisor.models.records import CalendarEvent, HubspotContact
from advisor.models.task import TaskKind
from advisor.models.user import User
from advisor.services.tools.base import BaseTool, ToolDefinition, ToolParameter, needs_input
from advisor.services.tools.parsing import (
    DateRange,
    is_general_calendar_query,
    normalize_addresses,
    parse_boundary,
    parse_calendar_range,
    parse_datetime,
)

logger = logging.getLogger(__name__)

PERSONAL_EVENT_KEYWORDS = ("personal", "reminder", "break", "lunch", "block", "focus", "work")
SEARCH_LIMIT = 20

_DATE_PARAMS = [
    ToolParameter(
        name="startDate", type="string",
        description="Range start: ISO 8601 date/time, 'today' or 'tomorrow'.",
        required=False,
    ),
    ToolParameter(
        name="endDate", type="string",
        description="Range end: ISO 8601 date/time, 'today' or 'tomorrow'.",
        required=False,
    ),
]


def _time_label(value) -> str:
    return value.strftime("%I:%M %p").lstrip("0")


class CalendarSearch:
    """Resolves a calendar query to local events. Shared by search and delete."""

    def __init__(self, tool: BaseTool):
        self.ctx = tool.ctx

    def resolve_range(self, query: str, start: str | None, end: str | None) -> tuple[DateRange | None, bool, bool]:
        """Returns (range, explicit, recognized_phrase). Raises ValueError on unparseable arguments."""
        now, tz = self.ctx.now(), self.ctx.tz
        if start or end:
            return DateRange(
                parse_boundary(start, now, tz) if start else None,
                parse_boundary(end, now, tz, end=True) if end else None,
            ), True, False
        date_range, recognized = parse_calendar_range(query, now, tz)
        return date_range, False, recognized

    def find(self, user_id: int, query: str, start: str | None = None, end: str | None = None):
        date_range, explicit, recognized = self.resolve_range(query, start, end)

        stmt = select(CalendarEvent).where(CalendarEvent.user_id == user_id)
        if date_range and date_range.start:
            stmt = stmt.where(CalendarEvent.start_time >= as_utc(date_range.start))
        if date_range and date_range.end:
            column = CalendarEvent.end_time if explicit else CalendarEvent.start_time
            stmt = stmt.where(column <= as_utc(date_range.end))
        if not is_general_calendar_query(query, recognized):
            pattern = f"%{query}%"
            stmt = stmt.where(or_(
                CalendarEvent.title.ilike(pattern),
                CalendarEvent.description.ilike(pattern),
                CalendarEvent.location.ilike(pattern),
            ))
        stmt = stmt.order_by(CalendarEvent.start_time).limit(SEARCH_LIMIT)

        with Session(self.ctx.engine) as session:
            events = list(session.exec(stmt).all())
            user = session.get(User, user_id)
            attendee_emails = {a for e in events for a in e.attendees or []}
            contacts = {}
            if attendee_emails:
                for contact in session.exec(
                    select(HubspotContact).where(
                        HubspotContact.user_id == user_id,
                        HubspotContact.email.in_(attendee_emails),
                    )
                ).all():
                    contacts[contact.email] = contact
        return events, contacts, (user.email if user else "")


class SearchCalendarTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="search_calendar",
            description=(
                "Search calendar events. Use for questions about meetings, schedule, or availability "
                "('what's on today', 'meetings this week', 'portfolio review')."
            ),
            parameters=[
                ToolParameter(name="query", type="string", description="What to look for, or a date phrase"),
                *_DATE_PARAMS,
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        try:
            events, contacts, own_email = CalendarSearch(self).find(
                user_id, kwargs["query"], kwargs.get("startDate"), kwargs.get("endDate")
            )
        except ValueError as e:
            return {
                "success": False,
                "error": f"Invalid date format. StartDate: {kwargs.get('startDate')}, EndDate: {kwargs.get('endDate')}",
                "details": str(e),
            }
        return self.render(events, contacts, own_email)

    def render(self, events: list[CalendarEvent], contacts: dict, own_email: str) -> dict[str, Any]:
        tz = self.ctx.tz
        lines = []
        blocks = []
        structured = []
        for event in events:
            start = as_utc(event.start_time).astimezone(tz)
            end = as_utc(event.end_time).astimezone(tz)
            others = [a for a in event.attendees or [] if a != own_email]

            text = f"• {event.title}\n  Time: {start.strftime('%a %b %d, %Y')} {_time_label(start)}"
            if event.location:
                text += f"\n  Location: {event.location}"
            if others:
                text += f"\n  Attendees: {', '.join(others)}"
            if event.description:
                text += f"\n  Description: {event.description}"
            lines.append(text)

            attendees = []
            for address in others:
                contact = contacts.get(address)
                attendees.append({
                    "name": contact.full_name if contact and contact.full_name else address.split("@")[0],
                    "email": address,
                    "avatar": None,
                })
            blocks.append({
                "id": event.id,
                "title": event.title,
                "date": start.strftime("%a, %b %d"),
                "timeRange": f"{_time_label(start)} - {_time_label(end)}",
                "attendees": attendees,
                "location": event.location,
                "description": event.description,
            })
            structured.append({
                "id": event.id,
                "googleEventId": event.google_event_id,
                "title": event.title,
                "description": event.description,
                "startTime": as_utc(event.start_time).isoformat(),
                "endTime": as_utc(event.end_time).isoformat(),
                "attendees": event.attendees or [],
                "location": event.location,
            })

        plural = "s" if len(events) > 1 else ""
        return {
            "success": True,
            "count": len(events),
            "formattedResponse": (
                f"Found {len(events)} calendar event{plural}:\n\n" + "\n\n".join(lines)
                if events else "No matching calendar events found."
            ),
            "meetingBlocks": blocks,
            "events": structured,
        }


class CreateCalendarEventTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="create_calendar_event",
            description=(
                "Create a calendar event. Only call this with an explicit title, start and end time, "
                "and attendees (attendees may be omitted for personal blocks like lunch or focus time)."
            ),
            parameters=[
                ToolParameter(name="title", type="string", description="Event title"),
                ToolParameter(name="startTime", type="string", description="Start time in ISO 8601 format"),
                ToolParameter(name="endTime", type="string", description="End time in ISO 8601 format"),
                ToolParameter(name="description", type="string", description="Event description", required=False),
                ToolParameter(
                    name="attendees", type="array", items="string",
                    description="Attendee email addresses", required=False,
                ),
                ToolParameter(name="location", type="string", description="Event location", required=False),
            ],
        )

    def validate(self, kwargs: dict[str, Any]) -> dict[str, Any] | None:
        title = (kwargs.get("title") or "").strip()
        if len(title) < 3:
            return {
                **needs_input(["title"], "I need a proper meeting title to create this event. What should this meeting be about?"),
                "error": "Please provide a meaningful meeting title/subject.",
            }

        supplied = kwargs.get("attendees")
        if supplied and not normalize_addresses(supplied):
            return {
                **needs_input(["attendees"], "I couldn't find a valid email address among the attendees. Who should be invited?"),
                "error": "Attendees must be email addresses.",
            }
        if not supplied:
            text = f"{title} {kwargs.get('description') or ''}".lower()
            if not any(keyword in text for keyword in PERSONAL_EVENT_KEYWORDS):
                return {
                    **needs_input(["attendees"], "Who should be invited to this meeting? Please provide email addresses of attendees."),
                    "error": "Please specify who should attend this meeting.",
                }

        try:
            start = parse_datetime(kwargs.get("startTime"), self.ctx.tz)
            end = parse_datetime(kwargs.get("endTime"), self.ctx.tz)
        except ValueError:
            return {
                **needs_input(["startTime", "endTime"], "When should this meeting take place? Please specify the date and time."),
                "error": "Invalid date/time format. Please provide valid start and end times.",
            }

        if end <= start:
            return {
                **needs_input(["endTime"], "Please provide a valid end time that's after the start time."),
                "error": "End time must be after start time.",
            }
        return None

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        invalid = self.validate(kwargs)
        if invalid:
            return invalid

        title = kwargs["title"].strip()
        start = parse_datetime(kwargs["startTime"], self.ctx.tz)
        end = parse_datetime(kwargs["endTime"], self.ctx.tz)
        attendees = normalize_addresses(kwargs.get("attendees"))
        description = kwargs.get("description")
        location = kwargs.get("location")
        meta = {
            "eventTitle": title,
            "eventDescription": description,
            "startTime": start.isoformat(),
            "endTime": end.isoformat(),
            "attendees": attendees,
            "location": location,
        }
        when = start.astimezone(self.ctx.tz).strftime("%a %b %d, %Y") + " " + _time_label(start.astimezone(self.ctx.tz))

        calendar = self.ctx.providers.calendar
        try:
            created = await calendar.create_event(
                user_id, title, start, end,
                attendees=attendees, description=description, location=location,
            )
        except ProviderError as e:
            logger.error(f"Calendar create failed for '{title}': {e.message}")
            task = await self.record_action(
                user_id, TaskKind.create_calendar_event, f"Create calendar event: {title}",
                description=f"Event from {meta['startTime']} to {meta['endTime']}",
                meta={**meta, "lastError": e.message}, status="pending_creation",
            )
            return {
                "success": True,
                "task": task.to_dict(),
                "message": f"Created task to schedule \"{title}\" for {when} (calendar unavailable: {e.message})",
            }

        await self.record_action(
            user_id, TaskKind.create_calendar_event, f"Created calendar event: {title}",
            meta={**meta, "eventId": created.get("event_id")},
        )
        await _resync(calendar, user_id)
        return {
            "success": True,
            "eventId": created.get("event_id"),
            "event": {"title": title, "startTime": meta["startTime"], "endTime": meta["endTime"], "attendees": attendees},
            "message": f"Successfully scheduled \"{title}\" for {when}",
        }


class DeleteCalendarEventsTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="delete_calendar_events",
            description="Delete calendar events matching a query and/or date range.",
            parameters=[
                ToolParameter(name="query", type="string", description="Which events to delete, or a date phrase"),
                *_DATE_PARAMS,
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        try:
            events, _, _ = CalendarSearch(self).find(
                user_id, kwargs["query"], kwargs.get("startDate"), kwargs.get("endDate")
            )
        except ValueError as e:
            return {"success": False, "error": f"Invalid date format: {e}"}

        if not events:
            return {"success": True, "message": "No matching events found to delete.", "deletedCount": 0}

        calendar = self.ctx.providers.calendar
        deleted: list[str] = []
        errors: list[str] = []
        for event in events:
            try:
                await calendar.delete_event(user_id, event.google_event_id)
            except ProviderError as e:
                logger.warning(f"Failed to delete event '{event.title}': {e.message}")
                errors.append(f"Failed to delete \"{event.title}\": {e.message}")
                continue
            with Session(self.ctx.engine) as session:
                row = session.get(CalendarEvent, event.id)
                if row:
                    session.delete(row)
                    session.commit()
            deleted.append(event.title)

        count = len(deleted)
        await self.record_action(
            user_id, TaskKind.delete_calendar_events,
            f"Delete calendar events: {kwargs['query']}",
            meta={"query": kwargs["query"], "deleted": deleted, "deletedCount": count, "errors": errors},
            error="; ".join(errors) if not count else None,
        )
        if count:
            await _resync(calendar, user_id)

        plural = "s" if count > 1 else ""
        message = f"Successfully deleted {count} event{plural}." if count else "No events were deleted."
        if errors:
            message += f"\nErrors: {', '.join(errors)}"
        return {
            "success": count > 0,
            "message": message,
            "deletedCount": count,
            "errors": errors or None,
        }


async def _resync(calendar, user_id: int) -> None:
    try:
        await calendar.sync(user_id)
    except ProviderError as e:
        logger.error(f"Calendar re-sync failed for user {user_id}: {e.message}")
