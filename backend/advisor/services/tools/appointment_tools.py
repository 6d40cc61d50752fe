"""Appointment scheduling as a three-step workflow.

1. Send a meeting request offering concrete slots.
2. Wait for the contact's reply (``waiting_response``).
3. Create the calendar event and confirm.

``process_appointment_response`` resumes step 2 once the user reports the reply.
"""

import logging
from datetime import datetime, time, timedelta
from typing import Any

from sqlmodel import Session

from advisor.core.errors import ProviderError, WorkflowError
from advisor.core.timeutil import as_utc
from advisor.models.task import Task, TaskKind, TaskPriority, TaskStatus
from advisor.services.tasks import WorkflowStep
from advisor.services.tools.base import BaseTool, ToolDefinition, ToolParameter, needs_input
from advisor.services.tools.calendar_tools import CreateCalendarEventTool
from advisor.services.tools.contact_tools import resolve_contact
from advisor.services.tools.email_tools import SendEmailTool
from advisor.services.tools.parsing import parse_datetime, split_address

logger = logging.getLogger(__name__)

DEFAULT_DURATION = 30
MIN_DURATION = 5
MAX_DURATION = 480
SLOT_COUNT = 4
# (day offset in business days, hour)
SLOT_PLAN = [(1, 9), (1, 14), (2, 10), (2, 15)]

RESPONSE_TYPES = ["accepted", "declined", "alternative_time", "unclear"]


def _next_business_day(day: datetime, count: int) -> datetime:
    current = day
    while count:
        current += timedelta(days=1)
        if current.weekday() < 5:
            count -= 1
    return current


def parse_duration(value: Any) -> int | None:
    """Meeting length in minutes, or None when it is not a sane whole number."""
    if value is None or value == "":
        return DEFAULT_DURATION
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    try:
        minutes = int(str(value).strip())
    except ValueError:
        return None
    return minutes if MIN_DURATION <= minutes <= MAX_DURATION else None


def format_slot(start: datetime) -> str:
    return f"{start.strftime('%A, %b %d')} at {start.strftime('%I:%M %p').lstrip('0')}"


def propose_slots(now: datetime, tz, specific: datetime | None = None) -> list[dict[str, str]]:
    """Four concrete candidate slots over the next two business days, ``specific`` first."""
    local_now = now.astimezone(tz)
    starts: list[datetime] = []
    if specific is not None:
        starts.append(specific.astimezone(tz))
    for offset, hour in SLOT_PLAN:
        day = _next_business_day(local_now, offset)
        starts.append(datetime.combine(day.date(), time(hour), tzinfo=tz))
    return [{"label": format_slot(s), "start": s.isoformat()} for s in starts[:SLOT_COUNT]]


def _slot_lines(slots: list[dict[str, str]]) -> str:
    return "\n".join(f"• {slot['label']}" for slot in slots) or "Various times"


class ScheduleAppointmentTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="schedule_appointment",
            description=(
                "Schedule a meeting with a contact: emails them proposed time slots and tracks "
                "the request until they respond."
            ),
            parameters=[
                ToolParameter(name="contactName", type="string", description="Name of the person to meet"),
                ToolParameter(name="duration", type="integer", description="Meeting length in minutes, 5 to 480 (default 30)", required=False),
                ToolParameter(name="description", type="string", description="What the meeting is about", required=False),
                ToolParameter(
                    name="specificTime", type="string",
                    description="A specific requested time in ISO 8601 format, offered first",
                    required=False,
                ),
            ],
        )

    async def _find_email(self, user_id: int, contact_name: str) -> str | None:
        providers = self.ctx.providers
        try:
            for contact in await providers.crm.search_contacts(user_id, contact_name):
                if contact.get("email"):
                    return contact["email"]
        except ProviderError as e:
            logger.info(f"HubSpot search failed ({e.code}), trying email search")

        try:
            for message in await providers.email.search(user_id, contact_name, max_results=5):
                _, address = split_address(message.get("from", ""))
                if address:
                    return address
        except ProviderError as e:
            logger.info(f"Email search failed ({e.code}), trying the local store")

        with Session(self.ctx.engine) as session:
            resolved = resolve_contact(session, user_id, contact_name)
        return resolved.email if resolved else None

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        contact_name = kwargs["contactName"].strip()
        duration = parse_duration(kwargs.get("duration"))
        if duration is None:
            return needs_input(
                ["duration"],
                f"How long should the meeting be? Please give a length between "
                f"{MIN_DURATION} and {MAX_DURATION} minutes.",
            )
        description = kwargs.get("description")

        try:
            return await self._schedule(user_id, contact_name, duration, description, kwargs.get("specificTime"))
        except Exception as e:
            logger.exception(f"Error scheduling appointment with {contact_name}")
            error = e.message if isinstance(e, ProviderError) else str(e)
            await self.record_action(
                user_id,
                TaskKind.schedule_appointment_failed,
                f"Failed: Schedule appointment with {contact_name}",
                description=description or f"Schedule a {duration} minute appointment",
                meta={"contactName": contact_name, "duration": duration},
                error=error,
                priority=TaskPriority.high,
            )
            return {"success": False, "error": f"Failed to schedule appointment: {error}"}

    async def _schedule(
        self,
        user_id: int,
        contact_name: str,
        duration: int,
        description: str | None,
        specific_time: str | None,
    ) -> dict[str, Any]:
        contact_email = await self._find_email(user_id, contact_name)
        if not contact_email:
            return {
                "success": False,
                "message": f"Could not find contact information for {contact_name}. Please provide their email address.",
            }

        specific = None
        if specific_time:
            try:
                specific = parse_datetime(specific_time, self.ctx.tz)
            except ValueError:
                logger.info(f"Ignoring unparseable specificTime {specific_time!r}")
        slots = propose_slots(self.ctx.now(), self.ctx.tz, specific)

        topic = description or "our upcoming collaboration"
        body = (
            f"Hi {contact_name},\n\n"
            f"I hope this email finds you well. I'd like to schedule a {duration}-minute meeting "
            f"with you to discuss {topic}.\n\n"
            f"I have the following time slots available:\n{_slot_lines(slots)}\n\n"
            "Please let me know which time works best for you, or if you'd prefer a different time. "
            "I'm happy to accommodate your schedule.\n\n"
            "Looking forward to hearing from you!\n\nBest regards"
        )
        sent = await SendEmailTool(self.ctx).execute(
            user_id, to=contact_email, subject=f"Meeting Request: {description or 'Appointment'}", body=body
        )
        if not sent.get("success"):
            raise RuntimeError(sent.get("error") or "Meeting request email was not sent")

        workflow = await self.ctx.tasks.create_multi_step_task(
            user_id,
            f"Schedule appointment with {contact_name}",
            description=f"Complete appointment scheduling workflow with {contact_name}",
            meta={
                "workflow": TaskKind.schedule_appointment.value,
                "contactName": contact_name,
                "contactEmail": contact_email,
                "duration": duration,
                "description": description,
            },
            steps=[
                WorkflowStep(
                    title=f"Send initial meeting request to {contact_name}",
                    description="Email sent with available time slots",
                    meta={
                        "stepType": "send_email",
                        "contactEmail": contact_email,
                        "emailSent": True,
                        "messageId": sent.get("messageId"),
                        "availableSlots": slots,
                    },
                ),
                WorkflowStep(
                    title=f"Wait for response from {contact_name}",
                    description=f"Waiting for {contact_name} to respond with their availability",
                    meta={
                        "stepType": "wait_response",
                        "contactName": contact_name,
                        "contactEmail": contact_email,
                        "expectedResponseType": "meeting_acceptance",
                        "duration": duration,
                        "description": description,
                        "availableSlots": slots,
                    },
                ),
                WorkflowStep(
                    title="Create calendar event and send confirmation",
                    description="Final step: create the meeting and confirm with attendee",
                    meta={"stepType": "create_meeting", "duration": duration, "description": description},
                ),
            ],
        )

        first, wait_step = workflow.steps[0], workflow.steps[1]
        await self.ctx.tasks.advance_to_next_step(user_id, first.id)
        await self.ctx.tasks.mark_waiting(user_id, wait_step.id)

        return {
            "success": True,
            "workflowId": workflow.task.id,
            "contactEmail": contact_email,
            "availableSlots": slots,
            "message": (
                f"Meeting request sent to {contact_name} at {contact_email}. I've provided them with "
                f"available time slots and am waiting for their response."
            ),
        }


class ProcessAppointmentResponseTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="process_appointment_response",
            description=(
                "Record a contact's reply to a pending meeting request and continue the scheduling "
                "workflow (book the meeting, acknowledge an alternative, or close it)."
            ),
            parameters=[
                ToolParameter(name="contactName", type="string", description="Who replied"),
                ToolParameter(
                    name="responseType", type="string", description="How they replied",
                    enum=RESPONSE_TYPES,
                ),
                ToolParameter(name="selectedTime", type="string", description="Accepted time in ISO 8601 format", required=False),
                ToolParameter(name="alternativeTime", type="string", description="Alternative time they proposed", required=False),
                ToolParameter(name="responseText", type="string", description="Their reply, verbatim or summarized", required=False),
            ],
        )

    async def _find_waiting_step(self, user_id: int, contact_name: str) -> Task | None:
        wanted = contact_name.lower().strip()
        candidates = [
            task for task in await self.ctx.tasks.list_waiting(user_id)
            if (task.meta or {}).get("stepType") == "wait_response"
            and wanted in ((task.meta or {}).get("contactName") or "").lower()
        ]
        if not candidates:
            return None
        for task in candidates:
            if task.meta["contactName"].lower() == wanted:
                return task
        return max(candidates, key=lambda t: as_utc(t.created_at))

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        contact_name = kwargs["contactName"].strip()
        response_type = kwargs["responseType"]

        step = await self._find_waiting_step(user_id, contact_name)
        if not step:
            return {"success": False, "error": f"No pending appointment request found for {contact_name}"}

        try:
            step = await self.ctx.tasks.resume_waiting_task(user_id, step.id, {
                "responseType": response_type,
                "selectedTime": kwargs.get("selectedTime"),
                "alternativeTime": kwargs.get("alternativeTime"),
                "responseText": kwargs.get("responseText"),
                "processedAt": self.ctx.now().isoformat(),
            })
            handler = {
                "accepted": self._accepted,
                "alternative_time": self._alternative,
                "declined": self._declined,
                "unclear": self._unclear,
            }[response_type]
            return await handler(user_id, step, kwargs)
        except (WorkflowError, ProviderError) as e:
            logger.error(f"Error processing appointment response from {contact_name}: {e}")
            return {"success": False, "error": f"Failed to process appointment response: {e}"}

    async def _duration(self, user_id: int, step: Task) -> int:
        if step.meta.get("duration"):
            return int(step.meta["duration"])
        parent = await self.ctx.tasks.get_task(user_id, step.parent_task_id)
        return int((parent.meta or {}).get("duration") or DEFAULT_DURATION)

    async def _reply_failed(self, user_id: int, step: Task, sent: dict[str, Any], what: str) -> dict[str, Any]:
        error = sent.get("error") or sent.get("message") or "Email was not sent"
        await self.ctx.tasks.mark_waiting(user_id, step.id, {"lastError": error})
        return {
            "success": False,
            "error": f"Could not send the {what} to {step.meta.get('contactName')}: {error}",
        }

    async def _accepted(self, user_id: int, step: Task, kwargs: dict[str, Any]) -> dict[str, Any]:
        name = step.meta.get("contactName")
        selected = kwargs.get("selectedTime")
        try:
            start = parse_datetime(selected, self.ctx.tz) if selected else None
        except ValueError:
            start = None
        if start is None:
            await self.ctx.tasks.mark_waiting(user_id, step.id)
            return needs_input(["selectedTime"], f"Which time did {name} accept? Please give the date and time.")

        end = start + timedelta(minutes=await self._duration(user_id, step))
        created = await CreateCalendarEventTool(self.ctx).execute(
            user_id,
            title=f"Meeting with {name}",
            description=step.meta.get("description") or "Scheduled meeting",
            startTime=start.isoformat(),
            endTime=end.isoformat(),
            attendees=[step.meta["contactEmail"]],
        )
        if not created.get("eventId"):
            await self.ctx.tasks.mark_waiting(user_id, step.id, {"eventCreationFailed": True})
            return {
                "success": False,
                "error": created.get("error") or created.get("message") or "Could not create the calendar event",
            }

        when = format_slot(start.astimezone(self.ctx.tz))
        sent = await SendEmailTool(self.ctx).execute(
            user_id,
            to=step.meta["contactEmail"],
            subject=f"Meeting Confirmed: {when}",
            body=(
                f"Hi {name},\n\nGreat! I've confirmed our meeting for {when}.\n\n"
                "Looking forward to speaking with you!\n\nBest regards"
            ),
        )
        # The event is booked even when the confirmation fails
        confirmed = bool(sent.get("success"))
        if not confirmed:
            await self.ctx.tasks.update_meta(user_id, step.id, {
                "confirmationEmailFailed": True,
                "confirmationError": sent.get("error"),
            })

        advanced = await self.ctx.tasks.advance_to_next_step(user_id, step.id)
        if advanced.next_step:
            await self.ctx.tasks.update_meta(user_id, advanced.next_step.id, {
                "eventId": created["eventId"],
                "startTime": start.isoformat(),
                "endTime": end.isoformat(),
            })
            await self.ctx.tasks.advance_to_next_step(user_id, advanced.next_step.id)

        if confirmed:
            message = f"Meeting confirmed with {name} for {when}. Calendar event created and confirmation sent."
        else:
            message = (
                f"Meeting with {name} for {when} is on the calendar, but the confirmation email "
                f"failed to send: {sent.get('error') or 'unknown error'}"
            )
        return {
            "success": True,
            "eventId": created["eventId"],
            "confirmationSent": confirmed,
            "message": message,
        }

    async def _alternative(self, user_id: int, step: Task, kwargs: dict[str, Any]) -> dict[str, Any]:
        name = step.meta.get("contactName")
        alternative = kwargs.get("alternativeTime")
        if not alternative:
            await self.ctx.tasks.mark_waiting(user_id, step.id)
            return needs_input(["alternativeTime"], f"What time did {name} suggest instead?")

        sent = await SendEmailTool(self.ctx).execute(
            user_id,
            to=step.meta["contactEmail"],
            subject="Re: Meeting Request - Alternative Time",
            body=(
                f"Hi {name},\n\nThank you for getting back to me. I can accommodate {alternative}. "
                "Let me confirm this works on my end and I'll send you a calendar invite.\n\nBest regards"
            ),
        )
        if not sent.get("success"):
            return await self._reply_failed(user_id, step, sent, "alternative time reply")
        await self.ctx.tasks.mark_waiting(user_id, step.id, {
            "alternativeTimeProposed": alternative,
            "awaitingFinalConfirmation": True,
        })
        return {
            "success": True,
            "message": f"Responded to {name}'s alternative time suggestion. Awaiting final confirmation.",
        }

    async def _declined(self, user_id: int, step: Task, kwargs: dict[str, Any]) -> dict[str, Any]:
        name = step.meta.get("contactName")
        outcome = {"declined": True, "declineReason": kwargs.get("responseText")}
        await self.ctx.tasks.transition(user_id, step.id, TaskStatus.completed, outcome)
        await self.ctx.tasks.close_workflow(user_id, step.parent_task_id, outcome)
        return {
            "success": True,
            "message": f"{name} declined the meeting request. Task marked as completed.",
        }

    async def _unclear(self, user_id: int, step: Task, kwargs: dict[str, Any]) -> dict[str, Any]:
        name = step.meta.get("contactName")
        sent = await SendEmailTool(self.ctx).execute(
            user_id,
            to=step.meta["contactEmail"],
            subject="Re: Meeting Request - Clarification Needed",
            body=(
                f"Hi {name},\n\nThank you for your response. Could you please clarify your availability? "
                f"I originally proposed these times:\n\n{_slot_lines(step.meta.get('availableSlots') or [])}\n\n"
                "Please let me know which works best for you, or suggest an alternative.\n\nBest regards"
            ),
        )
        if not sent.get("success"):
            return await self._reply_failed(user_id, step, sent, "clarification email")
        await self.ctx.tasks.mark_waiting(user_id, step.id, {"clarificationRequested": True})
        return {
            "success": True,
            "message": f"Sent clarification email to {name} due to unclear response.",
        }
