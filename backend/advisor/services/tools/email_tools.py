"""Email tools - search the synced mailbox, send, and hand off contact emails."""

import logging
from typing import Any

from sqlalchemy import or_
from sqlmodel import Session, select

from advisor.core.errors import ProviderError
from advisor.core.timeutil import as_utc
from advisor.models.records import EmailMessage
from advisor.models.task import TaskKind
from advisor.models.user import User
from advisor.services.tools.base import BaseTool, ToolDefinition, ToolParameter, needs_input
from advisor.services.tools.contact_tools import find_crm_contacts
from advisor.services.tools.parsing import (
    extract_sender_names,
    is_spam,
    parse_email_date_filter,
    split_address,
    wants_promotional,
)

logger = logging.getLogger(__name__)

FETCH_LIMIT = 50
RESULT_LIMIT = 20
VECTOR_LIMIT = 8


class SearchEmailsTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="search_emails",
            description=(
                "Search the user's emails. Understands sender names ('from Greg', 'what Sara wrote') "
                "and relative dates ('yesterday', 'last 2 weeks'). Promotional mail is filtered out "
                "unless the query asks for it."
            ),
            parameters=[
                ToolParameter(name="query", type="string", description="Natural-language email search query"),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        query: str = kwargs["query"]
        date_range = parse_email_date_filter(query, self.ctx.now(), self.ctx.tz)
        names = extract_sender_names(query)

        stmt = select(EmailMessage).where(EmailMessage.user_id == user_id)
        if date_range and date_range.start:
            stmt = stmt.where(EmailMessage.received_at >= as_utc(date_range.start))
        if date_range and date_range.end:
            stmt = stmt.where(EmailMessage.received_at <= as_utc(date_range.end))
        if names:
            stmt = stmt.where(or_(*[EmailMessage.sender.ilike(f"%{name}%") for name in names]))
        elif not date_range:
            stmt = stmt.where(or_(
                EmailMessage.subject.ilike(f"%{query}%"),
                EmailMessage.body.ilike(f"%{query}%"),
                EmailMessage.sender.ilike(f"%{query}%"),
            ))
        stmt = stmt.order_by(EmailMessage.received_at.desc()).limit(FETCH_LIMIT)

        with Session(self.ctx.engine) as session:
            found = list(session.exec(stmt).all())
            user = session.get(User, user_id)
            own_address = (user.email if user else "").lower()

        promotional = wants_promotional(query)
        if promotional:
            emails = found[:RESULT_LIMIT]
            filtered = 0
        else:
            kept = [e for e in found if not is_spam(e.sender, e.subject)]
            emails = kept[:RESULT_LIMIT]
            filtered = len(found) - len(kept)

        vector_hits = await self.ctx.retriever.search(user_id, query, VECTOR_LIMIT, "emails")
        vector_hits = [doc for doc in vector_hits if doc.source == "email"]

        tz = self.ctx.tz
        results = []
        digest = []
        for index, email in enumerate(emails, 1):
            _, sender_address = split_address(email.sender)
            sent = bool(own_address) and sender_address == own_address
            received = as_utc(email.received_at)
            counterpart = (email.recipients[0] if email.recipients else "Unknown") if sent else email.sender
            snippet = " ".join((email.body or "")[:150].split())
            digest.append(
                f"{index}. **{email.subject}**\n"
                f"   {'Sent to' if sent else 'From'}: {counterpart}\n"
                f"   Date: {received.astimezone(tz).strftime('%b %d, %Y')}\n"
                f"   Preview: {snippet}{'...' if snippet else ''}"
            )
            results.append({
                "subject": email.subject,
                "from": email.sender,
                "to": email.recipients,
                "receivedAt": received.isoformat(),
                "snippet": (email.body or "")[:200],
                "direction": "sent" if sent else "received",
            })

        if emails:
            note = f" (filtered out {filtered} promotional emails)" if filtered else ""
            plural = "s" if len(emails) > 1 else ""
            formatted = f"Found {len(emails)} email{plural}{note}:\n\n" + "\n\n".join(digest)
        elif promotional:
            formatted = "No promotional emails found matching your criteria."
        else:
            formatted = (
                "No personal/business emails found matching your criteria. "
                "Use 'promotional emails' if you want to see filtered messages."
            )

        return {
            "success": True,
            "count": len(emails),
            "formattedResponse": formatted,
            "emails": results,
            "filters": {
                "dateRange": date_range.to_dict() if date_range else None,
                "senderNames": names,
            },
            "filteredCount": filtered,
            "vectorMatches": [
                {"content": doc.content[:200], "source": doc.title or "Email", "date": doc.date.isoformat() if doc.date else None}
                for doc in vector_hits
            ] or None,
        }


class SendEmailTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="send_email",
            description="Send an email immediately to an email address.",
            parameters=[
                ToolParameter(name="to", type="string", description="Recipient email address"),
                ToolParameter(name="subject", type="string", description="Email subject"),
                ToolParameter(name="body", type="string", description="Email body (plain text)"),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        to = (kwargs.get("to") or "").strip()
        subject = kwargs.get("subject") or ""
        body = kwargs.get("body") or ""
        if "@" not in to:
            return needs_input(["to"], "Which email address should I send this to?")

        meta = {"to": to, "subject": subject, "body": body}
        try:
            sent = await self.ctx.providers.email.send(user_id, to, subject, body)
        except ProviderError as e:
            logger.error(f"Failed to send email to {to}: {e.message}")
            await self.record_action(
                user_id, TaskKind.send_email, f"Failed: Send email to {to}",
                description=f"Subject: {subject}", meta=meta, error=e.message,
            )
            return {"success": False, "error": f"Failed to send email: {e.message}"}

        await self.record_action(
            user_id, TaskKind.send_email, f"Send email to {to}",
            description=f"Subject: {subject}", meta={**meta, "messageId": sent.get("message_id")},
        )
        return {
            "success": True,
            "messageId": sent.get("message_id"),
            "threadId": sent.get("thread_id"),
            "message": f"Email sent successfully to {to}",
        }


class SendEmailToContactTool(BaseTool):
    """Queues an email to a CRM contact as a pending task instead of sending right away."""

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="send_email_to_contact",
            description="Prepare an email to a HubSpot contact by name. The email is queued as a task for sending.",
            parameters=[
                ToolParameter(name="contactName", type="string", description="Contact name or email"),
                ToolParameter(name="subject", type="string", description="Email subject"),
                ToolParameter(name="body", type="string", description="Email body (plain text)"),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        contact_name = kwargs["contactName"].strip()
        subject = kwargs.get("subject") or ""
        body = kwargs.get("body") or ""

        with Session(self.ctx.engine) as session:
            candidates = [c for c in find_crm_contacts(session, user_id, contact_name) if c.email]
        if not candidates:
            return {"success": False, "error": f'Contact "{contact_name}" not found in HubSpot'}
        contact = candidates[0]
        name = contact.full_name or contact.email

        task = await self.record_action(
            user_id,
            TaskKind.send_email_to_contact,
            f"Send email to {name}",
            description=f"Subject: {subject}",
            meta={
                "contactId": contact.id,
                "contactEmail": contact.email,
                "contactName": name,
                "subject": subject,
                "body": body,
            },
            status="pending_send",
        )
        return {
            "success": True,
            "task": task.to_dict(),
            "message": f"Created task to send email to {name} ({contact.email})",
        }
