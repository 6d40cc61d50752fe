"""CRM contact tools - search, list, create - plus contact resolution shared with other tools."""

import logging
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_
from sqlmodel import Session, select

from advisor.core.timeutil import as_utc
from advisor.models.records import EmailMessage, HubspotContact, HubspotNote
from advisor.models.task import TaskKind
from advisor.models.user import User
from advisor.services.tools.base import BaseTool, ToolDefinition, ToolParameter, needs_input
from advisor.services.tools.parsing import sender_display_name, split_address

logger = logging.getLogger(__name__)


@dataclass
class ResolvedContact:
    name: str
    email: str
    source: str  # "hubspot" | "email"
    contact_id: int | None = None


def _like(value: str) -> str:
    return f"%{value}%"


def find_crm_contacts(session: Session, user_id: int, query: str, limit: int = 15) -> list[HubspotContact]:
    """Field-substring OR match across name/email/company/phone, plus per-token name matches."""
    terms = [t for t in query.lower().split() if len(t) > 1]
    full_name = func.lower(HubspotContact.first_name + " " + HubspotContact.last_name)
    conditions = [
        HubspotContact.first_name.ilike(_like(query)),
        HubspotContact.last_name.ilike(_like(query)),
        HubspotContact.email.ilike(_like(query)),
        HubspotContact.company.ilike(_like(query)),
        HubspotContact.phone.ilike(_like(query)),
        full_name.like(_like(query.lower())),
    ]
    for term in terms:
        conditions.append(HubspotContact.first_name.ilike(_like(term)))
        conditions.append(HubspotContact.last_name.ilike(_like(term)))

    return list(
        session.exec(
            select(HubspotContact)
            .where(HubspotContact.user_id == user_id, or_(*conditions))
            .order_by(HubspotContact.created_at.desc())
            .limit(limit)
        ).all()
    )


def _best_crm_match(contacts: list[HubspotContact], name: str) -> HubspotContact | None:
    """Prefer an exact full-name or email match, then the contact matching the most name tokens."""
    wanted = name.lower().strip()
    tokens = set(wanted.split())
    with_email = [c for c in contacts if c.email]
    for contact in with_email:
        if contact.full_name.lower() == wanted or contact.email.lower() == wanted:
            return contact
    scored = sorted(
        with_email,
        key=lambda c: len(tokens & set(c.full_name.lower().split())),
        reverse=True,
    )
    return scored[0] if scored else None


def resolve_contact(session: Session, user_id: int, name: str) -> ResolvedContact | None:
    """Resolve a person's email address: CRM first, then senders in the local mailbox."""
    match = _best_crm_match(find_crm_contacts(session, user_id, name), name)
    if match:
        return ResolvedContact(
            name=match.full_name or name, email=match.email, source="hubspot", contact_id=match.id
        )

    user = session.get(User, user_id)
    own_address = (user.email if user else "").lower()
    emails = session.exec(
        select(EmailMessage)
        .where(EmailMessage.user_id == user_id, EmailMessage.sender.ilike(_like(name)))
        .order_by(EmailMessage.received_at.desc())
        .limit(10)
    ).all()
    for email in emails:
        _, address = split_address(email.sender)
        if address and address != own_address:
            return ResolvedContact(name=sender_display_name(email.sender), email=address, source="email")
    return None


class SearchContactsTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="search_contacts",
            description=(
                "Search the user's contacts by name, email, company, or phone. Covers HubSpot CRM "
                "contacts, people found only in email history, and related CRM notes."
            ),
            parameters=[
                ToolParameter(name="query", type="string", description="Name, email, company or phone to search for"),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        query = kwargs["query"].strip()

        with Session(self.ctx.engine) as session:
            contacts = find_crm_contacts(session, user_id, query)
            emails = session.exec(
                select(EmailMessage)
                .where(
                    EmailMessage.user_id == user_id,
                    or_(
                        EmailMessage.sender.ilike(_like(query)),
                        EmailMessage.body.ilike(_like(query)),
                        EmailMessage.subject.ilike(_like(query)),
                    ),
                )
                .order_by(EmailMessage.received_at.desc())
                .limit(10)
            ).all()
            notes = session.exec(
                select(HubspotNote, HubspotContact)
                .join(HubspotContact, HubspotNote.contact_id == HubspotContact.id)
                .where(HubspotNote.user_id == user_id, HubspotNote.content.ilike(_like(query)))
                .order_by(HubspotNote.created_at.desc())
                .limit(5)
            ).all()

        crm_addresses = {c.email.lower() for c in contacts if c.email}
        email_contacts: list[dict[str, Any]] = []
        for email in emails:
            _, address = split_address(email.sender)
            if not address or address in crm_addresses:
                continue
            if any(c["email"] == address for c in email_contacts):
                continue
            email_contacts.append({
                "name": sender_display_name(email.sender),
                "email": address,
                "source": "email",
                "lastContact": as_utc(email.received_at).isoformat(),
                "lastSubject": email.subject,
            })
        email_contacts = email_contacts[:5]

        crm = [
            {
                "name": c.full_name or "Unknown",
                "email": c.email,
                "phone": c.phone,
                "company": c.company,
                "hubspotId": c.hubspot_id,
                "source": "hubspot",
            }
            for c in contacts
        ]

        lines: list[str] = []
        if crm:
            lines.append(f"**HubSpot Contacts ({len(crm)}):**")
            for i, c in enumerate(crm, 1):
                company = f" at {c['company']}" if c["company"] else ""
                phone = f" ({c['phone']})" if c["phone"] else ""
                lines.append(f"{i}. {c['name']}{company}\n   Email: {c['email'] or 'N/A'}{phone}")
        if email_contacts:
            if lines:
                lines.append("")
            lines.append(f"**Email Contacts ({len(email_contacts)}):**")
            for i, c in enumerate(email_contacts, 1):
                last = c["lastContact"][:10]
                lines.append(f"{i}. {c['name']}\n   Email: {c['email']}\n   Last contact: {last} - \"{c['lastSubject']}\"")
        if notes:
            if lines:
                lines.append("")
            lines.append(f"**Related Notes ({len(notes)}):**")
            for i, (note, contact) in enumerate(notes, 1):
                snippet = note.content[:100] + ("..." if len(note.content) > 100 else "")
                lines.append(f"{i}. Note about {contact.full_name}:\n   \"{snippet}\"")

        total = len(crm) + len(email_contacts)
        return {
            "success": True,
            "count": total,
            "formattedResponse": (
                "\n".join(lines) if total
                else f'No contacts found matching "{query}". Try searching by name, email, company, or phone number.'
            ),
            "contacts": crm,
            "emailContacts": email_contacts,
            "relatedNotes": [
                {
                    "content": note.content[:200],
                    "contactName": contact.full_name,
                    "contactEmail": contact.email,
                    "date": as_utc(note.created_at).isoformat(),
                }
                for note, contact in notes
            ],
        }


class ListAllContactsTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="list_all_contacts",
            description="List all CRM contacts grouped by company.",
            parameters=[
                ToolParameter(
                    name="limit", type="integer",
                    description="Maximum number of contacts to list (default 50).",
                    required=False,
                ),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        limit = int(kwargs.get("limit") or 50)
        with Session(self.ctx.engine) as session:
            contacts = session.exec(
                select(HubspotContact)
                .where(HubspotContact.user_id == user_id)
                .order_by(HubspotContact.created_at.desc())
                .limit(limit)
            ).all()

        groups: dict[str, list[HubspotContact]] = {}
        for contact in contacts:
            groups.setdefault(contact.company or "No Company", []).append(contact)

        lines = [f"**Total Contacts: {len(contacts)}**\n"]
        for company, members in groups.items():
            lines.append(f"**{company} ({len(members)})**:")
            for i, contact in enumerate(members, 1):
                email = f" - {contact.email}" if contact.email else ""
                phone = f" - {contact.phone}" if contact.phone else ""
                lines.append(f"  {i}. {contact.full_name or 'Unknown'}{email}{phone}")
            lines.append("")

        return {
            "success": True,
            "count": len(contacts),
            "formattedResponse": "\n".join(lines).rstrip(),
            "contacts": [
                {
                    "name": c.full_name,
                    "email": c.email,
                    "phone": c.phone,
                    "company": c.company,
                    "hubspotId": c.hubspot_id,
                }
                for c in contacts
            ],
            "summary": {
                "totalContacts": len(contacts),
                "companies": len(groups),
                "contactsByCompany": [
                    {"company": company, "count": len(members)} for company, members in groups.items()
                ],
            },
        }


class CreateHubspotContactTool(BaseTool):
    """Creates the contact locally; the CRM copy is pushed by the next HubSpot sync."""

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="create_hubspot_contact",
            description="Create a new contact in HubSpot CRM, optionally with a note.",
            parameters=[
                ToolParameter(name="email", type="string", description="Contact email address"),
                ToolParameter(name="firstName", type="string", description="First name", required=False),
                ToolParameter(name="lastName", type="string", description="Last name", required=False),
                ToolParameter(name="company", type="string", description="Company name", required=False),
                ToolParameter(name="note", type="string", description="A note to attach to the contact", required=False),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        email = (kwargs.get("email") or "").strip()
        if "@" not in email:
            return needs_input(["email"], "What is the contact's email address?")
        first_name = kwargs.get("firstName") or ""
        last_name = kwargs.get("lastName") or ""
        company = kwargs.get("company") or ""
        note = kwargs.get("note")

        with Session(self.ctx.engine) as session:
            existing = session.exec(
                select(HubspotContact).where(
                    HubspotContact.user_id == user_id,
                    func.lower(HubspotContact.email) == email.lower(),
                )
            ).first()
            if existing:
                return {"success": False, "error": f"Contact with email {email} already exists"}

            stamp = int(time.time() * 1000)
            contact = HubspotContact(
                user_id=user_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                company=company,
                hubspot_id=f"temp_{stamp}",
            )
            session.add(contact)
            session.flush()
            if note:
                session.add(HubspotNote(
                    user_id=user_id,
                    contact_id=contact.id,
                    hubspot_note_id=f"temp_note_{stamp}",
                    content=note,
                ))
            session.commit()
            session.refresh(contact)
            contact_data = {
                "id": contact.id,
                "email": contact.email,
                "firstName": contact.first_name,
                "lastName": contact.last_name,
                "company": contact.company,
                "hubspotId": contact.hubspot_id,
            }

        task = await self.record_action(
            user_id,
            TaskKind.create_hubspot_contact,
            f"Create HubSpot contact for {email}",
            description=f"Create contact: {first_name} {last_name} at {company}".strip(),
            meta={
                "contactId": contact_data["id"],
                "email": email,
                "firstName": first_name,
                "lastName": last_name,
                "company": company,
                "note": note,
            },
            status="pending_hubspot_sync",
        )
        logger.info(f"Created local contact {contact_data['id']} for {email}, awaiting HubSpot sync")
        return {
            "success": True,
            "contact": contact_data,
            "task": task.to_dict(),
            "message": f"Created local contact for {email} and scheduled HubSpot sync",
        }
