"""HubSpot CRM v3 integration - contacts and notes."""

import logging
from typing import Any

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import Session

from advisor.core.config import settings
from advisor.core.errors import ProviderError, with_retry
from advisor.core.rate_limit import RateLimiterRegistry
from advisor.models.user import User
from advisor.services.integrations.base import CrmProvider

logger = logging.getLogger(__name__)

CONTACT_PROPERTIES = ["email", "firstname", "lastname", "company", "phone", "createdate"]


def _contact_from_api(item: dict[str, Any]) -> dict[str, Any]:
    props = item.get("properties") or {}
    return {
        "id": str(item.get("id", "")),
        "email": props.get("email") or "",
        "first_name": props.get("firstname") or "",
        "last_name": props.get("lastname") or "",
        "company": props.get("company") or "",
        "phone": props.get("phone") or "",
        "created_at": props.get("createdate"),
    }


class HubSpotProvider(CrmProvider):
    """HubSpot REST API wrapper, authenticated per user."""

    service_name = "HubSpot"

    def __init__(self, engine: Engine, limiters: RateLimiterRegistry, base_url: str | None = None):
        self._engine = engine
        self._limiter = limiters.get("hubspot", *settings.hubspot_rate_limit)
        self.base_url = (base_url or settings.hubspot_base_url).rstrip("/")

    def _get_headers(self, user_id: int) -> dict[str, str]:
        with Session(self._engine) as session:
            user = session.get(User, user_id)
            token = user.hubspot_access_token if user else None
        if not token:
            raise ProviderError(
                "HubSpot authentication required. Please connect your HubSpot account.",
                self.service_name, code="AUTH_REQUIRED", status_code=401,
            )
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def _request(self, user_id: int, method: str, path: str, **kwargs) -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            await self._limiter.acquire()
            headers = self._get_headers(user_id)
            async with httpx.AsyncClient(base_url=self.base_url, timeout=30.0) as client:
                resp = await client.request(method, path, headers=headers, **kwargs)
                resp.raise_for_status()
                return resp.json() if resp.content else {}

        return await with_retry(
            run,
            self.service_name,
            max_attempts=settings.provider_max_attempts,
            base_delay=settings.provider_base_delay_seconds,
        )

    async def search_contacts(self, user_id: int, query: str) -> list[dict[str, Any]]:
        body: dict[str, Any] = {"properties": CONTACT_PROPERTIES, "limit": 100}
        if query:
            body["query"] = query
        data = await self._request(user_id, "POST", "/crm/v3/objects/contacts/search", json=body)
        return [_contact_from_api(item) for item in data.get("results", [])]

    async def create_contact(
        self,
        user_id: int,
        email: str,
        first_name: str = "",
        last_name: str = "",
        company: str = "",
    ) -> dict[str, Any]:
        properties = {"email": email}
        if first_name:
            properties["firstname"] = first_name
        if last_name:
            properties["lastname"] = last_name
        if company:
            properties["company"] = company

        data = await self._request(
            user_id, "POST", "/crm/v3/objects/contacts", json={"properties": properties}
        )
        logger.info(f"Created HubSpot contact {data.get('id')} for user {user_id}")
        return _contact_from_api(data)

    async def list_notes(self, user_id: int, contact_id: str) -> list[dict[str, Any]]:
        body = {
            "filterGroups": [{
                "filters": [{
                    "propertyName": "associations.contact",
                    "operator": "EQ",
                    "value": contact_id,
                }],
            }],
            "properties": ["hs_note_body", "hs_timestamp"],
            "limit": 100,
        }
        data = await self._request(user_id, "POST", "/crm/v3/objects/notes/search", json=body)
        return [
            {
                "id": str(item.get("id", "")),
                "content": (item.get("properties") or {}).get("hs_note_body") or "",
                "created_at": (item.get("properties") or {}).get("hs_timestamp"),
            }
            for item in data.get("results", [])
        ]
