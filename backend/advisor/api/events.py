"""Inbound provider notifications, checked against the user's ongoing instructions."""

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from advisor.api.deps import get_agent, get_current_user, get_sync_service
from advisor.core.errors import ProviderError
from advisor.models.user import User
from advisor.services.agent import Agent
from advisor.services.sync import SyncService

router = APIRouter()
logger = logging.getLogger(__name__)


class ProviderEvent(BaseModel):
    source: Literal["gmail", "calendar", "hubspot"]
    payload: dict[str, Any] = Field(default_factory=dict)
    sync: bool = True


@router.post("/")
async def receive_event(
    event: ProviderEvent,
    user: User = Depends(get_current_user),
    agent: Agent = Depends(get_agent),
    sync: SyncService = Depends(get_sync_service),
):
    synced = None
    if event.sync:
        # Refresh the local store so tools can see whatever the event refers to
        try:
            synced = await sync.sync_source(user.id, event.source)
        except ProviderError as e:
            logger.warning(f"{event.source} sync before event processing failed: {e.message}")

    result = await agent.process_event(user.id, event.source, event.payload)
    if result is None:
        return {"status": "ignored", "synced": synced}
    return {
        "status": "processed",
        "synced": synced,
        "content": result.content,
        "tool_calls": result.tool_call_records(),
    }
