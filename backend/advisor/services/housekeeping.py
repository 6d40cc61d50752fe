"""Background housekeeping: purge abandoned conversations and refresh provider data."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from advisor.core.config import settings
from advisor.core.timeutil import as_utc, utcnow
from advisor.models.conversation import ChatMessage, Conversation
from advisor.models.user import User
from advisor.services.sync import SyncService

logger = logging.getLogger(__name__)


def purge_empty_conversations(
    engine: Engine,
    user_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """Delete conversations with no messages created before the retention window."""
    cutoff = (now or utcnow()) - timedelta(minutes=settings.conversation_retention_minutes)
    deleted = 0
    with Session(engine) as session:
        query = select(Conversation)
        if user_id is not None:
            query = query.where(Conversation.user_id == user_id)
        for conv in session.exec(query).all():
            if as_utc(conv.created_at) >= cutoff:
                continue
            has_messages = session.exec(
                select(ChatMessage.id).where(ChatMessage.conversation_id == conv.id).limit(1)
            ).first()
            if has_messages is None:
                session.delete(conv)
                deleted += 1
        session.commit()
    if deleted:
        logger.info(f"Purged {deleted} empty conversations")
    return deleted


def connected_user_ids(engine: Engine) -> list[int]:
    with Session(engine) as session:
        return list(
            session.exec(
                select(User.id).where(User.google_refresh_token != None)  # noqa: E711
            ).all()
        )


async def housekeeping_loop(
    engine: Engine,
    sync: SyncService | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Runs every ``housekeeping_interval_seconds`` until cancelled."""
    logger.info("Housekeeping started")

    while True:
        try:
            purge_empty_conversations(engine)

            if sync is not None:
                for user_id in connected_user_ids(engine):
                    results = await sync.sync_all(user_id)
                    logger.debug(f"Sync for user {user_id}: {results}")

        except Exception as e:
            logger.error(f"Housekeeping error: {e}")

        await sleep(settings.housekeeping_interval_seconds)
