"""REST API for conversation history management."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from advisor.api.deps import get_current_user, get_engine
from advisor.core.database import get_session
from advisor.models.conversation import ChatMessage, Conversation
from advisor.models.user import User
from advisor.services.housekeeping import purge_empty_conversations

router = APIRouter()
logger = logging.getLogger(__name__)


class ConversationCreate(BaseModel):
    title: str | None = None


def _owned(session: Session, user: User, conversation_id: int) -> Conversation:
    conv = session.get(Conversation, conversation_id)
    if not conv or conv.user_id != user.id:
        logger.debug(f"Conversation {conversation_id} not found")
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


@router.get("/")
async def list_conversations(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    engine=Depends(get_engine),
):
    purge_empty_conversations(engine, user_id=user.id)

    conversations = session.exec(
        select(Conversation)
        .where(Conversation.user_id == user.id)
        .order_by(Conversation.updated_at.desc())  # type: ignore
    ).all()
    result = []
    for c in conversations:
        last = session.exec(
            select(ChatMessage)
            .where(ChatMessage.conversation_id == c.id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())  # type: ignore
        ).first()
        result.append({
            "id": c.id,
            "title": c.title,
            "created_at": c.created_at.isoformat(),
            "updated_at": c.updated_at.isoformat(),
            "last_message": last.content if last else None,
        })
    return result


@router.post("/")
async def create_conversation(
    body: ConversationCreate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    conv = Conversation(user_id=user.id, title=body.title or "New Conversation")
    session.add(conv)
    session.commit()
    session.refresh(conv)
    return {
        "id": conv.id,
        "title": conv.title,
        "created_at": conv.created_at.isoformat(),
        "updated_at": conv.updated_at.isoformat(),
    }


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    conv = _owned(session, user, conversation_id)

    messages = session.exec(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at, ChatMessage.id)  # type: ignore
    ).all()

    return {
        "id": conv.id,
        "title": conv.title,
        "created_at": conv.created_at.isoformat(),
        "updated_at": conv.updated_at.isoformat(),
        "messages": [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "tool_calls": m.tool_calls,
                "created_at": m.created_at.isoformat(),
            }
            for m in messages
        ],
    }


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    conv = _owned(session, user, conversation_id)

    # Delete messages first
    messages = session.exec(
        select(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
    ).all()
    for msg in messages:
        session.delete(msg)

    session.delete(conv)
    session.commit()
    logger.debug(f"Deleted conversation {conversation_id}")
    return {"status": "deleted"}
