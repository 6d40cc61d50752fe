"""Chat turns over HTTP: persist the user message, run the agent, persist the reply."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from advisor.api.deps import get_agent, get_current_user
from advisor.core.database import get_session
from advisor.models.conversation import ChatMessage, Conversation
from advisor.models.user import User
from advisor.services.agent import Agent

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 10000
TITLE_CHARS = 50


class MessageRequest(BaseModel):
    content: str = ""
    context: str = "all"


def _validate(content: str) -> None:
    if not content or not content.strip():
        raise HTTPException(status_code=400, detail="Message content is required")
    if len(content) > MAX_CONTENT_CHARS:
        raise HTTPException(
            status_code=400,
            detail=f"Message content too long (max {MAX_CONTENT_CHARS} characters)",
        )


def _title_from(content: str) -> str:
    return content[:TITLE_CHARS] + "..." if len(content) > TITLE_CHARS else content


def _message_dict(msg: ChatMessage) -> dict:
    return {
        "id": msg.id,
        "role": msg.role,
        "content": msg.content,
        "tool_calls": msg.tool_calls,
        "created_at": msg.created_at.isoformat(),
    }


def _save_message(
    session: Session,
    conversation_id: int,
    role: str,
    content: str,
    tool_calls: list[dict] | None = None,
) -> ChatMessage:
    msg = ChatMessage(
        conversation_id=conversation_id,
        role=role,
        content=content,
        tool_calls=tool_calls or None,
    )
    session.add(msg)
    session.commit()
    session.refresh(msg)
    return msg


def _touch_conversation(session: Session, conv: Conversation) -> None:
    """Bump updated_at, and retitle from the first user message while the conversation is new."""
    messages = session.exec(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conv.id)
        .order_by(ChatMessage.created_at, ChatMessage.id)  # type: ignore
    ).all()
    if len(messages) <= 2:
        first = next((m for m in messages if m.role == "user"), None)
        if first:
            conv.title = _title_from(first.content)
    conv.updated_at = datetime.now(timezone.utc)
    session.add(conv)
    session.commit()


async def _run(
    session: Session,
    agent: Agent,
    user: User,
    conv: Conversation,
    body: MessageRequest,
) -> dict:
    user_message = _save_message(session, conv.id, "user", body.content)
    result = await agent.process_turn(user.id, conv.id, body.content, body.context)
    assistant_message = _save_message(
        session, conv.id, "assistant", result.content, result.tool_call_records()
    )
    _touch_conversation(session, conv)
    return {
        "conversation": {"id": conv.id, "title": conv.title},
        "userMessage": _message_dict(user_message),
        "assistantMessage": _message_dict(assistant_message),
    }


@router.post("/conversations/start")
async def start_conversation(
    body: MessageRequest,
    user: User = Depends(get_current_user),
    agent: Agent = Depends(get_agent),
    session: Session = Depends(get_session),
):
    _validate(body.content)
    conv = Conversation(user_id=user.id)
    session.add(conv)
    session.commit()
    session.refresh(conv)
    logger.debug(f"Started conversation {conv.id} for user {user.id}")
    return await _run(session, agent, user, conv, body)


@router.post("/conversations/{conversation_id}/messages")
async def send_message(
    conversation_id: int,
    body: MessageRequest,
    user: User = Depends(get_current_user),
    agent: Agent = Depends(get_agent),
    session: Session = Depends(get_session),
):
    _validate(body.content)
    conv = session.get(Conversation, conversation_id)
    if not conv or conv.user_id != user.id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return await _run(session, agent, user, conv, body)
