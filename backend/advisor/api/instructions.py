"""Ongoing instructions: standing rules applied to inbound provider events."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from advisor.api.deps import get_current_user
from advisor.core.database import get_session
from advisor.models.user import OngoingInstruction, User
from advisor.services.tools.task_tools import find_similar_instruction

router = APIRouter()
logger = logging.getLogger(__name__)


class InstructionCreate(BaseModel):
    instruction: str = ""


class InstructionUpdate(BaseModel):
    instruction: str | None = None
    is_active: bool | None = None


def _to_dict(i: OngoingInstruction) -> dict:
    return {
        "id": i.id,
        "instruction": i.instruction,
        "is_active": i.is_active,
        "created_at": i.created_at.isoformat(),
        "updated_at": i.updated_at.isoformat(),
    }


def _owned(session: Session, user: User, instruction_id: int) -> OngoingInstruction:
    instruction = session.get(OngoingInstruction, instruction_id)
    if not instruction or instruction.user_id != user.id:
        raise HTTPException(status_code=404, detail="Instruction not found")
    return instruction


@router.get("/")
async def list_instructions(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    instructions = session.exec(
        select(OngoingInstruction)
        .where(OngoingInstruction.user_id == user.id)
        .order_by(OngoingInstruction.created_at.desc())  # type: ignore
    ).all()
    return [_to_dict(i) for i in instructions]


@router.post("/")
async def create_instruction(
    body: InstructionCreate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    text = body.instruction.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Instruction text is required")

    existing = find_similar_instruction(session, user.id, text)
    if existing:
        raise HTTPException(
            status_code=409,
            detail=f'Similar instruction already exists: "{existing.instruction}"',
        )

    instruction = OngoingInstruction(user_id=user.id, instruction=text)
    session.add(instruction)
    session.commit()
    session.refresh(instruction)
    logger.info(f"Added ongoing instruction {instruction.id} for user {user.id}")
    return _to_dict(instruction)


@router.patch("/{instruction_id}")
async def update_instruction(
    instruction_id: int,
    body: InstructionUpdate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    instruction = _owned(session, user, instruction_id)
    if body.instruction is not None and body.instruction.strip():
        instruction.instruction = body.instruction.strip()
    if body.is_active is not None:
        instruction.is_active = body.is_active
    instruction.updated_at = datetime.now(timezone.utc)
    session.add(instruction)
    session.commit()
    session.refresh(instruction)
    return _to_dict(instruction)


@router.delete("/{instruction_id}")
async def delete_instruction(
    instruction_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    instruction = _owned(session, user, instruction_id)
    session.delete(instruction)
    session.commit()
    return {"status": "deleted"}
