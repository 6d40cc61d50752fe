"""Task and ongoing-instruction tools."""

import logging
from typing import Any

from sqlmodel import Session, select

from advisor.models.task import TaskKind, TaskPriority
from advisor.models.user import OngoingInstruction
from advisor.services.tools.base import BaseTool, ToolDefinition, ToolParameter

logger = logging.getLogger(__name__)


def find_similar_instruction(session: Session, user_id: int, text: str) -> OngoingInstruction | None:
    """An active instruction that contains, or is contained in, ``text`` (case-insensitive)."""
    wanted = text.strip().lower()
    for existing in session.exec(
        select(OngoingInstruction).where(
            OngoingInstruction.user_id == user_id,
            OngoingInstruction.is_active == True,  # noqa: E712
        )
    ).all():
        current = existing.instruction.lower()
        if wanted in current or current in wanted:
            return existing
    return None


class CreateTaskTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="create_task",
            description="Create a task / to-do item for the user.",
            parameters=[
                ToolParameter(name="title", type="string", description="Task title"),
                ToolParameter(name="description", type="string", description="Task details", required=False),
                ToolParameter(
                    name="priority", type="string", description="Task priority (default medium)",
                    required=False, enum=[p.value for p in TaskPriority],
                ),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        task = await self.ctx.tasks.create_task(
            user_id,
            kwargs["title"],
            description=kwargs.get("description"),
            priority=kwargs.get("priority") or TaskPriority.medium,
            meta={"type": TaskKind.user_task.value, "status": "pending"},
        )
        return {
            "success": True,
            "task": task.to_dict(),
            "message": f"Created task: {task.title} ({task.priority.value} priority)",
        }


class AddOngoingInstructionTool(BaseTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="add_ongoing_instruction",
            description=(
                "Save a standing instruction the assistant should follow when new emails, calendar "
                "events or CRM contacts arrive (e.g. 'When someone new emails me, add them to HubSpot')."
            ),
            parameters=[
                ToolParameter(name="instruction", type="string", description="The standing instruction"),
            ],
        )

    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        text = kwargs["instruction"].strip()
        if not text:
            return {"success": False, "error": "The instruction is empty."}

        with Session(self.ctx.engine) as session:
            existing = find_similar_instruction(session, user_id, text)
            if existing:
                return {
                    "success": False,
                    "error": f'Similar instruction already exists: "{existing.instruction}"',
                }
            instruction = OngoingInstruction(user_id=user_id, instruction=text)
            session.add(instruction)
            session.commit()
            session.refresh(instruction)

        logger.info(f"Added ongoing instruction {instruction.id} for user {user_id}")
        return {
            "success": True,
            "instruction": {"id": instruction.id, "instruction": instruction.instruction, "isActive": True},
            "message": f'Added ongoing instruction: "{text}"',
        }
