"""Base tool interface. All tools the assistant can call implement this."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from sqlalchemy.engine import Engine

from advisor.core.config import settings
from advisor.core.timeutil import utcnow
from advisor.models.task import TaskKind, TaskPriority, TaskStatus
from advisor.services.integrations.base import Providers
from advisor.services.retrieval import BaseRetriever
from advisor.services.tasks import TaskService


@dataclass
class ToolParameter:
    name: str
    type: str  # "string" | "integer" | "boolean" | "number" | "array"
    description: str
    required: bool = True
    enum: list[str] | None = None
    items: str | None = None  # element type for arrays


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)

    def to_gemini_schema(self) -> dict:
        """Convert to Gemini function declaration format."""
        properties = {}
        required = []
        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.type, "description": param.description}
            if param.enum:
                prop["enum"] = param.enum
            if param.type == "array":
                prop["items"] = {"type": param.items or "string"}
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        }


@dataclass
class ToolContext:
    """Everything a tool handler may touch, injected once per registry."""

    engine: Engine
    providers: Providers
    tasks: TaskService
    retriever: BaseRetriever
    timezone: str = settings.timezone
    clock: Callable[[], datetime] = utcnow

    def now(self) -> datetime:
        return self.clock()

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def needs_input(missing: list[str], message: str) -> dict[str, Any]:
    """A validation failure the assistant should relay to the user as a question."""
    return {
        "success": False,
        "message": message,
        "needsInput": {"missing": missing, "message": message},
    }


class BaseTool(ABC):
    def __init__(self, ctx: ToolContext):
        self.ctx = ctx

    @abstractmethod
    def definition(self) -> ToolDefinition:
        """Return the tool's definition for LLM function calling."""
        ...

    @abstractmethod
    async def execute(self, user_id: int, **kwargs: Any) -> dict[str, Any]:
        """Execute the tool with the given arguments. Returns a structured result.

        Handlers recover their own failures into the result (or an audit task);
        the executor still guards against anything that escapes.
        """
        ...

    async def record_action(
        self,
        user_id: int,
        kind: TaskKind,
        title: str,
        meta: dict[str, Any],
        error: str | None = None,
        description: str | None = None,
        priority: TaskPriority = TaskPriority.medium,
        status: str | None = None,
    ):
        """Leave an audit task for an irreversible action.

        Success is recorded as a completed task; failure as a pending one carrying
        the error so a human can follow up. ``status`` overrides the outcome label
        for deferred hand-offs (e.g. ``pending_send``).
        """
        if status is None:
            status = "failed" if error else "completed"
        task_meta = {**meta, "type": kind.value, "status": status}
        if error:
            task_meta["error"] = error
        return await self.ctx.tasks.create_task(
            user_id,
            title,
            description=description,
            priority=priority,
            meta=task_meta,
            status=TaskStatus.completed if status == "completed" else TaskStatus.pending,
        )
