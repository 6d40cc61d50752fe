"""Tool registry - central place to register, validate and run the assistant's tools."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from advisor.services.llm.base import ToolCall
from advisor.services.tools.appointment_tools import (
    ProcessAppointmentResponseTool,
    ScheduleAppointmentTool,
)
from advisor.services.tools.base import BaseTool, ToolContext, ToolDefinition, needs_input
from advisor.services.tools.calendar_tools import (
    CreateCalendarEventTool,
    DeleteCalendarEventsTool,
    SearchCalendarTool,
)
from advisor.services.tools.contact_tools import (
    CreateHubspotContactTool,
    ListAllContactsTool,
    SearchContactsTool,
)
from advisor.services.tools.email_tools import (
    SearchEmailsTool,
    SendEmailToContactTool,
    SendEmailTool,
)
from advisor.services.tools.task_tools import AddOngoingInstructionTool, CreateTaskTool

logger = logging.getLogger(__name__)

_TYPE_LABELS = {"integer": "a whole number", "array": "a list"}


def _matches_type(expected: str, value: Any) -> bool:
    """Loose type check for model-supplied arguments.

    Integers may arrive as integral floats or digit strings. A bare string is
    accepted for an array; the tool splits it into entries.
    """
    if expected == "integer":
        if isinstance(value, bool):
            return False
        if isinstance(value, int):
            return True
        if isinstance(value, float):
            return value.is_integer()
        return isinstance(value, str) and value.strip().lstrip("-").isdigit()
    if expected == "array":
        return isinstance(value, (list, tuple, str))
    return True


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        defn = tool.definition()
        self._tools[defn.name] = tool

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def gemini_declarations(self) -> list[dict]:
        return [defn.to_gemini_schema() for defn in self.definitions()]

    def validate(self, name: str, arguments: dict[str, Any]) -> dict[str, Any] | None:
        """Check required arguments and enum values. Returns a needsInput result on failure."""
        tool = self.get(name)
        if tool is None:
            return None
        missing = []
        for param in tool.definition().parameters:
            value = arguments.get(param.name)
            if value is None or (isinstance(value, str) and not value.strip()):
                if param.required:
                    missing.append(param.name)
                continue
            if not _matches_type(param.type, value):
                return needs_input(
                    [param.name],
                    f"'{value}' is not a valid {param.name}. Expected {_TYPE_LABELS.get(param.type, param.type)}.",
                )
            if param.enum and value not in param.enum:
                return needs_input(
                    [param.name],
                    f"'{value}' is not a valid {param.name}. Expected one of: {', '.join(param.enum)}.",
                )
        if missing:
            return needs_input(missing, f"I need a bit more information: {', '.join(missing)}.")
        return None


def create_default_registry(ctx: ToolContext) -> ToolRegistry:
    """Create a registry with the full tool catalog bound to ``ctx``."""
    registry = ToolRegistry()

    # Email tools
    registry.register(SearchEmailsTool(ctx))
    registry.register(SendEmailTool(ctx))
    registry.register(SendEmailToContactTool(ctx))

    # Contact tools
    registry.register(SearchContactsTool(ctx))
    registry.register(ListAllContactsTool(ctx))
    registry.register(CreateHubspotContactTool(ctx))

    # Calendar tools
    registry.register(SearchCalendarTool(ctx))
    registry.register(CreateCalendarEventTool(ctx))
    registry.register(DeleteCalendarEventsTool(ctx))

    # Scheduling workflow
    registry.register(ScheduleAppointmentTool(ctx))
    registry.register(ProcessAppointmentResponseTool(ctx))

    # Tasks and instructions
    registry.register(CreateTaskTool(ctx))
    registry.register(AddOngoingInstructionTool(ctx))

    return registry


@dataclass
class ToolResult:
    call: ToolCall
    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def name(self) -> str:
        return self.call.name

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.result.get("success") is not False and "error" not in self.result

    @property
    def summary(self) -> str | None:
        """Human-readable text the tool produced, if any."""
        for key in ("formattedResponse", "message"):
            if self.result.get(key):
                return self.result[key]
        needs = self.result.get("needsInput")
        if isinstance(needs, dict) and needs.get("message"):
            return needs["message"]
        return None

    def to_content(self) -> str:
        return json.dumps(self.result, default=str)


class ToolExecutor:
    """Dispatches model tool calls. Never raises for a tool failure."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, user_id: int, call: ToolCall) -> ToolResult:
        logger.info(f"Tool call: {call.name}({call.arguments})")

        tool = self.registry.get(call.name)
        if tool is None:
            error = f"Unknown function: {call.name}"
            return ToolResult(call=call, result={"error": error}, error=error)

        invalid = self.registry.validate(call.name, call.arguments)
        if invalid:
            return ToolResult(call=call, result=invalid)

        try:
            result = await tool.execute(user_id, **call.arguments)
        except Exception as e:
            logger.exception(f"Error executing {call.name}")
            error = f"Error executing {call.name}: {e}"
            return ToolResult(call=call, result={"success": False, "error": error}, error=error)
        return ToolResult(call=call, result=result)

    async def run_sequence(self, user_id: int, calls: list[ToolCall]) -> AsyncIterator[ToolResult]:
        """Run calls strictly one after another, in the order given."""
        for call in calls:
            yield await self.execute(user_id, call)
