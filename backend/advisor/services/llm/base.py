"""Abstract LLM provider interface. All providers must implement this."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_record(self) -> dict[str, Any]:
        """The verbatim record persisted on the assistant message."""
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ToolCall":
        return cls(name=record["name"], arguments=dict(record.get("arguments") or {}), id=record.get("id"))


@dataclass
class Message:
    role: str  # "system" | "user" | "assistant" | "tool"
    content: str
    tool_calls: list[ToolCall] | None = None
    name: str | None = None  # tool name, for role="tool"
    tool_call_id: str | None = None


@dataclass
class LLMResponse:
    content: str
    tool_calls: list[ToolCall] | None = None


class BaseLLMProvider(ABC):
    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
    ) -> LLMResponse:
        """Send messages and get a response. With tools, the model chooses whether to call them."""
        ...
