"""Agent orchestration - one conversational turn: context, LLM, tools, narration."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from advisor.core.config import settings
from advisor.models.conversation import ChatMessage
from advisor.models.user import User
from advisor.services.context import ContextAssembler
from advisor.services.llm.base import BaseLLMProvider, Message, ToolCall
from advisor.services.tools.registry import ToolExecutor, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

APOLOGY = "I apologize, but I encountered an error while processing your request. Please try again."
TIMEOUT_MESSAGE = (
    "Sorry, that request took too long and was stopped before I could finish. "
    "Any actions already completed are listed below; please check before retrying."
)
EMPTY_RESPONSE = "I apologize, but I was unable to generate a response."

EVENT_SOURCES = ("gmail", "calendar", "hubspot")

SYSTEM_PROMPT_BASE = """You are an AI financial advisor assistant for {name}.
You help the user with their email (Gmail), calendar (Google Calendar) and CRM (HubSpot) using the available tools.

CONTEXT RULES:
- Pay close attention to the conversation history. When the user refers to "that meeting", "this email" or "the contact above", use the details from earlier messages before calling search tools.
- Keep context between messages in the same conversation.

CORE RULES:
1. For greetings, thanks or small talk, answer directly without using tools.
2. For questions about emails, contacts or meetings, use search_emails, search_contacts, list_all_contacts or search_calendar. Always search before saying that no data exists.
3. For actions use send_email, send_email_to_contact, schedule_appointment, create_calendar_event, delete_calendar_events, create_task or add_ongoing_instruction.
4. Never create a calendar event without a clear title, a specific time and attendees (personal blocks like lunch or focus time need no attendees). If anything is missing, ask the user instead of guessing.
5. When a contact replies to a meeting request, use process_appointment_response.
6. Prefer real business and personal correspondence over promotional email unless asked for promotions.

BACKGROUND CONTEXT:
{context}"""


def build_system_prompt(user: User, context_text: str) -> str:
    return SYSTEM_PROMPT_BASE.format(name=user.display_name, context=context_text)


@dataclass
class TurnResult:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)

    def tool_call_records(self) -> list[dict[str, Any]]:
        return [call.to_record() for call in self.tool_calls]


def summarize_outcome(results: list[ToolResult], text: str = "") -> str:
    """Fallback narration: 'Completed: a, b. Failed: c'."""
    parts = []
    completed = [r.name for r in results if r.succeeded]
    failed = [r.name for r in results if not r.succeeded]
    if completed:
        parts.append(f"Completed: {', '.join(completed)}")
    if failed:
        parts.append(f"Failed: {', '.join(failed)}")
    summary = ". ".join(parts)
    if text:
        return f"{text}\n\n{summary}"
    return f"I've {summary[0].lower()}{summary[1:]}." if summary else EMPTY_RESPONSE


class Agent:
    """Runs conversational turns for a user against the tool catalog."""

    def __init__(
        self,
        engine: Engine,
        llm: BaseLLMProvider,
        registry: ToolRegistry,
        context: ContextAssembler,
        timeout: float | None = None,
        history_limit: int | None = None,
    ):
        self.engine = engine
        self.llm = llm
        self.registry = registry
        self.executor = ToolExecutor(registry)
        self.context = context
        self.timeout = timeout or settings.turn_timeout_seconds
        self.history_limit = history_limit or settings.history_limit

    def _load_history(self, conversation_id: int) -> list[ChatMessage]:
        with Session(self.engine) as session:
            recent = session.exec(
                select(ChatMessage)
                .where(ChatMessage.conversation_id == conversation_id)
                .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
                .limit(self.history_limit)
            ).all()
        return list(reversed(recent))

    async def process_turn(
        self,
        user_id: int,
        conversation_id: int | None,
        text: str,
        context_filter: str = "all",
    ) -> TurnResult:
        """Run one turn. Never raises: failures become an apologetic response."""
        turn = TurnResult(content="")
        try:
            return await asyncio.wait_for(
                self._run_turn(user_id, conversation_id, text, context_filter, turn),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Turn for user {user_id} timed out after {self.timeout}s")
            # Side effects of tools that already ran stay in effect
            done = list(turn.tool_results)
            content = TIMEOUT_MESSAGE
            if done:
                content += "\n\n" + summarize_outcome(done)
            return TurnResult(content=content, tool_calls=[r.call for r in done], tool_results=done)
        except Exception:
            logger.exception(f"AI processing error for user {user_id}")
            return TurnResult(content=APOLOGY)

    async def _run_turn(
        self,
        user_id: int,
        conversation_id: int | None,
        text: str,
        context_filter: str,
        turn: TurnResult,
    ) -> TurnResult:
        with Session(self.engine) as session:
            user = session.get(User, user_id)
        if not user:
            raise LookupError(f"User {user_id} not found")

        history = self._load_history(conversation_id) if conversation_id is not None else []
        block = await self.context.assemble(user, text, context_filter)

        messages = [Message(role="system", content=build_system_prompt(user, block.text))]
        for msg in history:
            calls = [ToolCall.from_record(r) for r in msg.tool_calls or []]
            messages.append(Message(role=msg.role, content=msg.content, tool_calls=calls or None))

        # The caller may already have stored this user message
        last = history[-1] if history else None
        if not (last and last.role == "user" and last.content == text):
            messages.append(Message(role="user", content=text))

        response = await self.llm.chat(
            messages,
            tools=self.registry.gemini_declarations(),
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
        )

        if not response.tool_calls:
            turn.content = response.content or EMPTY_RESPONSE
            return turn

        turn.tool_calls = list(response.tool_calls)
        async for result in self.executor.run_sequence(user_id, turn.tool_calls):
            turn.tool_results.append(result)

        summaries = [r.summary for r in turn.tool_results]
        if all(summaries):
            turn.content = "\n\n".join(summaries)
            return turn

        turn.content = await self._narrate(messages, response.content, turn)
        return turn

    async def _narrate(self, messages: list[Message], text: str, turn: TurnResult) -> str:
        """Follow-up call, without tools, so the model can describe the tool results."""
        follow_up = [
            *messages,
            Message(role="assistant", content=text, tool_calls=turn.tool_calls),
            *(
                Message(
                    role="tool",
                    content=r.summary or r.to_content(),
                    name=r.name,
                    tool_call_id=r.call.id,
                )
                for r in turn.tool_results
            ),
        ]
        try:
            narration = await self.llm.chat(
                follow_up,
                temperature=settings.llm_temperature,
                max_output_tokens=settings.llm_max_output_tokens,
            )
        except Exception as e:
            logger.warning(f"Follow-up narration failed: {e}")
            return summarize_outcome(turn.tool_results, text)
        return narration.content or summarize_outcome(turn.tool_results, text)

    async def process_event(self, user_id: int, source: str, payload: dict[str, Any]) -> TurnResult | None:
        """React to an inbound provider event according to the user's ongoing instructions.

        Returns None when the user has no active instructions.
        """
        if source not in EVENT_SOURCES:
            raise ValueError(f"Unknown event source: {source}")

        instructions = self.context.load_instructions(user_id)
        if not instructions:
            return None

        text = (
            "A webhook event occurred:\n"
            f"Source: {source}\n"
            f"Data: {json.dumps(payload, indent=2, default=str)}\n\n"
            "Consider the following ongoing instructions and determine if any actions should be taken:\n"
            + "\n".join(f"- {i.instruction}" for i in instructions)
            + "\n\nIf any action should be taken based on these instructions, use the available tools to execute them."
        )
        logger.info(f"Processing {source} event for user {user_id} against {len(instructions)} instructions")
        return await self.process_turn(user_id, None, text)
