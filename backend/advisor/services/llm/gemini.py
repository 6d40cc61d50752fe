"""Google Gemini LLM provider with function calling."""

import json
import logging

from google import genai
from google.genai import types

from advisor.core.config import settings
from advisor.services.llm.base import BaseLLMProvider, LLMResponse, Message, ToolCall

logger = logging.getLogger(__name__)


def _annotate_tool_calls(message: Message) -> str:
    calls = ", ".join(
        f"{c.name}({json.dumps(c.arguments, default=str)})" for c in message.tool_calls or []
    )
    text = message.content or ""
    return f"{text}\n[Called tools: {calls}]".strip()


def to_gemini_contents(messages: list[Message]) -> tuple[str, list[types.Content]]:
    """Split out the system instruction and convert the transcript to Gemini contents.

    Tool calls on an assistant turn become function_call parts only when the tool
    results follow directly; otherwise (replayed history) they are kept as a text
    annotation so the model still sees what was done.
    """
    system_parts: list[str] = []
    contents: list[types.Content] = []

    for index, message in enumerate(messages):
        if message.role == "system":
            if not contents:
                system_parts.append(message.content)
            else:
                contents.append(types.Content(role="user", parts=[types.Part(text=f"[System] {message.content}")]))
            continue

        if message.role == "tool":
            part = types.Part(function_response=types.FunctionResponse(
                name=message.name or "tool",
                response={"result": message.content},
            ))
            # Consecutive tool results share one function turn
            if contents and contents[-1].role == "function":
                contents[-1].parts.append(part)
            else:
                contents.append(types.Content(role="function", parts=[part]))
            continue

        if message.role == "assistant":
            next_is_tool = index + 1 < len(messages) and messages[index + 1].role == "tool"
            if message.tool_calls and next_is_tool:
                parts = [types.Part(text=message.content)] if message.content else []
                parts.extend(
                    types.Part(function_call=types.FunctionCall(name=c.name, args=c.arguments))
                    for c in message.tool_calls
                )
                contents.append(types.Content(role="model", parts=parts))
            elif message.tool_calls:
                contents.append(types.Content(role="model", parts=[types.Part(text=_annotate_tool_calls(message))]))
            else:
                contents.append(types.Content(role="model", parts=[types.Part(text=message.content)]))
            continue

        contents.append(types.Content(role="user", parts=[types.Part(text=message.content)]))

    return "\n\n".join(system_parts), contents


class GeminiProvider(BaseLLMProvider):
    def __init__(self, api_key: str | None = None, model: str | None = None):
        self.client = genai.Client(api_key=api_key or settings.gemini_api_key)
        self.model = model or settings.llm_model

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
    ) -> LLMResponse:
        system_instruction, contents = to_gemini_contents(messages)

        config_kwargs: dict = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if system_instruction:
            config_kwargs["system_instruction"] = system_instruction
        if tools:
            config_kwargs["tools"] = [types.Tool(function_declarations=tools)]
            config_kwargs["tool_config"] = types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(mode="AUTO")
            )

        logger.info(
            f"=== LLM API Call ===\n"
            f"  Model: {self.model}\n"
            f"  Tools: {len(tools or [])}\n"
            f"  Messages: {len(contents)}"
        )

        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )

        usage = response.usage_metadata
        if usage:
            logger.info(
                f"=== LLM Response ===\n"
                f"  Prompt tokens: {usage.prompt_token_count}\n"
                f"  Response tokens: {usage.candidates_token_count}\n"
                f"  Total tokens: {usage.total_token_count}"
            )

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        if response.candidates and response.candidates[0].content and response.candidates[0].content.parts:
            for part in response.candidates[0].content.parts:
                if part.function_call:
                    fc = part.function_call
                    tool_calls.append(ToolCall(
                        name=fc.name or "",
                        arguments=dict(fc.args) if fc.args else {},
                        id=fc.id,
                    ))
                elif part.text:
                    text_parts.append(part.text)

        return LLMResponse(content="".join(text_parts), tool_calls=tool_calls or None)
