"""llm.py

Language-model collaborator used by the agent loop.

``LanguageModel.complete(history, tools)`` returns one ``ModelTurn``: the
assistant text plus any requested tool invocations. ``OpenAIChatModel`` adapts
the OpenAI chat-completions API (or any compatible endpoint via ``base_url``).
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import openai
from openai import AsyncOpenAI
from openai.types.chat import (
    ChatCompletionAssistantMessageParam,
    ChatCompletionFunctionToolParam,
    ChatCompletionSystemMessageParam,
    ChatCompletionToolMessageParam,
    ChatCompletionUserMessageParam,
)
from openai.types.shared_params import FunctionDefinition

from config import EVALUATION_SYSTEM_PROMPT
from errors import ModelError
from models import ConversationMessage, ToolResult
from tool_schema import ToolDescriptor
from utils import _safe_json_dumps, _stringify

HistoryItem = Union[ConversationMessage, ToolResult]


@dataclass
class RequestedToolCall:
    id: Optional[str]
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    # set when the model's argument payload was not a JSON object
    parse_error: Optional[str] = None


@dataclass
class ModelTurn:
    text: str = ""
    tool_calls: list[RequestedToolCall] = field(default_factory=list)
    usage: Optional[dict[str, int]] = None


class LanguageModel(ABC):
    @abstractmethod
    async def complete(self, history: list[HistoryItem], tools: list[ToolDescriptor]) -> ModelTurn:
        """Produce the next assistant turn for ``history``."""


# =========================
# OpenAI adapter
# =========================


def to_openai_tool(tool: ToolDescriptor) -> ChatCompletionFunctionToolParam:
    return ChatCompletionFunctionToolParam(
        type="function",
        function=FunctionDefinition(
            name=tool.name,
            description=tool.description,
            parameters=tool.input_schema or {"type": "object", "properties": {}},
        ),
    )


def tool_result_content(result: ToolResult) -> str:
    """Text fed back to the model for one tool result."""
    if result.error:
        err_type = result.error_type.value if result.error_type else "error"
        return _safe_json_dumps({"success": False, "error": {"type": err_type, "message": result.error}})
    return _stringify(result.result)


def parse_tool_arguments(raw: Optional[str]) -> tuple[dict[str, Any], Optional[str]]:
    try:
        args = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        return {}, f"Tool arguments JSON could not be parsed: {e.msg}"
    if not isinstance(args, dict):
        return {}, "Tool arguments must be a JSON object."
    return args, None


def to_openai_messages(history: list[HistoryItem], system_prompt: str) -> list[Any]:
    messages: list[Any] = [ChatCompletionSystemMessageParam(role="system", content=system_prompt)]
    for item in history:
        if isinstance(item, ToolResult):
            messages.append(
                ChatCompletionToolMessageParam(
                    role="tool",
                    tool_call_id=item.tool_call_id,
                    content=tool_result_content(item),
                )
            )
        elif item.role == "user":
            messages.append(ChatCompletionUserMessageParam(role="user", content=item.content))
        elif item.tool_calls:
            messages.append(
                ChatCompletionAssistantMessageParam(
                    role="assistant",
                    content=item.content or None,
                    tool_calls=[
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": _safe_json_dumps(tc.arguments)},
                        }
                        for tc in item.tool_calls
                    ],
                )
            )
        else:
            messages.append(ChatCompletionAssistantMessageParam(role="assistant", content=item.content))
    return messages


class OpenAIChatModel(LanguageModel):
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        system_prompt: str = EVALUATION_SYSTEM_PROMPT,
        temperature: Optional[float] = None,
    ) -> None:
        self.client = client
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature

    async def complete(self, history: list[HistoryItem], tools: list[ToolDescriptor]) -> ModelTurn:
        params: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(history, self.system_prompt),
        }
        if tools:
            params["tools"] = [to_openai_tool(t) for t in tools]
            params["tool_choice"] = "auto"
        if self.temperature is not None:
            params["temperature"] = self.temperature

        try:
            resp = await self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            raise ModelError(f"LLM call failed: {e}") from e

        if not resp.choices:
            raise ModelError("LLM returned no choices")
        msg = resp.choices[0].message

        calls: list[RequestedToolCall] = []
        for tc in msg.tool_calls or []:
            fn = getattr(tc, "function", None)
            if fn is None:
                # custom (non-function) tool calls are not produced for function tools
                continue
            args, parse_error = parse_tool_arguments(fn.arguments)
            calls.append(RequestedToolCall(id=tc.id, name=fn.name, arguments=args, parse_error=parse_error))

        usage = None
        if resp.usage:
            usage = {"prompt": resp.usage.prompt_tokens, "completion": resp.usage.completion_tokens}
        return ModelTurn(text=msg.content or "", tool_calls=calls, usage=usage)
