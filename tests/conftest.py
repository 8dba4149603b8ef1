from __future__ import annotations

from typing import Any, Callable, Optional, Union

import pytest

from errors import ToolExecutionError
from llm import LanguageModel, ModelTurn, RequestedToolCall
from models import ConversationMessage, ToolCall, ToolResult
from tool_schema import ToolDescriptor
from trace_store import TraceStore

ADD_SCHEMA = {
    "type": "object",
    "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
    "required": ["a", "b"],
}


class FakeConnection:
    """Stands in for ConnectionManager: tools are plain callables."""

    def __init__(self, handlers: dict[str, Callable[[dict], Any]], schemas: Optional[dict[str, dict]] = None):
        self.handlers = handlers
        self.schemas = schemas or {}
        self.calls: list[tuple[str, dict, Optional[float]]] = []

    async def list_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor.from_json_schema(name, f"{name} tool", self.schemas.get(name, {"type": "object"}))
            for name in self.handlers
        ]

    async def call_tool(self, name: str, args: dict, timeout: Optional[float] = None) -> Any:
        self.calls.append((name, args, timeout))
        handler = self.handlers.get(name)
        if handler is None:
            raise ToolExecutionError(name, f"Unknown tool: {name}")
        return handler(args)


class ScriptedModel(LanguageModel):
    """Returns pre-baked turns in order; an exception in the script is raised."""

    def __init__(self, turns: list[Union[ModelTurn, Exception]]):
        self.turns = list(turns)
        self.histories: list[list] = []

    async def complete(self, history, tools) -> ModelTurn:
        self.histories.append(list(history))
        if not self.turns:
            return ModelTurn(text="done")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn


class LoopingModel(LanguageModel):
    """Always asks for the same tool call."""

    def __init__(self, tool_name: str, args: Optional[dict] = None):
        self.tool_name = tool_name
        self.args = args or {}
        self.turns = 0

    async def complete(self, history, tools) -> ModelTurn:
        self.turns += 1
        return ModelTurn(
            text="",
            tool_calls=[RequestedToolCall(id=f"call_{self.turns}", name=self.tool_name, arguments=dict(self.args))],
        )


def tool_turn(*calls: tuple[str, dict], text: str = "") -> ModelTurn:
    return ModelTurn(
        text=text,
        tool_calls=[RequestedToolCall(id=None, name=name, arguments=args) for name, args in calls],
    )


def record_call(trace: TraceStore, call_id: str, name: str, result: Any = None, error: Optional[str] = None,
                status_code: Optional[int] = None, with_result: bool = True) -> None:
    trace.add_tool_call(ToolCall(id=call_id, name=name, arguments={}))
    if with_result:
        trace.add_tool_result(
            ToolResult(id=f"r_{call_id}", tool_call_id=call_id, result=result, error=error, status_code=status_code)
        )


@pytest.fixture
def trace() -> TraceStore:
    return TraceStore()


@pytest.fixture
def math_connection() -> FakeConnection:
    return FakeConnection(
        {
            "add": lambda args: args["a"] + args["b"],
            "multiply": lambda args: args["a"] * args["b"],
        },
        schemas={"add": ADD_SCHEMA, "multiply": ADD_SCHEMA},
    )


def user(text: str) -> ConversationMessage:
    return ConversationMessage(role="user", content=text)


def assistant(text: str) -> ConversationMessage:
    return ConversationMessage(role="assistant", content=text)
