"""agent.py

Async agent loop for the MCP workflow evaluation harness.

Drives the LLM <-> MCP tool interaction cycle for the steps of one workflow:
1. Appends each step's intent as a user turn.
2. Requests a model turn with the full history and the session's tools.
3. Executes requested tool calls in order via the ConnectionManager.
4. Feeds tool results (successes and failures) back to the model.
5. Records every message, call, and result in the TraceStore.

Each step is bounded by ``max_turns`` model turns. Tool failures are recorded
and surfaced to the model; they never abort the run. A model failure aborts the
remaining steps. Connection failures propagate to the caller.
"""

from __future__ import annotations

import time
from typing import Any, Optional

from config import DEFAULT_MAX_TURNS, logger
from connection import ConnectionManager
from errors import McpConnectionError, ToolCallError
from llm import HistoryItem, LanguageModel, RequestedToolCall
from models import (
    AgentRunResult,
    ConversationMessage,
    ErrorType,
    Step,
    StepOutcome,
    ToolCall,
    ToolResult,
)
from tool_schema import ToolDescriptor
from trace_store import TraceStore
from utils import _classify_backend_error, new_id


class AgentLoop:
    def __init__(
        self,
        connection: ConnectionManager,
        model: LanguageModel,
        trace: TraceStore,
        *,
        max_turns: int = DEFAULT_MAX_TURNS,
        tool_timeout: Optional[float] = None,
    ) -> None:
        if max_turns < 1:
            raise ValueError(f"max_turns must be >= 1, got {max_turns}")
        self.connection = connection
        self.model = model
        self.trace = trace
        self.max_turns = max_turns
        self.tool_timeout = tool_timeout

    async def run(self, steps: list[Step]) -> AgentRunResult:
        tools = await self.connection.list_tools()
        descriptors = {t.name: t for t in tools}

        history: list[HistoryItem] = []
        messages: list[ConversationMessage] = []
        tool_calls: list[ToolCall] = []
        tool_results: list[ToolResult] = []
        outcomes: list[StepOutcome] = []
        seen_ids: set[str] = set()
        prompt_tokens = 0
        completion_tokens = 0

        def _record_message(msg: ConversationMessage) -> None:
            self.trace.add_message(msg)
            messages.append(msg)
            history.append(msg)

        aborted = False
        for index, step in enumerate(steps):
            if aborted:
                outcomes.append(StepOutcome(index=index, completed=False, turns=0, error="Skipped after model failure"))
                continue

            _record_message(ConversationMessage(role="user", content=step.user))
            completed = False
            error: Optional[str] = None
            turns = 0

            while turns < self.max_turns:
                turns += 1
                logger.debug("Step %d turn %d: requesting model turn", index + 1, turns)
                try:
                    turn = await self.model.complete(list(history), tools)
                except McpConnectionError:
                    raise
                except Exception as e:
                    logger.error("Model turn failed on step %d: %s", index + 1, e)
                    error = f"Error: {e}"
                    _record_message(ConversationMessage(role="assistant", content=error))
                    aborted = True
                    break

                if turn.usage:
                    prompt_tokens += turn.usage.get("prompt", 0)
                    completion_tokens += turn.usage.get("completion", 0)

                if not turn.tool_calls:
                    _record_message(ConversationMessage(role="assistant", content=turn.text))
                    completed = True
                    break

                calls = [self._make_call(req, descriptors, seen_ids) for req in turn.tool_calls]
                _record_message(ConversationMessage(role="assistant", content=turn.text, tool_calls=calls))

                # sequential: later calls may depend on earlier results
                for call, req in zip(calls, turn.tool_calls):
                    self.trace.add_tool_call(call)
                    tool_calls.append(call)
                    result = await self._execute(call, req)
                    self.trace.add_tool_result(result)
                    tool_results.append(result)
                    history.append(result)

            if not completed and not aborted:
                error = f"Turn budget of {self.max_turns} exhausted"
                logger.warning("Step %d did not complete: %s", index + 1, error)
            outcomes.append(StepOutcome(index=index, completed=completed, turns=turns, error=error))

        return AgentRunResult(
            success=all(o.completed for o in outcomes),
            messages=messages,
            tool_calls=tool_calls,
            tool_results=tool_results,
            steps=outcomes,
            token_usage={
                "prompt": prompt_tokens,
                "completion": completion_tokens,
                "total": prompt_tokens + completion_tokens,
            },
        )

    # ---- helpers

    @staticmethod
    def _make_call(
        req: RequestedToolCall,
        descriptors: dict[str, ToolDescriptor],
        seen_ids: set[str],
    ) -> ToolCall:
        call_id = req.id if req.id and req.id not in seen_ids else new_id("call")
        seen_ids.add(call_id)

        descriptor = descriptors.get(req.name)
        if req.parse_error:
            valid, errors = False, [req.parse_error]
        elif descriptor is None:
            valid, errors = False, [f"Unknown tool: {req.name}"]
        else:
            valid, errors = descriptor.validate_arguments(req.arguments)
        if not valid:
            logger.debug("Arguments for %s do not match its schema: %s", req.name, errors)

        return ToolCall(
            id=call_id,
            name=req.name,
            arguments=dict(req.arguments),
            argument_schema_valid=valid,
            argument_schema_errors=tuple(errors),
        )

    async def _execute(self, call: ToolCall, req: RequestedToolCall) -> ToolResult:
        if req.parse_error:
            # nothing is sent to the server for unparseable arguments
            return ToolResult(
                id=new_id("result"),
                tool_call_id=call.id,
                result={"success": False, "error": {"type": "InvalidToolArguments", "message": req.parse_error}},
                error=req.parse_error,
                error_type=ErrorType.INVALID_PARAMETER,
            )

        tool_start = time.perf_counter()
        try:
            payload: Any = await self.connection.call_tool(call.name, call.arguments, timeout=self.tool_timeout)
        except ToolCallError as e:
            exec_time = time.perf_counter() - tool_start
            classified = _classify_backend_error(type(e).__name__, e.message)
            logger.warning("Tool %s failed (%s): %s", call.name, classified.value, e.message)
            return ToolResult(
                id=new_id("result"),
                tool_call_id=call.id,
                error=e.message,
                status_code=e.status_code,
                error_type=classified,
                execution_time=exec_time,
            )
        exec_time = time.perf_counter() - tool_start

        # semantic failure reported inside a successful response
        error: Optional[str] = None
        error_type: Optional[ErrorType] = None
        if isinstance(payload, dict) and payload.get("success") is False:
            err = payload.get("error") or {}
            if isinstance(err, dict):
                backend_type = (err.get("type") or "").strip() or None
                error = err.get("message") or "Tool reported success=false"
            else:
                backend_type, error = None, str(err)
            error_type = _classify_backend_error(backend_type, error)
            logger.warning("Tool %s reported failure: %s", call.name, error)

        return ToolResult(
            id=new_id("result"),
            tool_call_id=call.id,
            result=payload,
            error=error,
            error_type=error_type,
            execution_time=exec_time,
        )
