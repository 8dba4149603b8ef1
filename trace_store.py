"""trace_store.py

Bounded, ordered record of one workflow run: conversation messages, tool calls,
and tool results keyed by the owning call id.

Every collection keeps insertion order and evicts its oldest entries once its
configured maximum is exceeded. ``clear()`` is the boundary between workflow
runs; nothing recorded before it is visible afterwards.
"""

from __future__ import annotations

import threading
from collections import OrderedDict, deque
from datetime import datetime, timedelta
from typing import Optional

from config import MAX_CONVERSATION_MESSAGES, MAX_TOOL_CALLS, MAX_TOOL_RESULTS, logger
from errors import TraceValidationError
from models import ConversationMessage, ToolCall, ToolResult, utcnow


class TraceStore:
    def __init__(
        self,
        max_messages: int = MAX_CONVERSATION_MESSAGES,
        max_tool_calls: int = MAX_TOOL_CALLS,
        max_tool_results: int = MAX_TOOL_RESULTS,
        retention_s: Optional[float] = None,
    ) -> None:
        for label, bound in (
            ("max_messages", max_messages),
            ("max_tool_calls", max_tool_calls),
            ("max_tool_results", max_tool_results),
        ):
            if bound < 1:
                raise ValueError(f"{label} must be >= 1, got {bound}")

        self.max_messages = max_messages
        self.max_tool_calls = max_tool_calls
        self.max_tool_results = max_tool_results
        self.retention_s = retention_s

        self._lock = threading.RLock()
        self._messages: deque[ConversationMessage] = deque(maxlen=max_messages)
        self._tool_calls: deque[ToolCall] = deque(maxlen=max_tool_calls)
        self._call_ids: set[str] = set()
        # ids pushed out of the ring buffer; their late results are dropped
        self._evicted_ids: deque[str] = deque(maxlen=max_tool_calls)
        # keyed by tool_call_id
        self._tool_results: OrderedDict[str, ToolResult] = OrderedDict()

    # ---- writers

    def add_message(self, message: ConversationMessage) -> None:
        if message.role not in ("user", "assistant"):
            raise TraceValidationError(f"Invalid message role: {message.role!r}")
        if not isinstance(message.content, str):
            raise TraceValidationError("Message content must be a string")
        with self._lock:
            self._messages.append(message)

    def add_tool_call(self, call: ToolCall) -> None:
        if not call.id or not call.name:
            raise TraceValidationError("Tool call requires an id and a name")
        with self._lock:
            if call.id in self._call_ids:
                raise TraceValidationError(f"Duplicate tool call id: {call.id}")
            if len(self._tool_calls) == self.max_tool_calls:
                oldest = self._tool_calls[0].id
                self._call_ids.discard(oldest)
                self._evicted_ids.append(oldest)
                self._tool_results.pop(oldest, None)
            self._tool_calls.append(call)
            self._call_ids.add(call.id)

    def add_tool_result(self, result: ToolResult) -> None:
        with self._lock:
            if result.tool_call_id not in self._call_ids:
                if result.tool_call_id in self._evicted_ids:
                    logger.debug("Dropping result %s for evicted tool call %s", result.id, result.tool_call_id)
                    return
                raise TraceValidationError(
                    f"Tool result {result.id} references unknown tool call {result.tool_call_id}"
                )
            # a later result for the same call replaces the earlier one
            self._tool_results.pop(result.tool_call_id, None)
            self._tool_results[result.tool_call_id] = result
            while len(self._tool_results) > self.max_tool_results:
                self._tool_results.popitem(last=False)

    # ---- read-only views

    def get_conversation(self) -> list[ConversationMessage]:
        with self._lock:
            return list(self._messages)

    def get_tool_calls(self) -> list[ToolCall]:
        with self._lock:
            return list(self._tool_calls)

    def get_tool_results(self) -> list[ToolResult]:
        with self._lock:
            return list(self._tool_results.values())

    def get_tool_result(self, tool_call_id: str) -> Optional[ToolResult]:
        with self._lock:
            return self._tool_results.get(tool_call_id)

    def get_last_message(self) -> Optional[ConversationMessage]:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def export(self) -> dict:
        with self._lock:
            return {
                "conversation": list(self._messages),
                "tool_calls": list(self._tool_calls),
                "tool_results": list(self._tool_results.values()),
            }

    def get_memory_usage(self) -> dict[str, int]:
        with self._lock:
            usage = {
                "conversation": len(self._messages),
                "tool_calls": len(self._tool_calls),
                "tool_results": len(self._tool_results),
            }
        usage["total"] = sum(usage.values())
        return usage

    # ---- lifecycle

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
            self._tool_calls.clear()
            self._call_ids.clear()
            self._evicted_ids.clear()
            self._tool_results.clear()

    def compact(self, now: Optional[datetime] = None) -> int:
        """Drop entries older than ``retention_s``. Returns the number removed."""
        if self.retention_s is None:
            return 0
        cutoff = (now or utcnow()) - timedelta(seconds=self.retention_s)
        with self._lock:
            before = len(self._messages) + len(self._tool_calls) + len(self._tool_results)

            kept_messages = [m for m in self._messages if m.timestamp >= cutoff]
            self._messages.clear()
            self._messages.extend(kept_messages)

            kept_calls = [c for c in self._tool_calls if c.timestamp >= cutoff]
            self._evicted_ids.extend(c.id for c in self._tool_calls if c.timestamp < cutoff)
            self._tool_calls.clear()
            self._tool_calls.extend(kept_calls)
            self._call_ids = {c.id for c in kept_calls}

            for call_id in [k for k, r in self._tool_results.items() if r.timestamp < cutoff]:
                del self._tool_results[call_id]

            after = len(self._messages) + len(self._tool_calls) + len(self._tool_results)
        return before - after
