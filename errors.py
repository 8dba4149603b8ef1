"""errors.py

Exception hierarchy for the MCP workflow evaluation harness.

- McpConnectionError  - handshake / transport failure, fatal to the current run
- ToolTimeoutError    - no correlated response before the per-call deadline
- ToolExecutionError  - the server reported a failure for the call
- TraceValidationError, ConfigError, ModelError
"""

from __future__ import annotations

from typing import Optional


class EvalHarnessError(Exception):
    """Base class for every error raised by the harness."""


class McpConnectionError(EvalHarnessError, ConnectionError):
    pass


class ToolCallError(EvalHarnessError):
    """A single tool invocation failed. Recoverable inside the agent loop."""

    def __init__(self, tool_name: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.message = message
        self.status_code = status_code


class ToolTimeoutError(ToolCallError):
    def __init__(self, tool_name: str, timeout_s: float) -> None:
        super().__init__(tool_name, f"Tool call '{tool_name}' timed out after {timeout_s:.1f}s")
        self.timeout_s = timeout_s


class ToolExecutionError(ToolCallError):
    pass


class TraceValidationError(EvalHarnessError, ValueError):
    pass


class ConfigError(EvalHarnessError, ValueError):
    pass


class ModelError(EvalHarnessError):
    """The language-model collaborator could not produce a turn."""
