"""config.py

Global configuration, constants, and logging setup for the MCP workflow evaluation harness.

Environment variable overrides:
- MCP_EVAL_TIMEOUT_S:           default per-call tool timeout (seconds)
- MCP_EVAL_HANDSHAKE_TIMEOUT_S: session handshake timeout (seconds)
- MCP_EVAL_STOP_GRACE_S:        grace period before a session is torn down forcefully
- MCP_EVAL_MAX_TURNS:           model turns allowed per workflow step
- MCP_EVAL_MAX_MESSAGES / MCP_EVAL_MAX_TOOL_CALLS / MCP_EVAL_MAX_TOOL_RESULTS: trace bounds
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

# =========================
# Configuration & Constants
# =========================

CONFIG_REQUIRED_VARS = [
    "LLM_MODEL",
    "OPENAI_API_KEY",
]

CLIENT_NAME = "mcp-workflow-eval"

DEFAULT_TIMEOUT_S = float(os.environ.get("MCP_EVAL_TIMEOUT_S", "30"))
DEFAULT_HANDSHAKE_TIMEOUT_S = float(os.environ.get("MCP_EVAL_HANDSHAKE_TIMEOUT_S", "15"))
DEFAULT_STOP_GRACE_S = float(os.environ.get("MCP_EVAL_STOP_GRACE_S", "5"))
DEFAULT_MAX_TURNS = int(os.environ.get("MCP_EVAL_MAX_TURNS", "8"))

MAX_CONVERSATION_MESSAGES = int(os.environ.get("MCP_EVAL_MAX_MESSAGES", "1000"))
MAX_TOOL_CALLS = int(os.environ.get("MCP_EVAL_MAX_TOOL_CALLS", "5000"))
MAX_TOOL_RESULTS = int(os.environ.get("MCP_EVAL_MAX_TOOL_RESULTS", "5000"))

# Streamable HTTP reconnection (seconds)
SHTTP_RECONNECT_ATTEMPTS = 2
SHTTP_RECONNECT_DELAY_S = 1.0

EVALUATION_SYSTEM_PROMPT = """You are an AI assistant evaluating an MCP server workflow.
You have access to MCP tools that you should use to complete user requests.
Be helpful and use the appropriate tools when needed to fulfill each request.
Focus on completing the tasks accurately and efficiently.
When a tool fails, decide whether to retry with different arguments, use another tool, or explain the failure.
"""

# =========================
# Logging
# =========================

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"

logger = logging.getLogger("mcp_eval")


def configure_logging(debug: bool = False, log_file: Optional[str] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
