"""utils.py

Shared utility functions for the MCP workflow evaluation harness:
- Environment validation and ${VAR} expansion
- JSON serialisation helper
- Backend error classification
- Basic statistics helpers (mean, stdev)
"""

from __future__ import annotations

import json
import os
import re
import statistics
import uuid
from typing import Any, Optional

from models import ErrorType


# =========================
# Environment
# =========================


def validate_environment(required_vars: list[str]) -> None:
    missing = [v for v in required_vars if not os.getenv(v)]
    if missing:
        raise ValueError(f"Missing required environment variables: {', '.join(missing)}")


_ENV_VAR = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(obj: Any) -> Any:
    """Recursively replace ${NAME} in strings; unknown names are left untouched."""
    if isinstance(obj, str):
        return _ENV_VAR.sub(lambda m: os.environ.get(m.group(1), m.group(0)), obj)
    if isinstance(obj, list):
        return [expand_env_vars(v) for v in obj]
    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    return obj


# =========================
# String / JSON helpers
# =========================


def _safe_json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


def _stringify(obj: Any) -> str:
    if isinstance(obj, str):
        return obj
    return _safe_json_dumps(obj)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


# =========================
# Error classification
# =========================


def _classify_backend_error(backend_type: Optional[str], message: str) -> ErrorType:
    t = (backend_type or "").lower()
    m = (message or "").lower()

    # ---- Timeout ----
    if (
        any(x in t for x in ["timeout", "timedout"])
        or any(x in m for x in ["timeout", "timed out", "deadline exceeded"])
    ):
        return ErrorType.TIMEOUT

    # ---- Resource not found ----
    if (
        "notfound" in t
        or "unknown tool" in m
        or "not found" in m
    ):
        return ErrorType.NOT_FOUND

    # ---- Invalid parameter / schema / validation ----
    if (
        any(x in t for x in ["validation", "valueerror", "invalid", "schema"])
        or any(x in m for x in [
            "validation error",
            "value error",
            "type=value_error",
            "field required",
            "missing required argument",
            "extra inputs are not permitted",
            "input should be",
            "invalid arguments",
        ])
    ):
        return ErrorType.INVALID_PARAMETER

    # ---- Auth / quota / rate limit ----
    if any(x in m for x in [
        "unauthorized",
        "forbidden",
        "permission denied",
        "rate limit",
        "too many requests",
        "quota",
        "401",
        "403",
        "429",
    ]):
        return ErrorType.AUTH_OR_QUOTA

    # ---- Network / transport ----
    if (
        any(x in t for x in ["connectionerror", "connecterror", "sslerror"])
        or any(x in m for x in [
            "connection reset",
            "connection closed",
            "failed to establish a new connection",
            "name or service not known",
            "ssl",
            "502",
            "503",
            "504",
            "service unavailable",
            "bad gateway",
        ])
    ):
        return ErrorType.NETWORK_ERROR

    return ErrorType.UNKNOWN


# =========================
# Statistics helpers
# =========================


def _mean(xs: list[float]) -> float:
    return statistics.mean(xs) if xs else 0.0


def _stdev(xs: list[float]) -> float:
    return statistics.stdev(xs) if len(xs) > 1 else 0.0
