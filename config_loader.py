"""config_loader.py

Loads the evaluation configuration (JSON) into an EvalConfig.

The file declares the server to evaluate, the workflows to run, and optional
tool-health suites. ``${VAR}`` placeholders anywhere in the document are
expanded from the environment before the document is validated against
CONFIG_SCHEMA. Durations in the file are milliseconds.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from config import logger
from errors import ConfigError
from models import (
    AzureAdAuth,
    EvalConfig,
    HttpServerConfig,
    ServerConfig,
    SseServerConfig,
    StdioServerConfig,
    Step,
    ToolHealthSuite,
    ToolTest,
    Workflow,
)
from utils import expand_env_vars

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_STRING_MAP = {"type": "object", "additionalProperties": {"type": "string"}}

_AUTH = {
    "type": "object",
    "required": ["type", "tenantId", "clientId", "clientSecret", "scope"],
    "properties": {
        "type": {"const": "azure_ad"},
        "tenantId": {"type": "string", "minLength": 1},
        "clientId": {"type": "string", "minLength": 1},
        "clientSecret": {"type": "string", "minLength": 1},
        "scope": {"type": "string", "minLength": 1},
    },
}

_HTTP_URL = {"type": "string", "pattern": "^https?://"}

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["server"],
    "properties": {
        "server": {
            "type": "object",
            "required": ["transport"],
            "properties": {"transport": {"enum": ["stdio", "sse", "shttp"]}},
            "allOf": [
                {
                    "if": {"properties": {"transport": {"const": "stdio"}}},
                    "then": {
                        "required": ["command"],
                        "properties": {
                            "command": {"type": "string", "minLength": 1},
                            "args": _STRING_LIST,
                            "env": _STRING_MAP,
                            "cwd": {"type": "string"},
                        },
                    },
                },
                {
                    "if": {"properties": {"transport": {"const": "sse"}}},
                    "then": {
                        "required": ["url"],
                        "properties": {
                            "url": _HTTP_URL,
                            "headers": _STRING_MAP,
                            "auth": _AUTH,
                            "reconnect": {"type": "boolean"},
                            "maxReconnectAttempts": {"type": "integer", "minimum": 0},
                            "reconnectInterval": {"type": "number", "minimum": 0},
                        },
                    },
                },
                {
                    "if": {"properties": {"transport": {"const": "shttp"}}},
                    "then": {
                        "required": ["url"],
                        "properties": {"url": _HTTP_URL, "headers": _STRING_MAP, "auth": _AUTH},
                    },
                },
            ],
        },
        "workflows": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "steps"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "expectTools": _STRING_LIST,
                    "steps": {
                        "type": "array",
                        "minItems": 1,
                        "items": {
                            "type": "object",
                            "required": ["user"],
                            "properties": {
                                "user": {"type": "string", "minLength": 1},
                                "expectedState": {"type": "string"},
                                "expectTools": _STRING_LIST,
                            },
                        },
                    },
                },
            },
        },
        "toolHealthSuites": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "tests"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "parallel": {"type": "boolean"},
                    "timeout": {"type": "number", "exclusiveMinimum": 0},
                    "tests": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["name"],
                            "properties": {
                                "name": {"type": "string", "minLength": 1},
                                "description": {"type": "string"},
                                "args": {"type": "object"},
                                "expectedError": {"type": "string"},
                                "maxLatency": {"type": "number", "exclusiveMinimum": 0},
                                "retries": {"type": "integer", "minimum": 0, "maximum": 5},
                            },
                        },
                    },
                },
            },
        },
        "timeout": {"type": "number", "exclusiveMinimum": 0},
        "maxTurns": {"type": "integer", "minimum": 1},
        "parallel": {"type": "boolean"},
    },
}

_validator = Draft202012Validator(CONFIG_SCHEMA)


def _ms(value: Optional[float]) -> Optional[float]:
    return None if value is None else float(value) / 1000.0


def _infer_transport(server: Any) -> None:
    if isinstance(server, dict) and "transport" not in server:
        if "command" in server:
            server["transport"] = "stdio"
        elif "url" in server:
            server["transport"] = "shttp"


def _parse_auth(raw: Optional[dict]) -> Optional[AzureAdAuth]:
    if not raw:
        return None
    return AzureAdAuth(
        tenant_id=raw["tenantId"],
        client_id=raw["clientId"],
        client_secret=raw["clientSecret"],
        scope=raw["scope"],
    )


def _parse_server(raw: dict) -> ServerConfig:
    transport = raw["transport"]
    if transport == "stdio":
        return StdioServerConfig(
            command=raw["command"],
            args=list(raw.get("args") or []),
            env=dict(raw.get("env") or {}),
            cwd=raw.get("cwd"),
        )
    if transport == "sse":
        return SseServerConfig(
            url=raw["url"],
            headers=dict(raw.get("headers") or {}),
            auth=_parse_auth(raw.get("auth")),
            reconnect=bool(raw.get("reconnect", False)),
            max_reconnect_attempts=int(raw.get("maxReconnectAttempts", 10)),
            reconnect_interval_s=_ms(raw.get("reconnectInterval", 5000)),
        )
    return HttpServerConfig(
        url=raw["url"],
        headers=dict(raw.get("headers") or {}),
        auth=_parse_auth(raw.get("auth")),
    )


def _parse_workflow(raw: dict) -> Workflow:
    return Workflow(
        name=raw["name"],
        description=raw.get("description"),
        expect_tools=list(raw["expectTools"]) if raw.get("expectTools") else None,
        steps=[
            Step(
                user=s["user"],
                expected_state=s.get("expectedState"),
                expect_tools=list(s["expectTools"]) if s.get("expectTools") else None,
            )
            for s in raw["steps"]
        ],
    )


def _parse_suite(raw: dict) -> ToolHealthSuite:
    tests = [
        ToolTest(
            name=t["name"],
            args=dict(t.get("args") or {}),
            description=t.get("description"),
            expected_result=t.get("expectedResult"),
            has_expected_result="expectedResult" in t,
            expected_error=t.get("expectedError"),
            max_latency_ms=t.get("maxLatency"),
            retries=int(t.get("retries", 0)),
        )
        for t in raw["tests"]
    ]
    return ToolHealthSuite(
        name=raw["name"],
        description=raw.get("description"),
        tests=tests,
        parallel=bool(raw.get("parallel", False)),
        timeout_s=_ms(raw.get("timeout")),
    )


def parse_config(doc: Any) -> EvalConfig:
    doc = expand_env_vars(doc)
    if isinstance(doc, dict):
        _infer_transport(doc.get("server"))

    error = best_match(_validator.iter_errors(doc))
    if error is not None:
        where = "/".join(str(p) for p in error.absolute_path) or "<root>"
        raise ConfigError(f"Invalid configuration at {where}: {error.message}")

    config = EvalConfig(
        server=_parse_server(doc["server"]),
        workflows=[_parse_workflow(w) for w in doc.get("workflows") or []],
        tool_health_suites=[_parse_suite(s) for s in doc.get("toolHealthSuites") or []],
        timeout_s=_ms(doc.get("timeout", 30000)),
        max_turns=doc.get("maxTurns"),
        parallel=bool(doc.get("parallel", False)),
    )
    if not config.workflows and not config.tool_health_suites:
        raise ConfigError("Configuration declares neither workflows nor toolHealthSuites")
    return config


def load_config(path: Path) -> EvalConfig:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Configuration file {path} is not valid JSON: {e}") from e

    config = parse_config(doc)
    logger.info(
        "Loaded %d workflows and %d tool health suites from %s (transport=%s)",
        len(config.workflows),
        len(config.tool_health_suites),
        path,
        config.server.transport,
    )
    return config
