"""models.py

Data models (dataclasses and enums) for the MCP workflow evaluation harness.

Covers:
- ErrorType           - enum for backend error classification
- Server configs      - stdio / sse / shttp transport settings (+ Azure AD auth)
- Step, Workflow      - declarative workflow input
- ToolTest, ToolHealthSuite - direct tool-health test declarations
- EvalConfig          - full evaluation configuration
- ConversationMessage, ToolCall, ToolResult - trace records
- StepOutcome, AgentRunResult - output of one agent loop run
- EvaluationResult, WorkflowEvaluation - deterministic scoring output
- ToolTestResult, ToolHealthResult, EvaluationReport
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================
# Error Classification
# =========================


class ErrorType(Enum):
    NOT_FOUND = "not_found"
    INVALID_PARAMETER = "invalid_parameter"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    AUTH_OR_QUOTA = "auth_or_quota"
    UNKNOWN = "unknown"


# =========================
# Server configuration
# =========================


@dataclass
class AzureAdAuth:
    """Client-credential flow; the token is sent as a bearer header."""

    tenant_id: str
    client_id: str
    client_secret: str
    scope: str


@dataclass
class StdioServerConfig:
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    transport: str = field(default="stdio", init=False)


@dataclass
class SseServerConfig:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    auth: Optional[AzureAdAuth] = None
    reconnect: bool = False
    max_reconnect_attempts: int = 10
    reconnect_interval_s: float = 5.0
    transport: str = field(default="sse", init=False)


@dataclass
class HttpServerConfig:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    auth: Optional[AzureAdAuth] = None
    transport: str = field(default="shttp", init=False)


ServerConfig = Union[StdioServerConfig, SseServerConfig, HttpServerConfig]


# =========================
# Workflow / suite declarations
# =========================


@dataclass
class Step:
    user: str
    expected_state: Optional[str] = None
    expect_tools: Optional[list[str]] = None


@dataclass
class Workflow:
    name: str
    steps: list[Step] = field(default_factory=list)
    description: Optional[str] = None
    # Takes precedence over per-step expect_tools when non-empty
    expect_tools: Optional[list[str]] = None


@dataclass
class ToolTest:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None
    expected_result: Any = None
    has_expected_result: bool = False
    expected_error: Optional[str] = None
    max_latency_ms: Optional[float] = None
    retries: int = 0

    @property
    def label(self) -> str:
        return self.description or f"{self.name} test"


@dataclass
class ToolHealthSuite:
    name: str
    tests: list[ToolTest] = field(default_factory=list)
    description: Optional[str] = None
    parallel: bool = False
    timeout_s: Optional[float] = None


@dataclass
class EvalConfig:
    server: ServerConfig
    workflows: list[Workflow] = field(default_factory=list)
    tool_health_suites: list[ToolHealthSuite] = field(default_factory=list)
    timeout_s: float = 30.0
    max_turns: Optional[int] = None
    parallel: bool = False


# =========================
# Trace records
# =========================


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    argument_schema_valid: bool = True
    argument_schema_errors: tuple[str, ...] = ()


@dataclass
class ToolResult:
    id: str
    tool_call_id: str
    result: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    error_type: Optional[ErrorType] = None
    execution_time: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def ok(self) -> bool:
        if self.error:
            return False
        if self.status_code is not None and not 200 <= self.status_code < 300:
            return False
        return True


@dataclass
class ConversationMessage:
    role: Literal["user", "assistant"]
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)


# =========================
# Agent loop output
# =========================


@dataclass
class StepOutcome:
    index: int
    completed: bool
    turns: int
    error: Optional[str] = None


@dataclass
class AgentRunResult:
    success: bool
    messages: list[ConversationMessage] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    steps: list[StepOutcome] = field(default_factory=list)
    token_usage: dict = field(default_factory=lambda: {"prompt": 0, "completion": 0, "total": 0})


# =========================
# Evaluation output
# =========================


@dataclass
class EvaluationResult:
    metric: str
    passed: bool
    score: float
    details: str
    metadata: Optional[dict[str, Any]] = None


@dataclass
class WorkflowEvaluation:
    workflow_name: str
    results: list[EvaluationResult] = field(default_factory=list)
    overall_score: float = 1.0
    passed: bool = True

    @classmethod
    def from_results(cls, workflow_name: str, results: list[EvaluationResult]) -> "WorkflowEvaluation":
        evaluation = cls(workflow_name=workflow_name, results=list(results))
        evaluation._recompute()
        return evaluation

    def add_result(self, result: EvaluationResult) -> None:
        """Append an externally computed metric (e.g. a qualitative judge)."""
        self.results.append(result)
        self._recompute()

    def _recompute(self) -> None:
        if self.results:
            self.overall_score = sum(r.score for r in self.results) / len(self.results)
        else:
            self.overall_score = 1.0
        # AND over metrics, not a threshold on the mean
        self.passed = all(r.passed for r in self.results)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ToolTestResult:
    test_name: str
    tool_name: str
    passed: bool
    score: float
    latency_ms: float
    details: str
    retry_count: int = 0
    error: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass
class ToolHealthResult:
    suite_name: str
    results: list[ToolTestResult] = field(default_factory=list)
    description: Optional[str] = None
    overall_score: float = 1.0
    passed: bool = True
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    average_latency_ms: float = 0.0


@dataclass
class EvaluationReport:
    evaluations: list[WorkflowEvaluation] = field(default_factory=list)
    tool_health_results: list[ToolHealthResult] = field(default_factory=list)
    passed: bool = True
    timestamp: datetime = field(default_factory=utcnow)
    # per-workflow agent outcome (steps, token usage, trace summary), keyed by workflow name
    run_details: dict[str, dict[str, Any]] = field(default_factory=dict)
    performance: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat(timespec="seconds")
        return d
