"""evaluator.py

Deterministic (rule-based) evaluation of one workflow run.

``evaluate_workflow(workflow, trace)`` computes three independent metrics from a
Workflow and its TraceStore and aggregates them into a WorkflowEvaluation:

1. End-to-End Success     - final message or last tool result contains the expected state.
2. Tool Invocation Order  - expected tool names matched as a prefix of the actual calls.
3. Tool Call Health       - share of tool calls whose result is present and error-free.

Metrics never raise: an absent expectation passes trivially, and a metric that
fails unexpectedly is reported as a failed result while the others still run.
"""

from __future__ import annotations

from typing import Any, Callable

from config import logger
from models import EvaluationResult, Workflow, WorkflowEvaluation
from trace_store import TraceStore
from utils import _stringify

END_TO_END_SUCCESS = "End-to-End Success"
TOOL_INVOCATION_ORDER = "Tool Invocation Order"
TOOL_CALL_HEALTH = "Tool Call Health"


# =========================
# Metrics
# =========================


def evaluate_end_to_end(workflow: Workflow, trace: TraceStore) -> EvaluationResult:
    final_step = workflow.steps[-1] if workflow.steps else None
    expected = final_step.expected_state if final_step else None
    if not expected:
        return EvaluationResult(
            metric=END_TO_END_SUCCESS,
            passed=True,
            score=1.0,
            details="No expected state declared",
        )

    needle = expected.lower()
    last_message = trace.get_last_message()
    if last_message is not None and needle in (last_message.content or "").lower():
        return EvaluationResult(
            metric=END_TO_END_SUCCESS,
            passed=True,
            score=1.0,
            details=f'Final message contains expected state "{expected}"',
            metadata={"expected_state": expected, "matched_in": "message"},
        )

    calls = trace.get_tool_calls()
    if calls:
        last_result = trace.get_tool_result(calls[-1].id)
        if last_result is not None and last_result.result is not None:
            if needle in _stringify(last_result.result).lower():
                return EvaluationResult(
                    metric=END_TO_END_SUCCESS,
                    passed=True,
                    score=1.0,
                    details=f'Last tool result contains expected state "{expected}"',
                    metadata={"expected_state": expected, "matched_in": "tool_result"},
                )

    if last_message is None and not calls:
        details = f'Expected state "{expected}" but nothing was recorded'
    else:
        details = f'Expected state "{expected}" not found in final message or last tool result'
    return EvaluationResult(
        metric=END_TO_END_SUCCESS,
        passed=False,
        score=0.0,
        details=details,
        metadata={
            "expected_state": expected,
            "final_message": last_message.content if last_message else None,
        },
    )


def expected_tool_sequence(workflow: Workflow) -> list[str]:
    """Workflow-level list wins; otherwise step lists are concatenated in step order."""
    if workflow.expect_tools:
        return list(workflow.expect_tools)
    sequence: list[str] = []
    for step in workflow.steps:
        if step.expect_tools:
            sequence.extend(step.expect_tools)
    return sequence


def evaluate_tool_order(workflow: Workflow, trace: TraceStore) -> EvaluationResult:
    expected = expected_tool_sequence(workflow)
    if not expected:
        return EvaluationResult(
            metric=TOOL_INVOCATION_ORDER,
            passed=True,
            score=1.0,
            details="No expected tools declared",
        )

    actual = [c.name for c in trace.get_tool_calls()]
    matched = 0
    for want, got in zip(expected, actual):
        if want != got:
            break
        matched += 1

    passed = matched == len(expected) and len(actual) >= len(expected)
    if passed:
        details = f"All {len(expected)} expected tools called in order"
    elif matched < len(actual) and matched < len(expected):
        details = f"Expected {expected[matched]!r} at position {matched + 1}, got {actual[matched]!r}"
    else:
        details = f"Only {matched}/{len(expected)} expected tools were called"
    return EvaluationResult(
        metric=TOOL_INVOCATION_ORDER,
        passed=passed,
        score=matched / len(expected),
        details=details,
        metadata={"expected": expected, "actual": actual, "matched_prefix": matched},
    )


def evaluate_tool_health(workflow: Workflow, trace: TraceStore) -> EvaluationResult:
    calls = trace.get_tool_calls()
    if not calls:
        return EvaluationResult(
            metric=TOOL_CALL_HEALTH,
            passed=True,
            score=1.0,
            details="No tool calls made",
        )

    failures: list[dict[str, Any]] = []
    for call in calls:
        result = trace.get_tool_result(call.id)
        if result is None:
            failures.append({"tool": call.name, "call_id": call.id, "reason": "no result recorded"})
        elif result.error:
            failures.append({"tool": call.name, "call_id": call.id, "reason": result.error})
        elif result.status_code is not None and not 200 <= result.status_code < 300:
            failures.append({"tool": call.name, "call_id": call.id, "reason": f"status {result.status_code}"})

    succeeded = len(calls) - len(failures)
    return EvaluationResult(
        metric=TOOL_CALL_HEALTH,
        passed=not failures,
        score=succeeded / len(calls),
        details=f"{succeeded}/{len(calls)} tool calls succeeded",
        metadata={"failures": failures} if failures else None,
    )


METRICS: list[tuple[str, Callable[[Workflow, TraceStore], EvaluationResult]]] = [
    (END_TO_END_SUCCESS, evaluate_end_to_end),
    (TOOL_INVOCATION_ORDER, evaluate_tool_order),
    (TOOL_CALL_HEALTH, evaluate_tool_health),
]


# =========================
# Aggregation
# =========================


def evaluate_workflow(workflow: Workflow, trace: TraceStore) -> WorkflowEvaluation:
    results: list[EvaluationResult] = []
    for name, metric in METRICS:
        try:
            results.append(metric(workflow, trace))
        except Exception as e:
            logger.exception("Metric %s failed for workflow %s", name, workflow.name)
            results.append(
                EvaluationResult(metric=name, passed=False, score=0.0, details=f"Evaluation error: {e}")
            )
    return WorkflowEvaluation.from_results(workflow.name, results)


def summarize_trace(trace: TraceStore) -> dict[str, Any]:
    """Counts used by reports next to the metric results."""
    calls = trace.get_tool_calls()
    results = trace.get_tool_results()
    failed = [r for r in results if not r.ok]
    by_tool: dict[str, int] = {}
    for c in calls:
        by_tool[c.name] = by_tool.get(c.name, 0) + 1
    return {
        "messages": len(trace.get_conversation()),
        "tool_calls": len(calls),
        "tool_results": len(results),
        "failed_results": len(failed),
        "invalid_arguments": sum(1 for c in calls if not c.argument_schema_valid),
        "calls_by_tool": by_tool,
        "total_tool_time_s": sum(r.execution_time for r in results),
    }
