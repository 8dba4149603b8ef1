"""runner.py

Evaluation orchestration.

An ``EvaluationContext`` carries the session, trace, and model for one
evaluation run and is passed explicitly to every call; nothing here keeps a
process-wide "current session". Sequential runs share one session and one
trace (cleared between workflows). Parallel runs give every workflow its own
session and trace. Sessions are always stopped, including on cancellation.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from agent import AgentLoop
from config import DEFAULT_MAX_TURNS, logger
from connection import ConnectionManager
from evaluator import evaluate_workflow, summarize_trace
from llm import LanguageModel
from models import EvalConfig, EvaluationReport, ToolHealthResult, Workflow, WorkflowEvaluation
from performance import PerformanceMonitor
from tool_health import ToolTester
from trace_store import TraceStore


@dataclass
class EvaluationContext:
    connection: ConnectionManager
    trace: TraceStore
    model: LanguageModel
    max_turns: int = DEFAULT_MAX_TURNS
    tool_timeout: Optional[float] = None


async def run_workflow(ctx: EvaluationContext, workflow: Workflow) -> tuple[WorkflowEvaluation, dict[str, Any]]:
    """Run one workflow on ``ctx`` and score it.

    The trace is cleared first so the evaluator only sees this workflow. A
    McpConnectionError from the agent loop propagates and nothing is scored.
    """
    ctx.trace.clear()
    logger.info("Workflow: %s (%d steps)", workflow.name, len(workflow.steps))

    loop = AgentLoop(
        ctx.connection,
        ctx.model,
        ctx.trace,
        max_turns=ctx.max_turns,
        tool_timeout=ctx.tool_timeout,
    )
    run = await loop.run(workflow.steps)
    evaluation = evaluate_workflow(workflow, ctx.trace)

    details = {
        "agent_success": run.success,
        "steps": [asdict(s) for s in run.steps],
        "token_usage": run.token_usage,
        "trace": summarize_trace(ctx.trace),
    }
    logger.info(
        "Workflow %s: %s (score %.2f)",
        workflow.name,
        "PASSED" if evaluation.passed else "FAILED",
        evaluation.overall_score,
    )
    return evaluation, details


def force_compaction(ctx: EvaluationContext, monitor: PerformanceMonitor) -> dict[str, Any]:
    removed = ctx.trace.compact()
    collected = monitor.compact()
    sample = monitor.sample(trace_entries=ctx.trace.get_memory_usage()["total"])
    logger.debug("Compaction removed %d trace entries, collected %d objects", removed, collected)
    return {"trace_entries_removed": removed, "objects_collected": collected, "sample": asdict(sample)}


def _default_connection_factory(config: EvalConfig) -> Callable[[], ConnectionManager]:
    return lambda: ConnectionManager(config.server, timeout_s=config.timeout_s)


async def _run_suites(connection: ConnectionManager, config: EvalConfig) -> list[ToolHealthResult]:
    tester = ToolTester(connection, global_timeout_s=config.timeout_s)
    return [await tester.run_suite(suite) for suite in config.tool_health_suites]


async def run_evaluation(
    config: EvalConfig,
    model_factory: Callable[[], LanguageModel],
    *,
    parallel: Optional[bool] = None,
    connection_factory: Optional[Callable[[], ConnectionManager]] = None,
    run_workflows: bool = True,
    run_tool_health: bool = True,
) -> EvaluationReport:
    parallel = config.parallel if parallel is None else parallel
    new_connection = connection_factory or _default_connection_factory(config)
    max_turns = config.max_turns or DEFAULT_MAX_TURNS
    workflows = config.workflows if run_workflows else []
    suites_enabled = run_tool_health and bool(config.tool_health_suites)

    monitor = PerformanceMonitor()
    monitor.start()
    report = EvaluationReport()

    def _record(workflow: Workflow, evaluation: WorkflowEvaluation, details: dict[str, Any]) -> None:
        report.evaluations.append(evaluation)
        report.run_details[workflow.name] = details

    if parallel and workflows:
        async def _isolated(workflow: Workflow) -> tuple[WorkflowEvaluation, dict[str, Any]]:
            async with new_connection() as connection:
                ctx = EvaluationContext(connection, TraceStore(), model_factory(), max_turns, config.timeout_s)
                return await run_workflow(ctx, workflow)

        outcomes = await asyncio.gather(*(_isolated(w) for w in workflows), return_exceptions=True)
        # every session is closed by now; surface the first failure
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        for workflow, (evaluation, details) in zip(workflows, outcomes):
            _record(workflow, evaluation, details)
        monitor.sample()

        if suites_enabled:
            async with new_connection() as connection:
                report.tool_health_results = await _run_suites(connection, config)
    elif workflows or suites_enabled:
        async with new_connection() as connection:
            if workflows:
                ctx = EvaluationContext(connection, TraceStore(), model_factory(), max_turns, config.timeout_s)
                for workflow in workflows:
                    evaluation, details = await run_workflow(ctx, workflow)
                    _record(workflow, evaluation, details)
                    force_compaction(ctx, monitor)
                ctx.trace.clear()
            if suites_enabled:
                report.tool_health_results = await _run_suites(connection, config)

    report.passed = all(e.passed for e in report.evaluations) and all(
        h.passed for h in report.tool_health_results
    )
    report.performance = monitor.report()
    return report
