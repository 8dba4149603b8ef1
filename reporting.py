"""reporting.py

Reporting helpers for the MCP workflow evaluation harness.

- ``evaluation_payload``           - JSON audit payload for one evaluation run.
- ``flatten_evaluations_for_csv``  - one row per workflow metric / tool test for external analysis.
- ``render_markdown_report``       - human-readable Markdown report.
- ``log_summary``                  - console summary through the harness logger.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from config import logger
from evaluator import END_TO_END_SUCCESS, TOOL_CALL_HEALTH, TOOL_INVOCATION_ORDER
from models import EvaluationReport
from utils import _mean, _stdev


def evaluation_payload(report: EvaluationReport, config_path: Optional[Path] = None) -> dict[str, Any]:
    payload = report.to_dict()
    payload["llm_model"] = os.getenv("LLM_MODEL")
    payload["config"] = str(config_path) if config_path else None
    return payload


def flatten_evaluations_for_csv(report: EvaluationReport) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for ev in report.evaluations:
        details = report.run_details.get(ev.workflow_name, {})
        tokens = details.get("token_usage", {})
        for r in ev.results:
            rows.append({
                "kind": "workflow",
                "name": ev.workflow_name,
                "metric": r.metric,
                "passed": int(r.passed),
                "score": round(r.score, 4),
                "latency_ms": "",
                "workflow_passed": int(ev.passed),
                "workflow_score": round(ev.overall_score, 4),
                "tokens_total": tokens.get("total", 0),
                "details": r.details,
            })
    for suite in report.tool_health_results:
        for t in suite.results:
            rows.append({
                "kind": "tool_health",
                "name": suite.suite_name,
                "metric": t.test_name,
                "passed": int(t.passed),
                "score": round(t.score, 4),
                "latency_ms": round(t.latency_ms, 1),
                "workflow_passed": int(suite.passed),
                "workflow_score": round(suite.overall_score, 4),
                "tokens_total": 0,
                "details": t.details,
            })
    return rows


def render_markdown_report(report: EvaluationReport, config_path: Optional[Path] = None) -> str:
    evs = report.evaluations
    passed = sum(1 for e in evs if e.passed)
    tokens_total = sum(d.get("token_usage", {}).get("total", 0) for d in report.run_details.values())

    out = []
    out.append("# MCP Workflow Evaluation Report\n")
    out.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
    if config_path:
        out.append(f"Configuration: {config_path}\n")
    out.append("\n## Summary\n")
    out.append(f"- Overall: {'PASSED' if report.passed else 'FAILED'}\n")
    out.append(f"- Workflows passed: {passed}/{len(evs)}\n")
    out.append(f"- Mean workflow score: {_mean([e.overall_score for e in evs]):.2f}\n")
    out.append(f"- Total tokens: {tokens_total:,}\n")

    if evs:
        out.append("\n## Workflows\n")
        out.append("| Workflow | Passed | Score | End-to-End | Order | Health |\n")
        out.append("|---|---|---:|---:|---:|---:|\n")
        for e in evs:
            by_metric = {r.metric: r for r in e.results}
            cells = []
            for metric in (END_TO_END_SUCCESS, TOOL_INVOCATION_ORDER, TOOL_CALL_HEALTH):
                r = by_metric.get(metric)
                cells.append(f"{r.score:.2f}" if r else "-")
            out.append(f"| {e.workflow_name} | {'yes' if e.passed else 'no'} | {e.overall_score:.2f} | {' | '.join(cells)} |\n")

        out.append("\n### Failures\n")
        failures = [(e.workflow_name, r) for e in evs for r in e.results if not r.passed]
        if not failures:
            out.append("- none\n")
        for name, r in failures:
            out.append(f"- **{name}** / {r.metric}: {r.details}\n")

    if report.tool_health_results:
        out.append("\n## Tool Health\n")
        out.append("| Suite | Passed | Tests | Mean Latency (ms) | StdDev |\n")
        out.append("|---|---|---:|---:|---:|\n")
        for s in report.tool_health_results:
            lat = [t.latency_ms for t in s.results]
            out.append(
                f"| {s.suite_name} | {'yes' if s.passed else 'no'} | {s.passed_tests}/{s.total_tests} | "
                f"{s.average_latency_ms:.0f} | {_stdev(lat):.0f} |\n"
            )
        for s in report.tool_health_results:
            for t in s.results:
                if not t.passed:
                    out.append(f"- **{s.suite_name}** / {t.test_name}: {t.details}\n")

    if report.performance:
        out.append("\n## Performance\n")
        for k, v in report.performance.items():
            out.append(f"- {k}: {v}\n")
    return "".join(out)


def log_summary(report: EvaluationReport) -> None:
    logger.info("=== EVALUATION SUMMARY ===")
    for e in report.evaluations:
        logger.info("%s %s (score %.2f)", "PASS" if e.passed else "FAIL", e.workflow_name, e.overall_score)
        for r in e.results:
            logger.info("    %-22s %s %.2f  %s", r.metric, "ok " if r.passed else "x  ", r.score, r.details)
    for s in report.tool_health_results:
        logger.info(
            "%s suite %s: %d/%d tests passed",
            "PASS" if s.passed else "FAIL", s.suite_name, s.passed_tests, s.total_tests,
        )
    logger.info("Overall: %s", "PASSED" if report.passed else "FAILED")
