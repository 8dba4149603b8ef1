import json

from main import write_outputs
from models import EvaluationReport, EvaluationResult, ToolHealthResult, ToolTestResult, WorkflowEvaluation
from reporting import evaluation_payload, flatten_evaluations_for_csv, render_markdown_report


def _report() -> EvaluationReport:
    evaluation = WorkflowEvaluation.from_results("math", [
        EvaluationResult(metric="End-to-End Success", passed=True, score=1.0, details="ok"),
        EvaluationResult(metric="Tool Invocation Order", passed=False, score=0.5, details="Only 1/2 expected tools were called"),
        EvaluationResult(metric="Tool Call Health", passed=True, score=1.0, details="1/1 tool calls succeeded"),
    ])
    suite = ToolHealthResult(
        suite_name="smoke",
        results=[ToolTestResult(test_name="add test", tool_name="add", passed=True, score=1.0,
                                latency_ms=12.0, details="Call succeeded")],
        total_tests=1,
        passed_tests=1,
        average_latency_ms=12.0,
    )
    return EvaluationReport(
        evaluations=[evaluation],
        tool_health_results=[suite],
        passed=False,
        run_details={"math": {"token_usage": {"prompt": 10, "completion": 5, "total": 15}}},
        performance={"samples": 1},
    )


def test_flatten_rows_cover_metrics_and_tool_tests():
    rows = flatten_evaluations_for_csv(_report())
    assert [(r["kind"], r["metric"]) for r in rows] == [
        ("workflow", "End-to-End Success"),
        ("workflow", "Tool Invocation Order"),
        ("workflow", "Tool Call Health"),
        ("tool_health", "add test"),
    ]
    assert rows[0]["tokens_total"] == 15
    assert rows[1]["passed"] == 0


def test_markdown_lists_failures():
    md = render_markdown_report(_report())
    assert "Overall: FAILED" in md
    assert "| math | no | 0.83 | 1.00 | 0.50 | 1.00 |" in md
    assert "**math** / Tool Invocation Order" in md
    assert "## Tool Health" in md


def test_payload_is_serialisable(monkeypatch):
    monkeypatch.setenv("LLM_MODEL", "gpt-test")
    payload = evaluation_payload(_report())
    assert payload["llm_model"] == "gpt-test"
    assert payload["evaluations"][0]["workflow_name"] == "math"
    assert isinstance(payload["timestamp"], str)


def test_write_outputs_creates_three_files(tmp_path):
    out = tmp_path / "results" / "run.json"
    write_outputs(_report(), out, tmp_path / "config.json")

    assert json.loads(out.read_text(encoding="utf-8"))["passed"] is False
    assert (tmp_path / "results" / "run_flattened.csv").exists()
    assert (tmp_path / "results" / "run_report.md").exists()
