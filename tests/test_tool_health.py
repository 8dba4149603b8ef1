import time

import pytest

from conftest import FakeConnection
from errors import ToolExecutionError, ToolTimeoutError
from models import ToolHealthSuite, ToolTest
from tool_health import ToolTester, _matches_expected


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr("tool_health.RETRY_BACKOFF_S", 0.0)


def _divide(args):
    if args["b"] == 0:
        raise ToolExecutionError("divide", "ZeroDivisionError: division by zero")
    return args["a"] / args["b"]


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection({
        "add": lambda args: args["a"] + args["b"],
        "divide": _divide,
        "echo": lambda args: {"echo": args.get("text")},
    })


@pytest.mark.parametrize(
    "actual, expected, ok",
    [
        ("Result: 42", "42", True),
        ("HELLO world", "hello", True),
        (3.00001, 3, True),
        ("3.0", 3, True),
        (3.1, 3, False),
        ("three", 3, False),
        ({"a": 1}, {"a": 1}, True),
        ('{"a": 1}', {"a": 1}, True),
        ({"a": 2}, {"a": 1}, False),
        ([1, 2], [1, 2], True),
    ],
)
def test_matches_expected(actual, expected, ok):
    assert _matches_expected(actual, expected) is ok


@pytest.mark.asyncio
async def test_successful_test_with_expected_result(connection):
    test = ToolTest(name="add", args={"a": 1, "b": 2}, expected_result=3, has_expected_result=True)
    result = await ToolTester(connection).run_tool_test(test)
    assert result.passed is True
    assert result.score == 1.0
    assert result.metadata == {"result": 3}
    assert result.test_name == "add test"


@pytest.mark.asyncio
async def test_wrong_result_fails(connection):
    test = ToolTest(name="add", args={"a": 1, "b": 2}, expected_result=4, has_expected_result=True)
    result = await ToolTester(connection).run_tool_test(test)
    assert result.passed is False
    assert "did not match" in result.details


@pytest.mark.asyncio
async def test_expected_error_passes_when_call_fails(connection):
    test = ToolTest(name="divide", args={"a": 1, "b": 0}, expected_error="division by zero")
    result = await ToolTester(connection).run_tool_test(test)
    assert result.passed is True


@pytest.mark.asyncio
async def test_expected_error_fails_when_call_succeeds(connection):
    test = ToolTest(name="divide", args={"a": 4, "b": 2}, expected_error="division by zero")
    result = await ToolTester(connection).run_tool_test(test)
    assert result.passed is False
    assert "succeeded" in result.details


@pytest.mark.asyncio
async def test_unexpected_error_fails(connection):
    result = await ToolTester(connection).run_tool_test(ToolTest(name="divide", args={"a": 1, "b": 0}))
    assert result.passed is False
    assert result.error == "ZeroDivisionError: division by zero"


@pytest.mark.asyncio
async def test_latency_limit():
    def slow(args):
        time.sleep(0.02)
        return "ok"

    test = ToolTest(name="slow", max_latency_ms=1)
    result = await ToolTester(FakeConnection({"slow": slow})).run_tool_test(test)
    assert result.passed is False
    assert result.latency_ms >= 20
    assert "exceeded" in result.details


@pytest.mark.asyncio
async def test_retries_until_success():
    attempts = []

    def flaky(args):
        attempts.append(1)
        if len(attempts) < 3:
            raise ToolTimeoutError("flaky", 1.0)
        return "ok"

    test = ToolTest(name="flaky", retries=3)
    result = await ToolTester(FakeConnection({"flaky": flaky})).run_tool_test(test)
    assert result.passed is True
    assert result.retry_count == 2
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retries_are_capped():
    attempts = []

    def always_fails(args):
        attempts.append(1)
        raise ToolExecutionError("bad", "nope")

    result = await ToolTester(FakeConnection({"bad": always_fails})).run_tool_test(ToolTest(name="bad", retries=50))
    assert result.passed is False
    assert len(attempts) == 6
    assert result.retry_count == 5


@pytest.mark.asyncio
async def test_first_attempt_success_does_not_retry():
    attempts = []

    def works(args):
        attempts.append(1)
        return "ok"

    result = await ToolTester(FakeConnection({"works": works})).run_tool_test(ToolTest(name="works", retries=3))
    assert result.passed is True
    assert result.retry_count == 0
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_suite_timeout_overrides_global(connection):
    tester = ToolTester(connection, global_timeout_s=30.0)
    await tester.run_tool_test(ToolTest(name="add", args={"a": 1, "b": 1}), timeout_s=2.0)
    await tester.run_tool_test(ToolTest(name="add", args={"a": 1, "b": 1}))
    assert [c[2] for c in connection.calls] == [2.0, 30.0]


@pytest.mark.parametrize("parallel", [False, True])
@pytest.mark.asyncio
async def test_run_suite_aggregates(connection, parallel):
    suite = ToolHealthSuite(
        name="smoke",
        parallel=parallel,
        tests=[
            ToolTest(name="add", args={"a": 1, "b": 2}, expected_result=3, has_expected_result=True),
            ToolTest(name="echo", args={"text": "hi"}, expected_result="hi", has_expected_result=True),
            ToolTest(name="missing_tool"),
        ],
    )
    health = await ToolTester(connection).run_suite(suite)

    assert health.total_tests == 3
    assert health.passed_tests == 2
    assert health.failed_tests == 1
    assert health.passed is False
    assert health.overall_score == pytest.approx(2 / 3)
    assert [r.tool_name for r in health.results] == ["add", "echo", "missing_tool"]
    assert health.results[2].details == "Tool not found on server"
    # the missing tool is never called
    assert "missing_tool" not in [c[0] for c in connection.calls]


@pytest.mark.asyncio
async def test_validate_suite_reports_missing_tools(connection):
    suite = ToolHealthSuite(name="s", tests=[ToolTest(name="add"), ToolTest(name="nope", description="nope check")])
    problems = await ToolTester(connection).validate_suite(suite)
    assert problems == ["Tool 'nope' not found on server (test: nope check)"]
