"""tool_health.py

Direct tool-health suites: call tools with fixed arguments (no model involved)
and check latency, expected results, and expected errors.

A test passes when the call succeeds within ``max_latency_ms`` and its payload
matches ``expected_result``, or when it fails with an error message containing
``expected_error``. Failed attempts are retried up to ``retries`` times.
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from typing import Any, Optional

from config import DEFAULT_TIMEOUT_S, logger
from connection import ConnectionManager
from errors import ToolCallError
from models import ToolHealthResult, ToolHealthSuite, ToolTest, ToolTestResult
from utils import _mean, _stringify

MAX_RETRIES = 5
RETRY_BACKOFF_S = 0.5
NUMERIC_TOLERANCE = 1e-4


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _matches_expected(actual: Any, expected: Any) -> bool:
    if isinstance(expected, str):
        return expected.lower() in _stringify(actual).lower()
    if _is_number(expected):
        if isinstance(actual, str):
            try:
                actual = float(actual)
            except ValueError:
                return False
        return _is_number(actual) and math.isclose(actual, expected, rel_tol=0.0, abs_tol=NUMERIC_TOLERANCE)
    if isinstance(actual, str):
        try:
            actual = json.loads(actual)
        except json.JSONDecodeError:
            return False
    return actual == expected


class ToolTester:
    def __init__(self, connection: ConnectionManager, global_timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.connection = connection
        self.global_timeout_s = global_timeout_s

    async def validate_suite(self, suite: ToolHealthSuite) -> list[str]:
        """Return one message per test whose tool the server does not expose."""
        available = {t.name for t in await self.connection.list_tools()}
        return [
            f"Tool '{test.name}' not found on server (test: {test.label})"
            for test in suite.tests
            if test.name not in available
        ]

    async def run_tool_test(self, test: ToolTest, timeout_s: Optional[float] = None) -> ToolTestResult:
        timeout = timeout_s or self.global_timeout_s
        attempts = 1 + max(0, min(test.retries, MAX_RETRIES))

        result = await self._attempt(test, timeout)
        for attempt in range(1, attempts):
            if result.passed:
                break
            logger.debug("Retrying %s (attempt %d/%d)", test.label, attempt + 1, attempts)
            await asyncio.sleep(RETRY_BACKOFF_S * attempt)
            result = await self._attempt(test, timeout)
            result.retry_count = attempt
        return result

    async def _attempt(self, test: ToolTest, timeout: float) -> ToolTestResult:
        start = time.perf_counter()
        try:
            payload = await self.connection.call_tool(test.name, dict(test.args), timeout=timeout)
        except ToolCallError as e:
            latency_ms = (time.perf_counter() - start) * 1000
            if test.expected_error and test.expected_error.lower() in e.message.lower():
                return self._result(test, True, latency_ms, f"Failed with expected error: {e.message}")
            return self._result(test, False, latency_ms, f"Tool call failed: {e.message}", error=e.message)
        latency_ms = (time.perf_counter() - start) * 1000

        if test.expected_error:
            return self._result(
                test, False, latency_ms,
                f'Expected error containing "{test.expected_error}" but the call succeeded',
                payload=payload,
            )
        if test.max_latency_ms is not None and latency_ms > test.max_latency_ms:
            return self._result(
                test, False, latency_ms,
                f"Latency {latency_ms:.0f}ms exceeded limit of {test.max_latency_ms:.0f}ms",
                payload=payload,
            )
        if test.has_expected_result and not _matches_expected(payload, test.expected_result):
            return self._result(
                test, False, latency_ms,
                f"Result did not match expected value {_stringify(test.expected_result)[:120]}",
                payload=payload,
            )
        return self._result(test, True, latency_ms, "Call succeeded", payload=payload)

    @staticmethod
    def _result(
        test: ToolTest,
        passed: bool,
        latency_ms: float,
        details: str,
        error: Optional[str] = None,
        payload: Any = None,
    ) -> ToolTestResult:
        return ToolTestResult(
            test_name=test.label,
            tool_name=test.name,
            passed=passed,
            score=1.0 if passed else 0.0,
            latency_ms=latency_ms,
            details=details,
            error=error,
            metadata={"result": payload} if payload is not None else None,
        )

    async def run_suite(self, suite: ToolHealthSuite) -> ToolHealthResult:
        logger.info("Running tool health suite: %s (%d tests)", suite.name, len(suite.tests))
        problems = await self.validate_suite(suite)
        for p in problems:
            logger.warning(p)
        available = {t.name for t in await self.connection.list_tools()}

        async def _run(test: ToolTest) -> ToolTestResult:
            if test.name not in available:
                return self._result(test, False, 0.0, "Tool not found on server", error="Tool not found on server")
            return await self.run_tool_test(test, suite.timeout_s)

        if suite.parallel:
            results = list(await asyncio.gather(*(_run(t) for t in suite.tests)))
        else:
            results = [await _run(t) for t in suite.tests]

        passed_tests = sum(1 for r in results if r.passed)
        total = len(results)
        health = ToolHealthResult(
            suite_name=suite.name,
            description=suite.description,
            results=results,
            overall_score=passed_tests / total if total else 1.0,
            passed=passed_tests == total,
            total_tests=total,
            passed_tests=passed_tests,
            failed_tests=total - passed_tests,
            average_latency_ms=_mean([r.latency_ms for r in results]),
        )
        logger.info(
            "Suite %s: %d/%d passed (avg latency %.0fms)",
            suite.name, passed_tests, total, health.average_latency_ms,
        )
        return health
