"""Static check engine.

One directory walk feeds three independent analyses: lint heuristics,
requirement checks and, when enabled, the external test runner.
"""

from __future__ import annotations

import logging
from pathlib import Path

from codereview.config import Settings
from codereview.errors import ExecutionTimeoutError
from codereview.schemas import (
    LintSummary,
    StaticCheckResult,
    TestItem,
    TestRunResult,
    TestsSummary,
)
from codereview.tools.lint import lint_files
from codereview.tools.repo import walk_files
from codereview.tools.requirements import builtin_requirements, config_requirements
from codereview.tools.sandbox import build_invocations, run_tests


logger = logging.getLogger(__name__)

RAW_OUTPUT_LIMIT = 2000


def merge_test_run(run: TestRunResult) -> TestsSummary:
    """Convert a runner result into the checks.json ``tests`` block."""
    items = [TestItem(id=test_id, status="failed") for test_id in run.items]

    if not run.started:
        items.append(
            TestItem(
                id="pytest-error",
                status="failed",
                message=run.raw_output[:RAW_OUTPUT_LIMIT] or "Test runner could not be started",
            )
        )
    elif run.passed == 0 and run.failed == 0 and run.raw_output:
        items.append(
            TestItem(id="pytest-raw", status="failed", message=run.raw_output[:RAW_OUTPUT_LIMIT])
        )

    return TestsSummary(passed=run.passed, failed=run.failed, items=items)


async def run_static_check(work_dir: str | Path, settings: Settings) -> StaticCheckResult:
    """Run lint, requirement checks and the optional test runner.

    Raises:
        ExecutionTimeoutError: if the test runner exceeded its timeout
    """
    root = Path(work_dir)
    files = walk_files(root)
    logger.info(f"Static check over {len(files)} files in {root}")

    lint_errors, metrics = lint_files(root, files)
    requirements = builtin_requirements(root, files) + config_requirements(root, files)

    tests = TestsSummary()
    if settings.enable_pytest:
        invocations = build_invocations(
            settings.pytest_commands,
            disable_socket=settings.pytest_disable_socket,
        )
        run = await run_tests(root, invocations, timeout=settings.pytest_timeout_seconds)
        if run.timed_out:
            raise ExecutionTimeoutError(
                f"Test runner timed out after {settings.pytest_timeout_seconds} seconds",
                {"output": run.raw_output[:RAW_OUTPUT_LIMIT]},
            )
        tests = merge_test_run(run)
        logger.info(f"Test runner finished: {tests.passed} passed, {tests.failed} failed")

    return StaticCheckResult(
        tests=tests,
        lint=LintSummary(errors=lint_errors),
        metrics=metrics,
        requirements=requirements,
    )
