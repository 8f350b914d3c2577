"""Tests for tools/static_check.py."""

from __future__ import annotations

import pytest

from codereview.errors import ExecutionTimeoutError, classify_error
from codereview.schemas import RequirementStatus, TestRunResult as RunnerResult
from codereview.tools import static_check
from codereview.tools.static_check import merge_test_run, run_static_check


class TestRunStaticCheck:
    """End-to-end static check over a working tree."""

    async def test_lint_requirements_and_metrics(self, settings, make_tree) -> None:
        root = make_tree({
            "app/models.py": "from django.db import models\nname = models.CharField()\n",
            "app/views.py": "print('debug')\n",
            "node_modules/pkg/index.js": "// TODO ignored\n",
        })

        result = await run_static_check(root, settings)

        assert [(e.file, e.code) for e in result.lint.errors] == [("app/views.py", "PY001")]
        assert result.metrics.py_files == 2
        reqs = {r.id: r.status for r in result.requirements}
        assert reqs["django:basic-model-fields"] == RequirementStatus.PASSED
        assert result.tests.passed == 0
        assert result.tests.failed == 0
        assert result.tests.items == []

    async def test_runner_results_are_merged(self, settings, make_tree, monkeypatch) -> None:
        root = make_tree({"test_app.py": "def test_x():\n    assert False\n"})
        settings.enable_pytest = True

        async def fake_run_tests(repo_path, invocations, timeout=120.0):
            return RunnerResult(passed=3, failed=1, items=["test_app.py::test_x"], raw_output="...")

        monkeypatch.setattr(static_check, "run_tests", fake_run_tests)

        result = await run_static_check(root, settings)

        assert (result.tests.passed, result.tests.failed) == (3, 1)
        assert [(i.id, i.status) for i in result.tests.items] == [("test_app.py::test_x", "failed")]

    async def test_runner_timeout_raises(self, settings, make_tree, monkeypatch) -> None:
        root = make_tree({"test_app.py": ""})
        settings.enable_pytest = True

        async def fake_run_tests(repo_path, invocations, timeout=120.0):
            return RunnerResult(timed_out=True, raw_output="..")

        monkeypatch.setattr(static_check, "run_tests", fake_run_tests)

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await run_static_check(root, settings)

        assert classify_error(exc_info.value).type == "EXECUTION_TIMEOUT"


class TestMergeTestRun:
    """Diagnostic items attached to the tests block."""

    def test_raw_output_item_when_nothing_parsed(self) -> None:
        tests = merge_test_run(RunnerResult(raw_output="x" * 5000))

        assert len(tests.items) == 1
        assert tests.items[0].id == "pytest-raw"
        assert len(tests.items[0].message) == 2000

    def test_error_item_when_runner_never_started(self) -> None:
        tests = merge_test_run(RunnerResult(started=False, raw_output="$ pytest\nnot found"))

        assert [i.id for i in tests.items] == ["pytest-error"]
        assert "not found" in tests.items[0].message

    def test_clean_run_has_no_items(self) -> None:
        tests = merge_test_run(RunnerResult(passed=4, raw_output="4 passed in 0.1s"))

        assert tests.items == []
        assert tests.passed == 4
