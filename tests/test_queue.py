"""Tests for the job queue and the full run lifecycle.

The single-worker tests use a gated fake orchestrator; the lifecycle tests
drive the real LangGraph orchestrator over small archives.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from codereview.errors import QueueFullError
from codereview.pipeline.artifacts import read_artifact
from codereview.pipeline.error_handler import HIDDEN_DETAILS
from codereview.pipeline.queue import JobQueue
from codereview.pipeline.workflow import RunOutcome
from codereview.schemas import (
    Feedback,
    RunStatus,
    TestRunResult,
    TimelineEventType,
    Verdict,
)
from codereview.tools import static_check


class GatedOrchestrator:
    """Blocks every run until ``gate`` is set."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.calls: list[str] = []

    async def run(self, project_id: str, submission_id: str, run_id: str) -> RunOutcome:
        self.calls.append(run_id)
        self.started.set()
        await self.gate.wait()
        return RunOutcome(
            student_report_id=f"{run_id}:student",
            reviewer_report_id=f"{run_id}:reviewer",
            feedback=Feedback(summary="ok", score=100, verdict=Verdict.TO_REVIEWER),
        )


class TestJobQueue:
    """Queueing, status and the single-worker guarantee."""

    async def test_one_run_at_a_time(self, settings, stores) -> None:
        orchestrator = GatedOrchestrator()
        queue = JobQueue(settings, stores, orchestrator=orchestrator)
        await queue.register_submission("proj-1", "/tmp/a.zip", submission_id="sub-1")
        queue.start()
        try:
            first = queue.enqueue("sub-1")
            second = queue.enqueue("sub-1")
            await asyncio.wait_for(orchestrator.started.wait(), timeout=5)

            assert (await queue.get_run_status(first.run_id)).status == RunStatus.RUNNING
            assert (await queue.get_run_status(second.run_id)).status == RunStatus.QUEUED
            assert queue.current_run_id == first.run_id
            assert orchestrator.calls == [first.run_id]

            orchestrator.gate.set()
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert orchestrator.calls == [first.run_id, second.run_id]
        for run_id in (first.run_id, second.run_id):
            status = await queue.get_run_status(run_id)
            assert status.status == RunStatus.READY
            assert status.report_id == f"{run_id}:reviewer"
            assert status.duration_ms is not None

    async def test_finished_runs_leave_the_index(self, settings, stores) -> None:
        orchestrator = GatedOrchestrator()
        orchestrator.gate.set()
        queue = JobQueue(settings, stores, orchestrator=orchestrator)
        await queue.register_submission("proj-1", "/tmp/a.zip", submission_id="sub-1")

        run_id = await _run_once(queue, "sub-1")

        assert queue._run_index == {}
        assert queue._settled == {}
        assert (await queue.get_run_status(run_id)).status == RunStatus.READY

    async def test_enqueue_returns_queued_immediately(self, settings, stores) -> None:
        queue = JobQueue(settings, stores, orchestrator=GatedOrchestrator())
        await queue.register_submission("proj-1", "/tmp/a.zip", submission_id="sub-1")

        response = queue.enqueue("sub-1")

        assert response.status == RunStatus.QUEUED
        assert (await queue.get_run_status(response.run_id)).status == RunStatus.QUEUED
        assert queue.pending == 1

    async def test_queue_full(self, settings, stores) -> None:
        settings.queue_max_size = 1
        queue = JobQueue(settings, stores, orchestrator=GatedOrchestrator())

        queue.enqueue("sub-1")
        with pytest.raises(QueueFullError):
            queue.enqueue("sub-1")

    async def test_unknown_run(self, settings, stores) -> None:
        queue = JobQueue(settings, stores, orchestrator=GatedOrchestrator())

        assert await queue.get_run_status("nope") is None

    async def test_status_found_without_index(self, settings, stores) -> None:
        """A fresh queue finds runs persisted by an earlier one."""
        first = JobQueue(settings, stores, orchestrator=GatedOrchestrator())
        await first.register_submission("proj-1", "/tmp/a.zip", submission_id="sub-1")
        response = first.enqueue("sub-1")
        await asyncio.sleep(0.05)

        second = JobQueue(settings, stores, orchestrator=GatedOrchestrator())

        assert (await second.get_run_status(response.run_id)).status == RunStatus.QUEUED


async def _run_once(queue: JobQueue, submission_id: str) -> str:
    queue.start()
    try:
        response = queue.enqueue(submission_id)
        await asyncio.wait_for(queue.join(), timeout=30)
    finally:
        await queue.stop()
    return response.run_id


class TestRunLifecycle:
    """End-to-end runs through the real orchestrator."""

    async def test_successful_run(self, settings, stores, make_zip) -> None:
        archive = make_zip({"project/app.py": "print('hello')\n", "project/tests/test_app.py": ""})
        queue = JobQueue(settings, stores)
        submission = await queue.register_submission("proj-1", str(archive))

        run_id = await _run_once(queue, submission.id)

        status = await queue.get_run_status(run_id)
        assert status.status == RunStatus.READY
        assert status.report_id == f"{run_id}:reviewer"

        checks = read_artifact(settings.artifacts_dir, run_id, "checks.json")
        assert checks["runId"] == run_id
        assert checks["error"] is None
        assert [e["code"] for e in checks["staticCheck"]["lint"]["errors"]] == ["PY001"]

        feedback = read_artifact(settings.artifacts_dir, run_id, "feedback.json")
        assert feedback["verdict"] == "send_back"
        assert feedback["score"] == 99

        detection = read_artifact(settings.artifacts_dir, run_id, "detection.json")
        assert detection == {"languages": ["python"], "hasPytest": True}

        reviewer = await stores.reports.get(f"{run_id}:reviewer")
        assert reviewer.status == "error"
        assert list(reviewer.details["lint"]["byFile"]) == ["app.py"]
        student = await stores.reports.get(f"{run_id}:student")
        assert student.status == "warning"

        events = await queue.timeline.events(run_id=run_id)
        assert {e.type for e in events} == {
            TimelineEventType.RUN_FINISHED,
            TimelineEventType.CHECKS_READY,
            TimelineEventType.FEEDBACK_READY,
        }

    async def test_runner_timeout_marks_run_errors(self, settings, stores, make_zip, monkeypatch) -> None:
        settings.enable_pytest = True

        async def timed_out(repo_path, invocations, timeout=120.0):
            return TestRunResult(timed_out=True, raw_output="Traceback /srv/private/conftest.py line 3")

        monkeypatch.setattr(static_check, "run_tests", timed_out)
        archive = make_zip({"app.py": "x = 1\n", "test_app.py": "def test_x():\n    pass\n"})
        queue = JobQueue(settings, stores)
        submission = await queue.register_submission("proj-1", str(archive))

        run_id = await _run_once(queue, submission.id)

        status = await queue.get_run_status(run_id)
        assert status.status == RunStatus.ERRORS
        assert status.duration_ms is not None

        checks = read_artifact(settings.artifacts_dir, run_id, "checks.json")
        assert checks["error"]["type"] == "EXECUTION_TIMEOUT"
        assert checks["staticCheck"]["tests"] == {"passed": 0, "failed": 0, "items": []}

        feedback = read_artifact(settings.artifacts_dir, run_id, "feedback.json")
        assert feedback["kind"] == "student"
        assert feedback["error"]["type"] == "EXECUTION_TIMEOUT"
        assert feedback["error"]["suggestion"]
        assert feedback["error"]["technical"] == HIDDEN_DETAILS
        assert "/srv/private" not in json.dumps(feedback)

        student = await stores.reports.get(f"{run_id}:student")
        assert student.status == "error"
        assert student.details["error"]["type"] == "EXECUTION_TIMEOUT"
        assert "/srv/private" not in student.model_dump_json()

        # Reviewer-side outputs keep the runner output.
        assert "/srv/private" in checks["error"]["technical"]
        reviewer = await stores.reports.get(f"{run_id}:reviewer")
        assert "/srv/private" in reviewer.details["error"]["technical"]

        events = await queue.timeline.events(run_id=run_id)
        assert [e.type for e in events] == [TimelineEventType.ERROR]
        assert events[0].details["errorType"] == "EXECUTION_TIMEOUT"
        assert "/srv/private" in events[0].details["technicalMessage"]

    async def test_submission_removed_before_run(self, settings, stores) -> None:
        orchestrator = GatedOrchestrator()
        queue = JobQueue(settings, stores, orchestrator=orchestrator)
        submission = await queue.register_submission("proj-1", "/tmp/a.zip")
        response = queue.enqueue(submission.id)
        await stores.submissions.remove(submission.id)

        queue.start()
        try:
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert orchestrator.calls == []
        status = await queue.get_run_status(response.run_id)
        assert status.status == RunStatus.ERRORS

        feedback = read_artifact(settings.artifacts_dir, response.run_id, "feedback.json")
        assert feedback["error"]["type"] == "FILE_NOT_FOUND"
        checks = read_artifact(settings.artifacts_dir, response.run_id, "checks.json")
        assert checks["error"]["type"] == "FILE_NOT_FOUND"
        [event] = await queue.timeline.events(run_id=response.run_id)
        assert event.type == TimelineEventType.ERROR

    async def test_missing_archive(self, settings, stores, tmp_path) -> None:
        queue = JobQueue(settings, stores)
        submission = await queue.register_submission("proj-1", str(tmp_path / "gone.zip"))

        run_id = await _run_once(queue, submission.id)

        assert (await queue.get_run_status(run_id)).status == RunStatus.ERRORS
        checks = read_artifact(settings.artifacts_dir, run_id, "checks.json")
        assert checks["error"]["type"] == "FILE_NOT_FOUND"

    async def test_invalid_archive(self, settings, stores, tmp_path) -> None:
        bogus = tmp_path / "bogus.zip"
        bogus.write_text("not a zip")
        queue = JobQueue(settings, stores)
        submission = await queue.register_submission("proj-1", str(bogus))

        run_id = await _run_once(queue, submission.id)

        feedback = read_artifact(settings.artifacts_dir, run_id, "feedback.json")
        assert feedback["error"]["type"] == "INVALID_ARCHIVE"
