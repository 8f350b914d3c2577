"""Tests for run artifacts, the timeline and run error handling."""

from __future__ import annotations

import asyncio

import pytest

from codereview.errors import ExecutionTimeoutError, PathEscapeError, StageError
from codereview.pipeline.artifacts import FEEDBACK_FILE, read_artifact, write_artifact
from codereview.pipeline.error_handler import ErrorContext, handle_run_error
from codereview.pipeline.timeline import TimelineService
from codereview.schemas import (
    Detection,
    RunRecord,
    RunStatus,
    Submission,
    TimelineEventType,
)


class TestArtifacts:
    def test_write_and_read(self, tmp_path) -> None:
        path = write_artifact(tmp_path, "run-1", "detection.json", Detection(languages=["python"], has_pytest=True))

        assert path == tmp_path / "run-1" / "detection.json"
        assert read_artifact(tmp_path, "run-1", "detection.json") == {"languages": ["python"], "hasPytest": True}
        assert [p.name for p in (tmp_path / "run-1").iterdir()] == ["detection.json"]

    def test_non_ascii_is_kept(self, tmp_path) -> None:
        path = write_artifact(tmp_path, "run-1", FEEDBACK_FILE, {"summary": "Ошибка"})

        assert "Ошибка" in path.read_text(encoding="utf-8")

    def test_missing(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            read_artifact(tmp_path, "run-1", "checks.json")

    def test_run_id_cannot_escape(self, tmp_path) -> None:
        with pytest.raises(PathEscapeError):
            read_artifact(tmp_path / "artifacts", "../outside", "checks.json")


class TestTimeline:
    async def test_events_filtered_newest_first(self, stores) -> None:
        timeline = TimelineService(stores.timeline)
        first = await timeline.add_event(TimelineEventType.RUN_STARTED, project_id="p", run_id="r1")
        await asyncio.sleep(0.01)
        second = await timeline.add_event(TimelineEventType.RUN_FINISHED, project_id="p", run_id="r1")
        await timeline.add_event(TimelineEventType.RUN_STARTED, project_id="other", run_id="r2")

        events = await timeline.events(project_id="p")

        assert [e.id for e in events] == [second.id, first.id]

    async def test_failed_write_is_swallowed(self, stores, monkeypatch) -> None:
        async def broken(record):
            raise RuntimeError("db down")

        monkeypatch.setattr(stores.timeline, "save", broken)

        assert await TimelineService(stores.timeline).add_event(TimelineEventType.ERROR) is None


class TestHandleRunError:
    """Terminal error state for a failed run."""

    async def test_everything_written(self, settings, stores) -> None:
        await stores.submissions.save(
            Submission(
                id="sub-1",
                project_id="proj-1",
                artifact_path="a.zip",
                runs=[RunRecord(id="run-1", submission_id="sub-1", status=RunStatus.RUNNING)],
            )
        )
        timeline = TimelineService(stores.timeline)
        cause = ExecutionTimeoutError("Test runner timed out after 1 seconds")
        exc = StageError("collect checks", cause)
        exc.__cause__ = cause

        info = await handle_run_error(
            exc,
            ErrorContext(run_id="run-1", submission_id="sub-1", project_id="proj-1", duration_ms=42),
            stores,
            timeline,
            settings.artifacts_dir,
        )

        assert info.type == "EXECUTION_TIMEOUT"
        run = (await stores.submissions.get("sub-1")).find_run("run-1")
        assert (run.status, run.duration_ms) == (RunStatus.ERRORS, 42)

        checks = read_artifact(settings.artifacts_dir, "run-1", "checks.json")
        assert checks["error"]["technical"] == "Failed to collect checks: Test runner timed out after 1 seconds"
        feedback = read_artifact(settings.artifacts_dir, "run-1", "feedback.json")
        assert feedback["error"]["message"] == info.user_message

        reviewer = await stores.reports.get("run-1:reviewer")
        assert reviewer.details["error"]["context"]["durationMs"] == 42

        [event] = await timeline.events(run_id="run-1")
        assert event.type == TimelineEventType.ERROR
        assert event.details["suggestion"] == info.suggestion

    async def test_artifacts_written_even_when_store_fails(self, settings, stores, monkeypatch) -> None:
        async def broken(record_id, updater):
            raise RuntimeError("db down")

        monkeypatch.setattr(stores.submissions, "update", broken)

        info = await handle_run_error(
            RuntimeError("weird"),
            ErrorContext(run_id="run-2", submission_id="sub-2"),
            stores,
            TimelineService(stores.timeline),
            settings.artifacts_dir,
        )

        assert info.type == "UNKNOWN_ERROR"
        assert read_artifact(settings.artifacts_dir, "run-2", "checks.json")["error"]["type"] == "UNKNOWN_ERROR"
