"""Run failure handling.

A failed run must never be left without artifacts: the handler marks the run
``errors``, writes fallback ``checks.json``/``feedback.json``, stores error
reports for the student and the reviewer, and records an ``error`` timeline
event. Each step is attempted even when an earlier one fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from codereview.database.store import Stores
from codereview.errors import classify_error
from codereview.pipeline.artifacts import CHECKS_FILE, FEEDBACK_FILE, write_artifact
from codereview.pipeline.timeline import TimelineService
from codereview.schemas import (
    ArtifactError,
    ChecksArtifact,
    ErrorFeedback,
    ErrorInfo,
    Report,
    RunStatus,
    StaticCheckResult,
    StudentError,
    Submission,
    TimelineEventType,
)


logger = logging.getLogger(__name__)

# Students get the taxonomy message and suggestion only.
HIDDEN_DETAILS = "Error details are hidden"


@dataclass
class ErrorContext:
    run_id: str
    submission_id: str
    project_id: str | None = None
    toolchain: str = "tests"
    operation: str = "check"
    duration_ms: int | None = None


def _mark_errors(run_id: str, duration_ms: int | None):
    def updater(submission: Submission) -> Submission:
        for run in submission.runs:
            if run.id == run_id:
                run.status = RunStatus.ERRORS
                run.duration_ms = duration_ms
        return submission
    return updater


def build_error_reports(run_id: str, info: ErrorInfo, technical: str, context: ErrorContext) -> list[Report]:
    student = Report(
        id=f"{run_id}:student",
        run_id=run_id,
        summary=info.user_message,
        details={
            "kind": "student",
            "error": {
                "type": info.type,
                "message": info.user_message,
                "suggestion": info.suggestion,
                "technical": HIDDEN_DETAILS,
            },
        },
        status="error",
    )
    reviewer = Report(
        id=f"{run_id}:reviewer",
        run_id=run_id,
        summary=f"Run failed: {info.message}",
        details={
            "kind": "reviewer",
            "error": {
                "type": info.type,
                "message": info.message,
                "technical": technical,
                "context": {
                    "toolchain": context.toolchain,
                    "operation": context.operation,
                    "durationMs": context.duration_ms,
                },
            },
        },
        status="error",
    )
    return [student, reviewer]


def write_error_artifacts(
    artifacts_root: str | Path,
    run_id: str,
    info: ErrorInfo,
    technical: str,
) -> None:
    """Fallback checks.json and feedback.json for a failed run."""
    checks = ChecksArtifact(
        run_id=run_id,
        static_check=StaticCheckResult(),
        error=ArtifactError(type=info.type, message=info.message, technical=technical),
    )
    feedback = ErrorFeedback(
        error=StudentError(
            type=info.type,
            message=info.user_message,
            suggestion=info.suggestion,
            technical=HIDDEN_DETAILS,
        )
    )
    write_artifact(artifacts_root, run_id, CHECKS_FILE, checks)
    write_artifact(artifacts_root, run_id, FEEDBACK_FILE, feedback)


async def handle_run_error(
    exc: BaseException,
    context: ErrorContext,
    stores: Stores,
    timeline: TimelineService,
    artifacts_root: str | Path,
) -> ErrorInfo:
    """Classify ``exc`` and leave the run in a terminal ``errors`` state.

    Returns:
        The taxonomy entry the failure was classified as.
    """
    info = classify_error(exc)
    technical = str(exc)
    logger.error(f"[{context.run_id}] Run failed with {info.type}: {technical}")

    try:
        await stores.submissions.update(
            context.submission_id, _mark_errors(context.run_id, context.duration_ms)
        )
    except Exception as e:
        logger.error(f"[{context.run_id}] Could not mark run as errors: {e}")

    try:
        write_error_artifacts(artifacts_root, context.run_id, info, technical)
    except OSError as e:
        logger.error(f"[{context.run_id}] Could not write error artifacts: {e}")

    try:
        await stores.reports.upsert_many(
            build_error_reports(context.run_id, info, technical, context)
        )
    except Exception as e:
        logger.error(f"[{context.run_id}] Could not save error reports: {e}")

    await timeline.add_event(
        TimelineEventType.ERROR,
        project_id=context.project_id,
        submission_id=context.submission_id,
        run_id=context.run_id,
        message=f"Error during {context.operation}: {info.user_message}",
        details={
            "errorType": info.type,
            "technicalMessage": technical,
            "toolchain": context.toolchain,
            "durationMs": context.duration_ms,
            "suggestion": info.suggestion,
        },
    )
    return info
