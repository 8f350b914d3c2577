"""FastAPI routes for the review pipeline.

Endpoints:
- GET  /health                            - Health check
- POST /submissions                       - Register an uploaded archive
- GET  /submissions/{id}/files            - Working tree of a submission
- GET  /submissions/{id}/files/{path}     - One text file of a submission
- POST /projects/{project_id}/run         - Queue a review run
- GET  /runs/{run_id}/status              - Run status
- GET  /runs/{run_id}/artifacts/{name}    - One artifact of a run
- GET  /runs/{run_id}/timeline            - Lifecycle events of a run
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from codereview.config import Settings
from codereview.errors import SubmissionNotFoundError
from codereview.pipeline.artifacts import ARTIFACT_NAMES, read_artifact
from codereview.pipeline.queue import JobQueue
from codereview.tools.archive import build_file_tree, ensure_extracted, read_file
from codereview.schemas import (
    EnqueueRunRequest,
    EnqueueRunResponse,
    RunStatusResponse,
    Submission,
    SubmissionCreateRequest,
    TimelineEventType,
)


logger = logging.getLogger(__name__)
router = APIRouter()


def get_queue(request: Request) -> JobQueue:
    return request.app.state.queue


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health(
    queue: JobQueue = Depends(get_queue),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
        "pendingRuns": queue.pending,
    }


# =============================================================================
# Submissions
# =============================================================================

@router.post("/submissions", response_model=Submission, status_code=201)
async def create_submission(
    request: SubmissionCreateRequest,
    queue: JobQueue = Depends(get_queue),
    settings: Settings = Depends(get_app_settings),
) -> Submission:
    """Register an archive that has already been uploaded to disk.

    Relative paths are taken from the upload directory.
    """
    archive = Path(request.artifact_path)
    if not archive.is_absolute():
        archive = settings.upload_dir / archive
    if not archive.is_file():
        raise SubmissionNotFoundError("Archive not found", {"path": request.artifact_path})
    return await queue.register_submission(request.project_id, str(archive))


async def _submission_tree(submission_id: str, queue: JobQueue, settings: Settings) -> Path:
    submission = await queue.stores.submissions.get(submission_id)
    if submission is None:
        raise SubmissionNotFoundError("Submission not found", {"submission_id": submission_id})
    return await asyncio.to_thread(
        ensure_extracted,
        submission.artifact_path,
        settings.work_dir,
        submission.project_id,
        submission.id,
        settings.max_upload_bytes,
    )


@router.get("/submissions/{submission_id}/files")
async def list_submission_files(
    submission_id: str,
    queue: JobQueue = Depends(get_queue),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    root = await _submission_tree(submission_id, queue, settings)
    return build_file_tree(root).to_json_dict()


@router.get("/submissions/{submission_id}/files/{file_path:path}")
async def get_submission_file(
    submission_id: str,
    file_path: str,
    queue: JobQueue = Depends(get_queue),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    root = await _submission_tree(submission_id, queue, settings)
    try:
        content = read_file(root, file_path)
    except (FileNotFoundError, IsADirectoryError):
        raise HTTPException(status_code=404, detail="File not found")
    return {"path": file_path, "content": content}


# =============================================================================
# Runs
# =============================================================================

@router.post("/projects/{project_id}/run", response_model=EnqueueRunResponse)
async def enqueue_run(
    project_id: str,
    request: EnqueueRunRequest,
    queue: JobQueue = Depends(get_queue),
) -> EnqueueRunResponse:
    """Queue a run; poll GET /runs/{run_id}/status for progress."""
    submission = await queue.stores.submissions.get(request.submission_id)
    if submission is None or submission.project_id != project_id:
        raise SubmissionNotFoundError(
            "Submission not found",
            {"submission_id": request.submission_id},
        )

    response = queue.enqueue(submission.id, request.toolchain, project_id)
    await queue.timeline.add_event(
        TimelineEventType.RUN_STARTED,
        project_id=project_id,
        submission_id=submission.id,
        run_id=response.run_id,
        message=f'Check "{request.toolchain}" started',
        details={"toolchain": request.toolchain},
    )
    return response


@router.get("/runs/{run_id}/status", response_model=RunStatusResponse)
async def get_run_status(
    run_id: str,
    queue: JobQueue = Depends(get_queue),
) -> RunStatusResponse:
    status = await queue.get_run_status(run_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return status


@router.get("/runs/{run_id}/artifacts/{name}")
async def get_run_artifact(
    run_id: str,
    name: str,
    settings: Settings = Depends(get_app_settings),
) -> Any:
    if name not in ARTIFACT_NAMES:
        raise HTTPException(status_code=404, detail=f"Unknown artifact: {name}")
    try:
        return read_artifact(settings.artifacts_dir, run_id, name)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Artifact not found")


@router.get("/runs/{run_id}/timeline")
async def get_run_timeline(
    run_id: str,
    queue: JobQueue = Depends(get_queue),
) -> list[dict]:
    """Lifecycle events of a run, newest first."""
    events = await queue.timeline.events(run_id=run_id)
    if not events and await queue.get_run_status(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return [event.to_json_dict() for event in events]
