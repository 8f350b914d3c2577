"""Single-worker job queue for review runs.

``enqueue`` is synchronous: it assigns a run id, puts the task on a bounded
``asyncio.Queue`` and schedules a best-effort write of the ``queued`` run
record. One worker coroutine consumes the queue and executes each run to
completion before taking the next, so at most one run is ``running`` at any
time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Protocol
from uuid import uuid4

from codereview.config import Settings
from codereview.database.store import Stores
from codereview.errors import QueueFullError, SubmissionNotFoundError
from codereview.pipeline.error_handler import ErrorContext, handle_run_error
from codereview.pipeline.timeline import TimelineService
from codereview.pipeline.workflow import Orchestrator, RunOutcome
from codereview.schemas import (
    EnqueueRunResponse,
    RunRecord,
    RunStatus,
    RunStatusResponse,
    Submission,
    TimelineEventType,
)


logger = logging.getLogger(__name__)


class RunExecutor(Protocol):
    async def run(self, project_id: str, submission_id: str, run_id: str) -> RunOutcome: ...


@dataclass
class QueueTask:
    run_id: str
    submission_id: str
    toolchain: str
    project_id: str | None = None
    enqueued_at: float = field(default_factory=time.time)
    persisted: asyncio.Task | None = None


class JobQueue:
    """FIFO of runs consumed by a single worker."""

    def __init__(
        self,
        settings: Settings,
        stores: Stores,
        orchestrator: RunExecutor | None = None,
        timeline: TimelineService | None = None,
    ):
        self.settings = settings
        self.stores = stores
        self.orchestrator = orchestrator or Orchestrator(settings, stores)
        self.timeline = timeline or TimelineService(stores.timeline)
        self._queue: asyncio.Queue[QueueTask] = asyncio.Queue(maxsize=settings.queue_max_size)
        self._worker: asyncio.Task | None = None
        # Runs accepted but not yet settled in the store.
        self._run_index: dict[str, str] = {}
        # Terminal statuses the store could not record.
        self._settled: dict[str, RunStatusResponse] = {}
        self.current_run_id: str | None = None

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    async def register_submission(
        self,
        project_id: str,
        artifact_path: str,
        submission_id: str | None = None,
    ) -> Submission:
        submission = Submission(
            id=submission_id or str(uuid4()),
            project_id=project_id,
            artifact_path=artifact_path,
        )
        await self.stores.submissions.save(submission)
        logger.info(f"Registered submission {submission.id} for project {project_id}")
        return submission

    def enqueue(
        self,
        submission_id: str,
        toolchain: str = "tests",
        project_id: str | None = None,
    ) -> EnqueueRunResponse:
        """Queue a run and return immediately.

        Must be called from the running event loop.

        Raises:
            QueueFullError: if the queue is at capacity
        """
        task = QueueTask(
            run_id=str(uuid4()),
            submission_id=submission_id,
            toolchain=toolchain,
            project_id=project_id,
        )
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull as e:
            raise QueueFullError(
                "Run queue is full",
                {"capacity": str(self._queue.maxsize)},
            ) from e

        self._run_index[task.run_id] = submission_id
        task.persisted = asyncio.get_running_loop().create_task(self._mark_queued(task))
        logger.info(f"[{task.run_id}] Enqueued run for submission {submission_id}")
        return EnqueueRunResponse(run_id=task.run_id, status=RunStatus.QUEUED)

    async def _mark_queued(self, task: QueueTask) -> None:
        def updater(submission: Submission) -> Submission:
            if submission.find_run(task.run_id) is None:
                submission.runs.append(
                    RunRecord(
                        id=task.run_id,
                        submission_id=task.submission_id,
                        toolchain=task.toolchain,
                        status=RunStatus.QUEUED,
                    )
                )
            return submission

        try:
            await self.stores.submissions.update(task.submission_id, updater)
        except Exception as e:
            logger.warning(f"[{task.run_id}] Could not persist queued run: {e}")

    async def get_run_status(self, run_id: str) -> RunStatusResponse | None:
        if run_id in self._settled:
            return self._settled[run_id]

        submission_id = self._run_index.get(run_id)
        submission = None
        if submission_id is not None:
            submission = await self.stores.submissions.get(submission_id)
        else:
            for candidate in await self.stores.submissions.list():
                if candidate.find_run(run_id) is not None:
                    submission = candidate
                    break

        run = submission.find_run(run_id) if submission else None
        if run is None:
            if submission_id is not None:
                # Accepted but the queued record is not written yet.
                return RunStatusResponse(run_id=run_id, status=RunStatus.QUEUED)
            return None
        return RunStatusResponse(
            run_id=run.id,
            status=run.status,
            duration_ms=run.duration_ms,
            report_id=run.report_id,
        )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    async def _set_run(
        self,
        task: QueueTask,
        status: RunStatus,
        duration_ms: int | None = None,
        report_id: str | None = None,
    ) -> None:
        def updater(submission: Submission) -> Submission:
            run = submission.find_run(task.run_id)
            if run is None:
                run = RunRecord(
                    id=task.run_id,
                    submission_id=task.submission_id,
                    toolchain=task.toolchain,
                )
                submission.runs.append(run)
            run.status = status
            if duration_ms is not None:
                run.duration_ms = duration_ms
            if report_id is not None:
                run.report_id = report_id
            return submission

        await self.stores.submissions.update(task.submission_id, updater)

    async def _fail(
        self,
        task: QueueTask,
        exc: BaseException,
        project_id: str | None,
        duration_ms: int,
    ) -> None:
        await handle_run_error(
            exc,
            ErrorContext(
                run_id=task.run_id,
                submission_id=task.submission_id,
                project_id=project_id,
                toolchain=task.toolchain,
                operation="review run",
                duration_ms=duration_ms,
            ),
            self.stores,
            self.timeline,
            self.settings.artifacts_dir,
        )
        await self._settle(
            task,
            RunStatusResponse(run_id=task.run_id, status=RunStatus.ERRORS, duration_ms=duration_ms),
        )

    async def _settle(self, task: QueueTask, final: RunStatusResponse) -> None:
        """Forget the run index entry once the store reports the terminal status."""
        self._run_index.pop(task.run_id, None)
        try:
            submission = await self.stores.submissions.get(task.submission_id)
        except Exception as e:
            logger.warning(f"[{task.run_id}] Could not read back run status: {e}")
            submission = None

        run = submission.find_run(task.run_id) if submission else None
        if run is None or run.status != final.status:
            self._settled[task.run_id] = final

    async def _run_task(self, task: QueueTask) -> None:
        if task.persisted is not None:
            await task.persisted

        submission = await self.stores.submissions.get(task.submission_id)
        if submission is None:
            logger.warning(f"[{task.run_id}] Submission {task.submission_id} not found")
            await self._fail(
                task,
                SubmissionNotFoundError("Submission not found", {"submission_id": task.submission_id}),
                task.project_id,
                duration_ms=0,
            )
            return
        project_id = task.project_id or submission.project_id

        self.current_run_id = task.run_id
        start = time.perf_counter()
        await self._set_run(task, RunStatus.RUNNING)
        logger.info(f"[{task.run_id}] Run started ({task.toolchain})")

        try:
            outcome = await self.orchestrator.run(project_id, task.submission_id, task.run_id)
        except Exception as e:
            await self._fail(task, e, project_id, int((time.perf_counter() - start) * 1000))
            return
        finally:
            self.current_run_id = None

        duration_ms = int((time.perf_counter() - start) * 1000)
        await self._set_run(
            task,
            RunStatus.READY,
            duration_ms=duration_ms,
            report_id=outcome.reviewer_report_id,
        )
        await self._settle(
            task,
            RunStatusResponse(
                run_id=task.run_id,
                status=RunStatus.READY,
                duration_ms=duration_ms,
                report_id=outcome.reviewer_report_id,
            ),
        )
        logger.info(f"[{task.run_id}] Run ready in {duration_ms}ms")

        for event_type, message in (
            (TimelineEventType.RUN_FINISHED, f'Check "{task.toolchain}" finished successfully'),
            (TimelineEventType.CHECKS_READY, f'Results of check "{task.toolchain}" are ready'),
            (TimelineEventType.FEEDBACK_READY, f'Feedback for check "{task.toolchain}" is ready'),
        ):
            details = {"toolchain": task.toolchain}
            if event_type == TimelineEventType.RUN_FINISHED:
                details.update({"durationMs": duration_ms, "status": RunStatus.READY.value})
            await self.timeline.add_event(
                event_type,
                project_id=project_id,
                submission_id=task.submission_id,
                run_id=task.run_id,
                message=message,
                details=details,
            )

    async def _work(self) -> None:
        logger.info("Queue worker started")
        while True:
            task = await self._queue.get()
            try:
                await self._run_task(task)
            except Exception:
                logger.exception(f"[{task.run_id}] Worker failed to process run")
            finally:
                self._queue.task_done()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._work())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Queue worker stopped")

    async def join(self) -> None:
        """Wait until every queued run has been processed."""
        await self._queue.join()
