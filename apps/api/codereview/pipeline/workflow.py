"""LangGraph workflow for one review run.

Graph structure:
START → extract → detect → static_check → synthesize ─┬─→ reports → END
                                                      └─→ ai_review → reports
                                                      (only when AI review is enabled)

Every stage except ``ai_review`` raises ``StageError`` on failure, which
aborts the run. ``ai_review`` is best-effort: its failures are logged and
the run continues with static results only.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal, TypedDict

from langgraph.graph import END, StateGraph

from codereview.config import Settings
from codereview.database.store import Stores
from codereview.errors import StageError, SubmissionNotFoundError
from codereview.llm.prompts import (
    CLASSIFIER_SYSTEM_PROMPT,
    REPORT_SYSTEM_PROMPT,
    REPORT_USER_TEMPLATE,
    load_prompt,
)
from codereview.llm.report_parser import extract_issues, parse_verdict
from codereview.llm.router import ModelRouter
from codereview.pipeline.artifacts import (
    CHECKS_FILE,
    DETECTION_FILE,
    FEEDBACK_FILE,
    LLM_ISSUES_FILE,
    LLM_RESULTS_FILE,
    LLM_SNAPSHOT_METRICS_FILE,
    write_artifact,
)
from codereview.pipeline.feedback import synthesize_feedback
from codereview.schemas import (
    ChecksArtifact,
    Detection,
    Feedback,
    LLMMessage,
    LLMResults,
    Report,
    Snapshot,
    StageName,
    StaticCheckResult,
)
from codereview.tools.archive import ensure_extracted
from codereview.tools.repo import detect_project
from codereview.tools.snapshot import SnapshotBudget, build_snapshot
from codereview.tools.static_check import run_static_check


logger = logging.getLogger(__name__)


# =============================================================================
# State Definition
# =============================================================================

class PipelineState(TypedDict, total=False):
    """State flowing through the run graph.

    Attributes:
        run_id: Run being executed
        project_id: Owning project
        submission_id: Submission the run belongs to
        artifact_path: Uploaded archive
        work_dir: Extracted working tree
        detection: Languages and pytest usage
        checks: Static check result
        feedback: Student feedback
        llm_results: AI report, verdict and issues, when produced
        student_report_id: Id of the stored student report
        reviewer_report_id: Id of the stored reviewer report
    """
    run_id: str
    project_id: str
    submission_id: str
    artifact_path: str
    work_dir: str
    detection: Detection
    checks: StaticCheckResult
    feedback: Feedback
    llm_results: LLMResults | None
    student_report_id: str
    reviewer_report_id: str


@dataclass
class RunOutcome:
    student_report_id: str
    reviewer_report_id: str
    feedback: Feedback


def format_snapshot_prompt(snapshot: Snapshot, checks: StaticCheckResult) -> str:
    files = "\n\n".join(f"### {f.path}\n```\n{f.content}\n```" for f in snapshot.files)
    return REPORT_USER_TEMPLATE.format(
        tree=snapshot.tree,
        checks=json.dumps(checks.to_json_dict(), ensure_ascii=False, indent=2),
        files=files,
    )


# =============================================================================
# Orchestrator
# =============================================================================

class Orchestrator:
    """Runs extraction, checks, feedback and reports for one submission."""

    def __init__(
        self,
        settings: Settings,
        stores: Stores,
        router_factory: Callable[[], ModelRouter] | None = None,
    ):
        self.settings = settings
        self.stores = stores
        self.router_factory = router_factory or (lambda: ModelRouter.from_settings(settings))
        self.graph = self.build_graph().compile()

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def extract_node(self, state: PipelineState) -> dict[str, Any]:
        logger.info(f"[{state['run_id']}] Starting {StageName.EXTRACT.value}")
        try:
            work_dir = ensure_extracted(
                state["artifact_path"],
                self.settings.work_dir,
                state["project_id"],
                state["submission_id"],
                max_bytes=self.settings.max_upload_bytes,
            )
        except Exception as e:
            raise StageError("extract archive", e) from e
        return {"work_dir": str(work_dir)}

    async def detect_node(self, state: PipelineState) -> dict[str, Any]:
        logger.info(f"[{state['run_id']}] Starting {StageName.DETECT.value}")
        try:
            detection = detect_project(state["work_dir"])
            write_artifact(self.settings.artifacts_dir, state["run_id"], DETECTION_FILE, detection)
        except Exception as e:
            raise StageError("detect project", e) from e
        logger.info(f"[{state['run_id']}] Detected languages: {detection.languages}")
        return {"detection": detection}

    async def static_check_node(self, state: PipelineState) -> dict[str, Any]:
        logger.info(f"[{state['run_id']}] Starting {StageName.STATIC_CHECK.value}")
        try:
            checks = await run_static_check(state["work_dir"], self.settings)
            write_artifact(
                self.settings.artifacts_dir,
                state["run_id"],
                CHECKS_FILE,
                ChecksArtifact(run_id=state["run_id"], static_check=checks),
            )
        except Exception as e:
            raise StageError("collect checks", e) from e
        return {"checks": checks}

    async def feedback_node(self, state: PipelineState) -> dict[str, Any]:
        logger.info(f"[{state['run_id']}] Starting {StageName.FEEDBACK.value}")
        try:
            feedback = synthesize_feedback(state["checks"])
            write_artifact(self.settings.artifacts_dir, state["run_id"], FEEDBACK_FILE, feedback)
        except Exception as e:
            raise StageError("generate feedback", e) from e
        return {"feedback": feedback}

    async def ai_review_node(self, state: PipelineState) -> dict[str, Any]:
        run_id = state["run_id"]
        logger.info(f"[{run_id}] Starting {StageName.AI_REVIEW.value}")
        try:
            results = await self._ai_review(run_id, Path(state["work_dir"]), state["checks"])
        except Exception as e:
            logger.warning(f"[{run_id}] AI review failed, continuing without it: {e}")
            return {"llm_results": None}
        return {"llm_results": results}

    async def _ai_review(self, run_id: str, work_dir: Path, checks: StaticCheckResult) -> LLMResults:
        artifacts = self.settings.artifacts_dir
        snapshot = build_snapshot(work_dir, SnapshotBudget.from_settings(self.settings))
        write_artifact(artifacts, run_id, LLM_SNAPSHOT_METRICS_FILE, snapshot.metrics)

        report_prompt = load_prompt(self.settings.report_prompt_path, REPORT_SYSTEM_PROMPT)
        classifier_prompt = load_prompt(
            self.settings.classifier_prompt_path, CLASSIFIER_SYSTEM_PROMPT
        )

        router = self.router_factory()
        try:
            report = await router.complete(
                [
                    LLMMessage(role="system", content=report_prompt),
                    LLMMessage(role="user", content=format_snapshot_prompt(snapshot, checks)),
                ],
                temperature=0.1,
                max_tokens=3000,
            )
            verdict_reply = await router.complete(
                [
                    LLMMessage(role="system", content=classifier_prompt),
                    LLMMessage(role="user", content=report.content),
                ],
                temperature=0.0,
                max_tokens=20,
            )
        finally:
            await router.close()

        issues = extract_issues(report.content, snapshot.files)
        write_artifact(
            artifacts, run_id, LLM_ISSUES_FILE,
            {"issues": [issue.to_json_dict() for issue in issues]},
        )
        results = LLMResults(
            report=report.content,
            verdict=parse_verdict(verdict_reply.content),
            issues=issues,
        )
        write_artifact(artifacts, run_id, LLM_RESULTS_FILE, results)
        logger.info(f"[{run_id}] AI review: verdict={results.verdict.value}, {len(issues)} issues")
        return results

    async def reports_node(self, state: PipelineState) -> dict[str, Any]:
        run_id = state["run_id"]
        logger.info(f"[{run_id}] Starting {StageName.REPORTS.value}")
        try:
            student, reviewer = self.build_reports(
                run_id, state["checks"], state["feedback"], state.get("llm_results")
            )
            await self.stores.reports.upsert_many([student, reviewer])
        except Exception as e:
            raise StageError("create reports", e) from e
        return {"student_report_id": student.id, "reviewer_report_id": reviewer.id}

    @staticmethod
    def build_reports(
        run_id: str,
        checks: StaticCheckResult,
        feedback: Feedback,
        llm_results: LLMResults | None = None,
    ) -> tuple[Report, Report]:
        has_problems = checks.tests.failed > 0 or len(checks.lint.errors) > 0

        student = Report(
            id=f"{run_id}:student",
            run_id=run_id,
            summary=feedback.summary,
            details={"kind": "student", "feedback": feedback.to_json_dict()},
            status="warning" if has_problems else "success",
        )

        lint_by_file: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for error in checks.lint.errors:
            lint_by_file[error.file].append(
                {"line": error.line, "code": error.code, "message": error.message}
            )
        details: dict[str, Any] = {
            "kind": "reviewer",
            "tests": {
                "passed": checks.tests.passed,
                "failed": checks.tests.failed,
                "failedItems": [item.to_json_dict() for item in checks.tests.items],
            },
            "lint": {"byFile": dict(lint_by_file)},
            "metrics": checks.metrics.to_json_dict(),
            "requirements": [r.to_json_dict() for r in checks.requirements],
        }
        if llm_results is not None:
            details["ai"] = {
                "verdict": llm_results.verdict.value,
                "issues": [issue.to_json_dict() for issue in llm_results.issues],
            }

        reviewer = Report(
            id=f"{run_id}:reviewer",
            run_id=run_id,
            summary="Problems found, reviewer attention required" if has_problems else "No problems found",
            details=details,
            status="error" if has_problems else "success",
        )
        return student, reviewer

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def route_after_feedback(self, state: PipelineState) -> Literal["ai_review", "reports"]:
        return "ai_review" if self.settings.enable_llm else "reports"

    def build_graph(self) -> StateGraph:
        """Build the LangGraph workflow."""
        workflow = StateGraph(PipelineState)

        workflow.add_node("extract", self.extract_node)
        workflow.add_node("detect", self.detect_node)
        workflow.add_node("static_check", self.static_check_node)
        workflow.add_node("synthesize", self.feedback_node)
        workflow.add_node("ai_review", self.ai_review_node)
        workflow.add_node("reports", self.reports_node)

        workflow.set_entry_point("extract")
        workflow.add_edge("extract", "detect")
        workflow.add_edge("detect", "static_check")
        workflow.add_edge("static_check", "synthesize")
        workflow.add_conditional_edges(
            "synthesize",
            self.route_after_feedback,
            {
                "ai_review": "ai_review",
                "reports": "reports",
            },
        )
        workflow.add_edge("ai_review", "reports")
        workflow.add_edge("reports", END)

        return workflow

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(self, project_id: str, submission_id: str, run_id: str) -> RunOutcome:
        """Execute the full run graph.

        Raises:
            SubmissionNotFoundError: if the submission or its archive is unknown
            StageError: if a stage failed; the original error is the cause
        """
        submission = await self.stores.submissions.get(submission_id)
        if submission is None or not submission.artifact_path:
            raise SubmissionNotFoundError(
                "Submission or artifact not found",
                {"submission_id": submission_id},
            )

        logger.info(f"[{run_id}] Starting run for submission {submission_id}")
        state = await self.graph.ainvoke(
            PipelineState(
                run_id=run_id,
                project_id=project_id,
                submission_id=submission_id,
                artifact_path=submission.artifact_path,
            )
        )
        logger.info(f"[{run_id}] Run finished with verdict {state['feedback'].verdict.value}")
        return RunOutcome(
            student_report_id=state["student_report_id"],
            reviewer_report_id=state["reviewer_report_id"],
            feedback=state["feedback"],
        )
