"""Pydantic schemas for all pipeline records and I/O contracts.

These schemas define the strict contracts between:
- The job queue and the run records it mutates
- The static check engine and the checks.json artifact
- Feedback synthesis and the feedback.json artifact
- LLM provider inputs/outputs and the issue localizer
- API endpoints and clients

Artifact payloads are serialized with camelCase keys (``by_alias=True``) and
reject unknown fields on the way back in.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base for records persisted or served with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Enums
# =============================================================================

class RunStatus(str, Enum):
    """Lifecycle of a run: queued -> running -> ready | errors."""
    QUEUED = "queued"
    RUNNING = "running"
    READY = "ready"
    ERRORS = "errors"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.READY, RunStatus.ERRORS)


class RequirementStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class Verdict(str, Enum):
    SEND_BACK = "send_back"
    TO_REVIEWER = "to_reviewer"


class StageName(str, Enum):
    """Names of orchestrator stages."""
    EXTRACT = "extract"
    DETECT = "detect"
    STATIC_CHECK = "static_check"
    FEEDBACK = "feedback"
    AI_REVIEW = "ai_review"
    REPORTS = "reports"


class TimelineEventType(str, Enum):
    RUN_STARTED = "run_started"
    RUN_FINISHED = "run_finished"
    CHECKS_READY = "checks_ready"
    FEEDBACK_READY = "feedback_ready"
    ERROR = "error"


# =============================================================================
# Submission / Run Schemas
# =============================================================================

class RunRecord(CamelModel):
    """One execution of the pipeline against a submission."""
    id: str
    submission_id: str
    created_at: datetime = Field(default_factory=utcnow)
    toolchain: str = "tests"
    status: RunStatus = RunStatus.QUEUED
    duration_ms: int | None = Field(default=None, ge=0)
    report_id: str | None = None


class Submission(CamelModel):
    """An uploaded archive belonging to a project."""
    id: str
    project_id: str
    created_at: datetime = Field(default_factory=utcnow)
    artifact_path: str
    runs: list[RunRecord] = Field(default_factory=list)

    def find_run(self, run_id: str) -> RunRecord | None:
        return next((run for run in self.runs if run.id == run_id), None)


# =============================================================================
# Static Check Schemas
# =============================================================================

class LintError(CamelModel):
    """A single lint rule violation on one line."""
    file: str = Field(..., description="POSIX path relative to the working tree")
    line: int = Field(..., ge=1)
    code: str = Field(..., description="Stable rule identifier, e.g. PY001")
    message: str


class Requirement(CamelModel):
    id: str
    title: str
    status: RequirementStatus
    evidence: str | None = None


class TestItem(CamelModel):
    id: str
    status: Literal["passed", "failed"] = "failed"
    message: str | None = None


class TestsSummary(CamelModel):
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    items: list[TestItem] = Field(default_factory=list)


class LintSummary(CamelModel):
    errors: list[LintError] = Field(default_factory=list)


class Metrics(CamelModel):
    py_files: int = Field(default=0, ge=0)
    lines: int = Field(default=0, ge=0)
    todos: int = Field(default=0, ge=0)


class StaticCheckResult(CamelModel):
    tests: TestsSummary = Field(default_factory=TestsSummary)
    lint: LintSummary = Field(default_factory=LintSummary)
    metrics: Metrics = Field(default_factory=Metrics)
    requirements: list[Requirement] = Field(default_factory=list)


class Detection(CamelModel):
    languages: list[str] = Field(default_factory=list)
    has_pytest: bool = False


# =============================================================================
# Error Schemas
# =============================================================================

class ErrorInfo(CamelModel):
    """Entry of the fixed error taxonomy."""
    type: str
    message: str = Field(..., description="Internal message")
    user_message: str
    suggestion: str


class ArtifactError(CamelModel):
    """Error block attached to a fallback checks.json."""
    type: str
    message: str
    technical: str


class StudentError(CamelModel):
    type: str
    message: str
    suggestion: str
    technical: str


class ErrorFeedback(CamelModel):
    """Fallback feedback.json written when a run fails."""
    kind: Literal["student"] = "student"
    error: StudentError


class ChecksArtifact(CamelModel):
    """checks.json: the static check result of one run."""
    run_id: str
    created_at: datetime = Field(default_factory=utcnow)
    static_check: StaticCheckResult
    error: ArtifactError | None = None


# =============================================================================
# Feedback Schemas
# =============================================================================

class Feedback(BaseModel):
    """feedback.json: student-facing feedback. Keys are kept in snake_case."""

    model_config = ConfigDict(extra="forbid")

    summary: str
    score: int = Field(..., ge=0, le=100)
    verdict: Verdict
    requirements: list[str] = Field(default_factory=list)
    problems: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# =============================================================================
# Snapshot / Issue Schemas
# =============================================================================

class ProjectFile(CamelModel):
    path: str
    content: str


class SnapshotMetrics(CamelModel):
    file_count: int = Field(..., ge=0)
    total_bytes: int = Field(..., ge=0)
    max_files: int
    max_file_bytes: int
    max_total_bytes: int


class Snapshot(CamelModel):
    """Size-budgeted textual view of a working tree."""
    tree: str
    files: list[ProjectFile] = Field(default_factory=list)
    metrics: SnapshotMetrics


class IssueRange(CamelModel):
    start_line: int = Field(..., ge=1)
    start_col: int = Field(..., ge=1)
    end_line: int = Field(..., ge=1)
    end_col: int = Field(..., ge=1)


class Issue(CamelModel):
    """A fragment flagged by the AI report, localized in a project file."""
    file_path: str
    snippet: str
    ranges: list[IssueRange] = Field(..., min_length=1)
    message: str | None = None
    error_number: int | None = None


class LLMResults(CamelModel):
    """llm_results.json."""
    report: str
    verdict: Verdict
    issues: list[Issue] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# Report / Timeline Schemas
# =============================================================================

class Report(CamelModel):
    """Student- or reviewer-facing report stored per run."""
    id: str
    run_id: str
    created_at: datetime = Field(default_factory=utcnow)
    summary: str
    details: dict[str, Any] = Field(default_factory=dict)
    status: Literal["success", "warning", "error"]


class TimelineEvent(CamelModel):
    id: str
    type: TimelineEventType
    project_id: str | None = None
    submission_id: str | None = None
    run_id: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Tool Schemas
# =============================================================================

class ToolResult(BaseModel):
    """Standard response from a subprocess invocation."""
    ok: bool = Field(..., description="Whether the command exited with status 0")
    data: dict[str, Any] | None = Field(default=None, description="stdout/stderr/exit code")
    error_code: str | None = Field(default=None, description="Error code if failed")
    error_message: str | None = Field(default=None, description="Human-readable error message")
    retryable: bool = Field(default=False, description="Whether the error is retryable")
    latency_ms: int | None = Field(default=None, description="Time taken in milliseconds")

    @property
    def output(self) -> str:
        if not self.data:
            return ""
        return (self.data.get("stdout") or "") + (self.data.get("stderr") or "")


class TestRunResult(BaseModel):
    """Parsed outcome of the external test runner."""
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    items: list[str] = Field(default_factory=list, description="Failing test identifiers")
    raw_output: str = ""
    timed_out: bool = False
    started: bool = Field(default=True, description="False when no invocation could be spawned")
    attempts: list[ToolResult] = Field(default_factory=list)


# =============================================================================
# LLM Schemas
# =============================================================================

class LLMMessage(BaseModel):
    """A single message in an LLM conversation."""
    role: Literal["system", "user", "assistant"] = Field(...)
    content: str = Field(...)


class LLMResponse(BaseModel):
    """Response from an LLM provider."""
    content: str
    model: str
    usage: dict[str, Any] = Field(default_factory=dict)
    finish_reason: str | None = None
    raw_response: dict[str, Any] | None = None


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class SubmissionCreateRequest(CamelModel):
    project_id: str
    artifact_path: str


class EnqueueRunRequest(CamelModel):
    submission_id: str
    toolchain: str = "tests"


class EnqueueRunResponse(CamelModel):
    run_id: str
    status: RunStatus


class RunStatusResponse(CamelModel):
    run_id: str
    status: RunStatus
    duration_ms: int | None = None
    report_id: str | None = None


class ErrorResponse(CamelModel):
    type: str
    user_message: str
    suggestion: str
