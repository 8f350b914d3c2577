"""Exception hierarchy and the fixed error taxonomy.

Every pipeline failure is eventually classified into one taxonomy entry so
that users only ever see ``{userMessage, suggestion}``, never raw internal
messages or tracebacks.
"""

from __future__ import annotations

import errno
import subprocess
import zipfile

from codereview.schemas import ErrorInfo


# =============================================================================
# Taxonomy
# =============================================================================

ERROR_TYPES: dict[str, ErrorInfo] = {
    # Filesystem
    "FILE_NOT_FOUND": ErrorInfo(
        type="FILE_NOT_FOUND",
        message="File or directory not found",
        user_message="Required project files could not be found",
        suggestion="Check that the archive contains all project files and is not damaged",
    ),
    "PERMISSION_DENIED": ErrorInfo(
        type="PERMISSION_DENIED",
        message="Permission denied",
        user_message="Project files could not be accessed",
        suggestion="Check file permissions or upload the project again",
    ),
    "DISK_FULL": ErrorInfo(
        type="DISK_FULL",
        message="No space left on device",
        user_message="Not enough space to process the project",
        suggestion="Free up disk space or contact an administrator",
    ),
    # Archive
    "INVALID_ARCHIVE": ErrorInfo(
        type="INVALID_ARCHIVE",
        message="Invalid archive format",
        user_message="The uploaded file is not a valid archive",
        suggestion="Make sure the file is a ZIP archive and is not damaged",
    ),
    "ARCHIVE_TOO_LARGE": ErrorInfo(
        type="ARCHIVE_TOO_LARGE",
        message="Archive exceeds the size limit",
        user_message="The archive is larger than the allowed limit",
        suggestion="Reduce the archive size or remove unnecessary files",
    ),
    "EXTRACT_FAILED": ErrorInfo(
        type="EXTRACT_FAILED",
        message="Archive extraction failed",
        user_message="The project archive could not be unpacked",
        suggestion="Check the archive integrity or create a new one",
    ),
    # Execution
    "EXECUTION_TIMEOUT": ErrorInfo(
        type="EXECUTION_TIMEOUT",
        message="Execution time limit exceeded",
        user_message="The check took too long to complete",
        suggestion="Simplify the code or split the project into smaller parts",
    ),
    "EXECUTION_FAILED": ErrorInfo(
        type="EXECUTION_FAILED",
        message="Command execution failed",
        user_message="The code check could not be executed",
        suggestion="Check the code syntax and that all dependencies are declared",
    ),
    "PYTEST_ERROR": ErrorInfo(
        type="PYTEST_ERROR",
        message="Test run failed",
        user_message="The tests could not be started",
        suggestion="Check that the tests are correct and pytest is installed",
    ),
    # Configuration
    "MISSING_CONFIG": ErrorInfo(
        type="MISSING_CONFIG",
        message="Configuration file is missing",
        user_message="The project configuration file was not found",
        suggestion="Add the required configuration files (requirements.txt, pytest.ini, etc.)",
    ),
    "INVALID_CONFIG": ErrorInfo(
        type="INVALID_CONFIG",
        message="Invalid configuration",
        user_message="The project configuration contains errors",
        suggestion="Check the format and contents of the configuration files",
    ),
    # Network
    "NETWORK_ERROR": ErrorInfo(
        type="NETWORK_ERROR",
        message="Network connection error",
        user_message="A network request failed",
        suggestion="Check the network connection and try again later",
    ),
    "DOWNLOAD_FAILED": ErrorInfo(
        type="DOWNLOAD_FAILED",
        message="Download failed",
        user_message="The project could not be downloaded",
        suggestion="Check the repository link and try again later",
    ),
    # Data
    "INVALID_DATA": ErrorInfo(
        type="INVALID_DATA",
        message="Invalid data",
        user_message="Invalid data was received",
        suggestion="Check the format of the uploaded data",
    ),
    "DATA_CORRUPTION": ErrorInfo(
        type="DATA_CORRUPTION",
        message="Data corruption",
        user_message="The project data is corrupted",
        suggestion="Upload the project again",
    ),
    # General
    "UNKNOWN_ERROR": ErrorInfo(
        type="UNKNOWN_ERROR",
        message="Unknown error",
        user_message="An unexpected error occurred",
        suggestion="Retry the operation or contact an administrator",
    ),
    "SYSTEM_ERROR": ErrorInfo(
        type="SYSTEM_ERROR",
        message="System error",
        user_message="A temporary system problem occurred",
        suggestion="Try again later or contact an administrator",
    ),
}

# Substring patterns checked in order against the lowercased message.
MESSAGE_PATTERNS: list[tuple[tuple[str, ...], str]] = [
    (("enoent", "not found"), "FILE_NOT_FOUND"),
    (("eacces", "permission denied"), "PERMISSION_DENIED"),
    (("enospc", "no space"), "DISK_FULL"),
    (("invalid archive", "bad zip", "not a zip"), "INVALID_ARCHIVE"),
    (("too large", "file too big"), "ARCHIVE_TOO_LARGE"),
    (("extract", "unzip"), "EXTRACT_FAILED"),
    (("timeout", "timed out"), "EXECUTION_TIMEOUT"),
    (("pytest", "test"), "PYTEST_ERROR"),
    (("config", "configuration"), "MISSING_CONFIG"),
    (("network", "connection"), "NETWORK_ERROR"),
    (("download", "fetch"), "DOWNLOAD_FAILED"),
]

ERRNO_TYPES: dict[int, str] = {
    errno.ENOENT: "FILE_NOT_FOUND",
    errno.EACCES: "PERMISSION_DENIED",
    errno.EPERM: "PERMISSION_DENIED",
    errno.ENOSPC: "DISK_FULL",
}

HTTP_STATUS: dict[str, int] = {
    "FILE_NOT_FOUND": 404,
    "PERMISSION_DENIED": 403,
    "INVALID_ARCHIVE": 400,
    "INVALID_DATA": 400,
    "ARCHIVE_TOO_LARGE": 413,
}


# =============================================================================
# Exceptions
# =============================================================================

class CodeReviewError(Exception):
    """Base exception for all pipeline errors."""

    error_type: str | None = None

    def __init__(self, message: str, details: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ArchiveError(CodeReviewError):
    error_type = "INVALID_ARCHIVE"


class ArchiveTooLargeError(ArchiveError):
    error_type = "ARCHIVE_TOO_LARGE"


class ExtractionError(CodeReviewError):
    error_type = "EXTRACT_FAILED"


class PathEscapeError(CodeReviewError):
    """A relative path resolved outside of its root."""
    error_type = "PERMISSION_DENIED"


class ExecutionTimeoutError(CodeReviewError):
    error_type = "EXECUTION_TIMEOUT"


class TestRunnerError(CodeReviewError):
    error_type = "PYTEST_ERROR"


class ConfigError(CodeReviewError):
    error_type = "INVALID_CONFIG"


class SubmissionNotFoundError(CodeReviewError):
    error_type = "FILE_NOT_FOUND"


class QueueFullError(CodeReviewError):
    error_type = "SYSTEM_ERROR"


class LLMError(CodeReviewError):
    error_type = "NETWORK_ERROR"


class LLMRequestError(LLMError):
    """A provider call failed; ``status_code`` is set for HTTP errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        details = {"status_code": str(status_code)} if status_code is not None else None
        super().__init__(message, details)
        self.status_code = status_code
        self.retryable = retryable


class StageError(CodeReviewError):
    """A pipeline stage failed; the original exception is the ``__cause__``."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Failed to {stage}: {cause}")
        self.stage = stage


# =============================================================================
# Classification
# =============================================================================

def _cause_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def classify_error(exc: BaseException | str) -> ErrorInfo:
    """Map an exception (or bare message) to its taxonomy entry."""
    if isinstance(exc, str):
        return _classify_message(exc)

    chain = _cause_chain(exc)

    for item in chain:
        if isinstance(item, CodeReviewError) and item.error_type:
            return ERROR_TYPES[item.error_type]

    for item in chain:
        if isinstance(item, OSError) and item.errno in ERRNO_TYPES:
            return ERROR_TYPES[ERRNO_TYPES[item.errno]]
        if isinstance(item, (subprocess.TimeoutExpired, TimeoutError)):
            return ERROR_TYPES["EXECUTION_TIMEOUT"]
        if isinstance(item, zipfile.BadZipFile):
            return ERROR_TYPES["INVALID_ARCHIVE"]

    return _classify_message(str(exc))


def _classify_message(message: str) -> ErrorInfo:
    lowered = message.lower()
    for needles, error_type in MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return ERROR_TYPES[error_type]
    return ERROR_TYPES["UNKNOWN_ERROR"]


def http_status_for(error_type: str) -> int:
    return HTTP_STATUS.get(error_type, 500)
