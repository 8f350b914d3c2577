"""Tests for the error taxonomy and classifier."""

from __future__ import annotations

import errno
import subprocess
import zipfile

import pytest

from codereview.errors import (
    ERROR_TYPES,
    ArchiveTooLargeError,
    LLMRequestError,
    StageError,
    classify_error,
    http_status_for,
)


def _wrapped(cause: BaseException, stage: str = "extract archive") -> StageError:
    try:
        try:
            raise cause
        except BaseException as exc:
            raise StageError(stage, exc) from exc
    except StageError as wrapped:
        return wrapped


class TestClassifyError:
    """Exception and message classification."""

    def test_typed_error_through_stage_wrapper(self) -> None:
        info = classify_error(_wrapped(ArchiveTooLargeError("Archive is 300 MB")))

        assert info.type == "ARCHIVE_TOO_LARGE"
        assert info.user_message == ERROR_TYPES["ARCHIVE_TOO_LARGE"].user_message

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (FileNotFoundError(errno.ENOENT, "missing"), "FILE_NOT_FOUND"),
            (PermissionError(errno.EACCES, "nope"), "PERMISSION_DENIED"),
            (OSError(errno.ENOSPC, "full"), "DISK_FULL"),
            (subprocess.TimeoutExpired(cmd="pytest", timeout=1), "EXECUTION_TIMEOUT"),
            (zipfile.BadZipFile("File is not a zip file"), "INVALID_ARCHIVE"),
        ],
    )
    def test_builtin_exceptions_in_cause_chain(self, exc: BaseException, expected: str) -> None:
        assert classify_error(_wrapped(exc, stage="collect checks")).type == expected

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Command timed out after 120s", "EXECUTION_TIMEOUT"),
            ("pytest crashed", "PYTEST_ERROR"),
            ("connection refused", "NETWORK_ERROR"),
            ("fetch failed", "DOWNLOAD_FAILED"),
            ("no space left", "DISK_FULL"),
            ("something odd", "UNKNOWN_ERROR"),
        ],
    )
    def test_message_patterns(self, message: str, expected: str) -> None:
        assert classify_error(message).type == expected
        assert classify_error(RuntimeError(message)).type == expected

    def test_unknown_stage_failure(self) -> None:
        assert classify_error(_wrapped(RuntimeError("weird"), stage="create reports")).type == "UNKNOWN_ERROR"

    def test_llm_errors_are_network_errors(self) -> None:
        exc = LLMRequestError("Provider returned 503", status_code=503, retryable=True)

        assert classify_error(exc).type == "NETWORK_ERROR"
        assert str(exc) == "Provider returned 503 (status_code=503)"


class TestHttpStatus:
    @pytest.mark.parametrize(
        "error_type, status",
        [
            ("FILE_NOT_FOUND", 404),
            ("PERMISSION_DENIED", 403),
            ("INVALID_ARCHIVE", 400),
            ("ARCHIVE_TOO_LARGE", 413),
            ("UNKNOWN_ERROR", 500),
            ("SYSTEM_ERROR", 500),
        ],
    )
    def test_mapping(self, error_type: str, status: int) -> None:
        assert http_status_for(error_type) == status
