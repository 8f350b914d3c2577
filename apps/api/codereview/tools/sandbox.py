"""Subprocess execution for the external test runner.

Runs pytest against a submission's working tree:
- Controlled execution with a hard timeout (the child is killed on expiry)
- Ordered invocation specs: with/without the no-network flag, then
  ``pytest`` before ``python3 -m pytest``
- Capture stdout/stderr of every attempt for diagnostics
- Parse the terse pytest output into passed/failed counts

This is not an isolation boundary: the child runs with the server's
privileges, bounded only by the timeout.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

from codereview.schemas import TestRunResult, ToolResult


logger = logging.getLogger(__name__)

BASE_ARGS = ("--maxfail=1", "-q", "-rA")
DISABLE_SOCKET_FLAG = "--disable-socket"

UNRECOGNIZED_FLAG = re.compile(r"unrecognized arguments:.*--disable-socket", re.IGNORECASE)
SUMMARY_LINE = re.compile(
    r"^[=\s]*(?:\d+\s+(?:passed|failed)\b.*"
    r"|\d+\s+\w+(?:,\s*\d+\s+\w+)*\s+in\s+[\d.]+s\b.*)$",
    re.MULTILINE,
)
FAILED_COUNT = re.compile(r"(\d+)\s+failed\b")
PASSED_COUNT = re.compile(r"(\d+)\s+passed\b")
FAILED_LINE = re.compile(r"^(?:=+\s*)?FAILED\s+(\S.*?)(?:\s+-\s+.*)?$", re.MULTILINE)
PROGRESS_LINE = re.compile(r"^([.FEsxX]+)(?:\s+\[\s*\d+%\])?\s*$", re.MULTILINE)
NO_TESTS = re.compile(r"\bno tests ran\b", re.IGNORECASE)

SPAWN_FAILURES = frozenset({"COMMAND_NOT_FOUND", "EXECUTION_ERROR", "INVALID_CWD"})


@dataclass(frozen=True)
class InvocationSpec:
    """One way of starting the test runner."""
    argv: tuple[str, ...]

    @property
    def label(self) -> str:
        return " ".join(self.argv)


class ParsedOutput(NamedTuple):
    passed: int
    failed: int
    items: list[str]
    recognized: bool


def build_invocations(
    commands: list[list[str]],
    disable_socket: bool = True,
) -> list[InvocationSpec]:
    """Flag variants outermost, command variants innermost."""
    flag_variants: list[tuple[str, ...]] = [(DISABLE_SOCKET_FLAG,), ()] if disable_socket else [()]
    return [
        InvocationSpec(argv=(*command, *BASE_ARGS, *flags))
        for flags in flag_variants
        for command in commands
    ]


def parse_pytest_output(output: str) -> ParsedOutput:
    """Extract counts and failing test ids from terse pytest output.

    The last summary line (``1 failed, 3 passed in 0.12s``) wins. Without one,
    progress lines (``..F.``) are counted character by character.
    """
    text = output.replace("\r", "")
    passed = failed = 0
    recognized = False

    summaries = SUMMARY_LINE.findall(text)
    if summaries:
        recognized = True
        summary = summaries[-1]
        failed = sum(int(n) for n in FAILED_COUNT.findall(summary))
        passed = sum(int(n) for n in PASSED_COUNT.findall(summary))

    items: list[str] = []
    for match in FAILED_LINE.finditer(text):
        test_id = match.group(1).strip()
        if test_id and test_id not in items:
            items.append(test_id)

    if not recognized:
        for markers in PROGRESS_LINE.findall(text):
            recognized = True
            passed += markers.count(".")
            failed += markers.count("F")

    if NO_TESTS.search(text):
        recognized = True

    return ParsedOutput(passed=passed, failed=failed, items=items, recognized=recognized)


def _runner_env(cwd: str) -> dict[str, str]:
    env = os.environ.copy()
    extra_bins = [str(Path("~/.local/bin").expanduser())]
    env["PATH"] = os.pathsep.join(p for p in [env.get("PATH", ""), *extra_bins] if p)
    env["PYTHONDONTWRITEBYTECODE"] = "1"
    env["PYTHONUNBUFFERED"] = "1"
    env["PYTHONPATH"] = os.pathsep.join(p for p in [cwd, env.get("PYTHONPATH", "")] if p)
    return env


def _run_blocking(
    argv: tuple[str, ...],
    cwd: str,
    timeout: float,
    env: dict[str, str],
) -> ToolResult:
    start = time.perf_counter()
    command = " ".join(argv)

    try:
        result = subprocess.run(
            list(argv),
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired as e:
        return ToolResult(
            ok=False,
            error_code="COMMAND_TIMEOUT",
            error_message=f"Command timed out after {timeout} seconds",
            data={
                "stdout": _decode(e.stdout),
                "stderr": _decode(e.stderr),
                "command": command,
            },
            retryable=False,
        )
    except FileNotFoundError as e:
        return ToolResult(
            ok=False,
            error_code="COMMAND_NOT_FOUND",
            error_message=str(e),
            data={"stdout": "", "stderr": str(e), "command": command},
        )
    except OSError as e:
        return ToolResult(
            ok=False,
            error_code="EXECUTION_ERROR",
            error_message=str(e),
            data={"stdout": "", "stderr": str(e), "command": command},
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    return ToolResult(
        ok=result.returncode == 0,
        data={
            "stdout": result.stdout,
            "stderr": result.stderr,
            "exit_code": result.returncode,
            "command": command,
        },
        error_code="COMMAND_FAILED" if result.returncode != 0 else None,
        error_message=result.stderr if result.returncode != 0 else None,
        latency_ms=latency_ms,
    )


def _decode(stream: bytes | str | None) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream


async def run_command(
    argv: tuple[str, ...],
    cwd: str,
    timeout: float,
    env: dict[str, str] | None = None,
) -> ToolResult:
    """Run a command off the event loop.

    Args:
        argv: Program and arguments
        cwd: Working directory
        timeout: Hard timeout in seconds; the child is killed on expiry
        env: Full environment for the child

    Returns:
        ToolResult with command output
    """
    if not os.path.isdir(cwd):
        return ToolResult(
            ok=False,
            error_code="INVALID_CWD",
            error_message=f"Working directory does not exist: {cwd}",
        )
    return await asyncio.to_thread(_run_blocking, argv, cwd, timeout, env or os.environ.copy())


async def run_tests(
    repo_path: str | Path,
    invocations: list[InvocationSpec],
    timeout: float = 120.0,
) -> TestRunResult:
    """Run pytest, trying each invocation until one produces parseable output.

    Never raises for runner problems: a timeout sets ``timed_out`` and a
    runner that could not be started yields zero counts with the collected
    output attached.
    """
    cwd = str(repo_path)
    env = _runner_env(cwd)
    attempts: list[ToolResult] = []

    for spec in invocations:
        logger.info(f"Running test runner: {spec.label}")
        result = await run_command(spec.argv, cwd=cwd, timeout=timeout, env=env)
        attempts.append(result)

        if result.error_code == "COMMAND_TIMEOUT":
            logger.warning(f"Test runner timed out after {timeout}s: {spec.label}")
            return TestRunResult(raw_output=result.output, timed_out=True, attempts=attempts)

        if result.error_code in SPAWN_FAILURES:
            continue

        output = result.output
        if UNRECOGNIZED_FLAG.search(output):
            logger.info(f"{DISABLE_SOCKET_FLAG} is not supported, trying without it")
            continue

        parsed = parse_pytest_output(output)
        if parsed.recognized:
            return TestRunResult(
                passed=parsed.passed,
                failed=parsed.failed,
                items=parsed.items,
                raw_output=output,
                attempts=attempts,
            )

    started = any(a.error_code not in SPAWN_FAILURES for a in attempts)
    combined = "\n".join(
        f"$ {a.data.get('command', '') if a.data else ''}\n{a.output or a.error_message or ''}"
        for a in attempts
    )
    parsed = parse_pytest_output(combined)
    logger.warning("No test runner invocation produced parseable output")
    return TestRunResult(
        passed=parsed.passed,
        failed=parsed.failed,
        items=parsed.items,
        raw_output=combined,
        started=started,
        attempts=attempts,
    )
