"""Student feedback synthesized from static check results."""

from __future__ import annotations

from codereview.schemas import Feedback, RequirementStatus, StaticCheckResult, Verdict


FAILED_TEST_PENALTY = 10
LINT_ERROR_PENALTY = 1


def compute_score(failed_tests: int, lint_errors: int) -> int:
    raw = 100 - FAILED_TEST_PENALTY * failed_tests - LINT_ERROR_PENALTY * lint_errors
    return max(0, min(100, raw))


def decide_verdict(failed_tests: int, lint_errors: int) -> Verdict:
    if failed_tests > 0 or lint_errors > 0:
        return Verdict.SEND_BACK
    return Verdict.TO_REVIEWER


def synthesize_feedback(checks: StaticCheckResult) -> Feedback:
    """Build feedback.json from a static check result.

    The submission goes back to the student when any lint finding or
    failed test exists; otherwise it moves on to a reviewer.
    """
    failed = checks.tests.failed
    lint_count = len(checks.lint.errors)
    score = compute_score(failed, lint_count)
    verdict = decide_verdict(failed, lint_count)

    problems: list[str] = []
    if failed:
        problems.append(f"Failed tests: {failed}")
    if lint_count:
        problems.append(f"Lint findings: {lint_count}")

    passed_reqs = sum(1 for r in checks.requirements if r.status == RequirementStatus.PASSED)
    failed_reqs = sum(1 for r in checks.requirements if r.status == RequirementStatus.FAILED)
    summary = "; ".join([
        f"Score: {score}/100",
        f"Tests: passed={checks.tests.passed}, failed={failed}",
        f"Lint findings: {lint_count}",
        f"Requirements: passed={passed_reqs}, failed={failed_reqs}",
    ])

    next_steps: list[str] = []
    if failed:
        next_steps.append("Fix the failing tests and run the check again")
    if lint_count:
        next_steps.append("Resolve the lint findings (print calls, TODOs, long lines)")
    if verdict == Verdict.TO_REVIEWER:
        next_steps.append("Hand the work over for review")

    return Feedback(
        summary=summary,
        score=score,
        verdict=verdict,
        requirements=[f"{r.title}: {r.status.value}" for r in checks.requirements],
        problems=problems,
        next_steps=next_steps,
    )
