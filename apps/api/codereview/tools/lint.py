"""Heuristic line-based lint rules.

Rules are data: each ``LintRule`` names the file extensions it applies to, a
stable finding code and either a regex or a maximum line length. Every rule
is checked against every line, so one line can produce several findings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from codereview.schemas import LintError, Metrics
from codereview.tools.repo import relative_posix, safe_read


PYTHON_EXTS = (".py",)
JS_LIKE_EXTS = (".js", ".jsx", ".ts", ".tsx")

LINE_SPLIT = re.compile(r"\r?\n")


@dataclass(frozen=True)
class LintRule:
    code: str
    extensions: tuple[str, ...]
    message: str
    pattern: re.Pattern[str] | None = None
    max_length: int | None = None
    counts_todo: bool = False

    def applies_to(self, path: str | Path) -> bool:
        return Path(path).suffix.lower() in self.extensions

    def matches(self, line: str) -> bool:
        if self.pattern is not None and self.pattern.search(line):
            return True
        return self.max_length is not None and len(line) > self.max_length


LINT_RULES: tuple[LintRule, ...] = (
    LintRule(
        code="PY001",
        extensions=PYTHON_EXTS,
        message="print() call found in Python code",
        pattern=re.compile(r"\bprint\s*\("),
    ),
    LintRule(
        code="PY002",
        extensions=PYTHON_EXTS,
        message="TODO found in code",
        pattern=re.compile(r"TODO", re.IGNORECASE),
        counts_todo=True,
    ),
    LintRule(
        code="PY003",
        extensions=PYTHON_EXTS,
        message="Line too long (>120)",
        max_length=120,
    ),
    LintRule(
        code="JS001",
        extensions=JS_LIKE_EXTS,
        message="TODO found in code",
        pattern=re.compile(r"TODO", re.IGNORECASE),
        counts_todo=True,
    ),
    LintRule(
        code="JS002",
        extensions=JS_LIKE_EXTS,
        message="Line too long (>140)",
        max_length=140,
    ),
)


def lint_content(
    file: str,
    content: str,
    rules: tuple[LintRule, ...] | list[LintRule] = LINT_RULES,
) -> list[LintError]:
    """Apply ``rules`` to every line of ``content``."""
    errors: list[LintError] = []
    for line_no, line in enumerate(LINE_SPLIT.split(content), start=1):
        for rule in rules:
            if rule.matches(line):
                errors.append(
                    LintError(file=file, line=line_no, code=rule.code, message=rule.message)
                )
    return errors


def lint_files(
    root: str | Path,
    files: list[Path],
    rules: tuple[LintRule, ...] | list[LintRule] = LINT_RULES,
) -> tuple[list[LintError], Metrics]:
    """Lint every file some rule applies to and count lines/TODOs."""
    errors: list[LintError] = []
    py_files = 0
    lines = 0
    todos = 0
    todo_codes = {rule.code for rule in rules if rule.counts_todo}

    for path in files:
        applicable = [rule for rule in rules if rule.applies_to(path)]
        if not applicable:
            continue
        if path.suffix.lower() in PYTHON_EXTS:
            py_files += 1

        content = safe_read(path)
        lines += len(LINE_SPLIT.split(content))
        found = lint_content(relative_posix(path, root), content, applicable)
        todos += sum(1 for error in found if error.code in todo_codes)
        errors.extend(found)

    return errors, Metrics(py_files=py_files, lines=lines, todos=todos)
