"""Localize fragments flagged in an AI report.

The report is a sequence of blocks::

    Ошибка №1
    Файл: app/views.py
    Фрагмент:
    <<x = 1>>
    Комментарий: avoid magic value

Every ``<<...>>`` span in a fragment is searched verbatim in the referenced
file and turned into 1-based line/column ranges. Spans that do not occur
exactly are dropped; there is no fuzzy matching.

File references are resolved by exact path, then by unique basename, then
by the longest common suffix. The last step can pick the wrong file when
several files share a suffix with the reference.
"""

from __future__ import annotations

import re
from bisect import bisect_right
from dataclasses import dataclass

from codereview.llm.prompts import normalize_markers
from codereview.schemas import Issue, IssueRange, ProjectFile, Verdict


BLOCK_HEADER = re.compile(r"Ошибка\s*№\s*(\d+)", re.IGNORECASE)
FILE_LINE = re.compile(r"Файл:\s*(.+)", re.IGNORECASE)
FRAGMENT = re.compile(r"Фрагмент:\s*(.*?)(?=\n\s*Комментарий:|\Z)", re.IGNORECASE | re.DOTALL)
COMMENT = re.compile(r"Комментарий:\s*(.*)", re.IGNORECASE | re.DOTALL)
MARKER = re.compile(r"<<(.*?)>>", re.DOTALL)

SEND_BACK_HINTS = ("send_back", "send back", "доработ")
TO_REVIEWER_HINTS = ("to_reviewer", "to reviewer", "ревью")


@dataclass
class ReportBlock:
    number: int | None
    file: str | None
    fragment: str | None
    comment: str | None


def parse_verdict(text: str) -> Verdict:
    """Read the classifier's answer; anything unrecognized goes to the reviewer."""
    lowered = text.lower()
    if any(hint in lowered for hint in SEND_BACK_HINTS):
        return Verdict.SEND_BACK
    if any(hint in lowered for hint in TO_REVIEWER_HINTS):
        return Verdict.TO_REVIEWER
    return Verdict.TO_REVIEWER


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def extract_blocks(report: str) -> list[ReportBlock]:
    text = _normalize_newlines(normalize_markers(report))
    headers = list(BLOCK_HEADER.finditer(text))
    blocks: list[ReportBlock] = []

    for i, header in enumerate(headers):
        end = headers[i + 1].start() if i + 1 < len(headers) else len(text)
        body = text[header.end():end]

        file_match = FILE_LINE.search(body)
        fragment_match = FRAGMENT.search(body)
        comment_match = COMMENT.search(body)
        blocks.append(
            ReportBlock(
                number=int(header.group(1)),
                file=file_match.group(1).strip() if file_match else None,
                fragment=fragment_match.group(1).strip() if fragment_match else None,
                comment=comment_match.group(1).strip() if comment_match else None,
            )
        )
    return blocks


def extract_markers(fragment: str | None) -> list[str]:
    if not fragment:
        return []
    return [m.group(1).strip() for m in MARKER.finditer(fragment)]


def resolve_file(files: list[ProjectFile], requested: str | None) -> ProjectFile | None:
    if not requested or not files:
        return None
    wanted = requested.strip().replace("\\", "/")

    for f in files:
        if f.path.replace("\\", "/") == wanted:
            return f

    base = wanted.rsplit("/", 1)[-1]
    by_name = [
        f for f in files
        if f.path.replace("\\", "/") == base or f.path.replace("\\", "/").endswith("/" + base)
    ]
    if len(by_name) == 1:
        return by_name[0]

    best: ProjectFile | None = None
    best_score = -1
    for f in files:
        score = _common_suffix_length(f.path.replace("\\", "/"), wanted)
        if score > best_score:
            best, best_score = f, score
    return best


def _common_suffix_length(a: str, b: str) -> int:
    n = 0
    while n < len(a) and n < len(b) and a[-1 - n] == b[-1 - n]:
        n += 1
    return n


def build_line_index(text: str) -> list[int]:
    """Offsets at which each line starts."""
    starts = [0]
    starts.extend(i + 1 for i, ch in enumerate(text) if ch == "\n")
    return starts


def offset_to_line_col(line_starts: list[int], offset: int) -> tuple[int, int]:
    line = bisect_right(line_starts, offset) - 1
    return line + 1, offset - line_starts[line] + 1


def find_ranges(content: str, snippet: str) -> list[IssueRange]:
    """Every exact occurrence of ``snippet``; the end column is exclusive."""
    body = _normalize_newlines(content)
    needle = _normalize_newlines(snippet)
    if not needle:
        return []

    line_starts = build_line_index(body)
    ranges: list[IssueRange] = []
    start = body.find(needle)
    while start != -1:
        end = start + len(needle)
        start_line, start_col = offset_to_line_col(line_starts, start)
        end_line, end_col = offset_to_line_col(line_starts, end)
        ranges.append(
            IssueRange(start_line=start_line, start_col=start_col, end_line=end_line, end_col=end_col)
        )
        start = body.find(needle, end)
    return ranges


def extract_issues(report: str, files: list[ProjectFile]) -> list[Issue]:
    """Turn the report's fragments into localized issues.

    Args:
        report: Free-text report returned by the model
        files: Snapshot files the report refers to

    Returns:
        One issue per fragment span found at least once, in report order
    """
    issues: list[Issue] = []
    for block in extract_blocks(report):
        markers = extract_markers(block.fragment)
        if not markers:
            continue
        resolved = resolve_file(files, block.file)
        if resolved is None:
            continue

        for snippet in markers:
            ranges = find_ranges(resolved.content, snippet)
            if not ranges:
                continue
            issues.append(
                Issue(
                    file_path=resolved.path,
                    snippet=snippet,
                    ranges=ranges,
                    message=block.comment or None,
                    error_number=block.number,
                )
            )
    return issues
