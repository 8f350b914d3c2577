"""Tests for llm/report_parser.py."""

from __future__ import annotations

import pytest

from codereview.llm.report_parser import (
    extract_blocks,
    extract_issues,
    find_ranges,
    parse_verdict,
    resolve_file,
)
from codereview.schemas import ProjectFile, Verdict


VIEWS = "\n".join(
    ["from django.shortcuts import render", ""]
    + [f"# line {n}" for n in range(3, 10)]
    + ["x = 1", "", "def index(request):", "    return render(request, 'index.html')", ""]
)


@pytest.fixture
def files() -> list[ProjectFile]:
    return [
        ProjectFile(path="app/views.py", content=VIEWS),
        ProjectFile(path="app/models.py", content="class Item:\n    pass\n"),
    ]


def _block(number: int, file: str, fragment: str, comment: str | None = None) -> str:
    text = f"Ошибка №{number}\nФайл: {file}\nФрагмент:\n{fragment}\n"
    if comment is not None:
        text += f"Комментарий: {comment}\n"
    return text


class TestExtractIssues:
    """Localization of fragment spans."""

    def test_single_fragment_located(self, files) -> None:
        report = _block(1, "app/views.py", "<<x = 1>>", "avoid magic value")

        issues = extract_issues(report, files)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.file_path == "app/views.py"
        assert issue.snippet == "x = 1"
        assert issue.message == "avoid magic value"
        assert issue.error_number == 1
        assert [r.to_json_dict() for r in issue.ranges] == [
            {"startLine": 10, "startCol": 1, "endLine": 10, "endCol": 6}
        ]

    def test_extraction_is_idempotent(self, files) -> None:
        report = _block(1, "app/views.py", "<<x = 1>>", "avoid magic value")

        assert extract_issues(report, files) == extract_issues(report, files)

    def test_triple_brackets_are_normalized(self, files) -> None:
        report = _block(2, "app/views.py", "<<<x = 1>>>", "same")

        issues = extract_issues(report, files)

        assert [i.snippet for i in issues] == ["x = 1"]

    def test_unmatched_fragment_is_dropped(self, files) -> None:
        report = _block(1, "app/views.py", "<<y = 2>>", "not in the file")

        assert extract_issues(report, files) == []

    def test_every_occurrence_becomes_a_range(self) -> None:
        files = [ProjectFile(path="a.py", content="print(1)\nprint(1)\n")]
        report = _block(1, "a.py", "<<print(1)>>", "debug output")

        issues = extract_issues(report, files)

        assert [(r.start_line, r.end_col) for r in issues[0].ranges] == [(1, 9), (2, 9)]

    def test_several_markers_in_one_block(self, files) -> None:
        fragment = "<<x = 1>> and <<def index(request):>>"
        report = _block(3, "app/views.py", fragment, "two spots")

        issues = extract_issues(report, files)

        assert [i.snippet for i in issues] == ["x = 1", "def index(request):"]
        assert {i.error_number for i in issues} == {3}

    def test_multiline_fragment(self) -> None:
        files = [ProjectFile(path="f.py", content="def f():\n    return 1\n")]
        report = _block(1, "f.py", "<<def f():\n    return 1>>", "trivial")

        issue = extract_issues(report, files)[0]

        assert issue.ranges[0].to_json_dict() == {
            "startLine": 1,
            "startCol": 1,
            "endLine": 2,
            "endCol": 13,
        }

    def test_inline_fragment_and_missing_comment(self, files) -> None:
        report = "Ошибка №4\nФайл: app/views.py\nФрагмент: <<x = 1>>\n"

        issues = extract_issues(report, files)

        assert issues[0].message is None
        assert issues[0].error_number == 4

    def test_blocks_without_file_or_markers_are_skipped(self, files) -> None:
        report = (
            "Ошибка №1\nФрагмент:\n<<x = 1>>\nКомментарий: no file\n"
            "Ошибка №2\nФайл: app/views.py\nФрагмент:\nx = 1\nКомментарий: no markers\n"
        )

        assert extract_issues(report, files) == []

    def test_crlf_report(self, files) -> None:
        report = _block(1, "app/views.py", "<<x = 1>>", "crlf").replace("\n", "\r\n")

        issues = extract_issues(report, files)

        assert issues[0].ranges[0].start_line == 10
        assert issues[0].message == "crlf"


class TestExtractBlocks:
    def test_blocks_split_on_headers(self) -> None:
        report = "Intro text\n" + _block(1, "a.py", "<<a>>", "first") + _block(2, "b.py", "<<b>>", "second")

        blocks = extract_blocks(report)

        assert [(b.number, b.file, b.comment) for b in blocks] == [
            (1, "a.py", "first"),
            (2, "b.py", "second"),
        ]


class TestResolveFile:
    """Exact, basename and suffix resolution."""

    def test_exact_path(self, files) -> None:
        assert resolve_file(files, "app/models.py").path == "app/models.py"

    def test_unique_basename(self, files) -> None:
        assert resolve_file(files, "views.py").path == "app/views.py"

    def test_backslashes(self, files) -> None:
        assert resolve_file(files, "app\\views.py").path == "app/views.py"

    def test_longest_common_suffix(self) -> None:
        files = [
            ProjectFile(path="other/views.py", content=""),
            ProjectFile(path="app/views.py", content=""),
        ]

        assert resolve_file(files, "src/app/views.py").path == "app/views.py"

    def test_nothing_to_resolve(self, files) -> None:
        assert resolve_file(files, None) is None
        assert resolve_file([], "a.py") is None


class TestFindRanges:
    def test_empty_snippet(self) -> None:
        assert find_ranges("abc", "") == []

    def test_occurrences_do_not_overlap(self) -> None:
        assert len(find_ranges("aaaa", "aa")) == 2


class TestParseVerdict:
    @pytest.mark.parametrize(
        "answer, expected",
        [
            ("send_back", Verdict.SEND_BACK),
            ("Решение: отправить на доработку", Verdict.SEND_BACK),
            ("TO_REVIEWER", Verdict.TO_REVIEWER),
            ("передать на ревью", Verdict.TO_REVIEWER),
            ("I am not sure", Verdict.TO_REVIEWER),
        ],
    )
    def test_answers(self, answer: str, expected: Verdict) -> None:
        assert parse_verdict(answer) == expected
