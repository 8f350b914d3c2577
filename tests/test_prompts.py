"""Tests for llm/prompts.py."""

from __future__ import annotations

from pathlib import Path

from codereview.llm.prompts import REPORT_SYSTEM_PROMPT, html_to_text, load_prompt, normalize_markers


class TestHtmlToText:
    def test_blocks_lists_and_breaks(self) -> None:
        html = "<p>Hello</p><ul><li>one</li><li>two</li></ul><p>line<br>break</p>"

        text = html_to_text(html)

        assert text.splitlines() == ["Hello", "", "- one", "- two", "line", "break"]

    def test_scripts_and_styles_dropped(self) -> None:
        text = html_to_text("<style>p {}</style><script>alert(1)</script><div>kept</div>")

        assert text == "kept"

    def test_markers_collapsed(self) -> None:
        assert html_to_text("<pre>&lt;&lt;&lt;x = 1&gt;&gt;&gt;</pre>") == "<<x = 1>>"


class TestLoadPrompt:
    def test_default_when_unset(self) -> None:
        assert load_prompt(None, REPORT_SYSTEM_PROMPT) == REPORT_SYSTEM_PROMPT

    def test_missing_file_falls_back(self, tmp_path: Path) -> None:
        assert load_prompt(tmp_path / "absent.txt", "fallback") == "fallback"

    def test_text_override(self, tmp_path: Path) -> None:
        path = tmp_path / "report.txt"
        path.write_text("  Review <<<carefully>>>\n", encoding="utf-8")

        assert load_prompt(path, "fallback") == "Review <<carefully>>"

    def test_html_override(self, tmp_path: Path) -> None:
        path = tmp_path / "report.html"
        path.write_text("<h1>Rules</h1><p>Be strict</p>", encoding="utf-8")

        assert load_prompt(path, "fallback") == "Rules\n\nBe strict"


def test_normalize_markers() -> None:
    assert normalize_markers("<<<a>>> and <<b>>") == "<<a>> and <<b>>"
