"""Working-tree walking and project detection.

These helpers give the static checks and the pipeline a single view of the
submission's files:
- walk_files: every file under the tree, minus dependency/VCS directories
- safe_read: best-effort text read
- detect_project: languages present and whether pytest is in use
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from codereview.schemas import Detection


IGNORED_DIRS = frozenset({"node_modules", ".git", "__pycache__"})

LANGUAGE_EXTENSIONS: dict[str, str] = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
}

PYTEST_FILE = re.compile(r"^(test_.*\.py|.*_test\.py|pytest\.ini)$")


def walk_files(root: str | Path, ignored_dirs: frozenset[str] = IGNORED_DIRS) -> list[Path]:
    """Collect every file under ``root`` in a single pass.

    Unreadable directories are skipped.
    """
    out: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=lambda _e: None):
        dirnames[:] = sorted(d for d in dirnames if d not in ignored_dirs)
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if path.is_file():
                out.append(path)
    return out


def relative_posix(path: Path, root: str | Path) -> str:
    return path.relative_to(root).as_posix()


def safe_read(path: Path) -> str:
    """Read a file as UTF-8, returning "" when it cannot be read."""
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""


def detect_project(root: str | Path) -> Detection:
    """Detect languages and pytest usage from file names."""
    languages: set[str] = set()
    has_pytest = False

    for path in walk_files(root):
        name = path.name.lower()
        language = LANGUAGE_EXTENSIONS.get(path.suffix.lower())
        if language:
            languages.add(language)
        if PYTEST_FILE.match(name):
            has_pytest = True

    return Detection(languages=sorted(languages), has_pytest=has_pytest)
