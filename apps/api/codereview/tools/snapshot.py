"""Size-budgeted snapshot of a working tree for the AI reviewer.

The snapshot is a rendered directory outline plus the normalized text of
accepted files. Files are considered smallest-first, so configs and other
small files survive when large files would exhaust the byte budget. A file
is either included whole or skipped; nothing is truncated.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from codereview.config import Settings
from codereview.schemas import ProjectFile, Snapshot, SnapshotMetrics


logger = logging.getLogger(__name__)

TREE_ROOT_NAME = "project-root"
BINARY_THRESHOLD = 0.3

TRAILING_WS = re.compile(r"[ \t]+\n")
EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class SnapshotBudget:
    max_files: int
    max_file_bytes: int
    max_total_bytes: int
    allowed_exts: tuple[str, ...]
    excluded_dirs: frozenset[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> SnapshotBudget:
        return cls(
            max_files=settings.snapshot_max_files,
            max_file_bytes=settings.snapshot_max_file_bytes,
            max_total_bytes=settings.snapshot_max_total_bytes,
            allowed_exts=tuple(settings.snapshot_allowed_exts),
            excluded_dirs=frozenset(settings.snapshot_excluded_dirs),
        )

    def allows_file(self, name: str) -> bool:
        # An empty extension list accepts everything.
        if not self.allowed_exts:
            return True
        return Path(name).suffix.lower() in self.allowed_exts


def looks_binary(data: bytes) -> bool:
    """NUL byte present, or more than 30% control bytes."""
    if b"\x00" in data:
        return True
    if not data:
        return False
    control = sum(1 for b in data if b < 9 or 13 < b < 32)
    return control / len(data) > BINARY_THRESHOLD


def normalize_text(text: str) -> str:
    text = text.removeprefix("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = TRAILING_WS.sub("\n", text)
    text = EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def _walk_accepted(root: Path, budget: SnapshotBudget) -> list[str]:
    out: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=lambda _e: None):
        dirnames[:] = sorted(d for d in dirnames if d not in budget.excluded_dirs)
        for name in sorted(filenames):
            if not budget.allows_file(name):
                continue
            out.append((Path(dirpath) / name).relative_to(root).as_posix())
    return out


def _render_tree(root: Path, budget: SnapshotBudget) -> str:
    lines: list[str] = []

    def visit(path: Path, name: str, depth: int) -> None:
        lines.append("  " * depth + name)
        if not path.is_dir():
            return
        try:
            entries = list(path.iterdir())
        except OSError:
            return
        children = [
            e for e in entries
            if (e.is_dir() and e.name not in budget.excluded_dirs)
            or (not e.is_dir() and budget.allows_file(e.name))
        ]
        children.sort(key=lambda e: (not e.is_dir(), e.name))
        for child in children:
            visit(child, child.name, depth + 1)

    visit(root, TREE_ROOT_NAME, 0)
    return "\n".join(lines)


def build_snapshot(work_dir: str | Path, budget: SnapshotBudget) -> Snapshot:
    """Build the snapshot of ``work_dir`` under ``budget``.

    Args:
        work_dir: Extracted working tree
        budget: File count and byte ceilings plus extension/directory filters

    Returns:
        Snapshot whose files are ordered smallest-first
    """
    root = Path(work_dir)
    candidates: list[tuple[int, str, str]] = []

    for rel in _walk_accepted(root, budget):
        try:
            data = (root / rel).read_bytes()
        except OSError as e:
            logger.debug(f"Skipping unreadable file {rel}: {e}")
            continue
        if len(data) > budget.max_file_bytes or looks_binary(data):
            continue
        text = normalize_text(data.decode("utf-8", errors="replace"))
        size = len(text.encode("utf-8"))
        if size == 0:
            continue
        candidates.append((size, rel, text))

    candidates.sort(key=lambda c: (c[0], c[1]))

    files: list[ProjectFile] = []
    total = 0
    for size, rel, text in candidates:
        if len(files) >= budget.max_files:
            break
        if total + size > budget.max_total_bytes:
            continue
        files.append(ProjectFile(path=rel, content=text))
        total += size

    if len(files) < len(candidates):
        logger.info(f"Snapshot kept {len(files)} of {len(candidates)} files ({total} bytes)")

    return Snapshot(
        tree=_render_tree(root, budget),
        files=files,
        metrics=SnapshotMetrics(
            file_count=len(files),
            total_bytes=total,
            max_files=budget.max_files,
            max_file_bytes=budget.max_file_bytes,
            max_total_bytes=budget.max_total_bytes,
        ),
    )
