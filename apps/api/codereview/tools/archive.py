"""Archive extraction and safe path resolution.

Submissions arrive as ZIP archives and are unpacked into
``<work_dir>/<project_id>/<submission_id>``. Archives whose root holds a
single directory and no files are flattened one level, so ``repo-name/...``
layouts look the same as archives zipped from inside the project.

Every path derived from user input goes through ``resolve_safe_path``.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from uuid import uuid4

from codereview.errors import (
    ArchiveError,
    ArchiveTooLargeError,
    ExtractionError,
    PathEscapeError,
)
from codereview.schemas import CamelModel


logger = logging.getLogger(__name__)


class FileNode(CamelModel):
    """Node of a working-tree listing."""
    name: str
    path: str
    is_dir: bool
    children: list[FileNode] | None = None


def resolve_safe_path(root: str | Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` under ``root``.

    Raises:
        PathEscapeError: if the path has a ``..`` segment or resolves outside root.
    """
    normalized = relative_path.replace("\\", "/")
    if ".." in PurePosixPath(normalized).parts:
        raise PathEscapeError("Path is outside of root", {"path": relative_path})

    root_abs = Path(root).resolve()
    target = (root_abs / normalized.lstrip("/")).resolve()
    if target != root_abs and root_abs not in target.parents:
        raise PathEscapeError("Path is outside of root", {"path": relative_path})
    return target


def read_file(root: str | Path, relative_path: str) -> str:
    """Read a text file inside ``root``."""
    return resolve_safe_path(root, relative_path).read_text(encoding="utf-8", errors="replace")


def submission_dir(work_root: str | Path, project_id: str, submission_id: str) -> Path:
    return Path(work_root).resolve() / project_id / submission_id


def extract_archive(
    archive_path: str | Path,
    work_root: str | Path,
    project_id: str,
    submission_id: str,
    max_bytes: int | None = None,
) -> Path:
    """Extract a ZIP archive into a fresh submission directory.

    Returns:
        Absolute path of the working directory.
    """
    archive = Path(archive_path)
    size = archive.stat().st_size
    if max_bytes is not None and size > max_bytes:
        raise ArchiveTooLargeError(
            "Archive is too large",
            {"size": str(size), "limit": str(max_bytes)},
        )
    if not zipfile.is_zipfile(archive):
        raise ArchiveError("Invalid archive: not a zip file", {"path": str(archive)})

    run_dir = submission_dir(work_root, project_id, submission_id)
    run_dir.mkdir(parents=True, exist_ok=True)

    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.infolist():
                try:
                    resolve_safe_path(run_dir, member.filename)
                except PathEscapeError as e:
                    raise ArchiveError(
                        "Invalid archive: member escapes the extraction root",
                        {"member": member.filename},
                    ) from e
            zf.extractall(run_dir)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Invalid archive: {e}") from e
    except (RuntimeError, NotImplementedError) as e:
        # Encrypted members or unsupported compression methods.
        raise ExtractionError(f"Failed to extract archive: {e}") from e

    _flatten_single_root(run_dir)
    logger.info(f"Extracted {archive.name} into {run_dir}")
    return run_dir


def ensure_extracted(
    archive_path: str | Path,
    work_root: str | Path,
    project_id: str,
    submission_id: str,
    max_bytes: int | None = None,
) -> Path:
    """Extract unless the submission directory already has content."""
    run_dir = submission_dir(work_root, project_id, submission_id)
    if run_dir.is_dir() and any(run_dir.iterdir()):
        logger.debug(f"Reusing extracted tree at {run_dir}")
        return run_dir
    return extract_archive(archive_path, work_root, project_id, submission_id, max_bytes)


def _flatten_single_root(run_dir: Path) -> None:
    entries = list(run_dir.iterdir())
    if len(entries) != 1 or not entries[0].is_dir():
        return

    # Rename first so a child sharing the directory's name cannot collide.
    holder = entries[0].rename(run_dir / f".flatten-{uuid4().hex}")
    for child in list(holder.iterdir()):
        shutil.move(str(child), str(run_dir / child.name))
    shutil.rmtree(holder)


def build_file_tree(root: str | Path) -> FileNode:
    """List the working tree as nested nodes sorted by name."""
    root_path = Path(root).resolve()

    def walk(path: Path, rel: str) -> FileNode:
        if not path.is_dir():
            return FileNode(name=path.name, path=rel, is_dir=False)
        children = [
            walk(child, f"{rel}/{child.name}" if rel else child.name)
            for child in sorted(path.iterdir(), key=lambda p: p.name)
        ]
        return FileNode(name=path.name, path=rel, is_dir=True, children=children)

    return walk(root_path, "")
