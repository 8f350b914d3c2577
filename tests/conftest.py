"""Shared fixtures: isolated settings, stores and archive builders."""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable

import pytest

from codereview.config import Settings
from codereview.database.store import Stores


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory, ignoring any .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}",
        upload_dir=tmp_path / "uploads",
        work_dir=tmp_path / "work",
        artifacts_dir=tmp_path / "artifacts",
        enable_pytest=False,
        enable_llm=False,
    )


@pytest.fixture
def stores() -> Stores:
    return Stores.in_memory()


@pytest.fixture
def make_zip(tmp_path: Path) -> Callable[..., Path]:
    """Build a zip archive from a {member name: content} mapping."""

    def _make(files: dict[str, str | bytes], name: str = "submission.zip") -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            for member, content in files.items():
                zf.writestr(member, content)
        return path

    return _make


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write a working tree from a {relative path: content} mapping."""

    def _make(files: dict[str, str], root_name: str = "tree") -> Path:
        root = tmp_path / root_name
        root.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return root

    return _make
