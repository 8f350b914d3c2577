"""Run-scoped artifact files.

Each run owns ``<artifacts_dir>/<run_id>/``. Files are written to a temp
file in the same directory and renamed into place, so readers never see a
partially written artifact.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from codereview.tools.archive import resolve_safe_path


CHECKS_FILE = "checks.json"
FEEDBACK_FILE = "feedback.json"
DETECTION_FILE = "detection.json"
LLM_RESULTS_FILE = "llm_results.json"
LLM_ISSUES_FILE = "llm_issues.json"
LLM_SNAPSHOT_METRICS_FILE = "llm_snapshot.metrics.json"

ARTIFACT_NAMES = frozenset({
    CHECKS_FILE,
    FEEDBACK_FILE,
    DETECTION_FILE,
    LLM_RESULTS_FILE,
    LLM_ISSUES_FILE,
    LLM_SNAPSHOT_METRICS_FILE,
})


def run_artifacts_dir(artifacts_root: str | Path, run_id: str) -> Path:
    return Path(artifacts_root) / run_id


def _to_payload(data: BaseModel | dict[str, Any] | list[Any]) -> Any:
    if isinstance(data, BaseModel):
        to_json_dict = getattr(data, "to_json_dict", None)
        return to_json_dict() if to_json_dict else data.model_dump(mode="json", by_alias=True)
    return data


def write_artifact(
    artifacts_root: str | Path,
    run_id: str,
    name: str,
    data: BaseModel | dict[str, Any] | list[Any],
) -> Path:
    """Atomically write one JSON artifact and return its path."""
    directory = run_artifacts_dir(artifacts_root, run_id)
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / name

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(_to_payload(data), fh, ensure_ascii=False, indent=2)
        os.replace(tmp_path, target)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise
    return target


def read_artifact(artifacts_root: str | Path, run_id: str, name: str) -> Any:
    """Load an artifact.

    Raises:
        FileNotFoundError: if the artifact does not exist
        PathEscapeError: if ``run_id`` points outside the artifacts root
    """
    path = resolve_safe_path(artifacts_root, f"{run_id}/{name}")
    with path.open(encoding="utf-8") as fh:
        return json.load(fh)
