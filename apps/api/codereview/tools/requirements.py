"""Requirement checks.

Two sources feed the requirement list of a run:
- built-in heuristics (Django layout, model fields, presence of tests)
- an optional ``review.yaml|yml|json`` at the working-tree root, whose
  entries are evaluated by type: file, content, test or custom
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict

from codereview.schemas import Requirement, RequirementStatus
from codereview.tools.repo import relative_posix, safe_read


logger = logging.getLogger(__name__)

CONFIG_FILES = ("review.yaml", "review.yml", "review.json")

DJANGO_FILES = ("models.py", "urls.py", "views.py")
MODEL_FIELD_PATTERN = re.compile(
    r"models\.(CharField|TextField|IntegerField|Date(Time)?Field|ForeignKey)"
)


# =============================================================================
# Config schema
# =============================================================================

class ConfigRequirement(BaseModel):
    """One requirement declared in review.yaml."""

    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    description: str | None = None
    type: Literal["file", "content", "test", "custom"] = "custom"
    check: str | None = None
    required: bool | None = None


class ReviewConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requirements: list[ConfigRequirement] = []


def read_review_config(root: str | Path) -> ReviewConfig | None:
    """Load the first readable review config from the tree root."""
    for name in CONFIG_FILES:
        path = Path(root) / name
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
            raw = json.loads(content) if name.endswith(".json") else yaml.safe_load(content)
            return ReviewConfig.model_validate(raw or {})
        except (OSError, ValueError, yaml.YAMLError) as e:
            # json.JSONDecodeError and pydantic.ValidationError are ValueErrors.
            logger.warning(f"Ignoring unreadable review config {path}: {e}")
    return None


# =============================================================================
# Heuristics
# =============================================================================

def _has_file(rel_paths: list[str], name: str) -> bool:
    target = name.lower()
    return any(p == target or p.endswith("/" + target) for p in rel_paths)


def is_test_file(rel_path: str) -> bool:
    lowered = rel_path.lower()
    return (
        "test" in lowered
        or "spec" in lowered
        or lowered.endswith("_test.py")
        or lowered.endswith(".test.js")
    )


def builtin_requirements(root: str | Path, files: list[Path]) -> list[Requirement]:
    """Fixed checks run on every submission."""
    rel_paths = [relative_posix(f, root).lower() for f in files]
    requirements: list[Requirement] = []

    for name in DJANGO_FILES:
        found = _has_file(rel_paths, name)
        requirements.append(
            Requirement(
                id=f"django:{name}",
                title=f"Django: {name} present",
                status=RequirementStatus.PASSED if found else RequirementStatus.FAILED,
            )
        )

    fields_evidence = None
    for path in files:
        if not path.name.lower().endswith("models.py"):
            continue
        if MODEL_FIELD_PATTERN.search(safe_read(path)):
            fields_evidence = f"Basic model fields found in {relative_posix(path, root)}"
            break
    requirements.append(
        Requirement(
            id="django:basic-model-fields",
            title="Django: basic model fields",
            status=RequirementStatus.PASSED if fields_evidence else RequirementStatus.FAILED,
            evidence=fields_evidence or "No model fields detected",
        )
    )

    test_files = [Path(p).name for p in rel_paths if is_test_file(p)]
    requirements.append(
        Requirement(
            id="tests:present",
            title="Tests present",
            status=RequirementStatus.PASSED if test_files else RequirementStatus.FAILED,
            evidence=(
                f"Test files: {', '.join(test_files)}" if test_files else "No test files found"
            ),
        )
    )

    has_node_modules = (Path(root) / "node_modules").is_dir()
    requirements.append(
        Requirement(
            id="js:eslint",
            title="JS: ESLint (optional)",
            status=RequirementStatus.SKIPPED,
            evidence=(
                "node_modules present, ESLint was not run"
                if has_node_modules
                else "node_modules missing"
            ),
        )
    )
    return requirements


# =============================================================================
# Config evaluation
# =============================================================================

def evaluate_config_requirement(
    req: ConfigRequirement,
    root: str | Path,
    files: list[Path],
) -> Requirement:
    status = RequirementStatus.FAILED
    try:
        if req.type == "file":
            found = bool(req.check) and _has_file(
                [relative_posix(f, root).lower() for f in files], req.check
            )
            status = RequirementStatus.PASSED if found else RequirementStatus.FAILED
            evidence = f"File {req.check} {'found' if found else 'not found'}"

        elif req.type == "content":
            if req.check:
                pattern = re.compile(req.check, re.IGNORECASE)
                # The config declaring the pattern would always match itself.
                scanned = [f for f in files if relative_posix(f, root) not in CONFIG_FILES]
                matched = [f.name for f in scanned if pattern.search(safe_read(f))]
                status = RequirementStatus.PASSED if matched else RequirementStatus.FAILED
                evidence = (
                    f"Found in files: {', '.join(matched)}"
                    if matched
                    else f'Pattern "{req.check}" not found'
                )
            else:
                evidence = "No pattern configured"

        elif req.type == "test":
            test_files = [f.name for f in files if is_test_file(relative_posix(f, root))]
            status = RequirementStatus.PASSED if test_files else RequirementStatus.FAILED
            evidence = (
                f"Test files: {', '.join(test_files)}" if test_files else "No test files found"
            )

        else:
            evidence = req.description or "Requirement was not checked"

    except re.error as e:
        status = RequirementStatus.FAILED
        evidence = f"Check error: {e}"

    if status == RequirementStatus.FAILED and req.required is False:
        status = RequirementStatus.SKIPPED

    return Requirement(id=f"config:{req.id}", title=req.title, status=status, evidence=evidence)


def config_requirements(root: str | Path, files: list[Path]) -> list[Requirement]:
    config = read_review_config(root)
    if config is None:
        return []
    return [evaluate_config_requirement(req, root, files) for req in config.requirements]
