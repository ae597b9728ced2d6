from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from festival_platform.core.errors import FestError
from festival_platform.core.model import TASK_ROLES, TASK_STATUSES, Element, Level, TaskRole, TaskStatus
from festival_platform.core.naming.naming import matches_level, parse_element_name


STAGE_PREFIX = ".fest-stage-"


def list_siblings(directory: str | Path, level: Level) -> list[Element]:
    """List the numbered elements of one level directly inside `directory`.

    Phases and sequences are directories, tasks are files. Hidden entries
    (including staging sentinels) never count as siblings.
    """
    d = Path(directory)
    if not d.is_dir():
        raise FestError(
            code="E_DIR_NOT_FOUND",
            message="directory does not exist",
            file=str(d),
        )

    want_dir = level != "task"
    out: list[Element] = []
    for entry in d.iterdir():
        name = entry.name
        if name.startswith("."):
            continue
        if entry.is_dir() != want_dir:
            continue
        if not matches_level(name, level):
            continue
        number, rest = parse_element_name(name, level)
        out.append(
            Element(
                level=level,
                number=number,
                name=rest,
                full_name=name,
                path=str(entry),
            )
        )

    return sorted(out, key=lambda e: (e.number, e.full_name))


def detect_child_level(directory: str | Path) -> Optional[Level]:
    """Infer which level the numbered children of `directory` belong to."""
    for level in ("phase", "sequence", "task"):
        if list_siblings(directory, level):  # type: ignore[arg-type]
            return level  # type: ignore[return-value]
    return None


@dataclass(frozen=True)
class TaskMetadata:
    status: TaskStatus = "pending"
    role: TaskRole = "implementation"
    tracked: bool = True
    dependencies: list[str] = field(default_factory=list)
    soft_dependencies: list[str] = field(default_factory=list)


def read_frontmatter(path: str | Path) -> dict[str, Any]:
    """Return the YAML frontmatter mapping of a markdown file ({} when absent)."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if not text.lstrip().startswith("---"):
        return {}

    parts = text.lstrip().split("---", 2)
    if len(parts) < 3:
        return {}

    try:
        data = yaml.safe_load(parts[1])
    except yaml.YAMLError as e:
        raise FestError(code="E_FRONTMATTER_PARSE", message=str(e), file=str(p)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FestError(
            code="E_FRONTMATTER_PARSE",
            message="frontmatter must be a mapping",
            file=str(p),
        )
    return data


def read_task_metadata(path: str | Path) -> TaskMetadata:
    fm = read_frontmatter(path)

    status = fm.get("fest_status", "pending")
    if status not in TASK_STATUSES:
        raise FestError(
            code="E_INVALID_STATUS",
            message=f"fest_status must be one of {sorted(TASK_STATUSES)}",
            file=str(path),
            path="fest_status",
        )

    role = fm.get("fest_role", "implementation")
    if role not in TASK_ROLES:
        raise FestError(
            code="E_INVALID_ROLE",
            message=f"fest_role must be one of {sorted(TASK_ROLES)}",
            file=str(path),
            path="fest_role",
        )

    return TaskMetadata(
        status=status,
        role=role,
        tracked=fm.get("fest_tracking", True) is not False,
        dependencies=_ref_list(fm.get("fest_dependencies"), path, "fest_dependencies"),
        soft_dependencies=_ref_list(
            fm.get("fest_soft_dependencies"), path, "fest_soft_dependencies"
        ),
    )


def _ref_list(v: Any, path: str | Path, key: str) -> list[str]:
    if v is None:
        return []
    if isinstance(v, str):
        v = v.split(",")
    if not isinstance(v, list) or not all(isinstance(x, str) for x in v):
        raise FestError(
            code="E_INVALID_TYPE",
            message=f"{key} must be a list of strings",
            file=str(path),
            path=key,
        )
    return [x.strip() for x in v if x.strip()]
