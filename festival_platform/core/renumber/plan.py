from __future__ import annotations

import os
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

from festival_platform.core.errors import FestError
from festival_platform.core.model import Element, Level
from festival_platform.core.naming.naming import LEVEL_WIDTH, TASK_SUFFIX, format_id


ChangeKind = Literal["create", "remove", "rename"]
Operation = Literal["insert", "remove", "reorder", "renumber"]


@dataclass(frozen=True)
class Change:
    kind: ChangeKind
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    number: int = 0  # number the element holds before the change
    is_dir: bool = True


@dataclass(frozen=True)
class RenamePlan:
    operation: Operation
    directory: str
    level: Level
    changes: list[Change] = field(default_factory=list)

    def renames(self) -> list[tuple[str, str]]:
        """(old_path, new_path) pairs in application order."""
        return [
            (c.old_path, c.new_path)
            for c in self.changes
            if c.kind == "rename" and c.old_path and c.new_path
        ]

    def created(self) -> list[str]:
        return [c.new_path for c in self.changes if c.kind == "create" and c.new_path]

    def removed(self) -> list[str]:
        return [c.old_path for c in self.changes if c.kind == "remove" and c.old_path]

    def is_empty(self) -> bool:
        return not self.changes

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "directory": self.directory,
            "level": self.level,
            "changes": [asdict(c) for c in self.changes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RenamePlan:
        return cls(
            operation=data["operation"],
            directory=data["directory"],
            level=data["level"],
            changes=[Change(**c) for c in data.get("changes", [])],
        )


def renamed(element: Element, number: int) -> str:
    """Name of `element` at a new number; the suffix after the prefix is kept verbatim."""
    width = LEVEL_WIDTH[element.level]
    name = f"{number:0{width}d}_{element.name}"
    if element.level == "task":
        name += TASK_SUFFIX
    return name


def plan_insert(
    directory: str | Path,
    level: Level,
    siblings: list[Element],
    after: int,
    name: str,
) -> RenamePlan:
    """Plan creating `name` at `after + 1`, shifting every later sibling up by one.

    Renames are ordered highest number first.
    """
    d = str(directory)
    max_number = max((e.number for e in siblings), default=0)
    if after < 0 or after > max_number:
        raise FestError(
            code="E_POSITION_OUT_OF_RANGE",
            message=f"--after must be between 0 and {max_number}, got {after}",
            file=d,
            path="after",
        )

    insert_at = after + 1
    new_name = format_id(level, insert_at, name)

    shifted = sorted(
        (e for e in siblings if e.number > after),
        key=lambda e: (e.number, e.full_name),
        reverse=True,
    )
    changes = [_rename(d, e, e.number + 1) for e in shifted]
    changes.append(
        Change(
            kind="create",
            new_path=os.path.join(d, new_name),
            number=insert_at,
            is_dir=level != "task",
        )
    )
    return RenamePlan(operation="insert", directory=d, level=level, changes=changes)


def plan_remove(
    directory: str | Path,
    level: Level,
    siblings: list[Element],
    target: str | Path,
) -> RenamePlan:
    """Plan deleting `target` and shifting every later sibling down by one, lowest first."""
    d = str(directory)
    target_path = os.path.normpath(str(target))
    victim = next((e for e in siblings if os.path.normpath(e.path) == target_path), None)
    if victim is None:
        raise FestError(
            code="E_ELEMENT_NOT_FOUND",
            message=f"no {level} element at this path",
            file=str(target),
        )

    changes = [
        Change(
            kind="remove",
            old_path=victim.path,
            number=victim.number,
            is_dir=level != "task",
        )
    ]

    # A parallel task still holding the number keeps the sequence contiguous.
    if any(e.number == victim.number and e.path != victim.path for e in siblings):
        return RenamePlan(operation="remove", directory=d, level=level, changes=changes)

    shifted = sorted(
        (e for e in siblings if e.number > victim.number),
        key=lambda e: (e.number, e.full_name),
    )
    changes.extend(_rename(d, e, e.number - 1) for e in shifted)
    return RenamePlan(operation="remove", directory=d, level=level, changes=changes)


def plan_reorder(
    directory: str | Path,
    level: Level,
    siblings: list[Element],
    from_number: int,
    to_number: int,
) -> RenamePlan:
    """Plan moving the element(s) at `from_number` to `to_number`."""
    d = str(directory)
    moving = [e for e in siblings if e.number == from_number]
    if not moving:
        raise FestError(
            code="E_POSITION_OUT_OF_RANGE",
            message=f"no {level} at position {from_number}",
            file=d,
            path="from",
        )

    numbers = sorted({e.number for e in siblings})
    lo, hi = numbers[0], numbers[-1]
    if to_number < lo or to_number > hi:
        raise FestError(
            code="E_POSITION_OUT_OF_RANGE",
            message=f"destination position {to_number} is out of range [{lo}, {hi}]",
            file=d,
            path="to",
        )

    if from_number == to_number:
        return RenamePlan(operation="reorder", directory=d, level=level)

    if from_number < to_number:
        between = sorted(
            (e for e in siblings if from_number < e.number <= to_number),
            key=lambda e: (e.number, e.full_name),
        )
        changes = [_rename(d, e, e.number - 1) for e in between]
    else:
        between = sorted(
            (e for e in siblings if to_number <= e.number < from_number),
            key=lambda e: (e.number, e.full_name),
            reverse=True,
        )
        changes = [_rename(d, e, e.number + 1) for e in between]

    changes.extend(_rename(d, e, to_number) for e in moving)
    return RenamePlan(operation="reorder", directory=d, level=level, changes=changes)


def plan_renumber(
    directory: str | Path,
    level: Level,
    siblings: list[Element],
    start: int = 1,
) -> RenamePlan:
    """Plan a contiguous renumbering from `start`; elements sharing a number keep sharing one."""
    d = str(directory)
    if start < 1:
        raise FestError(
            code="E_POSITION_OUT_OF_RANGE",
            message=f"--start must be a positive integer, got {start}",
            file=d,
            path="start",
        )

    numbers = sorted({e.number for e in siblings})
    target = {n: start + i for i, n in enumerate(numbers)}

    down = sorted(
        (e for e in siblings if target[e.number] < e.number),
        key=lambda e: (e.number, e.full_name),
    )
    up = sorted(
        (e for e in siblings if target[e.number] > e.number),
        key=lambda e: (e.number, e.full_name),
        reverse=True,
    )
    changes = [_rename(d, e, target[e.number]) for e in down + up]
    return RenamePlan(operation="renumber", directory=d, level=level, changes=changes)


def validate_plan(plan: RenamePlan) -> None:
    """Raise E_RENAME_COLLISION when the plan cannot be applied without clobbering a path."""
    targets = [c.new_path for c in plan.changes if c.kind in ("rename", "create") and c.new_path]
    sources = {c.old_path for c in plan.changes if c.kind in ("rename", "remove") and c.old_path}

    dupes = sorted(p for p, n in Counter(targets).items() if n > 1)
    if dupes:
        raise FestError(
            code="E_RENAME_COLLISION",
            message="multiple elements would be renamed to " + ", ".join(dupes),
            file=plan.directory,
        )

    for c in plan.changes:
        if c.kind == "create" and c.new_path and os.path.lexists(c.new_path):
            if c.new_path not in sources:
                raise FestError(
                    code="E_RENAME_COLLISION",
                    message="element already exists",
                    file=c.new_path,
                )
        if c.kind == "rename" and c.new_path and os.path.lexists(c.new_path):
            if c.new_path not in sources:
                raise FestError(
                    code="E_RENAME_COLLISION",
                    message=f"target exists and is not being moved (from {Path(c.old_path or '').name})",
                    file=c.new_path,
                )


def _rename(directory: str, element: Element, number: int) -> Change:
    return Change(
        kind="rename",
        old_path=element.path,
        new_path=os.path.join(directory, renamed(element, number)),
        number=element.number,
        is_dir=element.level != "task",
    )
