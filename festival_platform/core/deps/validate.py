from __future__ import annotations

from collections import Counter
from pathlib import Path

from festival_platform.core.deps.resolve import resolve_festival
from festival_platform.core.errors import CycleError, FestError, sort_errors
from festival_platform.core.io.scan import list_siblings
from festival_platform.core.model import Element, Level


# Festival checks:
# - E_CYCLE_DETECTED: dependency cycle exists
# - E_MISSING_DEPENDENCY: fest_dependencies references an unknown task
# - W_MISSING_SOFT_DEPENDENCY: same for fest_soft_dependencies
# - E_SELF_DEPENDENCY: task lists itself
# - E_DUPLICATE_NUMBER: two phases (or two sequences) share a number
# - W_NUMBERING_GAP: sibling numbers are not contiguous from 1
# - W_NAME_CASE: phase not uppercase / sequence or task not lowercase


def validate_festival(festival_dir: str | Path, implicit: bool = True) -> list[FestError]:
    """Validate numbering and dependency declarations of a festival.

    Warnings (codes starting with W_) are returned alongside errors; callers
    decide whether warnings fail the run.
    """
    root = Path(festival_dir)
    errors: list[FestError] = []

    phases = list_siblings(root, "phase")
    errors.extend(check_numbering(root, "phase", phases))
    for phase in phases:
        sequences = list_siblings(phase.path, "sequence")
        errors.extend(check_numbering(root, "sequence", sequences, parent=phase.path))
        for seq in sequences:
            tasks = list_siblings(seq.path, "task")
            errors.extend(check_numbering(root, "task", tasks, parent=seq.path))

    try:
        result = resolve_festival(root, implicit=implicit)
    except FestError as e:
        errors.append(e)
        return sort_errors(errors)

    errors.extend(result.problems)

    try:
        result.graph.topological_sort()
    except CycleError as e:
        errors.append(e)

    return sort_errors(errors)


def check_numbering(
    root: Path,
    level: Level,
    siblings: list[Element],
    parent: str | Path | None = None,
) -> list[FestError]:
    out: list[FestError] = []
    where = _rel(root, parent) if parent is not None else "."

    counts = Counter(e.number for e in siblings)
    if level != "task":
        for number, n in sorted(counts.items()):
            if n > 1:
                out.append(
                    FestError(
                        code="E_DUPLICATE_NUMBER",
                        message=f"{n} {level}s share number {number}",
                        file=where,
                        path=level,
                    )
                )

    expected = 1
    for number in sorted(counts):
        if number != expected:
            out.append(
                FestError(
                    code="W_NUMBERING_GAP",
                    message=f"{level} numbering is not contiguous: expected {expected}, found {number}",
                    file=where,
                    path=level,
                )
            )
        expected = number + 1

    for e in siblings:
        expected_case = e.name.upper() if level == "phase" else e.name.lower()
        if e.name != expected_case:
            out.append(
                FestError(
                    code="W_NAME_CASE",
                    message=f"{level} name should be {'uppercase' if level == 'phase' else 'lowercase'}",
                    file=_rel(root, e.path),
                    path=level,
                )
            )

    return out


def _rel(root: Path, path: str | Path) -> str:
    try:
        return Path(path).relative_to(root).as_posix()
    except ValueError:
        return str(path)
