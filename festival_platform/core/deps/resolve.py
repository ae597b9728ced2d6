from __future__ import annotations

import os
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from festival_platform.core.deps.graph import Graph
from festival_platform.core.errors import FestError
from festival_platform.core.io.scan import list_siblings, read_task_metadata
from festival_platform.core.model import DependencyKind, Element, Task
from festival_platform.core.naming.naming import TASK_SUFFIX


@dataclass
class ResolveResult:
    graph: Graph
    problems: list[FestError] = field(default_factory=list)


def resolve_festival(festival_dir: str | Path, implicit: bool = True) -> ResolveResult:
    """Build the dependency graph for every tracked task of a festival.

    Task IDs are POSIX paths relative to the festival root, e.g.
    "001_PLAN/01_research/02_survey.md".
    """
    root = Path(festival_dir).resolve()
    tasks: list[Task] = []
    by_sequence: list[list[Task]] = []

    for phase in list_siblings(root, "phase"):
        for seq in list_siblings(phase.path, "sequence"):
            seq_tasks = _load_sequence_tasks(root, phase.path, seq)
            tasks.extend(seq_tasks)
            by_sequence.append(seq_tasks)

    return _build(root, tasks, by_sequence, implicit=implicit, cross_refs=True)


def resolve_sequence(
    sequence_dir: str | Path,
    festival_dir: Optional[str | Path] = None,
    implicit: bool = True,
) -> ResolveResult:
    """Build the dependency graph for a single sequence.

    References that leave the sequence ("../...") are ignored here.
    """
    seq_path = Path(sequence_dir).resolve()
    phase_path = seq_path.parent
    root = Path(festival_dir).resolve() if festival_dir is not None else phase_path.parent
    if root not in seq_path.parents:
        raise FestError(
            code="E_SEQUENCE_OUTSIDE_FESTIVAL",
            message=f"sequence is not inside festival {root}",
            file=str(sequence_dir),
        )

    seq = Element(
        level="sequence",
        number=0,
        name=seq_path.name,
        full_name=seq_path.name,
        path=str(seq_path),
    )
    seq_tasks = _load_sequence_tasks(root, str(phase_path), seq)
    return _build(root, seq_tasks, [seq_tasks], implicit=implicit, cross_refs=False)


def _load_sequence_tasks(root: Path, phase_path: str, seq: Element) -> list[Task]:
    out: list[Task] = []
    for el in list_siblings(seq.path, "task"):
        meta = read_task_metadata(el.path)
        if not meta.tracked:
            continue
        out.append(
            Task(
                id=Path(el.path).relative_to(root).as_posix(),
                name=el.name,
                number=el.number,
                path=el.path,
                status=meta.status,
                role=meta.role,
                sequence_path=seq.path,
                phase_path=phase_path,
                dependencies=tuple(meta.dependencies),
                soft_dependencies=tuple(meta.soft_dependencies),
            )
        )
    return out


def _build(
    root: Path,
    tasks: list[Task],
    by_sequence: list[list[Task]],
    *,
    implicit: bool,
    cross_refs: bool,
) -> ResolveResult:
    graph = Graph()
    for t in tasks:
        graph.add_task(t)

    if implicit:
        for seq_tasks in by_sequence:
            _add_implicit(graph, seq_tasks)

    problems: list[FestError] = []
    by_path = {os.path.normpath(t.path): t for t in tasks}

    for task in sorted(tasks, key=lambda t: t.id):
        for refs, required in ((task.dependencies, True), (task.soft_dependencies, False)):
            for ref in refs:
                if ref.startswith("..") and not cross_refs:
                    continue
                dep = _resolve_reference(graph, by_path, task, ref)
                if dep is None:
                    problems.append(
                        FestError(
                            code="E_MISSING_DEPENDENCY" if required else "W_MISSING_SOFT_DEPENDENCY",
                            message=f"{'' if required else 'soft '}dependency {ref!r} does not match any task",
                            file=task.id,
                            path="fest_dependencies" if required else "fest_soft_dependencies",
                        )
                    )
                    continue
                if dep.id == task.id:
                    problems.append(
                        FestError(
                            code="E_SELF_DEPENDENCY",
                            message="a task cannot depend on itself",
                            file=task.id,
                            path="fest_dependencies" if required else "fest_soft_dependencies",
                        )
                    )
                    continue
                graph.add_edge(dep.id, task.id, kind=_edge_kind(dep, task), required=required)

    return ResolveResult(graph=graph, problems=problems)


def _add_implicit(graph: Graph, seq_tasks: list[Task]) -> None:
    """Tasks numbered N depend on every task at the previous number in the same sequence."""
    by_number: dict[int, list[Task]] = defaultdict(list)
    for t in seq_tasks:
        by_number[t.number].append(t)

    numbers = sorted(by_number)
    for prev_n, cur_n in zip(numbers, numbers[1:]):
        for cur in by_number[cur_n]:
            for prev in by_number[prev_n]:
                graph.add_edge(prev.id, cur.id, kind="implicit")


def _resolve_reference(
    graph: Graph, by_path: dict[str, Task], from_task: Task, ref: str
) -> Optional[Task]:
    ref = ref.strip()

    if ref.startswith(".."):
        target = os.path.normpath(os.path.join(from_task.sequence_path, ref))
        if not target.endswith(TASK_SUFFIX):
            target += TASK_SUFFIX
        return by_path.get(target)

    by_id = graph.get_task(ref) or graph.get_task(ref + TASK_SUFFIX)
    if by_id is not None:
        return by_id

    stem = ref[: -len(TASK_SUFFIX)] if ref.endswith(TASK_SUFFIX) else ref
    candidates = [
        t
        for t in graph.tasks.values()
        if t.sequence_path == from_task.sequence_path
        and (t.name == stem or Path(t.path).stem == stem)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda t: t.sort_key)


def _edge_kind(dep: Task, task: Task) -> DependencyKind:
    if dep.sequence_path == task.sequence_path:
        return "explicit"
    if dep.phase_path == task.phase_path:
        return "cross_sequence"
    return "cross_phase"
