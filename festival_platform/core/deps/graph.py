from __future__ import annotations

from typing import Iterable

from festival_platform.core.deps import algorithms
from festival_platform.core.errors import FestError
from festival_platform.core.model import Dependency, DependencyKind, Task


class Graph:
    """Task dependency graph. An edge A -> B means B depends on A.

    Built fresh for every query; the algorithms never mutate it.
    """

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.edges: list[Dependency] = []
        self.incoming: dict[str, int] = {}
        self.outgoing: dict[str, list[Task]] = {}
        self._edge_keys: set[tuple[str, str]] = set()

    @classmethod
    def from_tasks(
        cls,
        tasks: Iterable[Task],
        edges: Iterable[tuple[str, str]] = (),
    ) -> Graph:
        g = cls()
        for t in tasks:
            g.add_task(t)
        for from_id, to_id in edges:
            g.add_edge(from_id, to_id)
        return g

    def add_task(self, task: Task) -> None:
        if task.id in self.tasks:
            return
        self.tasks[task.id] = task
        self.incoming[task.id] = 0
        self.outgoing[task.id] = []

    def add_edge(
        self,
        from_id: str,
        to_id: str,
        kind: DependencyKind = "explicit",
        required: bool = True,
    ) -> None:
        """Record that `to_id` depends on `from_id`."""
        for tid in (from_id, to_id):
            if tid not in self.tasks:
                raise FestError(
                    code="E_UNKNOWN_TASK",
                    message=f"edge references unknown task: {tid}",
                    path=tid,
                )
        if from_id == to_id:
            raise FestError(
                code="E_SELF_DEPENDENCY",
                message="a task cannot depend on itself",
                path=from_id,
            )
        if (from_id, to_id) in self._edge_keys:
            return

        self._edge_keys.add((from_id, to_id))
        self.edges.append(Dependency(from_id=from_id, to_id=to_id, kind=kind, required=required))
        self.incoming[to_id] += 1
        self.outgoing[from_id].append(self.tasks[to_id])

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def dependencies(self, task_id: str, required_only: bool = False) -> list[Task]:
        """Prerequisites of `task_id`, ordered by (number, id)."""
        deps = [
            self.tasks[e.from_id]
            for e in self.edges
            if e.to_id == task_id and (e.required or not required_only)
        ]
        return sorted(deps, key=lambda t: t.sort_key)

    def dependents(self, task_id: str) -> list[Task]:
        return list(self.outgoing.get(task_id, []))

    def __len__(self) -> int:
        return len(self.tasks)

    # Algorithms (see algorithms.py).

    def topological_sort(self) -> list[Task]:
        return algorithms.topological_sort(self)

    def find_cycle(self) -> list[str]:
        return algorithms.find_cycle(self)

    def has_cycle(self) -> bool:
        return algorithms.has_cycle(self)

    def critical_path(self) -> list[Task]:
        return algorithms.critical_path(self)

    def parallel_groups(self) -> list[list[Task]]:
        return algorithms.parallel_groups(self)

    def ready_tasks(self) -> list[Task]:
        return algorithms.ready_tasks(self)
