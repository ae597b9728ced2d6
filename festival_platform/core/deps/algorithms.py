from __future__ import annotations

import heapq
from collections import defaultdict
from typing import TYPE_CHECKING, Iterator

from festival_platform.core.errors import CycleError, cycle_error
from festival_platform.core.model import Task

if TYPE_CHECKING:
    from festival_platform.core.deps.graph import Graph


# Whenever several tasks are eligible at once, the smallest (number, id) wins.
# Every function here is deterministic for an unchanged graph.


def topological_sort(graph: Graph) -> list[Task]:
    """Kahn's algorithm. Raises CycleError (carrying one cycle) when no order exists."""
    in_degree = dict(graph.incoming)

    ready: list[tuple[int, str]] = [
        t.sort_key for tid, t in graph.tasks.items() if in_degree[tid] == 0
    ]
    heapq.heapify(ready)

    out: list[Task] = []
    while ready:
        _, tid = heapq.heappop(ready)
        out.append(graph.tasks[tid])
        for dependent in graph.outgoing[tid]:
            in_degree[dependent.id] -= 1
            if in_degree[dependent.id] == 0:
                heapq.heappush(ready, dependent.sort_key)

    if len(out) != len(graph.tasks):
        raise cycle_error(find_cycle(graph))
    return out


def find_cycle(graph: Graph) -> list[str]:
    """Return one cycle as [start, ..., start], or [] for an acyclic graph.

    Iterative DFS with an explicit stack, so deep graphs cannot exhaust the
    interpreter's recursion limit.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    parent: dict[str, str] = {}

    for root in sorted(graph.tasks.values(), key=lambda t: t.sort_key):
        if root.id in visited:
            continue

        visited.add(root.id)
        on_stack.add(root.id)
        stack: list[tuple[str, Iterator[Task]]] = [(root.id, _successors(graph, root.id))]

        while stack:
            node, it = stack[-1]
            descended = False
            for nxt in it:
                if nxt.id not in visited:
                    parent[nxt.id] = node
                    visited.add(nxt.id)
                    on_stack.add(nxt.id)
                    stack.append((nxt.id, _successors(graph, nxt.id)))
                    descended = True
                    break
                if nxt.id in on_stack:
                    # back edge node -> nxt: walk parents from node up to nxt
                    cycle = [nxt.id]
                    cur = node
                    while cur != nxt.id:
                        cycle.append(cur)
                        cur = parent[cur]
                    cycle.append(nxt.id)
                    cycle.reverse()
                    return cycle
            if not descended:
                stack.pop()
                on_stack.discard(node)

    return []


def has_cycle(graph: Graph) -> bool:
    try:
        topological_sort(graph)
    except CycleError:
        return True
    return False


def critical_path(graph: Graph) -> list[Task]:
    """Longest dependency chain, first task to last. Raises CycleError on a cyclic graph."""
    order = topological_sort(graph)
    if not order:
        return []

    preds = _predecessors(graph)
    dist: dict[str, int] = {t.id: 0 for t in order}
    prev: dict[str, str] = {}

    for task in order:
        for dep in preds[task.id]:
            if dist[dep.id] + 1 > dist[task.id]:
                dist[task.id] = dist[dep.id] + 1
                prev[task.id] = dep.id

    longest = max(dist.values())
    end = min(
        (graph.tasks[tid] for tid, d in dist.items() if d == longest),
        key=lambda t: t.sort_key,
    )

    path: list[Task] = []
    cur: str | None = end.id
    while cur is not None:
        path.append(graph.tasks[cur])
        cur = prev.get(cur)
    path.reverse()
    return path


def parallel_groups(graph: Graph) -> list[list[Task]]:
    """Group tasks by dependency depth; group k only depends on groups < k.

    Raises CycleError on a cyclic graph.
    """
    order = topological_sort(graph)
    if not order:
        return []

    preds = _predecessors(graph)
    level: dict[str, int] = {}
    for task in order:
        level[task.id] = max((level[d.id] + 1 for d in preds[task.id]), default=0)

    groups: list[list[Task]] = [[] for _ in range(max(level.values()) + 1)]
    for task in sorted(order, key=lambda t: t.sort_key):
        groups[level[task.id]].append(task)
    return groups


def ready_tasks(graph: Graph) -> list[Task]:
    """Incomplete tasks whose prerequisites, soft ones included, are all complete.

    Raises CycleError on a cyclic graph.
    """
    topological_sort(graph)

    preds = _predecessors(graph)
    ready = [
        t
        for t in graph.tasks.values()
        if t.status != "complete" and all(d.status == "complete" for d in preds[t.id])
    ]
    return sorted(ready, key=lambda t: t.sort_key)


def _successors(graph: Graph, task_id: str) -> Iterator[Task]:
    return iter(sorted(graph.outgoing[task_id], key=lambda t: t.sort_key))


def _predecessors(graph: Graph) -> dict[str, list[Task]]:
    preds: dict[str, list[Task]] = defaultdict(list)
    for e in graph.edges:
        preds[e.to_id].append(graph.tasks[e.from_id])
    for tid in preds:
        preds[tid].sort(key=lambda t: t.sort_key)
    return preds
