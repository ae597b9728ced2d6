from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


Level = Literal["phase", "sequence", "task"]
TaskStatus = Literal["pending", "in_progress", "blocked", "complete"]
TaskRole = Literal["implementation", "quality_gate"]
DependencyKind = Literal["implicit", "explicit", "cross_sequence", "cross_phase"]

LEVELS: tuple[Level, ...] = ("phase", "sequence", "task")
TASK_STATUSES: set[str] = {"pending", "in_progress", "blocked", "complete"}
TASK_ROLES: set[str] = {"implementation", "quality_gate"}


@dataclass(frozen=True)
class Element:
    """A numbered phase directory, sequence directory or task file."""

    level: Level
    number: int
    name: str
    full_name: str
    path: str


@dataclass(frozen=True)
class Task:
    id: str
    name: str
    number: int
    path: str

    status: TaskStatus = "pending"
    role: TaskRole = "implementation"
    sequence_path: str = ""
    phase_path: str = ""
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    soft_dependencies: tuple[str, ...] = field(default_factory=tuple)

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.number, self.id)


@dataclass(frozen=True)
class Dependency:
    from_id: str  # prerequisite
    to_id: str  # dependent
    kind: DependencyKind = "explicit"
    required: bool = True
