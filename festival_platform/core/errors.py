from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FestError(Exception):
    """Base error envelope. Prefer returning/printing these rather than raising raw exceptions."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<festival>"
        return f"{loc}: {self.code}: {self.message}"

    @property
    def is_warning(self) -> bool:
        return self.code.startswith("W_")


class NotRecognized(FestError):
    pass


class RenumberError(FestError):
    pass


@dataclass(frozen=True)
class CycleError(FestError):
    cycle: tuple[str, ...] = ()


def cycle_error(cycle: list[str], file: Optional[str] = None) -> CycleError:
    if cycle:
        message = "dependency cycle detected: " + " -> ".join(cycle)
    else:
        message = "dependency cycle detected"
    return CycleError(
        code="E_CYCLE_DETECTED",
        message=message,
        file=file,
        path="dependencies",
        cycle=tuple(cycle),
    )


def sort_errors(errors: list[FestError]) -> list[FestError]:
    return sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code, e.message))
