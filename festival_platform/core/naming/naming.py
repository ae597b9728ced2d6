from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from festival_platform.core.errors import NotRecognized
from festival_platform.core.model import Level


# On-disk naming contract:
#   phases     NNN_NAME      (3 digits, uppercase)
#   sequences  NN_name       (2 digits, lowercase)
#   tasks      NN_name.md    (2 digits, lowercase)
LEVEL_WIDTH: dict[str, int] = {"phase": 3, "sequence": 2, "task": 2}

TASK_SUFFIX = ".md"

PHASE_RE = re.compile(r"^(\d{3})_(.+)$")
SEQUENCE_RE = re.compile(r"^(\d{2})_(.+)$")
TASK_RE = re.compile(r"^(\d{2})_(.+)\.md$")

_PATTERNS: dict[str, re.Pattern[str]] = {
    "phase": PHASE_RE,
    "sequence": SEQUENCE_RE,
    "task": TASK_RE,
}


def normalize_name(name: str, level: Level) -> str:
    """Return the human-readable suffix in canonical form for `level`.

    Spaces become underscores, an existing numeric prefix of the level's width is
    dropped, phases are uppercased and sequences/tasks lowercased.
    """
    trimmed = name.strip()
    if level == "task" and trimmed.lower().endswith(TASK_SUFFIX):
        trimmed = trimmed[: -len(TASK_SUFFIX)]
    trimmed = _strip_numeric_prefix(trimmed, LEVEL_WIDTH[level])
    trimmed = trimmed.replace(" ", "_")
    if level == "phase":
        return trimmed.upper()
    return trimmed.lower()


def format_id(level: Level, number: int, name: str) -> str:
    """Build the canonical directory/file name, e.g. format_id("phase", 2, "design") -> "002_DESIGN"."""
    if number < 1:
        raise NotRecognized(
            code="E_INVALID_NUMBER",
            message=f"{level} number must be a positive integer, got {number}",
            path=name,
        )
    normalized = normalize_name(name, level)
    if not normalized:
        raise NotRecognized(
            code="E_EMPTY_NAME",
            message=f"{level} name must be non-empty",
            path=name,
        )
    width = LEVEL_WIDTH[level]
    full = f"{number:0{width}d}_{normalized}"
    if level == "task":
        full += TASK_SUFFIX
    return full


def parse_element_name(full_name: str, level: Level) -> tuple[int, str]:
    """Split a canonical name into (number, name); raises NotRecognized on mismatch."""
    m = _PATTERNS[level].match(full_name)
    # "001_PLAN" would otherwise also read as sequence "00" + "1_PLAN".
    if m is None or (level == "sequence" and PHASE_RE.match(full_name)):
        raise NotRecognized(
            code="E_NOT_RECOGNIZED",
            message=f"name does not match the {level} pattern",
            path=full_name,
        )
    return int(m.group(1)), m.group(2)


def parse_number(full_name: str, level: Level) -> int:
    number, _ = parse_element_name(full_name, level)
    return number


def matches_level(full_name: str, level: Level) -> bool:
    try:
        parse_element_name(full_name, level)
    except NotRecognized:
        return False
    return True


def classify_level(path: str | Path) -> Optional[Level]:
    """Classify a path by its base name; phase is checked before the 2-digit patterns."""
    base = Path(path).name
    if PHASE_RE.match(base):
        return "phase"
    if TASK_RE.match(base):
        return "task"
    if SEQUENCE_RE.match(base):
        return "sequence"
    return None


def _strip_numeric_prefix(name: str, digits: int) -> str:
    if len(name) <= digits + 1:
        return name
    if not name[:digits].isdigit():
        return name
    if name[digits] not in "_- ":
        return name
    remainder = name[digits + 1 :].strip().lstrip("_- ")
    if not remainder:
        return name
    return remainder
