from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

from festival_platform.core.errors import FestError, RenumberError
from festival_platform.core.io.scan import STAGE_PREFIX, list_siblings
from festival_platform.core.model import Level
from festival_platform.core.naming.naming import classify_level
from festival_platform.core.renumber.plan import (
    RenamePlan,
    plan_insert,
    plan_remove,
    plan_renumber,
    plan_reorder,
    validate_plan,
)

logger = logging.getLogger(__name__)

JOURNAL_NAME = ".fest-journal.json"
DEFAULT_BACKUP_DIR = ".fest-backup"


@dataclass(frozen=True)
class RenumberOptions:
    dry_run: bool = False
    verbose: bool = False
    backup: bool = False
    backup_dir: Optional[str] = None  # defaults to <sibling dir>/.fest-backup
    journal: bool = True  # off: a failed run is undone in place instead of journaled


class Renumberer:
    """Applies insert/remove/reorder/renumber edits to one sibling set.

    Every edit is planned in full, validated for collisions, then executed in two
    stages: each moving element goes to a hidden staging name, then to its final
    name. A journal next to the siblings records progress so an interrupted run
    can be resumed or rolled back with `recover`.
    """

    def __init__(self, options: RenumberOptions | None = None) -> None:
        self.options = options or RenumberOptions()

    # -- insert ---------------------------------------------------------

    def insert_phase(self, festival_dir: str | Path, after: int, name: str) -> RenamePlan:
        return self.insert(festival_dir, "phase", after, name)

    def insert_sequence(self, phase_dir: str | Path, after: int, name: str) -> RenamePlan:
        return self.insert(phase_dir, "sequence", after, name)

    def insert_task(
        self, sequence_dir: str | Path, after: int, name: str, content: str = ""
    ) -> RenamePlan:
        return self.insert(sequence_dir, "task", after, name, content=content)

    def insert(
        self,
        directory: str | Path,
        level: Level,
        after: int,
        name: str,
        content: str = "",
    ) -> RenamePlan:
        siblings = list_siblings(directory, level)
        plan = plan_insert(directory, level, siblings, after, name)
        return self.execute(plan, content=content)

    # -- remove ---------------------------------------------------------

    def remove_element(self, path: str | Path) -> RenamePlan:
        p = Path(path)
        if not p.exists():
            raise FestError(
                code="E_ELEMENT_NOT_FOUND",
                message="path does not exist",
                file=str(p),
            )
        level = classify_level(p)
        if level is None or (level == "task") == p.is_dir():
            raise FestError(
                code="E_NOT_RECOGNIZED",
                message="unable to determine element type",
                file=str(p),
            )

        siblings = list_siblings(p.parent, level)
        plan = plan_remove(p.parent, level, siblings, p)
        return self.execute(plan)

    # -- reorder / renumber ---------------------------------------------

    def reorder(
        self, directory: str | Path, level: Level, from_number: int, to_number: int
    ) -> RenamePlan:
        siblings = list_siblings(directory, level)
        if not siblings:
            raise FestError(
                code="E_NO_ELEMENTS",
                message=f"no {level} elements found",
                file=str(directory),
            )
        plan = plan_reorder(directory, level, siblings, from_number, to_number)
        return self.execute(plan)

    def renumber(self, directory: str | Path, level: Level, start: int = 1) -> RenamePlan:
        siblings = list_siblings(directory, level)
        if not siblings:
            raise FestError(
                code="E_NO_ELEMENTS",
                message=f"no {level} elements found",
                file=str(directory),
            )
        plan = plan_renumber(directory, level, siblings, start)
        return self.execute(plan)

    # -- execution ------------------------------------------------------

    def execute(self, plan: RenamePlan, content: str = "") -> RenamePlan:
        validate_plan(plan)

        if plan.is_empty():
            logger.info("No changes needed in %s", plan.directory)
            return plan

        if self.options.dry_run:
            for c in plan.changes:
                self._log("Would %s: %s", c.kind, _describe(c.old_path, c.new_path))
            return plan

        journal_path = Path(plan.directory) / JOURNAL_NAME
        if journal_path.exists():
            raise FestError(
                code="E_JOURNAL_PENDING",
                message="an interrupted renumbering is pending; run `fest recover` first",
                file=str(journal_path),
            )

        state = _new_state(plan, content, self._backup_root(plan))
        if self.options.journal:
            _write_journal(journal_path, state)
            self._run(state, journal_path)
            _remove_file(journal_path)
            return plan

        # No journal: a failed run is undone in place.
        try:
            self._run(state, None)
        except RenumberError:
            try:
                self._rollback(state)
            except FestError as e:
                logger.warning(
                    "Could not undo partial %s in %s: %s", plan.operation, plan.directory, e
                )
            raise
        return plan

    def _run(self, state: dict[str, Any], journal_path: Optional[Path]) -> None:
        if state["phase"] == "stage":
            self._stage(state, journal_path)
            state["phase"] = "finalize"
            if journal_path is not None:
                _write_journal(journal_path, state)
        self._finalize(state)

    def _stage(self, state: dict[str, Any], journal_path: Optional[Path]) -> None:
        for entry in state["entries"]:
            if entry["kind"] != "remove":
                continue
            old = entry["old_path"]
            if not os.path.lexists(old):
                continue
            # A finished backup is never redone: `old` may already be half deleted.
            if entry.get("backup_path") and not entry.get("backed_up"):
                backup = entry["backup_path"]
                with _fs("backup", old):
                    if os.path.lexists(backup):
                        _delete(backup)
                    Path(backup).parent.mkdir(parents=True, exist_ok=True)
                    _copy(old, backup)
                entry["backed_up"] = True
                if journal_path is not None:
                    _write_journal(journal_path, state)
                self._log("Backed up: %s -> %s", Path(old).name, backup)
            with _fs("remove", old):
                _delete(old)
            self._log("Removed: %s", Path(old).name)

        for entry in state["entries"]:
            if entry["kind"] != "rename":
                continue
            old, stage = entry["old_path"], entry["stage_path"]
            if os.path.lexists(stage) or not os.path.lexists(old):
                continue
            with _fs("rename", old):
                os.rename(old, stage)

    def _finalize(self, state: dict[str, Any]) -> None:
        for entry in state["entries"]:
            if entry["kind"] != "rename":
                continue
            stage, new = entry["stage_path"], entry["new_path"]
            if not os.path.lexists(stage):
                continue
            with _fs("rename", stage):
                os.rename(stage, new)
            self._log("Renamed: %s", _describe(entry["old_path"], new))

        for entry in state["entries"]:
            if entry["kind"] != "create":
                continue
            new = entry["new_path"]
            if os.path.lexists(new):
                continue
            with _fs("create", new):
                if entry["is_dir"]:
                    os.makedirs(new)
                else:
                    Path(new).write_text(state.get("content", ""), encoding="utf-8")
            self._log("Created: %s", Path(new).name)

    # -- recovery -------------------------------------------------------

    def recover(self, directory: str | Path, rollback: bool = False) -> Optional[RenamePlan]:
        """Finish (or undo) an interrupted edit recorded in `directory`'s journal.

        Returns the journaled plan, or None when nothing is pending.
        """
        journal_path = Path(directory) / JOURNAL_NAME
        if not journal_path.exists():
            return None

        state = _read_journal(journal_path)
        plan = RenamePlan.from_dict(state["plan"])

        if rollback:
            self._rollback(state)
            logger.info("Rolled back %s in %s", plan.operation, plan.directory)
        else:
            self._run(state, journal_path)
            logger.info("Resumed %s in %s", plan.operation, plan.directory)

        _remove_file(journal_path)
        return plan

    def _rollback(self, state: dict[str, Any]) -> None:
        entries = state["entries"]

        for entry in entries:
            if entry["kind"] == "remove" and not os.path.lexists(entry["old_path"]):
                if not _has_backup(entry):
                    raise FestError(
                        code="E_ROLLBACK_IMPOSSIBLE",
                        message="removed element has no backup; use resume instead",
                        file=entry["old_path"],
                    )

        if state["phase"] == "finalize":
            for entry in entries:
                if entry["kind"] == "create" and os.path.lexists(entry["new_path"]):
                    with _fs("remove", entry["new_path"]):
                        _delete(entry["new_path"])
                    self._log("Removed: %s", Path(entry["new_path"]).name)
            for entry in entries:
                if entry["kind"] != "rename":
                    continue
                new, stage = entry["new_path"], entry["stage_path"]
                if os.path.lexists(new) and not os.path.lexists(stage):
                    with _fs("rename", new):
                        os.rename(new, stage)

        for entry in entries:
            if entry["kind"] != "rename":
                continue
            old, stage = entry["old_path"], entry["stage_path"]
            if os.path.lexists(stage):
                with _fs("rename", stage):
                    os.rename(stage, old)
                self._log("Restored: %s", Path(old).name)

        # The backup replaces whatever a failed delete left behind.
        for entry in entries:
            if entry["kind"] != "remove" or not _has_backup(entry):
                continue
            old = entry["old_path"]
            with _fs("restore", old):
                if os.path.lexists(old):
                    _delete(old)
                _copy(entry["backup_path"], old)
            self._log("Restored: %s", Path(old).name)

    # -- helpers --------------------------------------------------------

    def _backup_root(self, plan: RenamePlan) -> Optional[Path]:
        if not self.options.backup or not plan.removed():
            return None
        if self.options.backup_dir:
            root = Path(self.options.backup_dir)
            if not root.is_absolute():
                root = Path(plan.directory) / root
            return root
        return Path(plan.directory) / DEFAULT_BACKUP_DIR

    def _log(self, msg: str, *args: Any) -> None:
        if self.options.verbose:
            logger.info(msg, *args)
        else:
            logger.debug(msg, *args)


def _new_state(plan: RenamePlan, content: str, backup_root: Optional[Path]) -> dict[str, Any]:
    token = uuid.uuid4().hex[:8]
    entries: list[dict[str, Any]] = []
    for c in plan.changes:
        entry: dict[str, Any] = {
            "kind": c.kind,
            "old_path": c.old_path,
            "new_path": c.new_path,
            "is_dir": c.is_dir,
        }
        if c.kind == "rename" and c.old_path:
            entry["stage_path"] = os.path.join(
                plan.directory, f"{STAGE_PREFIX}{token}-{Path(c.old_path).name}"
            )
        if c.kind == "remove" and c.old_path and backup_root is not None:
            entry["backup_path"] = str(backup_root / f"{token}-{Path(c.old_path).name}")
        entries.append(entry)

    return {
        "version": 1,
        "token": token,
        "phase": "stage",
        "content": content,
        "plan": plan.to_dict(),
        "entries": entries,
    }


def _write_journal(path: Path, state: dict[str, Any]) -> None:
    """Write the journal atomically (temp file + rename) so a crash never leaves half a journal."""
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".fest-journal-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True)
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise RenumberError(code="E_FS_JOURNAL", message=str(e), file=str(path)) from e


def _read_journal(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise RenumberError(code="E_JOURNAL_CORRUPT", message=str(e), file=str(path)) from e
    if not isinstance(data, dict) or data.get("phase") not in ("stage", "finalize"):
        raise RenumberError(
            code="E_JOURNAL_CORRUPT",
            message="journal is not a renumbering journal",
            file=str(path),
        )
    return data


def _has_backup(entry: dict[str, Any]) -> bool:
    return bool(entry.get("backed_up")) and os.path.lexists(entry["backup_path"])


def _remove_file(path: Path) -> None:
    with _fs("remove", str(path)):
        path.unlink()


def _delete(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def _copy(src: str, dst: str) -> None:
    if os.path.isdir(src):
        shutil.copytree(src, dst)
    else:
        shutil.copy2(src, dst)


def _describe(old: Optional[str], new: Optional[str]) -> str:
    if old and new:
        return f"{Path(old).name} -> {Path(new).name}"
    return Path(old or new or "").name


@contextmanager
def _fs(op: str, path: str) -> Iterator[None]:
    try:
        yield
    except OSError as e:
        raise RenumberError(
            code=f"E_FS_{op.upper()}",
            message=e.strerror or str(e),
            file=path,
        ) from e
