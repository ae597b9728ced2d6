import errno
import json
import os
import shutil
from pathlib import Path

import pytest

from festival_platform.core.errors import FestError, RenumberError
from festival_platform.core.renumber.engine import (
    DEFAULT_BACKUP_DIR,
    JOURNAL_NAME,
    RenumberOptions,
    Renumberer,
)
from festival_platform.core.renumber.plan import Change, RenamePlan, validate_plan


def _names(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if not p.name.startswith("."))


def _hidden(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if p.name.startswith(".fest-stage-"))


def _fail_rename_on_call(monkeypatch, n: int) -> None:
    real_rename = os.rename
    calls = {"n": 0}

    def flaky(src, dst):
        calls["n"] += 1
        if calls["n"] == n:
            raise OSError(errno.EIO, "simulated I/O error")
        real_rename(src, dst)

    monkeypatch.setattr(os, "rename", flaky)


def _interrupted_insert(phases: Path, monkeypatch) -> None:
    # calls 1-2 stage both shifted phases, call 3 is the first final rename
    _fail_rename_on_call(monkeypatch, 3)
    with pytest.raises(RenumberError) as exc:
        Renumberer().insert_phase(phases, 1, "design")
    assert exc.value.code == "E_FS_RENAME"
    monkeypatch.undo()


def test_interrupted_run_leaves_journal(phases: Path, monkeypatch):
    _interrupted_insert(phases, monkeypatch)

    journal = json.loads((phases / JOURNAL_NAME).read_text(encoding="utf-8"))
    assert journal["phase"] == "finalize"
    assert journal["plan"]["operation"] == "insert"
    assert len(_hidden(phases)) == 2


def test_pending_journal_blocks_new_edits(phases: Path, monkeypatch):
    _interrupted_insert(phases, monkeypatch)

    with pytest.raises(FestError) as exc:
        Renumberer().insert_phase(phases, 0, "intro")
    assert exc.value.code == "E_JOURNAL_PENDING"


def test_recover_resumes(phases: Path, monkeypatch):
    _interrupted_insert(phases, monkeypatch)

    plan = Renumberer().recover(phases)

    assert plan is not None and plan.operation == "insert"
    assert _names(phases) == ["001_PLAN", "002_DESIGN", "003_IMPLEMENT", "004_REVIEW"]
    assert (phases / "004_REVIEW" / "notes.md").read_text(encoding="utf-8") == "review"
    assert not (phases / JOURNAL_NAME).exists()
    assert _hidden(phases) == []


def test_recover_rolls_back(phases: Path, monkeypatch):
    _interrupted_insert(phases, monkeypatch)

    Renumberer().recover(phases, rollback=True)

    assert _names(phases) == ["001_PLAN", "002_IMPLEMENT", "003_REVIEW"]
    assert (phases / "002_IMPLEMENT" / "notes.md").read_text(encoding="utf-8") == "implement"
    assert not (phases / JOURNAL_NAME).exists()
    assert _hidden(phases) == []


def test_recover_rolls_back_after_partial_finalize(phases: Path, monkeypatch):
    # call 3 moves REVIEW to its final name, call 4 fails
    _fail_rename_on_call(monkeypatch, 4)
    with pytest.raises(RenumberError):
        Renumberer().insert_phase(phases, 1, "design")
    monkeypatch.undo()
    assert "004_REVIEW" in _names(phases)

    Renumberer().recover(phases, rollback=True)

    assert _names(phases) == ["001_PLAN", "002_IMPLEMENT", "003_REVIEW"]
    assert (phases / "003_REVIEW" / "notes.md").read_text(encoding="utf-8") == "review"


def test_recover_without_journal(phases: Path):
    assert Renumberer().recover(phases) is None


def test_rollback_of_remove_needs_backup(phases: Path, monkeypatch):
    _fail_rename_on_call(monkeypatch, 1)
    with pytest.raises(RenumberError):
        Renumberer().remove_element(phases / "002_IMPLEMENT")
    monkeypatch.undo()

    with pytest.raises(FestError) as exc:
        Renumberer().recover(phases, rollback=True)
    assert exc.value.code == "E_ROLLBACK_IMPOSSIBLE"

    Renumberer().recover(phases)
    assert _names(phases) == ["001_PLAN", "002_REVIEW"]


def test_rollback_of_remove_restores_from_backup(phases: Path, monkeypatch):
    _fail_rename_on_call(monkeypatch, 1)
    with pytest.raises(RenumberError):
        Renumberer(RenumberOptions(backup=True)).remove_element(phases / "002_IMPLEMENT")
    monkeypatch.undo()
    assert "002_IMPLEMENT" not in _names(phases)

    Renumberer().recover(phases, rollback=True)

    assert _names(phases) == ["001_PLAN", "002_IMPLEMENT", "003_REVIEW"]
    assert (phases / "002_IMPLEMENT" / "notes.md").read_text(encoding="utf-8") == "implement"


def test_corrupt_journal(phases: Path):
    (phases / JOURNAL_NAME).write_text("{not json", encoding="utf-8")
    with pytest.raises(RenumberError) as exc:
        Renumberer().recover(phases)
    assert exc.value.code == "E_JOURNAL_CORRUPT"


def test_validate_plan_rejects_existing_target(phases: Path):
    plan = RenamePlan(
        operation="reorder",
        directory=str(phases),
        level="phase",
        changes=[
            Change(
                kind="rename",
                old_path=str(phases / "001_PLAN"),
                new_path=str(phases / "002_IMPLEMENT"),
                number=1,
            )
        ],
    )
    with pytest.raises(FestError) as exc:
        validate_plan(plan)
    assert exc.value.code == "E_RENAME_COLLISION"
    assert exc.value.file == str(phases / "002_IMPLEMENT")


def test_validate_plan_rejects_duplicate_targets(phases: Path):
    target = str(phases / "005_X")
    plan = RenamePlan(
        operation="renumber",
        directory=str(phases),
        level="phase",
        changes=[
            Change(kind="rename", old_path=str(phases / "001_PLAN"), new_path=target, number=1),
            Change(kind="rename", old_path=str(phases / "003_REVIEW"), new_path=target, number=3),
        ],
    )
    with pytest.raises(FestError) as exc:
        Renumberer().execute(plan)
    assert exc.value.code == "E_RENAME_COLLISION"
    assert _names(phases) == ["001_PLAN", "002_IMPLEMENT", "003_REVIEW"]


def test_validate_plan_rejects_existing_create(phases: Path):
    plan = RenamePlan(
        operation="insert",
        directory=str(phases),
        level="phase",
        changes=[Change(kind="create", new_path=str(phases / "003_REVIEW"), number=3)],
    )
    with pytest.raises(FestError) as exc:
        validate_plan(plan)
    assert exc.value.code == "E_RENAME_COLLISION"


def test_plan_round_trips_through_dict(phases: Path):
    plan = Renumberer(RenumberOptions(dry_run=True)).insert_phase(phases, 1, "design")
    assert RenamePlan.from_dict(json.loads(json.dumps(plan.to_dict()))) == plan


def _interrupted_backed_up_remove(phases: Path, monkeypatch) -> Path:
    victim = phases / "002_IMPLEMENT"
    (victim / "big.md").write_text("big", encoding="utf-8")

    def half_rmtree(path, *args, **kwargs):
        os.unlink(os.path.join(path, "big.md"))
        raise OSError(errno.EIO, "simulated I/O error")

    monkeypatch.setattr(shutil, "rmtree", half_rmtree)
    with pytest.raises(RenumberError) as exc:
        Renumberer(RenumberOptions(backup=True)).remove_element(victim)
    assert exc.value.code == "E_FS_REMOVE"
    monkeypatch.undo()

    (backup,) = list((phases / DEFAULT_BACKUP_DIR).iterdir())
    assert sorted(p.name for p in backup.iterdir()) == ["big.md", "notes.md"]
    return backup


def test_resume_after_failed_delete_keeps_backup(phases: Path, monkeypatch):
    backup = _interrupted_backed_up_remove(phases, monkeypatch)

    Renumberer().recover(phases)

    assert _names(phases) == ["001_PLAN", "002_REVIEW"]
    assert sorted(p.name for p in backup.iterdir()) == ["big.md", "notes.md"]


def test_rollback_after_failed_delete_restores_backup(phases: Path, monkeypatch):
    _interrupted_backed_up_remove(phases, monkeypatch)

    Renumberer().recover(phases, rollback=True)

    victim = phases / "002_IMPLEMENT"
    assert _names(phases) == ["001_PLAN", "002_IMPLEMENT", "003_REVIEW"]
    assert sorted(p.name for p in victim.iterdir()) == ["big.md", "notes.md"]
    assert (victim / "big.md").read_text(encoding="utf-8") == "big"


def test_failed_run_without_journal_is_undone(phases: Path, monkeypatch):
    _fail_rename_on_call(monkeypatch, 3)
    with pytest.raises(RenumberError):
        Renumberer(RenumberOptions(journal=False)).insert_phase(phases, 1, "design")
    monkeypatch.undo()

    assert _names(phases) == ["001_PLAN", "002_IMPLEMENT", "003_REVIEW"]
    assert (phases / "003_REVIEW" / "notes.md").read_text(encoding="utf-8") == "review"
    assert _hidden(phases) == []
    assert not (phases / JOURNAL_NAME).exists()
