from pathlib import Path

import pytest

from festival_platform.core.errors import FestError
from festival_platform.core.renumber.engine import Renumberer


def _names(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if not p.name.startswith("."))


def _phases(root: Path, *names: str) -> Path:
    for n in names:
        (root / n).mkdir(parents=True)
        (root / n / "marker").write_text(n.split("_", 1)[1], encoding="utf-8")
    return root


def _touch(directory: Path, *names: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for n in names:
        (directory / n).write_text(n, encoding="utf-8")


def test_reorder_move_down(tmp_path: Path):
    root = _phases(tmp_path, "001_A", "002_B", "003_C", "004_D")

    Renumberer().reorder(root, "phase", 1, 3)

    assert _names(root) == ["001_B", "002_C", "003_A", "004_D"]
    assert (root / "003_A" / "marker").read_text(encoding="utf-8") == "A"


def test_reorder_move_up(tmp_path: Path):
    root = _phases(tmp_path, "001_A", "002_B", "003_C", "004_D")

    plan = Renumberer().reorder(root, "phase", 4, 2)

    assert _names(root) == ["001_A", "002_D", "003_B", "004_C"]
    # shifted elements highest first, the moved element last
    assert [Path(a).name for a, _ in plan.renames()] == ["003_C", "002_B", "004_D"]


def test_reorder_same_position_is_noop(tmp_path: Path):
    root = _phases(tmp_path, "001_A", "002_B")
    plan = Renumberer().reorder(root, "phase", 2, 2)
    assert plan.is_empty()
    assert _names(root) == ["001_A", "002_B"]


@pytest.mark.parametrize("src, dst", [(5, 1), (1, 5), (1, 0)])
def test_reorder_out_of_range(tmp_path: Path, src: int, dst: int):
    root = _phases(tmp_path, "001_A", "002_B", "003_C")
    with pytest.raises(FestError) as exc:
        Renumberer().reorder(root, "phase", src, dst)
    assert exc.value.code == "E_POSITION_OUT_OF_RANGE"
    assert _names(root) == ["001_A", "002_B", "003_C"]


def test_reorder_moves_parallel_group_together(tmp_path: Path):
    seq = tmp_path / "001_PLAN" / "01_s"
    _touch(seq, "01_a.md", "02_b.md", "02_c.md", "03_d.md")

    Renumberer().reorder(seq, "task", 2, 3)

    assert _names(seq) == ["01_a.md", "02_d.md", "03_b.md", "03_c.md"]


def test_reorder_empty_directory(tmp_path: Path):
    with pytest.raises(FestError) as exc:
        Renumberer().reorder(tmp_path, "phase", 1, 2)
    assert exc.value.code == "E_NO_ELEMENTS"


def test_renumber_closes_gaps(tmp_path: Path):
    root = _phases(tmp_path, "001_A", "003_B", "007_C")

    Renumberer().renumber(root, "phase")

    assert _names(root) == ["001_A", "002_B", "003_C"]
    assert (root / "003_C" / "marker").read_text(encoding="utf-8") == "C"


def test_renumber_from_custom_start(tmp_path: Path):
    root = _phases(tmp_path, "001_A", "003_B", "007_C")

    plan = Renumberer().renumber(root, "phase", start=2)

    assert _names(root) == ["002_A", "003_B", "004_C"]
    # moves down first (lowest first), then moves up (highest first)
    assert [(Path(a).name, Path(b).name) for a, b in plan.renames()] == [
        ("007_C", "004_C"),
        ("001_A", "002_A"),
    ]


def test_renumber_keeps_parallel_tasks_together(tmp_path: Path):
    seq = tmp_path / "001_PLAN" / "01_s"
    _touch(seq, "01_a.md", "03_b.md", "03_c.md", "05_d.md")

    Renumberer().renumber(seq, "task")

    assert _names(seq) == ["01_a.md", "02_b.md", "02_c.md", "03_d.md"]


def test_renumber_contiguous_is_noop(tmp_path: Path):
    root = _phases(tmp_path, "001_A", "002_B")
    assert Renumberer().renumber(root, "phase").is_empty()


def test_renumber_rejects_non_positive_start(tmp_path: Path):
    root = _phases(tmp_path, "001_A")
    with pytest.raises(FestError) as exc:
        Renumberer().renumber(root, "phase", start=0)
    assert exc.value.code == "E_POSITION_OUT_OF_RANGE"
