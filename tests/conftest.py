from pathlib import Path
from typing import Optional

import pytest
import yaml


def _write_task(
    path: Path,
    *,
    status: Optional[str] = None,
    deps: Optional[list[str]] = None,
    soft: Optional[list[str]] = None,
    role: Optional[str] = None,
    tracking: Optional[bool] = None,
    body: str = "",
) -> Path:
    fm: dict = {}
    if status is not None:
        fm["fest_status"] = status
    if deps is not None:
        fm["fest_dependencies"] = deps
    if soft is not None:
        fm["fest_soft_dependencies"] = soft
    if role is not None:
        fm["fest_role"] = role
    if tracking is not None:
        fm["fest_tracking"] = tracking

    text = ""
    if fm:
        text = "---\n" + yaml.safe_dump(fm, sort_keys=True) + "---\n"
    text += body or f"# {path.stem}\n"

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def write_task():
    return _write_task


@pytest.fixture
def phases(tmp_path: Path) -> Path:
    """001_PLAN, 002_IMPLEMENT, 003_REVIEW, each holding a notes.md with its own name."""
    root = tmp_path / "fest"
    for name in ("001_PLAN", "002_IMPLEMENT", "003_REVIEW"):
        d = root / name
        d.mkdir(parents=True)
        (d / "notes.md").write_text(name.split("_", 1)[1].lower(), encoding="utf-8")
    return root


@pytest.fixture
def festival(tmp_path: Path) -> Path:
    """Two phases, three sequences, parallel tasks and cross-sequence/phase references."""
    root = tmp_path / "festival"
    research = root / "001_PLAN" / "01_research"
    design = root / "001_PLAN" / "02_design"
    core = root / "002_BUILD" / "01_core"

    _write_task(research / "01_survey.md", status="complete")
    _write_task(research / "02_interview.md", status="complete")
    _write_task(research / "02_analyze.md", status="pending")
    _write_task(research / "03_summary.md")
    _write_task(design / "01_draft.md", deps=["../01_research/03_summary"])
    _write_task(core / "01_scaffold.md", deps=["../../001_PLAN/02_design/01_draft.md"])
    _write_task(core / "02_tests.md", role="quality_gate", soft=["nonexistent"])
    _write_task(core / "03_notes.md", tracking=False)
    return root
