from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from festival_platform.core.config import ConfigError, FestConfig, load_config
from festival_platform.core.deps.resolve import ResolveResult, resolve_festival, resolve_sequence
from festival_platform.core.deps.validate import validate_festival
from festival_platform.core.errors import CycleError, FestError, RenumberError, sort_errors
from festival_platform.core.io.scan import detect_child_level
from festival_platform.core.logs import setup_logging
from festival_platform.core.model import LEVELS, Level, Task
from festival_platform.core.naming.naming import classify_level
from festival_platform.core.renumber.engine import RenumberOptions, Renumberer
from festival_platform.core.renumber.plan import RenamePlan

app = typer.Typer(add_completion=False, no_args_is_help=True)
insert_app = typer.Typer(add_completion=False, no_args_is_help=True, help="Insert a numbered element.")
deps_app = typer.Typer(add_completion=False, no_args_is_help=True, help="Query the task dependency graph.")
app.add_typer(insert_app, name="insert")
app.add_typer(deps_app, name="deps")

console = Console()

FORMATS = ("text", "json")


@app.callback()
def _callback() -> None:
    """Festival CLI: keep phase/sequence/task numbering consistent and order tasks."""
    return


# -- structure edits ------------------------------------------------------


@insert_app.command("phase")
def insert_phase(
    festival_dir: str = typer.Argument(..., help="Festival directory holding NNN_PHASE dirs"),
    after: int = typer.Option(..., "--after", help="Insert after this number (0 = first)"),
    name: str = typer.Option(..., "--name", help="Phase name (uppercased)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without touching disk"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every rename"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Insert a phase, shifting later phases up by one."""
    _edit(
        "insert",
        festival_root=Path(festival_dir),
        config_file=config_file,
        format=format,
        dry_run=dry_run,
        verbose=verbose,
        action=lambda r: r.insert_phase(festival_dir, after, name),
    )


@insert_app.command("sequence")
def insert_sequence(
    phase_dir: str = typer.Argument(..., help="Phase directory holding NN_sequence dirs"),
    after: int = typer.Option(..., "--after", help="Insert after this number (0 = first)"),
    name: str = typer.Option(..., "--name", help="Sequence name (lowercased)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without touching disk"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every rename"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Insert a sequence, shifting later sequences up by one."""
    _edit(
        "insert",
        festival_root=Path(phase_dir).parent,
        config_file=config_file,
        format=format,
        dry_run=dry_run,
        verbose=verbose,
        action=lambda r: r.insert_sequence(phase_dir, after, name),
    )


@insert_app.command("task")
def insert_task(
    sequence_dir: str = typer.Argument(..., help="Sequence directory holding NN_task.md files"),
    after: int = typer.Option(..., "--after", help="Insert after this number (0 = first)"),
    name: str = typer.Option(..., "--name", help="Task name (lowercased)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without touching disk"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every rename"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Insert a task file, shifting later tasks up by one."""
    _edit(
        "insert",
        festival_root=Path(sequence_dir).parent.parent,
        config_file=config_file,
        format=format,
        dry_run=dry_run,
        verbose=verbose,
        action=lambda r: r.insert_task(sequence_dir, after, name),
    )


@app.command("remove")
def remove(
    path: str = typer.Argument(..., help="Phase/sequence directory or task file to remove"),
    backup: Optional[bool] = typer.Option(
        None, "--backup/--no-backup", help="Copy the element to the backup dir before deleting"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without touching disk"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every rename"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Remove an element and shift later siblings down by one."""
    _edit(
        "remove",
        festival_root=_festival_root_of(Path(path)),
        config_file=config_file,
        format=format,
        dry_run=dry_run,
        verbose=verbose,
        backup=backup,
        action=lambda r: r.remove_element(path),
    )


@app.command("reorder")
def reorder(
    directory: str = typer.Argument(..., help="Directory whose numbered children are reordered"),
    from_number: int = typer.Argument(..., metavar="FROM", help="Current position"),
    to_number: int = typer.Argument(..., metavar="TO", help="New position"),
    level: Optional[str] = typer.Option(None, "--level", help="phase|sequence|task (inferred)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without touching disk"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every rename"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Move the element at FROM to TO, shifting the elements in between."""
    lvl = _child_level(directory, level, "reorder", format)
    _edit(
        "reorder",
        festival_root=_festival_root_for_children(Path(directory), lvl),
        config_file=config_file,
        format=format,
        dry_run=dry_run,
        verbose=verbose,
        action=lambda r: r.reorder(directory, lvl, from_number, to_number),
    )


@app.command("renumber")
def renumber(
    directory: str = typer.Argument(..., help="Directory whose numbered children are renumbered"),
    start: int = typer.Option(1, "--start", help="First number"),
    level: Optional[str] = typer.Option(None, "--level", help="phase|sequence|task (inferred)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without touching disk"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every rename"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Close numbering gaps so siblings run contiguously from --start."""
    lvl = _child_level(directory, level, "renumber", format)
    _edit(
        "renumber",
        festival_root=_festival_root_for_children(Path(directory), lvl),
        config_file=config_file,
        format=format,
        dry_run=dry_run,
        verbose=verbose,
        action=lambda r: r.renumber(directory, lvl, start),
    )


@app.command("recover")
def recover(
    directory: str = typer.Argument(..., help="Directory holding an interrupted .fest-journal.json"),
    rollback: bool = typer.Option(False, "--rollback", help="Undo instead of finishing"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every rename"),
) -> None:
    """Finish or roll back a renumbering that was interrupted."""
    setup_logging(verbose)
    r = Renumberer(RenumberOptions(verbose=verbose))
    try:
        plan = r.recover(directory, rollback=rollback)
    except FestError as e:
        _print_errors([e])
        raise typer.Exit(code=1 if isinstance(e, RenumberError) else 2)

    if plan is None:
        typer.echo("OK: nothing to recover")
        return
    verb = "rolled back" if rollback else "resumed"
    typer.echo(f"OK: {verb} {plan.operation} ({len(plan.changes)} changes)")


# -- dependency queries ---------------------------------------------------


@deps_app.command("order")
def deps_order(
    festival_dir: str = typer.Argument(..., help="Festival directory"),
    sequence: Optional[str] = typer.Option(None, "--sequence", help="Limit to one sequence dir"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Print every task in dependency order."""
    result = _resolve("order", festival_dir, sequence, config_file, format)
    tasks = _query("order", format, lambda: result.graph.topological_sort())
    _emit_tasks("order", tasks, format, title="Execution order")


@deps_app.command("critical-path")
def deps_critical_path(
    festival_dir: str = typer.Argument(..., help="Festival directory"),
    sequence: Optional[str] = typer.Option(None, "--sequence", help="Limit to one sequence dir"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Print the longest chain of dependent tasks."""
    result = _resolve("critical-path", festival_dir, sequence, config_file, format)
    tasks = _query("critical-path", format, lambda: result.graph.critical_path())
    _emit_tasks("critical-path", tasks, format, title=f"Critical path ({len(tasks)} tasks)")


@deps_app.command("groups")
def deps_groups(
    festival_dir: str = typer.Argument(..., help="Festival directory"),
    sequence: Optional[str] = typer.Option(None, "--sequence", help="Limit to one sequence dir"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Print tasks grouped into levels that may run concurrently."""
    result = _resolve("groups", festival_dir, sequence, config_file, format)
    groups = _query("groups", format, lambda: result.graph.parallel_groups())

    if format == "json":
        _emit_json(
            "groups",
            ok=True,
            exit_code=0,
            errors=[],
            groups=[[_task_item(t) for t in g] for g in groups],
        )

    table = Table(title="Parallel groups")
    table.add_column("Level")
    table.add_column("Tasks", overflow="fold")
    for i, g in enumerate(groups):
        table.add_row(str(i), "\n".join(t.id for t in g))
    console.print(table)


@deps_app.command("ready")
def deps_ready(
    festival_dir: str = typer.Argument(..., help="Festival directory"),
    sequence: Optional[str] = typer.Option(None, "--sequence", help="Limit to one sequence dir"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Print incomplete tasks whose prerequisites are all complete."""
    result = _resolve("ready", festival_dir, sequence, config_file, format)
    tasks = _query("ready", format, lambda: result.graph.ready_tasks())
    _emit_tasks("ready", tasks, format, title="Ready tasks")


@deps_app.command("validate")
def deps_validate(
    festival_dir: str = typer.Argument(..., help="Festival directory"),
    strict: bool = typer.Option(False, "--strict", help="Treat warnings as errors"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a fest.yaml"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Check numbering and dependency declarations."""
    _check_format("validate", format)
    cfg = _load_cfg("validate", Path(festival_dir), config_file, format)

    try:
        problems = validate_festival(festival_dir, implicit=cfg.implicit_dependencies)
    except FestError as e:
        _fail("validate", [e], format, exit_code=1)

    failing = [e for e in problems if strict or not e.is_warning]
    ok = not failing

    if format == "json":
        _emit_json("validate", ok=ok, exit_code=0 if ok else 2, errors=problems)

    if problems:
        _print_errors(problems)
    if not ok:
        raise typer.Exit(code=2)
    typer.echo(f"OK: festival valid ({len(problems)} warnings)")


# -- helpers --------------------------------------------------------------


def _edit(
    command: str,
    *,
    festival_root: Path,
    config_file: Optional[str],
    format: str,
    dry_run: bool,
    verbose: bool,
    action: Callable[[Renumberer], RenamePlan],
    backup: Optional[bool] = None,
) -> None:
    _check_format(command, format)
    cfg = _load_cfg(command, festival_root, config_file, format)
    cfg = cfg.with_overrides(dry_run=dry_run, verbose=verbose, backup=backup)
    setup_logging(cfg.renumber.verbose)

    try:
        plan = action(Renumberer(cfg.renumber))
    except FestError as e:
        _fail(command, [e], format, exit_code=1 if isinstance(e, RenumberError) else 2)

    if format == "json":
        _emit_json(
            command,
            ok=True,
            exit_code=0,
            errors=[],
            dry_run=cfg.renumber.dry_run,
            plan=plan.to_dict(),
        )

    for c in plan.changes:
        if c.kind == "rename":
            typer.echo(f"  Rename: {Path(c.old_path or '').name} -> {Path(c.new_path or '').name}")
        elif c.kind == "create":
            typer.echo(f"  Create: {Path(c.new_path or '').name}")
        else:
            typer.echo(f"  Remove: {Path(c.old_path or '').name}")

    if cfg.renumber.dry_run:
        typer.echo(f"DRY RUN: {len(plan.changes)} changes planned")
    elif plan.is_empty():
        typer.echo("OK: no changes needed")
    else:
        typer.echo(f"OK: applied {len(plan.changes)} changes")


def _resolve(
    command: str,
    festival_dir: str,
    sequence: Optional[str],
    config_file: Optional[str],
    format: str,
) -> ResolveResult:
    _check_format(command, format)
    cfg = _load_cfg(command, Path(festival_dir), config_file, format)
    try:
        if sequence:
            return resolve_sequence(sequence, festival_dir, implicit=cfg.implicit_dependencies)
        return resolve_festival(festival_dir, implicit=cfg.implicit_dependencies)
    except FestError as e:
        _fail(command, [e], format, exit_code=1)


def _query(command: str, format: str, fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except CycleError as e:
        _fail(command, [e], format, exit_code=2)


def _emit_tasks(command: str, tasks: list[Task], format: str, title: str) -> None:
    if format == "json":
        _emit_json(command, ok=True, exit_code=0, errors=[], tasks=[_task_item(t) for t in tasks])

    table = Table(title=title)
    table.add_column("#")
    table.add_column("Task", overflow="fold")
    table.add_column("Status")
    for i, t in enumerate(tasks, start=1):
        table.add_row(str(i), t.id, t.status)
    console.print(table)


def _task_item(t: Task) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "number": t.number,
        "status": t.status,
        "role": t.role,
    }


def _to_item(e: FestError) -> dict[str, Any]:
    item: dict[str, Any] = {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "warning" if e.is_warning else "error",
    }
    if isinstance(e, CycleError):
        item["cycle"] = list(e.cycle)
    return item


def _emit_json(command: str, *, ok: bool, exit_code: int, errors: list[FestError], **extra: Any) -> NoReturn:
    payload = {
        "tool": "fest",
        "command": command,
        "ok": ok,
        "error_count": sum(1 for e in errors if not e.is_warning),
        "warning_count": sum(1 for e in errors if e.is_warning),
        "errors": [_to_item(e) for e in errors],
        **extra,
    }
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    raise typer.Exit(code=exit_code)


def _fail(command: str, errors: list[FestError], format: str, exit_code: int) -> NoReturn:
    if format == "json":
        _emit_json(command, ok=False, exit_code=exit_code, errors=errors)
    _print_errors(errors)
    raise typer.Exit(code=exit_code)


def _check_format(command: str, format: str) -> None:
    if format not in FORMATS:
        err = FestError(
            code=f"E_{command.upper().replace('-', '_')}_UNKNOWN_FORMAT",
            message=f"unknown format: {format} (choose one of: text, json)",
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _load_cfg(command: str, festival_root: Path, config_file: Optional[str], format: str) -> FestConfig:
    try:
        return load_config(festival_root, config_file)
    except FileNotFoundError:
        _fail(
            command,
            [
                FestError(
                    code="E_CONFIG_FILE_NOT_FOUND",
                    message=f"config file not found: {config_file}",
                    path="config",
                )
            ],
            format,
            exit_code=1,
        )
    except ConfigError as e:
        _fail(
            command,
            [FestError(code="E_CONFIG_FILE_INVALID", message=str(e), file=config_file, path="config")],
            format,
            exit_code=2,
        )


def _child_level(directory: str, level: Optional[str], command: str, format: str) -> Level:
    if level is not None:
        if level not in LEVELS:
            _fail(
                command,
                [
                    FestError(
                        code="E_UNKNOWN_LEVEL",
                        message=f"unknown level: {level} (choose one of: {', '.join(LEVELS)})",
                        path="level",
                    )
                ],
                format,
                exit_code=2,
            )
        return level  # type: ignore[return-value]

    try:
        found = detect_child_level(directory)
    except FestError as e:
        _fail(command, [e], format, exit_code=1)
    if found is None:
        _fail(
            command,
            [FestError(code="E_NO_ELEMENTS", message="no numbered elements found", file=directory)],
            format,
            exit_code=2,
        )
    return found  # type: ignore[return-value]


def _festival_root_for_children(directory: Path, level: Level) -> Path:
    up = {"phase": 0, "sequence": 1, "task": 2}[level]
    root = directory
    for _ in range(up):
        root = root.parent
    return root


def _festival_root_of(path: Path) -> Path:
    level = classify_level(path)
    if level is None:
        return path.parent
    return _festival_root_for_children(path.parent, level)


def _print_errors(errors: list[FestError]) -> None:
    for e in sort_errors(errors):
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="fest")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
