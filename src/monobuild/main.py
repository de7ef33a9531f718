from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, setup_logging, stderr_console
from .core.result import Err, MonobuildError, Ok, ParallelVisitError, try_result
from .runner import run_in_all
from .scheduler import visit_dependents, visit_in_order, visit_in_reverse_order
from .ui.task_list import TaskList
from .workspace import Unit, WorkspaceGraph, list_units

app = typer.Typer(help="monobuild: run scripts across the packages of a monorepo.")
logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger
    root: Path


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to a monobuild config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    root: Path | None = typer.Option(
        None, "--root", "-r", help="Workspace root (defaults to the current directory)."
    ),
) -> None:
    workspace_root = (root or Path.cwd()).expanduser().resolve()
    loaded_config, meta = load_config(config_path=config, root=workspace_root)
    logger = setup_logging(level=loaded_config.log_level, verbose=verbose)

    ctx.obj = AppState(
        config=loaded_config,
        config_meta=meta,
        logger=logger,
        root=workspace_root,
    )

    if meta.error:
        stderr_console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {meta.path}:\n{escape(meta.error)}\n\n"
                f"[yellow]Using default settings.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded configuration from %s (env overrides: %s)",
            meta.path,
            sorted(meta.env_overrides),
        )


def _fail(message: str) -> typer.Exit:
    stderr_console.print(f"[red]{escape(message)}[/red]")
    return typer.Exit(code=EXIT_FAILURE)


def _load_units(state: AppState) -> list[Unit]:
    workspace = state.config.workspace

    def discover() -> list[Unit]:
        units = list_units(
            state.root,
            workspace.include_private,
            packages_dir=workspace.packages_dir,
            manifest_name=workspace.manifest_name,
        )
        WorkspaceGraph(units)  # rejects duplicate names
        return units

    match try_result(discover):
        case Ok(units):
            state.logger.debug("Found %d unit(s) under %s", len(units), state.root)
            return units
        case Err(error):
            raise _fail(str(error))


async def _run_with_progress(
    state: AppState, script: str, units: list[Unit], unordered: bool
) -> ParallelVisitError | None:
    with TaskList(config=state.config.terminal) as tasks:
        task = tasks.start_task(script)
        try:
            await run_in_all(script, task, unordered, units=units, config=state.config)
        except ParallelVisitError as exc:
            task.error(exc.message)
            return exc
        task.finish()
    return None


def _run_script(state: AppState, script: str, unordered: bool = False) -> None:
    units = _load_units(state)
    try:
        failure = asyncio.run(_run_with_progress(state, script, units, unordered))
    except KeyboardInterrupt:
        stderr_console.print("\n[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=EXIT_INTERRUPTED) from None
    except MonobuildError as exc:
        raise _fail(str(exc)) from exc

    if failure is None:
        return

    for name, error in failure.root_causes.items():
        stderr_console.print(f"[red]𐄂[/red] [bold]{escape(name)}[/bold]: {escape(str(error))}")
    skipped = len(failure.failures) - len(failure.root_causes)
    if skipped:
        stderr_console.print(f"[yellow]{skipped} unit(s) skipped because a dependency failed.[/yellow]")
    raise typer.Exit(code=EXIT_FAILURE)


@app.command("run")
def run_script(
    ctx: typer.Context,
    script: str = typer.Argument(..., help="Name of the package script to run."),
    parallel: bool = typer.Option(
        False, "--parallel", "-p", help="Start every package at once, ignoring dependencies."
    ),
) -> None:
    """Run a script in every package, dependencies first."""
    _run_script(ctx.obj, script, unordered=parallel)


@app.command("build")
def build(ctx: typer.Context) -> None:
    """Run the 'build' script in dependency order."""
    _run_script(ctx.obj, "build")


@app.command("test")
def test(ctx: typer.Context) -> None:
    """Run the 'test' script in dependency order."""
    _run_script(ctx.obj, "test")


@app.command("order")
def show_order(
    ctx: typer.Context,
    reverse: bool = typer.Option(False, "--reverse", help="Dependents before dependencies."),
) -> None:
    """List the packages in the order they are built."""
    state: AppState = ctx.obj
    units = _load_units(state)
    graph = WorkspaceGraph(units)
    ordered: list[Unit] = []

    async def collect(unit: Unit) -> None:
        ordered.append(unit)

    walk = visit_in_reverse_order if reverse else visit_in_order
    try:
        asyncio.run(walk(units, collect))
    except MonobuildError as exc:
        raise _fail(str(exc)) from exc

    table = Table(title="Build order", box=box.SIMPLE, expand=True)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Package", style="cyan", no_wrap=True)
    table.add_column("Depends on", style="white")

    for index, unit in enumerate(ordered, start=1):
        table.add_row(str(index), unit.name, ", ".join(graph.dependency_names(unit)) or "-")

    console.print(table)


@app.command("dependents")
def show_dependents(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package whose direct dependents to list."),
) -> None:
    """List the packages that directly depend on a package."""
    state: AppState = ctx.obj
    units = _load_units(state)
    unit = WorkspaceGraph(units).get(name)
    if unit is None:
        raise _fail(f"Unknown package: {name}")

    found: list[str] = []

    async def collect(dependent: Unit) -> None:
        found.append(dependent.name)

    asyncio.run(visit_dependents(unit, collect, units))

    if not found:
        console.print(f"[dim]No package depends on {escape(name)}.[/dim]")
        return
    for dependent in found:
        console.print(dependent)


def _flatten(values: dict[str, object], prefix: str = "") -> list[tuple[str, object]]:
    rows: list[tuple[str, object]] = []
    for key, value in values.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, f"{dotted}."))
        else:
            rows.append((dotted, value))
    return rows


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show every setting, its value and where it came from."""
    state: AppState = ctx.obj
    meta = state.config_meta

    table = Table(box=box.SIMPLE, expand=True)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_column("From", style="dim", no_wrap=True)

    for key, value in _flatten(state.config.model_dump()):
        if key in meta.env_overrides:
            source = "env"
        elif key in meta.file_keys:
            source = "file"
        else:
            source = "default"
        table.add_row(key, escape(str(value)), source)

    console.print(table)

    if meta.file_loaded:
        console.print(f"Config file: {escape(str(meta.path))}")
    else:
        console.print(f"No config file at {escape(str(meta.path))}; using defaults and environment.")


@app.command("version")
def show_version() -> None:
    """Print the monobuild version."""
    console.print(__version__)


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
