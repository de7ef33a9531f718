"""Run a package script in every workspace unit.

Provides:
- run_in_all(): Script in every unit, dependency-ordered or unordered
- run_in_unit(): Script in one unit, output captured into its task
- log_to_task(): Output line filter used while capturing
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from monobuild.core.config import AppConfig
from monobuild.core.console import get_logger
from monobuild.core.execution import LocalProcessRunner, ProcessRunner
from monobuild.core.result import MonobuildError, ScriptExecutionError
from monobuild.scheduler import visit_in_order_parallel, visit_in_parallel
from monobuild.ui.tasks import TaskNode
from monobuild.workspace import Unit, list_units

logger = get_logger(__name__)


def log_to_task(unit: Unit, task: TaskNode, line: str, is_error: bool) -> None:
    """Forward one line of script output into ``task``.

    Blank lines and npm's ``> name@version script`` banner are dropped.
    """
    if not line.strip():
        return

    if line.startswith(f"> {unit.name}@{unit.manifest.version or ''}"):
        return

    task.log(line, is_error=is_error)


async def run_in_unit(
    command: str,
    unit: Unit,
    task: TaskNode | None = None,
    allow_failure: bool = False,
    *,
    runner: ProcessRunner | None = None,
    script_runner: str = "npm run",
) -> None:
    """Run the ``command`` script of ``unit``.

    Units without such a script are skipped. With a task, output is captured
    into it and the task ends finished or failed; without one, the script
    inherits the terminal.

    Args:
        command: Script name from the manifest's ``scripts``
        unit: Unit to run it in
        task: Progress task receiving the output
        allow_failure: A non-zero exit marks the task failed instead of raising
        runner: Process runner (defaults to LocalProcessRunner)
        script_runner: Command prefix that runs a script, e.g. ``npm run``

    Raises:
        ScriptExecutionError: If the script cannot be started, or exits
            non-zero and ``allow_failure`` is not set
    """
    if not unit.has_script(command):
        logger.debug("%s has no '%s' script", unit.name, command)
        if task is not None:
            task.finish()
        return

    runner = runner or LocalProcessRunner()
    shell_command = f"{script_runner} {command}"
    logger.debug("Running `%s` in %s", shell_command, unit.folder)

    if task is None:
        exit_code = (await runner.run_inherited(shell_command, unit.folder)).unwrap()
        if exit_code != 0 and not allow_failure:
            raise _failed(command, unit, exit_code)
        return

    try:
        result = await runner.run_lines(
            shell_command,
            unit.folder,
            lambda line, is_error: log_to_task(unit, task, line, is_error),
        )
        exit_code = result.unwrap()
        if exit_code != 0:
            error = _failed(command, unit, exit_code)
            if not allow_failure:
                raise error
            logger.debug("%s", error)
            task.error(error.message)
            return
        task.finish()
    except Exception as exc:
        task.error(exc.message if isinstance(exc, MonobuildError) else str(exc))
        raise


def _failed(command: str, unit: Unit, exit_code: int) -> ScriptExecutionError:
    return ScriptExecutionError(
        f"{unit.name}: Failed to run '{command}'",
        context={"exit_code": exit_code},
    )


async def run_in_all(
    command: str,
    task: TaskNode | None = None,
    unordered: bool = False,
    *,
    root: Path | None = None,
    units: Sequence[Unit] | None = None,
    runner: ProcessRunner | None = None,
    config: AppConfig | None = None,
) -> None:
    """Run the ``command`` script in every workspace unit.

    Args:
        command: Script name
        task: Parent task; each unit gets a subtask named after it
        unordered: Start every unit at once and tolerate failing scripts
        root: Workspace root used when ``units`` is not given
        units: Units to run in (discovered under ``root`` by default)
        runner: Process runner (defaults to LocalProcessRunner)
        config: Settings for discovery and the script runner

    Raises:
        ParallelVisitError: If any unit failed, or was skipped because one of
            its dependencies failed
        DependencyCycleError: If the units depend on each other in a loop
    """
    config = config or AppConfig()
    workspace = config.workspace
    if units is None:
        units = list_units(
            root,
            workspace.include_private,
            packages_dir=workspace.packages_dir,
            manifest_name=workspace.manifest_name,
        )
    runner = runner or LocalProcessRunner()
    logger.debug("Running '%s' in %d unit(s)%s", command, len(units), " unordered" if unordered else "")

    if unordered:

        async def run_unordered(unit: Unit) -> None:
            subtask = task.subtask(unit.name) if task is not None else None
            await run_in_unit(
                command,
                unit,
                subtask,
                allow_failure=True,
                runner=runner,
                script_runner=workspace.script_runner,
            )

        await visit_in_parallel(units, run_unordered)
        return

    async def run_ordered(unit: Unit, handle: TaskNode | None) -> None:
        await run_in_unit(
            command,
            unit,
            handle,
            runner=runner,
            script_runner=workspace.script_runner,
        )

    await visit_in_order_parallel(units, run_ordered, task)


__all__ = [
    "log_to_task",
    "run_in_all",
    "run_in_unit",
]
