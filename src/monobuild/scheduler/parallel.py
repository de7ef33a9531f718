"""Parallel walks over workspace units.

visit_in_order_parallel() starts every unit at once but gates each visitor on
its in-workspace dependencies: one single-assignment future per unit is
created up front, and a unit's visitor runs only after every dependency
future has settled successfully. A unit whose dependency failed is skipped
and fails in turn with DependencyFailedError, so the failure reaches every
transitive dependent while unrelated branches run to completion.

visit_in_parallel() runs every visitor concurrently with no ordering at all.

Both walks wait for every unit and then raise ParallelVisitError if any unit
failed. Concurrency is unbounded; the only suspension points are dependency
futures and whatever the visitors await.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from monobuild.core.console import get_logger
from monobuild.core.result import DependencyFailedError, ParallelVisitError
from monobuild.scheduler.types import ParallelVisitor, UnorderedVisitor, resolve_units
from monobuild.ui.tasks import TaskNode
from monobuild.workspace import Unit, WorkspaceGraph

logger = get_logger(__name__)


async def _settle_dependencies(
    unit: Unit,
    pending: dict[str, asyncio.Future[None]],
    handle: TaskNode | None,
) -> list[str]:
    """Wait until every future in ``pending`` settled; return the failed names."""
    failed: list[str] = []
    if not pending:
        return failed

    logger.debug("%s depends on %s", unit.name, ", ".join(pending))
    while pending:
        description = f"Waiting for {', '.join(pending)}"
        logger.debug("%s: %s", unit.name, description)
        if handle is not None:
            handle.wait(description)

        done, _ = await asyncio.wait(set(pending.values()), return_when=asyncio.FIRST_COMPLETED)
        for name in [name for name, future in pending.items() if future in done]:
            if pending.pop(name).exception() is not None:
                failed.append(name)

    if handle is not None and not failed:
        handle.resume()
    return failed


async def visit_in_order_parallel(
    units: Sequence[Unit] | None,
    visitor: ParallelVisitor,
    task: TaskNode | None = None,
) -> None:
    """Visit all units concurrently, each after its dependencies succeeded.

    Args:
        units: Units to visit (the workspace at the current directory if None)
        visitor: Awaited once per unit with the unit's progress handle
        task: Parent task; when given, every unit gets a subtask named after it

    Raises:
        DependencyCycleError: If the units depend on each other in a loop
        ParallelVisitError: If any visitor raised or any unit was skipped
            because a dependency failed
    """
    graph = WorkspaceGraph(resolve_units(units))
    graph.ensure_acyclic()

    loop = asyncio.get_running_loop()
    futures: dict[str, asyncio.Future[None]] = {unit.name: loop.create_future() for unit in graph}

    async def _run_one(unit: Unit) -> None:
        future = futures[unit.name]
        handle = task.subtask(unit.name) if task is not None else None
        pending = {name: futures[name] for name in graph.dependency_names(unit)}

        failed = await _settle_dependencies(unit, pending, handle)
        if failed:
            error = DependencyFailedError(unit.name, failed)
            logger.debug("%s", error)
            if handle is not None:
                handle.error(error.message)
            future.set_exception(error)
            return

        try:
            await visitor(unit, handle)
        except Exception as exc:
            logger.debug("%s failed: %s", unit.name, exc)
            future.set_exception(exc)
        else:
            future.set_result(None)

    async with asyncio.TaskGroup() as tg:
        for unit in graph:
            tg.create_task(_run_one(unit))

    failures: dict[str, BaseException] = {}
    for name, future in futures.items():
        exc = future.exception()
        if exc is not None:
            failures[name] = exc

    if failures:
        raise ParallelVisitError(failures)


async def visit_in_parallel(units: Sequence[Unit] | None, visitor: UnorderedVisitor) -> None:
    """Visit all units concurrently, ignoring dependencies.

    Raises:
        ParallelVisitError: After every visitor finished, if any of them raised
    """
    resolved = resolve_units(units)
    errors: dict[str, BaseException] = {}

    async def _run_one(unit: Unit) -> None:
        try:
            await visitor(unit)
        except Exception as exc:
            logger.debug("%s failed: %s", unit.name, exc)
            errors[unit.name] = exc

    async with asyncio.TaskGroup() as tg:
        for unit in resolved:
            tg.create_task(_run_one(unit))

    if errors:
        raise ParallelVisitError(
            {unit.name: errors[unit.name] for unit in resolved if unit.name in errors}
        )


__all__ = [
    "visit_in_order_parallel",
    "visit_in_parallel",
]
