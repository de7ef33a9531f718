"""Sequential dependency-ordered walks over workspace units.

Every walk awaits one visitor at a time. A visitor that returns Visit.STOP
ends the whole walk, and Visit.STOP is handed back to the caller; a visitor
that raises ends the walk with SequentialVisitError.

Key functions:
- visit_in_order(): dependencies before dependents
- visit_in_reverse_order(): dependents before dependencies
- visit_dependents(): units that directly depend on a given unit
"""

from __future__ import annotations

from collections.abc import Sequence

from monobuild.core.console import get_logger
from monobuild.core.result import DependencyCycleError, SequentialVisitError
from monobuild.scheduler.types import SequentialVisitor, Visit, resolve_units
from monobuild.workspace import Unit, WorkspaceGraph

logger = get_logger(__name__)


async def _call(visitor: SequentialVisitor, unit: Unit) -> Visit:
    logger.debug("Visiting %s", unit.name)
    try:
        result = await visitor(unit)
    except Exception as exc:
        raise SequentialVisitError(
            f"Visitor failed for {unit.name}: {exc}",
            context={"unit": unit.name},
        ) from exc
    return Visit.STOP if result is Visit.STOP else Visit.CONTINUE


async def visit_in_order(units: Sequence[Unit] | None, visitor: SequentialVisitor) -> Visit:
    """Visit every unit once, each after all of its in-workspace dependencies.

    Args:
        units: Units to visit (the workspace at the current directory if None)
        visitor: Awaited once per unit

    Returns:
        Visit.STOP if a visitor stopped the walk, else Visit.CONTINUE

    Raises:
        DependencyCycleError: If a unit is reached again while its own
            dependencies are still being visited
        SequentialVisitError: If a visitor raises
    """
    graph = WorkspaceGraph(resolve_units(units))
    visited: set[str] = set()
    stack: list[str] = []

    async def visit(unit: Unit) -> Visit:
        stack.append(unit.name)
        for dep in graph.dependencies_of(unit):
            if dep.name in stack:
                raise DependencyCycleError(stack[stack.index(dep.name) :] + [dep.name])
            if dep.name in visited:
                continue
            visited.add(dep.name)
            if await visit(dep) is Visit.STOP:
                return Visit.STOP
        stack.pop()
        return await _call(visitor, unit)

    for unit in graph:
        if unit.name in visited:
            continue
        visited.add(unit.name)
        if await visit(unit) is Visit.STOP:
            logger.debug("Walk stopped at %s", unit.name)
            return Visit.STOP

    return Visit.CONTINUE


async def visit_in_reverse_order(
    units: Sequence[Unit] | None, visitor: SequentialVisitor
) -> Visit:
    """Visit every unit once, each before any of the units it depends on."""
    order: list[Unit] = []

    async def collect(unit: Unit) -> None:
        order.append(unit)

    await visit_in_order(units, collect)

    for unit in reversed(order):
        if await _call(visitor, unit) is Visit.STOP:
            return Visit.STOP
    return Visit.CONTINUE


async def visit_dependents(
    unit: Unit,
    visitor: SequentialVisitor,
    units: Sequence[Unit] | None = None,
) -> Visit:
    """Visit the units whose direct ``dependencies`` name ``unit``.

    Only immediate dependents are visited, in workspace order. Peer and dev
    dependencies do not count.
    """
    graph = WorkspaceGraph(resolve_units(units))
    for dependent in graph.dependents_of(unit):
        if await _call(visitor, dependent) is Visit.STOP:
            return Visit.STOP
    return Visit.CONTINUE


__all__ = [
    "visit_dependents",
    "visit_in_order",
    "visit_in_reverse_order",
]
