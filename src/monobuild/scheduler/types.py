"""Visitor contracts shared by the sequential and parallel schedulers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from enum import Enum

from monobuild.ui.tasks import TaskNode
from monobuild.workspace import Unit, list_units


class Visit(Enum):
    """What a sequential visitor asks the walk to do next."""

    CONTINUE = "continue"
    STOP = "stop"


# Returning None is the same as Visit.CONTINUE.
SequentialVisitor = Callable[[Unit], Awaitable[Visit | None]]

# Receives the unit's progress handle, or None when the walk has no task.
ParallelVisitor = Callable[[Unit, TaskNode | None], Awaitable[None]]

UnorderedVisitor = Callable[[Unit], Awaitable[None]]


def resolve_units(units: Sequence[Unit] | None) -> list[Unit]:
    """Return ``units``, or the workspace at the current directory when None."""
    if units is None:
        return list_units()
    return list(units)


__all__ = [
    "ParallelVisitor",
    "SequentialVisitor",
    "UnorderedVisitor",
    "Visit",
    "resolve_units",
]
