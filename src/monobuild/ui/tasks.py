"""Observable tree of progress tasks.

Every unit of work shown to the user is a TaskNode. Nodes form a tree under an
implicit root owned by a TaskList; any mutation of a node (a log line, a
status change, a deletion) is reported to the listener attached to the root,
which is how the renderer learns that something changed.

Key classes:
- TaskStatus: Lifecycle status of a node
- LogLine: One captured output line
- TaskNode: A node of the tree
- TaskListener: What the root notifies

[invariant:tree] ``child.parent is node`` exactly when ``child in node.children``.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from enum import Enum
from typing import NamedTuple, Protocol

Clock = Callable[[], float]

INDENT = "    "
_LINE_BREAK = re.compile(r"\r?\n")


class TaskStatus(Enum):
    """Lifecycle status for a progress task."""

    RUNNING = "running"  # Initial state
    WAITING = "waiting"  # Blocked on other work (e.g. dependencies)
    FINISHED = "finished"  # Terminal: completed
    ERROR = "error"  # Terminal: failed

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.RUNNING, TaskStatus.WAITING)


class LogLine(NamedTuple):
    text: str
    is_error: bool = False


class TaskListener(Protocol):
    """Receives notifications bubbled up to the root of a task tree."""

    def task_updated(self, task: TaskNode) -> None: ...

    def task_logged(self, task: TaskNode, message: str) -> None: ...


class TaskNode:
    """A node of the progress tree.

    Attributes:
        title: Text shown for the task
        status: Current TaskStatus
        started_at: Clock reading when the node was created
        finished_at: Clock reading when the node left the active states
        children: Subtasks in creation order
        logs: Captured output, one entry per line
        waiting_for: Human-readable description shown while WAITING
        stale_after: Seconds a finished node without logs stays visible
        stale_with_logs_after: Seconds a finished node with logs or errors stays visible
        omit_in_non_interactive: Leave this node out of append-only output

    Only a root node takes a listener; children report through their root.
    """

    def __init__(
        self,
        title: str,
        *,
        omit_in_non_interactive: bool = False,
        clock: Clock | None = None,
        stale_after: float = 0.0,
        stale_with_logs_after: float = 10.0,
        listener: TaskListener | None = None,
    ) -> None:
        self.title = title
        self.omit_in_non_interactive = omit_in_non_interactive
        self.stale_after = stale_after
        self.stale_with_logs_after = stale_with_logs_after

        self.parent: TaskNode | None = None
        self.children: list[TaskNode] = []
        self.logs: list[LogLine] = []
        self.status = TaskStatus.RUNNING
        self.waiting_for: str | None = None

        self._clock: Clock = clock or time.monotonic
        self._listener = listener
        self._deleted = False
        self.started_at = self._clock()
        self.finished_at: float | None = None

    def __repr__(self) -> str:
        return f"TaskNode({self.title!r}, status={self.status.value})"

    # Computed properties

    @property
    def depth(self) -> int:
        return self.parent.depth + 1 if self.parent else 0

    @property
    def indent(self) -> str:
        if self.depth == 0:
            return ""
        return INDENT * (self.depth - 1)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def contains_logs_or_error(self) -> bool:
        return (
            bool(self.logs)
            or self.status is TaskStatus.ERROR
            or any(child.contains_logs_or_error for child in self.children)
        )

    @property
    def is_finished_and_stale(self) -> bool:
        if self.status is not TaskStatus.FINISHED or self.finished_at is None:
            return False
        threshold = (
            self.stale_with_logs_after if self.contains_logs_or_error else self.stale_after
        )
        return self.finished_at + threshold < self._clock()

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def parents(self) -> list[TaskNode]:
        """Ancestors from the outermost down, excluding the implicit root."""
        parents: list[TaskNode] = []
        parent = self.parent
        while parent is not None and parent.parent is not None:
            parents.insert(0, parent)
            parent = parent.parent
        return parents

    @property
    def chain(self) -> list[TaskNode]:
        return [*self.parents, self]

    # Notifications

    def _notify_updated(self, task: TaskNode) -> None:
        if self.parent is not None:
            self.parent._notify_updated(task)
        elif self._listener is not None:
            self._listener.task_updated(task)

    def _notify_logged(self, task: TaskNode, message: str) -> None:
        if self.parent is not None:
            self.parent._notify_logged(task, message)
        elif self._listener is not None:
            self._listener.task_logged(task, message)

    # Lifecycle API

    def log(self, message: str, *, is_error: bool = False) -> None:
        """Append ``message`` to the log, one entry per line."""
        self.logs.extend(LogLine(line, is_error) for line in _LINE_BREAK.split(message))
        self._notify_logged(self, message)

    def wait(self, description: str) -> None:
        """Mark the task as blocked, or refresh what it is blocked on.

        Silent: the interactive view picks the state up on its next frame.
        """
        self.status = TaskStatus.WAITING
        self.waiting_for = description

    def resume(self) -> None:
        """Return a waiting task to RUNNING."""
        self.status = TaskStatus.RUNNING
        self.waiting_for = None

    def error(self, message: str | None = None) -> None:
        """Mark the task failed and log ``message``. Children keep their status."""
        self.status = TaskStatus.ERROR
        self.waiting_for = None
        self.finished_at = self._clock()
        self.log(f"[Error] {message or 'The task failed.'}", is_error=True)
        self._notify_updated(self)

    def finish(self, notify: bool = True) -> None:
        """Mark the task and every descendant finished."""
        self.status = TaskStatus.FINISHED
        self.waiting_for = None
        self.finished_at = self._clock()

        for child in self.children:
            child.finish(notify=False)

        if notify:
            self._notify_updated(self)

    def delete(self) -> None:
        """Detach the task from its parent."""
        parent = self.parent
        if parent is None:
            return
        parent.children.remove(self)
        self.parent = None
        self._deleted = True
        parent._notify_updated(self)

    # Subtasks

    def subtask(self, title: str, *, omit_in_non_interactive: bool = False) -> TaskNode:
        child = TaskNode(
            title,
            omit_in_non_interactive=omit_in_non_interactive,
            clock=self._clock,
            stale_after=self.stale_after,
            stale_with_logs_after=self.stale_with_logs_after,
        )
        return self.add_task(child)

    def add_task(self, child: TaskNode) -> TaskNode:
        if child.parent is not None:
            child.parent.children.remove(child)
        self.children.append(child)
        child.parent = self
        child._deleted = False
        return child


__all__ = [
    "INDENT",
    "Clock",
    "LogLine",
    "TaskListener",
    "TaskNode",
    "TaskStatus",
]
