"""Progress reporting: the task tree and its terminal renderer."""

from __future__ import annotations

from monobuild.ui.task_list import LineBudget, Spinner, TaskList, truncate_line
from monobuild.ui.tasks import LogLine, TaskNode, TaskStatus

__all__ = [
    "LineBudget",
    "LogLine",
    "Spinner",
    "TaskList",
    "TaskNode",
    "TaskStatus",
    "truncate_line",
]
