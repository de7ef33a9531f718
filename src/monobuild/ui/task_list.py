"""Terminal rendering of the progress tree.

A TaskList owns the root of a TaskNode tree and turns it into terminal output
in one of two modes, chosen once at construction:

- Interactive: a timer redraws the whole tree at a fixed rate. Each frame
  moves the cursor back over the previous frame, draws every line top-down
  and clears whatever is left below. The tree is squeezed into the terminal
  height by evicting finished, then failed, subtasks.
- Non-interactive: nothing is ever erased. Status changes of leaf tasks and
  log lines are appended to the output as they happen, each prefixed by the
  task's breadcrumb ("a » b » c").

Key classes:
- TaskList: Renderer and owner of the root task
- LineBudget: Lines still available during one render pass
- Spinner: Animated icon for running tasks
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from types import TracebackType

from rich.color import ColorSystem
from rich.console import Console
from rich.control import Control
from rich.style import Style

from monobuild.core.config import TerminalConfig
from monobuild.core.console import get_console, get_logger, supports_live_output
from monobuild.ui.tasks import Clock, LogLine, TaskNode, TaskStatus

logger = get_logger(__name__)

ERASE_LINE = "\x1b[2K"
ERASE_DOWN = "\x1b[0J"
RESET = "\x1b[0m"

ERROR_ICON = "𐄂"
FINISHED_ICON = "✓"
BREADCRUMB_SEPARATOR = " » "

_ESCAPE = re.compile(r"\x1b\[[^m]*m")
_LINE_BREAK = re.compile(r"\r?\n")

_STATUS_STYLES: dict[TaskStatus, Style] = {
    TaskStatus.RUNNING: Style(color="blue", bold=True),
    TaskStatus.WAITING: Style(color="yellow"),
    TaskStatus.FINISHED: Style(color="green"),
    TaskStatus.ERROR: Style(color="red"),
}
_DIM = Style(dim=True)
_LOG_STYLE = Style(color="bright_black")
_ERROR_LOG_STYLE = Style(color="red")
_LOG_COUNT_STYLE = Style(color="yellow")

# Errors first, then finished, then active tasks at the bottom.
_RENDER_ORDER: dict[TaskStatus, int] = {
    TaskStatus.ERROR: 0,
    TaskStatus.FINISHED: 1,
    TaskStatus.RUNNING: 2,
    TaskStatus.WAITING: 2,
}


class Spinner:
    """Braille spinner advanced once per interactive frame."""

    FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

    def __init__(self) -> None:
        self.position = 0

    def spin(self) -> None:
        self.position = (self.position + 1) % len(self.FRAMES)

    def render(self) -> str:
        return self.FRAMES[self.position]


class LineBudget:
    """Lines a render pass may still draw. ``None`` means unlimited."""

    def __init__(self, max_lines: int | None) -> None:
        self.max_lines = max_lines
        self.consumed = 0

    @property
    def remaining(self) -> int | None:
        if self.max_lines is None:
            return None
        return max(0, self.max_lines - self.consumed)

    def consume(self, count: int = 1) -> None:
        self.consumed += count


def truncate_line(line: str, columns: int, ellipsis: str = "...") -> str:
    """Cut ``line`` so that it fits in ``columns`` terminal cells.

    Escape sequences do not count towards the width and are copied verbatim.
    A line that reaches the width is cut to ``columns - 3`` visible characters
    and followed by ``ellipsis`` and a style reset.
    """
    if len(_ESCAPE.sub("", line)) < columns:
        return line

    limit = columns - 3
    parts: list[str] = []
    visible = 0
    index = 0
    while index < len(line) and visible < limit:
        match = _ESCAPE.match(line, index)
        if match:
            parts.append(match.group())
            index = match.end()
            continue
        parts.append(line[index])
        visible += 1
        index += 1

    return "".join(parts) + ellipsis + RESET


class TaskList:
    """Renders a tree of tasks to the console.

    Args:
        interactive: Force a mode; None uses ``config.interactive`` and then
            falls back to detecting a capable terminal
        silent: Suppress all output
        console: Console to write to (defaults to the shared stdout console)
        config: Terminal settings (refresh rate, staleness, fallback size)
        clock: Time source for the task tree
    """

    def __init__(
        self,
        interactive: bool | None = None,
        silent: bool = False,
        *,
        console: Console | None = None,
        config: TerminalConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.console = console or get_console()
        self.config = config or TerminalConfig()
        self.silent = silent

        if interactive is None:
            interactive = self.config.interactive
        if interactive is None:
            interactive = supports_live_output(self.console)
        self.interactive = interactive

        self.spinner = Spinner()
        self.root = TaskNode(
            "Global Task",
            clock=clock,
            stale_after=self.config.stale_after,
            stale_with_logs_after=self.config.stale_with_logs_after,
            listener=self,
        )

        self.idle = False
        self._started = False
        self._rendered_line_count = 0
        self._frame: list[str] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._idle_handle: asyncio.TimerHandle | None = None

    def __enter__(self) -> TaskList:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()

    # Tasks

    @property
    def tasks(self) -> list[TaskNode]:
        return self.root.children

    @property
    def all_tasks_finished(self) -> bool:
        return not any(task.is_active for task in self.root.children)

    def start_task(self, title: str, *, omit_in_non_interactive: bool = False) -> TaskNode:
        """Create a top-level task and make sure the view is running."""
        task = self.root.subtask(title, omit_in_non_interactive=omit_in_non_interactive)
        self._start()
        return task

    def add_task(self, task: TaskNode) -> TaskNode:
        self.root.add_task(task)
        self._start()
        return task

    # Listener

    def task_updated(self, task: TaskNode) -> None:
        if not self.interactive:
            # Errors are reported by their log line.
            if task.status is TaskStatus.FINISHED and not task.children and not task.is_deleted:
                self._render_non_interactive(task)
            return

        # Redraw now so the final state shows even if the timer stops first.
        if self.all_tasks_finished:
            self.render()

    def task_logged(self, task: TaskNode, message: str) -> None:
        if self.interactive:
            return
        self._render_non_interactive(task)
        count = len(_LINE_BREAK.split(message))
        for log_line in task.logs[-count:]:
            self._draw_log_line(task, log_line)

    # Lifecycle

    def _call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        return loop.call_later(delay, callback)

    def _start(self) -> None:
        if not self.interactive or self._started:
            return
        self._timer = self._call_later(1 / self.config.fps, self._tick)
        self._started = self._timer is not None
        if self._started:
            logger.debug("Started interactive task view")

    def _tick(self) -> None:
        self._timer = None
        self.spinner.spin()
        self.render()
        if self._started:
            self._timer = self._call_later(1 / self.config.fps, self._tick)

    def _stop_if_idle(self) -> None:
        self._idle_handle = None
        if self.idle:
            self.stop()

    def stop(self) -> None:
        """Stop redrawing, leaving the last frame on screen."""
        if not self.interactive:
            return

        was_started = self._started
        self._started = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

        if was_started:
            self.render()
        self._rendered_line_count = 0

    # Terminal

    @property
    def dimensions(self) -> tuple[int, int]:
        """Terminal (columns, rows), or the configured fallback off a terminal."""
        if self.console.is_terminal:
            size = self.console.size
            return size.width, size.height
        return self.config.fallback_columns, self.config.fallback_rows

    @property
    def remaining_lines(self) -> int:
        # One line for the row the cursor starts on, one for the trailing newline.
        _, rows = self.dimensions
        return max(0, rows - self._rendered_line_count - 2)

    def _paint(self, text: str, style: Style) -> str:
        color_system = ColorSystem.STANDARD if self.console.color_system else None
        return style.render(text, color_system=color_system)

    def _write(self, text: str) -> None:
        file = self.console.file
        file.write(text)
        file.flush()

    def draw_line(self, text: str = "") -> None:
        """Emit one or more lines of the current frame (or of the event stream)."""
        if self.silent:
            return

        if not self.interactive:
            self._write(text + "\n")
            return

        columns, _ = self.dimensions
        ellipsis = self._paint("...", _DIM)
        for line in _LINE_BREAK.split(text):
            drawn = f"{ERASE_LINE}{truncate_line(line, columns, ellipsis)}\n"
            if self._frame is not None:
                self._frame.append(drawn)
            else:
                self._write(drawn)
            self._rendered_line_count += 1

    # Rendering

    def render(self) -> None:
        """Draw one interactive frame over the previous one."""
        self._start_frame()
        self._render_children(self.root, LineBudget(self.remaining_lines), parent_finished=False)
        self._end_frame()

    def _start_frame(self) -> None:
        self._frame = []
        if self._rendered_line_count:
            self._frame.append(str(Control.move(0, -self._rendered_line_count)))
        self._rendered_line_count = 0

    def _end_frame(self) -> None:
        frame, self._frame = self._frame or [], None
        if not self.silent:
            frame.append(ERASE_DOWN)
            self._write("".join(frame))

        finished = self.all_tasks_finished
        if finished == self.idle:
            return
        self.idle = finished
        if finished:
            if self._started:
                self._idle_handle = self._call_later(self.config.idle_grace, self._stop_if_idle)
        elif self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _icon(self, status: TaskStatus) -> str:
        match status:
            case TaskStatus.ERROR:
                return ERROR_ICON
            case TaskStatus.FINISHED:
                return FINISHED_ICON
            case _:
                return self.spinner.render()

    def _summary(self, task: TaskNode) -> str:
        counts: list[str] = []
        if task.logs:
            counts.append(self._paint(f"• {len(task.logs)}", _LOG_COUNT_STYLE))

        for status in (TaskStatus.FINISHED, TaskStatus.ERROR, TaskStatus.RUNNING):
            if status is TaskStatus.RUNNING:
                count = sum(1 for child in task.children if child.is_active)
            else:
                count = sum(1 for child in task.children if child.status is status)
            if count:
                counts.append(self._paint(f"{self._icon(status)} {count}", _STATUS_STYLES[status]))

        return "  " + "   ".join(counts) if counts else ""

    def _render_task(self, task: TaskNode, budget: LineBudget, parent_finished: bool) -> None:
        if parent_finished and not task.contains_logs_or_error:
            return

        title = self._paint(f"{self._icon(task.status)} {task.title}", _STATUS_STYLES[task.status])
        if task.status is TaskStatus.WAITING and task.waiting_for:
            title += "  " + self._paint(task.waiting_for, _DIM)
        self.draw_line(f"{task.indent}{title}{self._summary(task)}")
        budget.consume()

        self._render_children(task, budget, parent_finished or task.is_finished_and_stale)
        self._render_logs(task, budget)

    def _render_logs(self, task: TaskNode, budget: LineBudget) -> None:
        remaining = budget.remaining
        if remaining is None:
            lines = task.logs
        elif remaining > 0:
            lines = task.logs[-remaining:]
        else:
            return

        for log_line in lines:
            self._draw_log_line(task, log_line)
            budget.consume()

    def _draw_log_line(self, task: TaskNode, log_line: LogLine) -> None:
        style = _ERROR_LOG_STYLE if log_line.is_error else _LOG_STYLE
        self.draw_line(f"{task.indent}  {self._paint(log_line.text, style)}")

    def _render_children(self, task: TaskNode, budget: LineBudget, parent_finished: bool) -> None:
        """Render the children of ``task`` that fit into ``budget``.

        Children are ordered errors first and active tasks last. When the
        subtree is finished only children with logs or errors remain; otherwise
        stale finished children are dropped. If there are still more children
        than lines, finished children are evicted one at a time from the front,
        then errors, and finally the list is cut. Every remaining child gets one
        line plus every spare line still unclaimed, so earlier children may
        grow and whatever they leave unused flows on to later siblings.
        """
        children = sorted(task.children, key=lambda child: _RENDER_ORDER[child.status])
        if parent_finished:
            children = [child for child in children if child.contains_logs_or_error]
        else:
            children = [child for child in children if not child.is_finished_and_stale]

        remaining = budget.remaining
        if remaining == 0:
            return
        if remaining is None:
            for child in children:
                self._render_task(child, LineBudget(None), parent_finished)
            return

        for evicted in (TaskStatus.FINISHED, TaskStatus.ERROR):
            while len(children) > remaining:
                index = next(
                    (i for i, child in enumerate(children) if child.status is evicted),
                    None,
                )
                if index is None:
                    break
                del children[index]
        del children[remaining:]

        extra = remaining - len(children)
        for child in children:
            child_budget = LineBudget(1 + extra)
            self._render_task(child, child_budget, parent_finished)
            budget.consume(child_budget.consumed)
            extra = max(0, extra - (child_budget.consumed - 1))

    def _render_non_interactive(self, task: TaskNode) -> None:
        if task.omit_in_non_interactive:
            return
        breadcrumb = BREADCRUMB_SEPARATOR.join(
            self._paint(node.title, _STATUS_STYLES[node.status])
            for node in task.chain
            if not node.omit_in_non_interactive
        )
        self.draw_line(breadcrumb)


__all__ = [
    "ERROR_ICON",
    "FINISHED_ICON",
    "LineBudget",
    "Spinner",
    "TaskList",
    "truncate_line",
]
