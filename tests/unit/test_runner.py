"""Tests for running package scripts across the workspace."""

from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest
from rich.console import Console

from monobuild.core.config import AppConfig, WorkspaceConfig
from monobuild.core.execution import LineCallback
from monobuild.core.result import Err, Ok, ParallelVisitError, Result, ScriptExecutionError
from monobuild.runner import log_to_task, run_in_all, run_in_unit
from monobuild.ui.task_list import TaskList
from monobuild.ui.tasks import TaskNode, TaskStatus


class FakeRunner:
    """Process runner replaying canned output per package folder."""

    def __init__(
        self,
        outputs: dict[str, tuple[list[tuple[str, bool]], int]] | None = None,
        start_error: bool = False,
    ) -> None:
        self.outputs = outputs or {}
        self.start_error = start_error
        self.calls: list[tuple[str, str]] = []
        self.inherited: list[tuple[str, str]] = []

    def _result(self, command: str, cwd: Path) -> Result[int, ScriptExecutionError]:
        if self.start_error:
            return Err(ScriptExecutionError("Failed to start command", context={"cwd": str(cwd)}))
        return Ok(self.outputs.get(cwd.name, ([], 0))[1])

    async def run_lines(
        self, command: str, cwd: Path, on_line: LineCallback
    ) -> Result[int, ScriptExecutionError]:
        self.calls.append((command, cwd.name))
        for line, is_error in self.outputs.get(cwd.name, ([], 0))[0]:
            on_line(line, is_error)
        return self._result(command, cwd)

    async def run_inherited(self, command: str, cwd: Path) -> Result[int, ScriptExecutionError]:
        self.inherited.append((command, cwd.name))
        return self._result(command, cwd)


class YieldingRunner(FakeRunner):
    """FakeRunner that gives other units a chance to run before exiting."""

    async def run_lines(
        self, command: str, cwd: Path, on_line: LineCallback
    ) -> Result[int, ScriptExecutionError]:
        await asyncio.sleep(0.01)
        return await super().run_lines(command, cwd, on_line)


class TestLogToTask:
    """Test log_to_task filtering."""

    def test_filters_blank_lines_and_npm_banner(self, make_unit) -> None:
        """Blank lines and the npm banner are dropped."""
        unit = make_unit("pkg", version="1.2.3")
        task = TaskNode("pkg")

        for line in ["", "   ", "> pkg@1.2.3 build", "> tsc -p .", "compiled"]:
            log_to_task(unit, task, line, False)

        assert [entry.text for entry in task.logs] == ["> tsc -p .", "compiled"]

    def test_stderr_lines_flagged(self, make_unit) -> None:
        """stderr lines are logged as errors."""
        task = TaskNode("pkg")

        log_to_task(make_unit("pkg"), task, "warning", True)

        assert task.logs[0].is_error


class TestRunInUnit:
    """Test running one unit's script."""

    @pytest.mark.asyncio
    async def test_unit_without_script_is_finished(self, make_unit) -> None:
        """Units without the script finish immediately."""
        runner = FakeRunner()
        task = TaskNode("pkg")

        await run_in_unit("build", make_unit("pkg"), task, runner=runner)

        assert task.status is TaskStatus.FINISHED
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_success_captures_output(self, make_unit) -> None:
        """Output lands in the task and the task finishes."""
        runner = FakeRunner({"pkg": ([("> pkg@1.0.0 build", False), ("ok", False)], 0)})
        task = TaskNode("pkg")

        await run_in_unit("build", make_unit("pkg", scripts={"build": "tsc"}), task, runner=runner)

        assert runner.calls == [("npm run build", "pkg")]
        assert [entry.text for entry in task.logs] == ["ok"]
        assert task.status is TaskStatus.FINISHED

    @pytest.mark.asyncio
    async def test_custom_script_runner(self, make_unit) -> None:
        """The script runner prefix is configurable."""
        runner = FakeRunner()

        await run_in_unit(
            "test",
            make_unit("pkg", scripts={"test": "vitest"}),
            TaskNode("pkg"),
            runner=runner,
            script_runner="pnpm run",
        )

        assert runner.calls == [("pnpm run test", "pkg")]

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_and_marks_error(self, make_unit) -> None:
        """A non-zero exit fails the task and raises."""
        runner = FakeRunner({"pkg": ([("error TS1005", True)], 2)})
        task = TaskNode("pkg")

        with pytest.raises(ScriptExecutionError) as exc_info:
            await run_in_unit("build", make_unit("pkg", scripts={"build": "tsc"}), task, runner=runner)

        assert exc_info.value.context == {"exit_code": 2}
        assert task.status is TaskStatus.ERROR
        assert task.logs[0] == ("error TS1005", True)
        assert task.logs[-1].text == "[Error] pkg: Failed to run 'build'"

    @pytest.mark.asyncio
    async def test_allow_failure_marks_error_without_raising(self, make_unit) -> None:
        """allow_failure only marks the task."""
        runner = FakeRunner({"pkg": ([], 1)})
        task = TaskNode("pkg")

        await run_in_unit(
            "build",
            make_unit("pkg", scripts={"build": "tsc"}),
            task,
            allow_failure=True,
            runner=runner,
        )

        assert task.status is TaskStatus.ERROR

    @pytest.mark.asyncio
    async def test_start_failure_propagates(self, make_unit) -> None:
        """A script that cannot start always raises."""
        task = TaskNode("pkg")

        with pytest.raises(ScriptExecutionError, match="Failed to start"):
            await run_in_unit(
                "build",
                make_unit("pkg", scripts={"build": "tsc"}),
                task,
                allow_failure=True,
                runner=FakeRunner(start_error=True),
            )

        assert task.status is TaskStatus.ERROR

    @pytest.mark.asyncio
    async def test_without_task_inherits_stdio(self, make_unit) -> None:
        """Without a task the script inherits the terminal."""
        runner = FakeRunner({"pkg": ([], 3)})
        unit = make_unit("pkg", scripts={"build": "tsc"})

        with pytest.raises(ScriptExecutionError):
            await run_in_unit("build", unit, runner=runner)
        await run_in_unit("build", unit, allow_failure=True, runner=runner)

        assert runner.inherited == [("npm run build", "pkg")] * 2
        assert runner.calls == []


class TestRunInAll:
    """Test running a script across the workspace."""

    @pytest.mark.asyncio
    async def test_ordered_failure_skips_dependents(self, make_unit) -> None:
        """Dependents of a failed unit are skipped."""
        scripts = {"build": "tsc"}
        units = [
            make_unit("a", scripts=scripts),
            make_unit("b", ["a"], scripts=scripts),
            make_unit("d", scripts=scripts),
        ]
        runner = FakeRunner({"a": ([], 1)})
        root = TaskNode("build")

        with pytest.raises(ParallelVisitError) as exc_info:
            await run_in_all("build", root, units=units, runner=runner)

        assert sorted(folder for _, folder in runner.calls) == ["a", "d"]
        assert list(exc_info.value.root_causes) == ["a"]
        statuses = {child.title: child.status for child in root.children}
        assert statuses == {
            "a": TaskStatus.ERROR,
            "b": TaskStatus.ERROR,
            "d": TaskStatus.FINISHED,
        }

    @pytest.mark.asyncio
    async def test_unordered_tolerates_failures(self, make_unit) -> None:
        """Unordered runs continue past failures."""
        scripts = {"lint": "eslint ."}
        units = [make_unit("a", scripts=scripts), make_unit("b", ["a"], scripts=scripts)]
        runner = FakeRunner({"a": ([], 1)})
        root = TaskNode("lint")

        await run_in_all("lint", root, unordered=True, units=units, runner=runner)

        assert sorted(folder for _, folder in runner.calls) == ["a", "b"]
        statuses = {child.title: child.status for child in root.children}
        assert statuses == {"a": TaskStatus.ERROR, "b": TaskStatus.FINISHED}

    @pytest.mark.asyncio
    async def test_discovers_units_with_config(self, make_workspace) -> None:
        """Units are discovered using the workspace config."""
        root_dir = make_workspace(
            {
                "app": {"name": "app", "dependencies": {"lib": "*"}, "scripts": {"build": "x"}},
                "lib": {"name": "lib", "scripts": {"build": "x"}},
                "internal": {"name": "internal", "private": True, "scripts": {"build": "x"}},
            }
        )
        runner = FakeRunner()
        config = AppConfig(workspace=WorkspaceConfig(script_runner="yarn run"))

        await run_in_all("build", root=root_dir, runner=runner, config=config)

        assert runner.inherited == [("yarn run build", "lib"), ("yarn run build", "app")]

    @pytest.mark.asyncio
    async def test_non_interactive_output_has_one_line_per_unit(self, make_unit) -> None:
        """Waiting on dependencies adds no lines to the CI stream."""
        scripts = {"build": "tsc"}
        units = [
            make_unit("a", scripts=scripts),
            make_unit("b", scripts=scripts),
            make_unit("c", scripts=scripts),
            make_unit("app", ["a", "b", "c"], scripts=scripts),
        ]
        output = io.StringIO()
        tasks = TaskList(
            interactive=False,
            console=Console(file=output, color_system=None, force_terminal=False, width=80),
        )

        await run_in_all("build", tasks.start_task("build"), units=units, runner=YieldingRunner())

        lines = output.getvalue().splitlines()
        assert lines.count("build » app") == 1
        assert sorted(lines) == ["build » a", "build » app", "build » b", "build » c"]

