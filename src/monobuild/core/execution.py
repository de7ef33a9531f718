"""Process execution for package scripts.

Provides:
- ProcessRunner protocol consumed by the task runner
- LocalProcessRunner, which runs shell commands with asyncio subprocesses
- LineCallback type for streamed output
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from monobuild.core.console import get_logger
from monobuild.core.result import Err, Ok, Result, ScriptExecutionError

logger = get_logger(__name__)

# Longest single output line accepted from a script (asyncio defaults to 64 KiB).
_STREAM_LIMIT = 4 * 1024 * 1024

# Receives one output line (without line terminator) and whether it came from stderr.
LineCallback = Callable[[str, bool], None]


class ProcessRunner(Protocol):
    """Protocol for starting a command and reporting its exit code."""

    async def run_lines(
        self,
        command: str,
        cwd: Path,
        on_line: LineCallback,
    ) -> Result[int, ScriptExecutionError]: ...

    async def run_inherited(
        self,
        command: str,
        cwd: Path,
    ) -> Result[int, ScriptExecutionError]: ...


async def _reap(proc: asyncio.subprocess.Process, *, group: bool) -> None:
    """Kill a child (with its process group when ``group``) and wait for it."""
    try:
        if group:
            os.killpg(proc.pid, signal.SIGKILL)
        elif proc.returncode is None:
            proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()



async def _pump(stream: asyncio.StreamReader, is_error: bool, on_line: LineCallback) -> None:
    async for raw_line in stream:
        on_line(raw_line.decode(errors="replace").rstrip("\r\n"), is_error)


class LocalProcessRunner:
    """Execute shell commands directly on the local system."""

    def __init__(self, env: dict[str, str] | None = None) -> None:
        self.env = env

    async def run_lines(
        self,
        command: str,
        cwd: Path,
        on_line: LineCallback,
    ) -> Result[int, ScriptExecutionError]:
        """Run ``command`` in ``cwd``, forwarding stdout and stderr line by line.

        Args:
            command: Shell command line to execute
            cwd: Working directory for the command
            on_line: Called for every output line, with ``True`` for stderr lines

        Returns:
            Ok(exit code) once the process exits and both streams are drained,
            Err(ScriptExecutionError) if the process could not be started

        If the awaiting task is cancelled, the whole process group is killed
        and reaped before the cancellation propagates.
        """
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
                limit=_STREAM_LIMIT,
                start_new_session=True,
            )
        except OSError as exc:
            return Err(
                ScriptExecutionError(
                    "Failed to start command",
                    context={"command": command, "cwd": str(cwd), "error": str(exc)},
                )
            )

        assert proc.stdout is not None and proc.stderr is not None
        logger.debug("Started `%s` in %s (pid %s)", command, cwd, proc.pid)

        try:
            await asyncio.gather(
                _pump(proc.stdout, False, on_line),
                _pump(proc.stderr, True, on_line),
            )
            returncode = await proc.wait()
        except BaseException:
            # The shell leads its own process group; the kill covers its descendants.
            logger.debug("Killing `%s` in %s (pid %s)", command, cwd, proc.pid)
            await _reap(proc, group=True)
            raise
        logger.debug("`%s` in %s exited with %s", command, cwd, returncode)
        return Ok(returncode)

    async def run_inherited(
        self,
        command: str,
        cwd: Path,
    ) -> Result[int, ScriptExecutionError]:
        """Run ``command`` with the parent's stdio attached."""
        try:
            proc = await asyncio.create_subprocess_shell(command, cwd=cwd, env=self.env)
        except OSError as exc:
            return Err(
                ScriptExecutionError(
                    "Failed to start command",
                    context={"command": command, "cwd": str(cwd), "error": str(exc)},
                )
            )

        try:
            return Ok(await proc.wait())
        except BaseException:
            await _reap(proc, group=False)
            raise


__all__ = [
    "LineCallback",
    "LocalProcessRunner",
    "ProcessRunner",
]
