"""Result values and the monobuild exception hierarchy.

Spawning a process can fail in ordinary ways (a missing shell, a bad working
directory), so process runners return ``Ok(exit_code)`` or ``Err(error)`` and
let the caller decide whether that is fatal. Everything that is fatal is a
``MonobuildError`` subclass carrying a ``context`` dict that is appended to
its message when printed.

    match await runner.run_inherited("npm run build", unit.folder):
        case Ok(0):
            ...
        case Ok(code):
            ...
        case Err(error):
            raise error
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """A successful outcome."""

    value: T

    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """A failed outcome; ``unwrap`` raises the error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def unwrap(self) -> T:
        raise self.error


Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class MonobuildError(Exception):
    """Base class for errors monobuild reports to the user.

    ``context`` holds key/value details (unit name, exit code, ...) shown
    after the message as ``message [key=value, ...]``.
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} [{details}]"


class ConfigurationError(MonobuildError):
    """The config file could not be read or is not a table of settings."""


class ManifestError(MonobuildError):
    """Raised when the workspace cannot be loaded.

    Examples:
    - Missing packages directory
    - Unreadable or invalid package manifest
    - Two packages declaring the same name
    """


class DependencyCycleError(MonobuildError):
    """Raised when workspace packages depend on each other in a loop."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            context={"units": len(set(cycle))},
        )
        self.cycle = cycle


class SequentialVisitError(MonobuildError):
    """Raised when a visitor fails during a dependency-ordered walk."""


class DependencyFailedError(MonobuildError):
    """Raised for a unit that was skipped because a dependency failed."""

    def __init__(self, unit: str, failed: list[str]) -> None:
        super().__init__(
            f"{unit}: skipped because {', '.join(failed)} failed",
            context={"unit": unit},
        )
        self.unit = unit
        self.failed = failed


class ParallelVisitError(MonobuildError):
    """Raised after a parallel walk in which one or more units failed.

    ``failures`` maps unit name to the exception that unit's future settled
    with, in workspace order.
    """

    def __init__(self, failures: dict[str, BaseException]) -> None:
        super().__init__(
            f"{len(failures)} unit(s) failed: {', '.join(failures)}",
        )
        self.failures = failures

    @property
    def root_causes(self) -> dict[str, BaseException]:
        """Failures that were not merely propagated from a dependency."""
        return {
            name: exc
            for name, exc in self.failures.items()
            if not isinstance(exc, DependencyFailedError)
        }


class ScriptExecutionError(MonobuildError):
    """Raised when a package script cannot be started or exits non-zero."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def try_result(fn: Callable[[], T], error_type: type[E] = MonobuildError) -> Result[T, E]:
    """Call ``fn``, turning an ``error_type`` exception into ``Err``."""
    try:
        return Ok(fn())
    except error_type as exc:
        return Err(exc)


__all__ = [
    "Ok",
    "Err",
    "Result",
    "MonobuildError",
    "ConfigurationError",
    "ManifestError",
    "DependencyCycleError",
    "SequentialVisitError",
    "DependencyFailedError",
    "ParallelVisitError",
    "ScriptExecutionError",
    "try_result",
]
