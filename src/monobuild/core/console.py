"""Console output and logging configuration.

stdout belongs to the task renderer, which redraws it in place; everything
else (log records, error summaries) goes to stderr so it never lands inside a
frame.

Provides:
    - console: Rich console for stdout, written to by the task renderer
    - stderr_console: Rich console for log records and error summaries
    - setup_logging(): Attach a Rich handler to the ``monobuild`` logger
    - supports_live_output(): Whether a console can be redrawn in place
    - get_console(), get_logger()
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

APP_LOGGER = "monobuild"

console = Console()
stderr_console = Console(stderr=True)


def _normalize_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def setup_logging(level: str | int = logging.INFO, verbose: bool = False) -> logging.Logger:
    """Route ``monobuild.*`` log records to stderr through Rich.

    Args:
        level: Level name or number from the configuration
        verbose: Force DEBUG and show timestamps and logger names

    Returns:
        The ``monobuild`` logger
    """
    numeric_level = logging.DEBUG if verbose else _normalize_level(level)

    handler = RichHandler(
        console=stderr_console,
        markup=False,
        show_time=verbose,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s" if verbose else "%(message)s"))
    handler.setLevel(numeric_level)

    logger = logging.getLogger(APP_LOGGER)
    logger.handlers.clear()
    logger.setLevel(numeric_level)
    logger.addHandler(handler)
    logger.propagate = False

    # asyncio reports slow callbacks and unretrieved exceptions in debug mode only.
    logging.getLogger("asyncio").setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger


def supports_live_output(target: Console) -> bool:
    """True if ``target`` is a terminal that understands cursor movement."""
    return target.is_terminal and not target.is_dumb_terminal


def get_console(stderr: bool = False) -> Console:
    return stderr_console if stderr else console


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or APP_LOGGER)


__all__ = [
    "APP_LOGGER",
    "console",
    "get_console",
    "get_logger",
    "setup_logging",
    "stderr_console",
    "supports_live_output",
]
