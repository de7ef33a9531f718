"""Core shared infrastructure for monobuild.

This package contains foundational utilities:
    - config: Application configuration management
    - console: Rich console output and logging
    - result: Error hierarchy and Result types
    - execution: Process runner used to execute package scripts
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
