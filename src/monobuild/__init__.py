"""monobuild - dependency-ordered script runner for package monorepos.

This package provides the core of the `monobuild` command-line tool: a
workspace graph loaded from package manifests, sequential and parallel
schedulers, and a live task tree rendered to the terminal.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
