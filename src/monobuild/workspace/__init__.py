"""Workspace discovery and dependency graph.

Organized submodules:
- manifest: Manifest and Unit models, list_units, read_manifest
- graph: dependency_set and WorkspaceGraph
"""

from monobuild.workspace.graph import WorkspaceGraph, dependency_set
from monobuild.workspace.manifest import Manifest, Unit, list_units, read_manifest

__all__ = [
    "Manifest",
    "Unit",
    "WorkspaceGraph",
    "dependency_set",
    "list_units",
    "read_manifest",
]
