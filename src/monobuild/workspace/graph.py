"""Dependency graph over workspace units.

Only edges between workspace units matter for ordering: a dependency on a
package that is not part of the workspace (an ordinary registry package) is
ignored.

Key pieces:
- dependency_set(): merged dependency mapping of a unit
- WorkspaceGraph: name lookup, in-workspace dependencies, direct dependents,
  and cycle detection
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from monobuild.core.result import DependencyCycleError, ManifestError
from monobuild.workspace.manifest import Unit


def dependency_set(unit: Unit) -> dict[str, str]:
    """Return every dependency a unit declares, keyed by package name.

    Dependencies, peer dependencies and dev dependencies are merged in that
    order, so a name declared in several maps resolves to its
    ``devDependencies`` range. Version ranges are not validated.
    """
    manifest = unit.manifest
    return {
        **manifest.dependencies,
        **manifest.peer_dependencies,
        **manifest.dev_dependencies,
    }


class WorkspaceGraph:
    """Dependency relationships between the units of one run.

    Attributes:
        units: Units in workspace order
    """

    def __init__(self, units: Iterable[Unit]) -> None:
        self.units: list[Unit] = list(units)
        self._by_name: dict[str, Unit] = {}
        for unit in self.units:
            if unit.name in self._by_name:
                raise ManifestError(
                    "Duplicate package name",
                    context={
                        "name": unit.name,
                        "folders": f"{self._by_name[unit.name].folder}, {unit.folder}",
                    },
                )
            self._by_name[unit.name] = unit

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Unit]:
        return iter(self.units)

    def __len__(self) -> int:
        return len(self.units)

    def get(self, name: str) -> Unit | None:
        return self._by_name.get(name)

    def dependency_names(self, unit: Unit) -> list[str]:
        """Names of the workspace units ``unit`` depends on, in declaration order."""
        return [name for name in dependency_set(unit) if name in self._by_name]

    def dependencies_of(self, unit: Unit) -> list[Unit]:
        """Workspace units ``unit`` depends on."""
        return [self._by_name[name] for name in self.dependency_names(unit)]

    def dependents_of(self, unit: Unit) -> list[Unit]:
        """Units whose direct ``dependencies`` name ``unit``.

        Peer and dev dependencies are not considered, and only immediate
        dependents are returned.
        """
        return [
            other
            for other in self.units
            if other.name != unit.name and unit.name in other.manifest.dependencies
        ]

    def find_cycle(self) -> list[str] | None:
        """Return one dependency cycle as a list of names, or None if acyclic.

        The returned path starts and ends with the same name, e.g.
        ``["a", "b", "a"]``.
        """
        done: set[str] = set()
        stack: list[str] = []
        on_stack: set[str] = set()

        def walk(name: str) -> list[str] | None:
            stack.append(name)
            on_stack.add(name)
            for dep in self.dependency_names(self._by_name[name]):
                if dep in on_stack:
                    return stack[stack.index(dep) :] + [dep]
                if dep not in done:
                    cycle = walk(dep)
                    if cycle:
                        return cycle
            stack.pop()
            on_stack.discard(name)
            done.add(name)
            return None

        for unit in self.units:
            if unit.name not in done:
                cycle = walk(unit.name)
                if cycle:
                    return cycle
        return None

    def ensure_acyclic(self) -> None:
        """Raise DependencyCycleError if the graph contains a cycle."""
        cycle = self.find_cycle()
        if cycle:
            raise DependencyCycleError(cycle)


__all__ = [
    "WorkspaceGraph",
    "dependency_set",
]
