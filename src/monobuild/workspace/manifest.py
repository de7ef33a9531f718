"""Package manifests and workspace unit discovery.

A workspace is a directory holding ``packages/*``; every subdirectory with a
manifest (``package.json`` by default) that declares a name is one unit.

Key classes:
- Manifest: The subset of a package manifest that ordering and scripts need
- Unit: A named package together with its folder and manifest

[invariant:typing] All types are explicit; mypy --strict compliant.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from monobuild.core.console import get_logger
from monobuild.core.result import ManifestError

logger = get_logger(__name__)


class Manifest(BaseModel):
    """A package manifest.

    Unknown keys are preserved so callers can still reach fields this model
    does not describe.

    Attributes:
        name: Package name; manifests without one are not workspace units
        version: Package version, used to recognise npm's script banner
        private: Private packages are skipped unless explicitly included
        dependencies: Runtime dependencies (name -> version range)
        peer_dependencies: Peer dependencies (name -> version range)
        dev_dependencies: Development dependencies (name -> version range)
        scripts: Script name -> shell command
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str | None = None
    version: str | None = None
    private: bool = False
    dependencies: dict[str, str] = Field(default_factory=dict)
    peer_dependencies: dict[str, str] = Field(default_factory=dict, alias="peerDependencies")
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")
    scripts: dict[str, str] = Field(default_factory=dict)


class Unit(BaseModel):
    """One buildable package of the monorepo."""

    model_config = ConfigDict(frozen=True)

    name: str
    folder: Path
    manifest: Manifest

    def has_script(self, script: str) -> bool:
        return script in self.manifest.scripts


def read_manifest(path: Path) -> Manifest:
    """Read and validate a manifest file.

    Args:
        path: Path to the manifest

    Returns:
        The parsed manifest

    Raises:
        ManifestError: If the file cannot be read, is not JSON, is not a JSON
            object, or does not match the manifest schema
    """
    try:
        raw = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise ManifestError("Cannot read manifest", context={"path": str(path)}) from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ManifestError(
            f"Invalid JSON in manifest: {exc.msg}",
            context={"path": str(path), "line": exc.lineno},
        ) from exc

    if not isinstance(data, dict):
        raise ManifestError("Manifest root must be an object", context={"path": str(path)})

    try:
        return Manifest.model_validate(data)
    except PydanticValidationError as exc:
        raise ManifestError(
            f"Invalid manifest: {exc.error_count()} validation error(s)",
            context={"path": str(path)},
        ) from exc


def list_units(
    root: Path | None = None,
    include_private: bool = False,
    *,
    packages_dir: str = "packages",
    manifest_name: str = "package.json",
) -> list[Unit]:
    """Discover the workspace units under ``root/packages``.

    Args:
        root: Workspace root (defaults to the current working directory)
        include_private: Also return packages marked ``private``
        packages_dir: Name of the directory holding the packages
        manifest_name: Manifest file name inside each package folder

    Returns:
        Units in directory order (sorted by folder name)

    Raises:
        ManifestError: If the packages directory is missing or a manifest is invalid
    """
    workspace_root = (root or Path.cwd()).expanduser().resolve()
    packages_root = workspace_root / packages_dir
    if not packages_root.is_dir():
        raise ManifestError(
            "Packages directory not found",
            context={"path": str(packages_root)},
        )

    units: list[Unit] = []
    for folder in sorted(packages_root.iterdir(), key=lambda p: p.name):
        if not folder.is_dir():
            continue

        manifest_file = folder / manifest_name
        if not manifest_file.is_file():
            continue

        manifest = read_manifest(manifest_file)
        if not include_private and manifest.private:
            logger.debug("Skipping private package in %s", folder.name)
            continue
        if not manifest.name:
            logger.debug("Skipping unnamed package in %s", folder.name)
            continue

        units.append(Unit(name=manifest.name, folder=folder, manifest=manifest))

    return units


__all__ = [
    "Manifest",
    "Unit",
    "list_units",
    "read_manifest",
]
