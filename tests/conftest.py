from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from monobuild.workspace import Manifest, Unit  # noqa: E402

UnitFactory = Callable[..., Unit]
WorkspaceFactory = Callable[[dict[str, dict[str, Any]]], Path]


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't pick up user settings."""
    for key in list(os.environ):
        if key.startswith("MONOBUILD_"):
            monkeypatch.delenv(key)
    cfg_path = tmp_path / "monobuild.toml"
    monkeypatch.setenv("MONOBUILD_CONFIG", str(cfg_path))
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True)
    import monobuild.core.console as core_console
    import monobuild.main as mb_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(mb_main, "console", test_console)
    return test_console


@pytest.fixture
def make_unit(tmp_path: Path) -> UnitFactory:
    """Build an in-memory unit whose folder lives under tmp_path."""

    def _make(
        name: str,
        dependencies: list[str] | None = None,
        *,
        peer: list[str] | None = None,
        dev: list[str] | None = None,
        scripts: dict[str, str] | None = None,
        version: str = "1.0.0",
    ) -> Unit:
        manifest = Manifest(
            name=name,
            version=version,
            dependencies={dep: "*" for dep in dependencies or []},
            peer_dependencies={dep: "*" for dep in peer or []},
            dev_dependencies={dep: "*" for dep in dev or []},
            scripts=scripts or {},
        )
        return Unit(name=name, folder=tmp_path / name, manifest=manifest)

    return _make


@pytest.fixture
def make_workspace(tmp_path: Path) -> WorkspaceFactory:
    """Write ``packages/<folder>/package.json`` files and return the workspace root."""

    def _make(packages: dict[str, dict[str, Any]]) -> Path:
        root = tmp_path / "workspace"
        for folder, manifest in packages.items():
            package_dir = root / "packages" / folder
            package_dir.mkdir(parents=True)
            (package_dir / "package.json").write_text(json.dumps(manifest), encoding="utf-8")
        (root / "packages").mkdir(parents=True, exist_ok=True)
        return root

    return _make
