"""monobuild settings.

Settings come from, highest priority first:
    1. MONOBUILD_* environment variables (nested groups split on ``__``)
    2. A TOML or JSON file: ``--config``, ``MONOBUILD_CONFIG`` or
       ``monobuild.toml`` in the workspace root
    3. Field defaults

A broken file never stops the CLI: ``load_config`` reports it and carries on
with defaults.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from monobuild.core.result import ConfigurationError

CONFIG_ENV_VAR = "MONOBUILD_CONFIG"
DEFAULT_CONFIG_NAME = "monobuild.toml"

_PARSERS: dict[str, Callable[[str], Any]] = {".json": json.loads, ".toml": tomllib.loads}


class WorkspaceConfig(BaseModel):
    """Where packages live and how their scripts are started."""

    packages_dir: str = Field(
        default="packages", description="Directory (relative to the root) holding the packages."
    )
    manifest_name: str = Field(
        default="package.json", description="Manifest file name inside each package folder."
    )
    include_private: bool = Field(
        default=False, description="Include packages whose manifest is marked private."
    )
    script_runner: str = Field(
        default="npm run", description="Command prefix used to run a package script."
    )


class TerminalConfig(BaseModel):
    """Progress rendering configuration."""

    interactive: bool | None = Field(
        default=None,
        description="Force interactive (true) or append-only (false) output; autodetect if unset.",
    )
    fps: float = Field(default=30.0, gt=0, description="Redraw rate of the interactive view.")
    idle_grace: float = Field(
        default=1.0, ge=0, description="Seconds to keep redrawing after all tasks finished."
    )
    stale_after: float = Field(
        default=0.0, ge=0, description="Seconds a finished task without output stays visible."
    )
    stale_with_logs_after: float = Field(
        default=10.0, ge=0, description="Seconds a finished task with logs or errors stays visible."
    )
    fallback_columns: int = Field(
        default=80, gt=3, description="Terminal width assumed when it cannot be detected."
    )
    fallback_rows: int = Field(
        default=24, gt=2, description="Terminal height assumed when it cannot be detected."
    )


@dataclass
class ConfigLoadResult:
    """Where the active configuration came from."""

    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None
    file_keys: set[str] = field(default_factory=set)


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="MONOBUILD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    log_level: str = Field(default="INFO", description="Log level for monobuild output.")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _resolve_config_path(
    config_path: Path | None, env_vars: Mapping[str, str], root: Path | None
) -> Path:
    if config_path is not None:
        return config_path.expanduser()
    if selected := env_vars.get(CONFIG_ENV_VAR):
        return Path(selected).expanduser()
    return (root or Path.cwd()) / DEFAULT_CONFIG_NAME


def _parse_config_file(path: Path) -> dict[str, Any] | None:
    """Parse a TOML or JSON config file; None when there is no file."""
    if not path.is_file():
        return None

    parse = _PARSERS.get(path.suffix.lower(), tomllib.loads)
    try:
        data = parse(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read {path}: {exc}") from exc
    except ValueError as exc:
        # JSONDecodeError and TOMLDecodeError both derive from ValueError.
        raise ConfigurationError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root in {path} must be a mapping.")
    return data


def _dotted_keys(values: Mapping[str, Any], prefix: str = "") -> set[str]:
    keys: set[str] = set()
    for key, value in values.items():
        if isinstance(value, Mapping):
            keys |= _dotted_keys(value, f"{prefix}{key}.")
        else:
            keys.add(f"{prefix}{key}")
    return keys


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Dotted names of settings that an environment variable sets.

    Nested groups use the nested delimiter, e.g. MONOBUILD_TERMINAL__FPS
    reports ``terminal.fps``.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    present = {key.upper() for key in env_vars}
    overrides: set[str] = set()

    for name, info in AppConfig.model_fields.items():
        group = info.annotation
        if isinstance(group, type) and issubclass(group, BaseModel):
            overrides.update(
                f"{name}.{sub_name}"
                for sub_name in group.model_fields
                if f"{prefix}{name}{delimiter}{sub_name}".upper() in present
            )
        elif f"{prefix}{name}".upper() in present:
            overrides.add(name)

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    *,
    root: Path | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """Build the configuration, falling back to defaults on a bad file.

    Args:
        config_path: Explicit config file; otherwise ``MONOBUILD_CONFIG`` or
            ``monobuild.toml`` under ``root`` (cwd when unset)
        env: Extra environment variables layered over ``os.environ``
        root: Workspace root used for the default file location

    Returns:
        The configuration and a description of where it came from. A file
        that cannot be parsed or validated is reported in ``error`` and the
        defaults (plus environment) are used instead ("safe mode").
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    path = _resolve_config_path(config_path, env_vars, root)
    meta = ConfigLoadResult(path=path, file_loaded=False, env_overrides=_detect_env_overrides(env_vars))

    file_values: dict[str, Any] = {}
    try:
        parsed = _parse_config_file(path)
    except ConfigurationError as exc:
        meta.error = str(exc)
    else:
        if parsed is not None:
            file_values = parsed
            meta.file_loaded = True
            meta.file_keys = _dotted_keys(parsed)

    with patch.dict(os.environ, env) if env is not None else nullcontext():
        try:
            config = AppConfig(**file_values)
        except ValidationError as exc:
            meta.error = f"Invalid values in {path}: {exc}"
            config = AppConfig()

    return config, meta
