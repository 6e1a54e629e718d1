"""YAML declaration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from topoform.config.schema import Config, EngineSettings
from topoform.errors import ConfigurationError

logger = logging.getLogger(__name__)

SETTINGS_ENV_PREFIX = "TOPOFORM_"


class ConfigError(ConfigurationError):
    """Raised for configuration loading / validation errors."""


def read_dotenv(config_dir: Path) -> dict[str, str | None]:
    """Values from the ``.env`` file next to the declaration file, if any."""
    env_file = config_dir / ".env"
    return dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}


def _resolve_settings(raw_settings: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve engine settings from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    if not isinstance(raw_settings, dict):
        raise ConfigError("'settings' must be a mapping")
    dotenv_vals = read_dotenv(config_dir)

    resolved: dict[str, Any] = dict(raw_settings)
    for field in EngineSettings.model_fields:
        if resolved.get(field) is not None:
            continue
        env_key = SETTINGS_ENV_PREFIX + field.upper()
        val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val
    return resolved


def _anchor(path: Path | None, config_dir: Path) -> Path | None:
    if path is None or path.is_absolute():
        return path
    return config_dir / path


def load_config(path: Path | str) -> Config:
    """Load a YAML declaration file and return a ``Config`` object.

    Relative ``state_path`` and ``settings.cloud_path`` are taken relative to
    the file's directory.

    Raises:
        ConfigError: On YAML parse errors or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    try:
        raw["settings"] = _resolve_settings(raw.get("settings") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    config.state_path = _anchor(config.state_path, config.config_dir) or config.state_path
    config.settings.cloud_path = _anchor(config.settings.cloud_path, config.config_dir)

    logger.info(
        "Loaded config from %s (%d variables, %d resources, %d outputs)",
        path,
        len(config.variables),
        len(config.resources),
        len(config.outputs),
    )
    return config
