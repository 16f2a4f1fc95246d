"""
Converge Config - Loader.

Priority:
1. Environment variables (CONVERGE_*)
2. Config file (~/.converge/config.yaml or an explicit path)
3. Defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from converge.config.constants import CONFIG_FILE_NAME, DEFAULT_DATA_DIR
from converge.config.models import Config
from converge.core.exceptions import InvalidConfigError

# (env var, section, key)
_ENV_OVERRIDES: tuple[tuple[str, str, str], ...] = (
    ("CONVERGE_DATA_DIR", "general", "data_dir"),
    ("CONVERGE_LOG_LEVEL", "general", "log_level"),
    ("CONVERGE_MAX_CONCURRENCY", "engine", "max_concurrency"),
    ("CONVERGE_REFRESH", "engine", "refresh"),
    ("CONVERGE_STATE_PATH", "state", "path"),
)

_RETRY_ENV_OVERRIDES: tuple[tuple[str, str], ...] = (
    ("CONVERGE_RETRY_ATTEMPTS", "max_attempts"),
    ("CONVERGE_RETRY_INITIAL_DELAY", "initial_delay"),
    ("CONVERGE_RETRY_MAX_DELAY", "max_delay"),
)

_config: Config | None = None


def default_config_path() -> Path:
    return DEFAULT_DATA_DIR / CONFIG_FILE_NAME


def _read_file(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Invalid YAML in {path}: {e}", {"path": str(path)}) from e
    except OSError as e:
        raise InvalidConfigError(f"Cannot read {path}: {e}", {"path": str(path)}) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfigError(f"{path} must contain a mapping", {"path": str(path)})
    return data


def _apply_env(data: dict[str, Any]) -> dict[str, Any]:
    for env_var, section, key in _ENV_OVERRIDES:
        value = os.environ.get(env_var)
        if value is not None:
            data.setdefault(section, {})[key] = value

    for env_var, key in _RETRY_ENV_OVERRIDES:
        value = os.environ.get(env_var)
        if value is not None:
            data.setdefault("engine", {}).setdefault("retry", {})[key] = value

    return data


def load_config(path: Path | None = None) -> Config:
    """
    Load configuration from file and environment.

    Args:
        path: Explicit config file. A missing explicit file is an error;
              a missing default file just means defaults.

    Raises:
        InvalidConfigError: If the file or a value is invalid.
    """
    data: dict[str, Any] = {}

    if path is not None:
        if not path.exists():
            raise InvalidConfigError(f"Config file not found: {path}", {"path": str(path)})
        data = _read_file(path)
    elif default_config_path().exists():
        data = _read_file(default_config_path())

    data = _apply_env(data)

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigError(f"Invalid configuration: {e.error_count()} error(s)", {"errors": str(e)}) from e

    logger.debug(
        f"Config loaded (max_concurrency={config.engine.max_concurrency}, "
        f"refresh={config.engine.refresh}, state={config.state_path})"
    )
    return config


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write configuration as YAML and return the path written."""
    path = path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(config.model_dump(mode="json", exclude_none=True), sort_keys=False),
        encoding="utf-8",
    )
    return path


def get_config() -> Config:
    """Get the process-wide configuration (cached)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the cached configuration (for testing)."""
    global _config
    _config = None
