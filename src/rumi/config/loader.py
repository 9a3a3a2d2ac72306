"""Settings loader for rumi.

Loads ``rumi.yaml``, substitutes ``${VAR}`` references, applies environment
overrides and validates the result against the Settings schema.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from rumi.config.defaults import SETTINGS_ENV, SETTINGS_FILENAME, get_config_dir
from rumi.config.env_loader import get_env_var, load_env_file, substitute_env_vars
from rumi.config.validator import flatten_pydantic_errors
from rumi.lib.errors import ConfigError
from rumi.lib.logging_config import get_logger
from rumi.models.settings import Settings

logger = get_logger(__name__)

# Settings field (dot notation) to environment variable mapping
ENV_VAR_MAP = {
    "execution.command_timeout": "RUMI_COMMAND_TIMEOUT",
    "execution.lock_wait_seconds": "RUMI_LOCK_WAIT_SECONDS",
    "backups.root": "RUMI_BACKUP_ROOT",
    "log_level": "RUMI_LOG_LEVEL",
}

_FLOAT_FIELDS = {"execution.command_timeout", "execution.lock_wait_seconds"}


def _parse_env_value(field_name: str, value: str) -> Any:
    """Parse an environment override to the field's type.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if field_name in _FLOAT_FIELDS:
        return float(value)
    return value


def _set_dotted(data: dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    node = data
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[leaf] = value


def apply_env_overrides(
    data: dict[str, Any], env_vars: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Apply ``RUMI_*`` overrides to raw settings data (in place).

    Unparseable values are ignored with a warning.
    """
    env_vars = os.environ if env_vars is None else env_vars
    for field_name, env_name in ENV_VAR_MAP.items():
        raw = env_vars.get(env_name)
        if not raw:
            continue
        try:
            value = _parse_env_value(field_name, raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")
            continue
        _set_dotted(data, field_name, value)
    return data


def get_settings_path(override: Path | None = None) -> Path:
    """Return the settings file path (``--settings``, ``$RUMI_SETTINGS`` or default)."""
    if override is not None:
        return Path(override).expanduser()
    from_env = get_env_var(SETTINGS_ENV)
    if from_env:
        return Path(from_env).expanduser()
    return get_config_dir() / SETTINGS_FILENAME


def _read_yaml_with_env_substitution(path: Path) -> dict[str, Any] | None:
    """Read a YAML file after substituting environment references.

    Raises:
        OSError: If the file cannot be read
        yaml.YAMLError: If YAML parsing fails
        ConfigError: If a referenced variable is unset
    """
    raw_text = path.read_text(encoding="utf-8")
    substituted = substitute_env_vars(raw_text)
    content = yaml.safe_load(substituted)
    return content if content else None


def load_settings(
    path: Path | None = None,
    env_vars: Mapping[str, str] | None = None,
    load_dotenv: bool = True,
) -> Settings:
    """Load and validate settings.

    Configuration precedence (highest to lowest):
    1. ``RUMI_*`` environment variables
    2. The settings file
    3. Built-in defaults

    Args:
        path: Explicit settings file; it must exist when given
        env_vars: Environment mapping used for overrides (os.environ by default)
        load_dotenv: Load ``./.env`` before reading the file

    Returns:
        Validated Settings

    Raises:
        ConfigError: If the file is missing (explicit path), unparseable or
            invalid
    """
    if load_dotenv:
        load_env_file()

    settings_path = get_settings_path(path)
    data: dict[str, Any] = {}
    if settings_path.exists():
        try:
            data = _read_yaml_with_env_substitution(settings_path) or {}
        except OSError as e:
            raise ConfigError(
                "settings", f"Failed to read settings file {settings_path}: {e}"
            ) from e
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse", f"Failed to parse YAML file {settings_path}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ConfigError(
                "settings", f"Settings file {settings_path} must contain a mapping"
            )
        logger.debug(f"Loaded settings from {settings_path}")
    elif path is not None:
        raise ConfigError(
            "settings",
            f"Settings file not found at {settings_path}. "
            "Please ensure the file exists at this path.",
        )

    apply_env_overrides(data, env_vars)

    try:
        return Settings(**data)
    except PydanticValidationError as e:
        error_text = "\n".join(flatten_pydantic_errors(e))
        raise ConfigError(
            "settings_validation",
            f"Invalid settings in {settings_path}:\n{error_text}",
        ) from e
