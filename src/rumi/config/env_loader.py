"""Environment variable helpers for settings files."""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from rumi.lib.errors import ConfigError

# ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def load_env_file(path: Path | None = None, override: bool = False) -> bool:
    """Load a ``.env`` file into the process environment.

    Args:
        path: File to load (``./.env`` when omitted)
        override: Replace variables that are already set

    Returns:
        True if a file was found and loaded
    """
    env_path = Path(path) if path is not None else Path.cwd() / ".env"
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=override)


def get_env_var(name: str, default: str | None = None) -> str | None:
    """Return an environment variable, treating empty values as unset."""
    value = os.environ.get(name)
    return value if value else default


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in text.

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """

    def replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        raise ConfigError(name, f"environment variable ${{{name}}} is not set")

    return _ENV_PATTERN.sub(replace, text)
