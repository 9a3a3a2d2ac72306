"""Default configuration values for rumi."""

import os
from pathlib import Path

# Remote filesystem layout (Debian/Ubuntu conventions)
DEFAULT_PATHS: dict[str, str] = {
    "web_root": "/var/www",
    "app_root": "/opt/rumi",
    "data_root": "/var/lib/rumi",
    "nginx_sites_available": "/etc/nginx/sites-available",
    "nginx_sites_enabled": "/etc/nginx/sites-enabled",
    "certificate_root": "/etc/letsencrypt/live",
    "systemd_dir": "/etc/systemd/system",
}

# Execution bounds
DEFAULT_EXECUTION_CONFIG: dict[str, int | float] = {
    "command_timeout": 300,  # seconds
    "transfer_timeout": 120,  # seconds, per file
    "health_check_interval": 2.0,  # seconds
    "health_check_attempts": 15,
    "lock_wait_seconds": 0,  # fail fast on contention
}

DEFAULT_RETENTION: dict[str, int | None] = {
    "max_count": 5,
    "max_age_days": 30,
}

# Ethereum node ports
GETH_HTTP_PORT = 8545
GETH_WS_PORT = 8546
GETH_P2P_PORT = 30303

CONFIG_DIR_ENV = "RUMI_CONFIG_DIR"
SETTINGS_ENV = "RUMI_SETTINGS"
REGISTRY_FILENAME = "deployments.json"
SETTINGS_FILENAME = "rumi.yaml"


def get_config_dir() -> Path:
    """Return the rumi configuration directory.

    Resolution order:
    1. ``RUMI_CONFIG_DIR`` environment variable
    2. ``$XDG_CONFIG_HOME/rumi``
    3. ``~/.config/rumi``
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "rumi"


def _default_backup_root() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return base / "rumi" / "backups"


DEFAULT_BACKUP_ROOT = _default_backup_root()
