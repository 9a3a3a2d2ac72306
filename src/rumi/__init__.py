"""rumi - Deploy websites, server binaries and Ethereum nodes over SSH.

rumi provisions a remote host from a local artifact, snapshots the live
state before every change and rolls back automatically when a step fails.

Main features:
- Install, update, rollback and delete named deployments
- Revision history with a backup behind every revision
- nginx, Let's Encrypt, ufw and systemd provisioning
- Retention policies for the local backup catalog
"""

from rumi.config.loader import load_settings
from rumi.lib.errors import (
    ConfigError,
    CriticalError,
    DeploymentError,
    DeploymentFailedError,
    RumiError,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "load_settings",
    "ConfigError",
    "CriticalError",
    "DeploymentError",
    "DeploymentFailedError",
    "RumiError",
]
