"""Per-invocation state shared by rumi commands.

The root command stores a ``CliContext`` on ``ctx.obj``. Settings, the
registry, the backup catalog and the orchestrator are built lazily so that
commands which never need a remote host (``list``, ``history``) do not pay
for them.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

from rumi.config.loader import load_settings
from rumi.deploy.backup import BackupManager
from rumi.deploy.layout import RemoteLayout
from rumi.deploy.locks import LockTable
from rumi.deploy.orchestrator import DeploymentOrchestrator
from rumi.deploy.registry import JsonDeploymentRegistry, get_registry_path
from rumi.lib.errors import ConfigError, RemoteConnectionError
from rumi.lib.logging_config import get_logger, setup_logging
from rumi.models.deployment import Deployment
from rumi.models.settings import Settings
from rumi.remote import BaseSession, create_session

logger = get_logger(__name__)

RETRY_DELAY = 2.0  # seconds, doubled after each failed connect


class CliContext:
    """Lazily constructed collaborators for one CLI invocation.

    Args:
        config_path: Registry file override (``--config``)
        settings_path: Settings file override (``--settings``)
        dry_run: Plan only; never open a session
        verbose: Debug logging requested
        quiet: Only errors are logged
        retries: Connection attempts after the first one fails
    """

    def __init__(
        self,
        config_path: Path | None = None,
        settings_path: Path | None = None,
        dry_run: bool = False,
        verbose: bool = False,
        quiet: bool = False,
        retries: int = 0,
    ) -> None:
        self.config_path = config_path
        self.settings_path = settings_path
        self.dry_run = dry_run
        self.verbose = verbose
        self.quiet = quiet
        self.retries = retries
        self.sleep: Callable[[float], None] = time.sleep
        self._settings: Settings | None = None
        self._registry: JsonDeploymentRegistry | None = None
        self._backups: BackupManager | None = None
        self._orchestrator: DeploymentOrchestrator | None = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = load_settings(self.settings_path)
            if not (self.verbose or self.quiet):
                setup_logging(level=self._settings.log_level)
        return self._settings

    @property
    def registry(self) -> JsonDeploymentRegistry:
        if self._registry is None:
            self._registry = JsonDeploymentRegistry(get_registry_path(self.config_path))
        return self._registry

    @property
    def backups(self) -> BackupManager:
        if self._backups is None:
            self._backups = BackupManager(
                self.settings.backups.root, RemoteLayout(self.settings.paths)
            )
        return self._backups

    @property
    def orchestrator(self) -> DeploymentOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = DeploymentOrchestrator(
                registry=self.registry,
                backups=self.backups,
                session_factory=self.open_session,
                settings=self.settings,
                dry_run=self.dry_run,
                locks=LockTable(
                    self.settings.execution.lock_wait_seconds,
                    directory=self.registry.path.parent / "locks",
                ),
            )
        return self._orchestrator

    def require(self, name: str) -> Deployment:
        """Return a registered deployment or raise ConfigError."""
        deployment = self.registry.get(name)
        if deployment is None:
            raise ConfigError(
                field="deployment",
                message=f"No deployment named '{name}'. Run `rumi list` to see them.",
            )
        return deployment

    def open_session(self, deployment: Deployment) -> BaseSession:
        """Open a session to a deployment's host, retrying unreachable hosts.

        Authentication failures are never retried.

        Raises:
            ConfigError: If the deployment's host is not configured
            AuthError: If the host rejects the credentials
            RemoteConnectionError: If every attempt failed
        """
        try:
            host = self.settings.resolve_host(deployment.host)
        except KeyError as exc:
            raise ConfigError(
                field="hosts",
                message=f"Host '{exc.args[0]}' is not defined in settings",
            ) from exc

        delay = RETRY_DELAY
        attempt = 1
        while True:
            try:
                return create_session(host, self.settings)
            except RemoteConnectionError as exc:
                if attempt > self.retries:
                    raise
                logger.warning(
                    f"Connection attempt {attempt}/{self.retries + 1} to "
                    f"{host.address} failed: {exc.message}; retrying in {delay:g}s"
                )
                self.sleep(delay)
                delay *= 2
                attempt += 1
