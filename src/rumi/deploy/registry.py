"""Deployment registry: persisted deployments and their revision pointers."""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from rumi.config.defaults import REGISTRY_FILENAME, get_config_dir
from rumi.lib.errors import DeploymentError
from rumi.lib.logging_config import get_logger
from rumi.models.deployment import Deployment
from rumi.models.deployment_state import RegistryState

logger = get_logger(__name__)

STATE_VERSION = "1.0"


def get_registry_path(override: Path | None = None) -> Path:
    """Return the registry file path (``--config`` override or the config dir)."""
    if override is not None:
        return Path(override).expanduser()
    return get_config_dir() / REGISTRY_FILENAME


class DeploymentRegistry(ABC):
    """Synchronous key-value store of deployments keyed by name."""

    @abstractmethod
    def get(self, name: str) -> Deployment | None:
        """Return a deployment by name."""

    @abstractmethod
    def put(self, deployment: Deployment) -> None:
        """Insert or replace a deployment in one atomic write."""

    @abstractmethod
    def delete(self, name: str) -> bool:
        """Remove a deployment; return False if it was not present."""

    @abstractmethod
    def list(self) -> list[Deployment]:
        """Return all deployments ordered by name."""


class JsonDeploymentRegistry(DeploymentRegistry):
    """Registry backed by a versioned JSON state file.

    Writes go to a temporary file in the same directory and replace the
    state file with ``os.replace``, so readers see either the old or the new
    state. Read-modify-write cycles hold an exclusive ``flock`` on a sibling
    ``<name>.lock`` file so concurrent rumi processes do not drop entries.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                handle = open(self.lock_path, "a")
            except OSError as exc:
                raise DeploymentError(
                    operation="registry",
                    message=f"Failed to open registry lock {self.lock_path}: {exc}",
                ) from exc
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()

    def load_state(self) -> RegistryState:
        """Load registry state from disk."""
        if not self.path.exists():
            return RegistryState(version=STATE_VERSION)

        try:
            content = self.path.read_text(encoding="utf-8")
            if not content.strip():
                return RegistryState(version=STATE_VERSION)
        except OSError as exc:
            raise DeploymentError(
                operation="registry",
                message=f"Failed to read deployment registry at {self.path}: {exc}",
            ) from exc

        try:
            state = RegistryState.model_validate_json(content)
        except ValidationError as exc:
            raise DeploymentError(
                operation="registry",
                message=f"Invalid deployment registry format in {self.path}: {exc}",
            ) from exc

        if not state.version:
            state = state.model_copy(update={"version": STATE_VERSION})
        return state

    def save_state(self, state: RegistryState) -> None:
        """Persist registry state atomically."""
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise DeploymentError(
                operation="registry",
                message=f"Failed to write deployment registry to {self.path}: {exc}",
            ) from exc

    def get(self, name: str) -> Deployment | None:
        return self.load_state().deployments.get(name)

    def put(self, deployment: Deployment) -> None:
        with self._exclusive():
            state = self.load_state()
            state.deployments[deployment.name] = deployment
            self.save_state(state)
        logger.debug(f"Registry updated for '{deployment.name}' at {self.path}")

    def delete(self, name: str) -> bool:
        with self._exclusive():
            state = self.load_state()
            if state.deployments.pop(name, None) is None:
                return False
            self.save_state(state)
        logger.debug(f"Removed '{name}' from registry at {self.path}")
        return True

    def list(self) -> list[Deployment]:
        state = self.load_state()
        return [state.deployments[name] for name in sorted(state.deployments)]
