"""Per-deployment exclusive locks."""

from __future__ import annotations

import fcntl
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from rumi.lib.errors import LockContentionError
from rumi.lib.logging_config import get_logger

logger = get_logger(__name__)

LOCK_SUFFIX = ".lock"
POLL_INTERVAL = 0.05  # seconds between attempts while waiting for a lock file


class LockTable:
    """Exclusive advisory locks keyed by deployment name.

    Runs against different names never block each other. The table is
    injected into the orchestrator. Without a ``directory`` the locks only
    exclude runs inside this process; with one, each name also takes an
    ``flock`` on ``<directory>/<name>.lock`` so separate ``rumi`` processes
    exclude each other.

    Args:
        wait_seconds: How long to wait for a held lock before failing
            (0 fails immediately)
        directory: Directory for per-name lock files
    """

    def __init__(self, wait_seconds: float = 0.0, directory: Path | None = None) -> None:
        self.wait_seconds = wait_seconds
        self.directory = Path(directory).expanduser() if directory is not None else None
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def lock_path(self, name: str) -> Path | None:
        """Lock file used for ``name``, or None for an in-process table."""
        if self.directory is None:
            return None
        return self.directory / f"{name}{LOCK_SUFFIX}"

    def is_held(self, name: str) -> bool:
        """Return True if a run in this process holds the lock for ``name``."""
        return self._lock_for(name).locked()

    def _acquire_file(self, name: str, deadline: float) -> IO[str]:
        path = self.lock_path(name)
        assert path is not None
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(path, "a")
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return handle
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    raise LockContentionError(name) from None
                time.sleep(POLL_INTERVAL)

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        """Hold the lock for ``name`` for the duration of the block.

        Raises:
            LockContentionError: If the lock is not acquired in time
        """
        deadline = time.monotonic() + self.wait_seconds
        lock = self._lock_for(name)
        if self.wait_seconds > 0:
            acquired = lock.acquire(timeout=self.wait_seconds)
        else:
            acquired = lock.acquire(blocking=False)
        if not acquired:
            raise LockContentionError(name)

        handle: IO[str] | None = None
        try:
            if self.directory is not None:
                handle = self._acquire_file(name, deadline)
            logger.debug(f"Acquired lock for '{name}'")
            yield
        finally:
            if handle is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()
            lock.release()
            logger.debug(f"Released lock for '{name}'")
