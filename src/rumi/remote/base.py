"""Base abstractions for remote sessions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

from rumi.lib.errors import CommandFailedError


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a remote command."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """True when the command exited with status 0."""
        return self.exit_code == 0


class BaseSession(ABC):
    """Single authenticated channel to one host.

    Sessions hold no deployment knowledge. They are owned by exactly one
    orchestration run and closed on every exit path, typically by using the
    session as a context manager.
    """

    host: str = "<unknown>"

    @abstractmethod
    def execute(self, command: str, timeout: float | None = None) -> CommandResult:
        """Run a shell command and capture its exit status and output.

        Raises:
            RemoteConnectionError: If the channel is unusable
            RemoteTimeoutError: If the command does not finish within ``timeout``
        """

    @abstractmethod
    def upload(self, local_path: Path, remote_path: str, mode: int | None = None) -> None:
        """Upload one file, creating remote parent directories.

        Raises:
            TransferError: If the file could not be written
        """

    @abstractmethod
    def upload_tree(self, local_dir: Path, remote_dir: str) -> int:
        """Upload a directory tree and return the number of files written.

        Each file is replaced atomically, the tree as a whole is not.

        Raises:
            TransferError: If any file failed (the tree may be partial)
        """

    @abstractmethod
    def download(self, remote_path: str, local_path: Path) -> None:
        """Download one file, creating local parent directories."""

    @abstractmethod
    def download_tree(self, remote_dir: str, local_dir: Path) -> int:
        """Download a directory tree and return the number of files read."""

    @abstractmethod
    def write_text(self, remote_path: str, content: str, mode: int | None = None) -> None:
        """Write text content to a remote file."""

    @abstractmethod
    def exists(self, remote_path: str) -> bool:
        """Return True if the remote path exists."""

    @abstractmethod
    def is_dir(self, remote_path: str) -> bool:
        """Return True if the remote path is a directory."""

    @abstractmethod
    def remove(self, remote_path: str) -> None:
        """Remove a remote file or directory tree; missing paths are ignored."""

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Safe to call more than once."""

    def execute_checked(
        self, command: str, timeout: float | None = None
    ) -> CommandResult:
        """Run a command and raise if it exits non-zero.

        Raises:
            CommandFailedError: If the exit status is not 0
        """
        result = self.execute(command, timeout=timeout)
        if not result.ok:
            raise CommandFailedError(command, result.exit_code, result.stderr)
        return result

    def __enter__(self) -> BaseSession:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
