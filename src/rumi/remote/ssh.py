"""SSH session backed by paramiko.

Commands run over ``exec_command`` channels; files move over a single SFTP
channel opened on first use. Every uploaded file is written under a
temporary name and renamed into place so a reader never observes a half
written file. A tree transfer is not atomic as a whole.
"""

from __future__ import annotations

import os
import shlex
import socket
import stat
import time
from pathlib import Path, PurePosixPath

import paramiko

from rumi.lib.errors import (
    AuthError,
    RemoteConnectionError,
    RemoteTimeoutError,
    TransferError,
)
from rumi.lib.logging_config import get_logger, register_secret
from rumi.models.settings import HostConfig
from rumi.remote.base import BaseSession, CommandResult

logger = get_logger(__name__)

TMP_SUFFIX = ".rumi-tmp"
_POLL_INTERVAL = 0.05
_CHUNK = 32768


class SSHSession(BaseSession):
    """Remote session over SSH.

    Args:
        config: Host connection settings
        command_timeout: Default bound for ``execute`` in seconds
        transfer_timeout: Bound for a single SFTP operation in seconds
        client: Pre-built paramiko client (tests)
    """

    def __init__(
        self,
        config: HostConfig,
        command_timeout: float = 300.0,
        transfer_timeout: float = 120.0,
        client: paramiko.SSHClient | None = None,
    ) -> None:
        self.config = config
        self.host = config.host
        self.command_timeout = command_timeout
        self.transfer_timeout = transfer_timeout
        self._client = client or paramiko.SSHClient()
        self._sftp: paramiko.SFTPClient | None = None
        self._connected = False
        register_secret(config.password)
        register_secret(config.passphrase)

    @property
    def auth_method(self) -> str:
        """Authentication method used for this host."""
        if self.config.private_key_path is not None:
            return "key"
        if self.config.password is not None:
            return "password"
        return "agent"

    def connect(self) -> SSHSession:
        """Open the SSH connection.

        Raises:
            AuthError: If the server rejects the credentials (never retried)
            RemoteConnectionError: If the host cannot be reached
            RemoteTimeoutError: If the connection attempt times out
        """
        if self._connected:
            return self

        client = self._client
        client.load_system_host_keys()
        if self.config.strict_host_keys:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        key_filename = (
            str(self.config.private_key_path.expanduser())
            if self.config.private_key_path
            else None
        )
        logger.debug(
            f"Connecting to {self.config.address} ({self.auth_method} authentication)"
        )
        try:
            client.connect(
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.user,
                password=self.config.password,
                key_filename=key_filename,
                passphrase=self.config.passphrase,
                timeout=self.config.connect_timeout,
                banner_timeout=self.config.connect_timeout,
                auth_timeout=self.config.connect_timeout,
                allow_agent=key_filename is None and self.config.password is None,
                look_for_keys=False,
            )
        except paramiko.AuthenticationException as exc:
            raise AuthError(self.config.host, self.config.user, self.auth_method) from exc
        except socket.timeout as exc:
            raise RemoteTimeoutError(
                f"connect to {self.config.address}", self.config.connect_timeout
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteConnectionError(self.config.host, str(exc)) from exc

        self._connected = True
        logger.info(f"Connected to {self.config.address}")
        return self

    def _transport(self) -> paramiko.Transport:
        transport = self._client.get_transport() if self._connected else None
        if transport is None or not transport.is_active():
            raise RemoteConnectionError(self.host, "session is not connected")
        return transport

    def execute(self, command: str, timeout: float | None = None) -> CommandResult:
        """Run a command, polling the channel until it exits or times out."""
        bound = timeout if timeout is not None else self.command_timeout
        transport = self._transport()
        logger.debug(f"[{self.host}] $ {command}")
        try:
            channel = transport.open_session(timeout=self.config.connect_timeout)
            channel.exec_command(command)
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteConnectionError(self.host, str(exc)) from exc

        stdout = bytearray()
        stderr = bytearray()
        deadline = time.monotonic() + bound
        try:
            while True:
                drained = False
                if channel.recv_ready():
                    stdout.extend(channel.recv(_CHUNK))
                    drained = True
                if channel.recv_stderr_ready():
                    stderr.extend(channel.recv_stderr(_CHUNK))
                    drained = True
                if (
                    channel.exit_status_ready()
                    and not channel.recv_ready()
                    and not channel.recv_stderr_ready()
                ):
                    break
                if time.monotonic() > deadline:
                    raise RemoteTimeoutError(command, bound)
                if not drained:
                    time.sleep(_POLL_INTERVAL)
            exit_code = channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteConnectionError(self.host, str(exc)) from exc
        finally:
            channel.close()

        result = CommandResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        logger.debug(f"[{self.host}] exit {exit_code}")
        return result

    @property
    def sftp(self) -> paramiko.SFTPClient:
        """SFTP channel, opened on first use."""
        if self._sftp is None:
            self._transport()
            try:
                self._sftp = self._client.open_sftp()
            except (paramiko.SSHException, OSError) as exc:
                raise RemoteConnectionError(self.host, f"SFTP unavailable: {exc}") from exc
            self._sftp.get_channel().settimeout(self.transfer_timeout)
        return self._sftp

    def _makedirs(self, remote_dir: str) -> None:
        path = PurePosixPath(remote_dir)
        missing: list[PurePosixPath] = []
        while str(path) not in ("/", "."):
            try:
                self.sftp.stat(str(path))
                break
            except FileNotFoundError:
                missing.append(path)
                path = path.parent
        for directory in reversed(missing):
            self.sftp.mkdir(str(directory))

    def _put_file(self, local_path: Path, remote_path: str, mode: int | None) -> None:
        tmp = f"{remote_path}{TMP_SUFFIX}"
        self._makedirs(str(PurePosixPath(remote_path).parent))
        self.sftp.put(str(local_path), tmp)
        if mode is not None:
            self.sftp.chmod(tmp, mode)
        self.sftp.posix_rename(tmp, remote_path)

    def upload(self, local_path: Path, remote_path: str, mode: int | None = None) -> None:
        """Upload one file via a temporary name."""
        logger.debug(f"[{self.host}] upload {local_path} -> {remote_path}")
        try:
            self._put_file(Path(local_path), remote_path, mode)
        except socket.timeout as exc:
            raise RemoteTimeoutError(f"upload {remote_path}", self.transfer_timeout) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(str(local_path), str(exc)) from exc

    def upload_tree(self, local_dir: Path, remote_dir: str) -> int:
        """Upload a directory tree depth-first."""
        local_dir = Path(local_dir)
        if not local_dir.is_dir():
            raise TransferError(str(local_dir), "not a directory")
        count = 0
        try:
            self._makedirs(remote_dir)
            for root, dirs, files in os.walk(local_dir):
                dirs.sort()
                rel = Path(root).relative_to(local_dir)
                target_dir = PurePosixPath(remote_dir, *rel.parts)
                for directory in dirs:
                    self._makedirs(str(target_dir / directory))
                for name in files:
                    local_file = Path(root) / name
                    mode = stat.S_IMODE(local_file.stat().st_mode)
                    self._put_file(local_file, str(target_dir / name), mode)
                    count += 1
        except socket.timeout as exc:
            raise RemoteTimeoutError(
                f"upload {local_dir} -> {remote_dir} ({count} files transferred)",
                self.transfer_timeout,
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(str(local_dir), str(exc), transferred=count) from exc
        logger.debug(f"[{self.host}] uploaded {count} files to {remote_dir}")
        return count

    def download(self, remote_path: str, local_path: Path) -> None:
        """Download one file."""
        local_path = Path(local_path)
        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            self.sftp.get(remote_path, str(local_path))
        except socket.timeout as exc:
            raise RemoteTimeoutError(
                f"download {remote_path}", self.transfer_timeout
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(remote_path, str(exc)) from exc

    def download_tree(self, remote_dir: str, local_dir: Path) -> int:
        """Download a directory tree depth-first, preserving file modes."""
        count = 0

        def walk(remote: str, local: Path) -> None:
            nonlocal count
            local.mkdir(parents=True, exist_ok=True)
            for entry in sorted(self.sftp.listdir_attr(remote), key=lambda e: e.filename):
                remote_child = str(PurePosixPath(remote, entry.filename))
                local_child = local / entry.filename
                if stat.S_ISDIR(entry.st_mode or 0):
                    walk(remote_child, local_child)
                else:
                    self.sftp.get(remote_child, str(local_child))
                    if entry.st_mode is not None:
                        os.chmod(local_child, stat.S_IMODE(entry.st_mode))
                    count += 1

        try:
            walk(remote_dir, Path(local_dir))
        except socket.timeout as exc:
            raise RemoteTimeoutError(
                f"download {remote_dir} -> {local_dir} ({count} files transferred)",
                self.transfer_timeout,
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(remote_dir, str(exc), transferred=count) from exc
        return count

    def write_text(self, remote_path: str, content: str, mode: int | None = None) -> None:
        """Write text to a remote file via a temporary name."""
        tmp = f"{remote_path}{TMP_SUFFIX}"
        logger.debug(f"[{self.host}] write {remote_path} ({len(content)} bytes)")
        try:
            self._makedirs(str(PurePosixPath(remote_path).parent))
            with self.sftp.open(tmp, "w") as handle:
                handle.write(content.encode("utf-8"))
            if mode is not None:
                self.sftp.chmod(tmp, mode)
            self.sftp.posix_rename(tmp, remote_path)
        except socket.timeout as exc:
            raise RemoteTimeoutError(f"write {remote_path}", self.transfer_timeout) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(remote_path, str(exc)) from exc

    def _stat(self, remote_path: str) -> paramiko.SFTPAttributes | None:
        # only a missing path means "absent"; anything else is a session failure
        try:
            return self.sftp.stat(remote_path)
        except FileNotFoundError:
            return None
        except socket.timeout as exc:
            raise RemoteTimeoutError(f"stat {remote_path}", self.transfer_timeout) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(remote_path, str(exc)) from exc

    def exists(self, remote_path: str) -> bool:
        """Return True if the path exists."""
        return self._stat(remote_path) is not None

    def is_dir(self, remote_path: str) -> bool:
        """Return True if the path is a directory."""
        attrs = self._stat(remote_path)
        return attrs is not None and stat.S_ISDIR(attrs.st_mode or 0)

    def remove(self, remote_path: str) -> None:
        """Remove a file or directory tree."""
        if remote_path.rstrip("/") in ("", "/"):
            raise TransferError(remote_path, "refusing to remove the filesystem root")
        self.execute_checked(f"rm -rf -- {shlex.quote(remote_path)}")

    def close(self) -> None:
        """Close the SFTP channel and the SSH connection."""
        if self._sftp is not None:
            try:
                self._sftp.close()
            except (paramiko.SSHException, OSError) as exc:
                logger.debug(f"Ignoring error while closing SFTP channel: {exc}")
            self._sftp = None
        if self._connected:
            self._client.close()
            self._connected = False
            logger.debug(f"Disconnected from {self.config.address}")
