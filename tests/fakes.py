"""Test doubles shared by the rumi test suite."""

from __future__ import annotations

import os
import shlex
import shutil
from pathlib import Path

from rumi.lib.errors import RemoteTimeoutError, TransferError
from rumi.remote.base import BaseSession, CommandResult


class FakeSession(BaseSession):
    """In-process session whose remote filesystem is a local directory.

    Remote absolute paths are mapped below ``root``. Commands are recorded
    and succeed unless a rule registered with ``respond`` matches;
    ``rm -rf --`` commands are applied to the mapped filesystem.

    Attributes:
        commands: Every executed command, in order
        fail_uploads: Number of upcoming ``upload_tree`` calls that fail
        fail_after_files: Files written by a failing ``upload_tree`` first
        fail_downloads: Make ``download_tree`` fail
    """

    def __init__(self, root: Path, host: str = "203.0.113.10") -> None:
        self.root = root
        self.host = host
        self.commands: list[str] = []
        self.rules: list[tuple[str, int, str, bool, str]] = []
        self.fail_uploads = 0
        self.fail_after_files = 0
        self.fail_downloads = False
        self.closed = 0

    def local(self, remote_path: str) -> Path:
        return self.root / remote_path.lstrip("/")

    def respond(
        self,
        fragment: str,
        exit_code: int = 1,
        stderr: str = "boom",
        timeout: bool = False,
        stdout: str = "",
    ) -> None:
        """Make commands containing ``fragment`` exit with ``exit_code``."""
        self.rules.append((fragment, exit_code, stderr, timeout, stdout))

    def executed(self, fragment: str) -> list[str]:
        return [c for c in self.commands if fragment in c]

    def execute(self, command: str, timeout: float | None = None) -> CommandResult:
        self.commands.append(command)
        for fragment, exit_code, stderr, raises, stdout in self.rules:
            if fragment in command:
                if raises:
                    raise RemoteTimeoutError(command, timeout or 1.0)
                return CommandResult(command, exit_code, stdout, stderr)
        if command.startswith("rm -rf -- "):
            for path in shlex.split(command)[3:]:
                target = self.local(path)
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                elif target.exists():
                    target.unlink()
        return CommandResult(command, 0)

    def upload(self, local_path: Path, remote_path: str, mode: int | None = None) -> None:
        target = self.local(remote_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_path, target)
        if mode is not None:
            os.chmod(target, mode)

    def upload_tree(self, local_dir: Path, remote_dir: str) -> int:
        failing = self.fail_uploads > 0
        if failing:
            self.fail_uploads -= 1
        count = 0
        for path in sorted(p for p in Path(local_dir).rglob("*") if p.is_file()):
            if failing and count >= self.fail_after_files:
                raise TransferError(str(local_dir), "connection reset", transferred=count)
            target = self.local(remote_dir) / path.relative_to(local_dir)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, target)
            count += 1
        self.local(remote_dir).mkdir(parents=True, exist_ok=True)
        if failing:
            raise TransferError(str(local_dir), "connection reset", transferred=count)
        return count

    def download(self, remote_path: str, local_path: Path) -> None:
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.local(remote_path), local_path)

    def download_tree(self, remote_dir: str, local_dir: Path) -> int:
        if self.fail_downloads:
            raise TransferError(remote_dir, "connection reset")
        source = self.local(remote_dir)
        count = 0
        for path in sorted(p for p in source.rglob("*") if p.is_file()):
            target = Path(local_dir) / path.relative_to(source)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, target)
            count += 1
        return count

    def write_text(self, remote_path: str, content: str, mode: int | None = None) -> None:
        target = self.local(remote_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def exists(self, remote_path: str) -> bool:
        return self.local(remote_path).exists()

    def is_dir(self, remote_path: str) -> bool:
        return self.local(remote_path).is_dir()

    def remove(self, remote_path: str) -> None:
        self.execute(f"rm -rf -- {shlex.quote(remote_path)}")

    def close(self) -> None:
        self.closed += 1


def tree(root: Path) -> dict[str, bytes]:
    """Return ``{relative posix path: content}`` for every file below root."""
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


