"""Local artifact helpers: content digests and size accounting."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

EMPTY_DIGEST = "sha256:" + hashlib.sha256(b"").hexdigest()


@dataclass(frozen=True)
class TreeSummary:
    """Digest and size of a file or directory tree."""

    digest: str
    file_count: int
    size_bytes: int


def iter_files(root: Path) -> list[Path]:
    """Return every regular file below ``root`` in a stable order."""
    if root.is_file():
        return [root]
    return sorted(p for p in root.rglob("*") if p.is_file())


def summarize_tree(root: Path) -> TreeSummary:
    """Compute a deterministic digest over relative paths and file contents.

    A single file hashes as a tree containing only that file, keyed by its
    name. A missing path hashes like an empty tree.
    """
    if not root.exists():
        return TreeSummary(digest=EMPTY_DIGEST, file_count=0, size_bytes=0)

    hasher = hashlib.sha256()
    count = 0
    size = 0
    base = root.parent if root.is_file() else root
    for path in iter_files(root):
        rel = path.relative_to(base).as_posix()
        data = path.read_bytes()
        hasher.update(rel.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(hashlib.sha256(data).digest())
        count += 1
        size += len(data)
    if count == 0:
        return TreeSummary(digest=EMPTY_DIGEST, file_count=0, size_bytes=0)
    return TreeSummary(digest=f"sha256:{hasher.hexdigest()}", file_count=count, size_bytes=size)


def compute_artifact_digest(path: Path) -> str:
    """Return the digest recorded on a revision for a local artifact."""
    return summarize_tree(path).digest
