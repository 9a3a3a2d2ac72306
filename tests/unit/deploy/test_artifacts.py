"""Tests for artifact digests."""

import shutil
from pathlib import Path

import pytest

from rumi.deploy.artifacts import EMPTY_DIGEST, compute_artifact_digest, summarize_tree


@pytest.mark.unit
class TestSummarizeTree:
    """Tests for summarize_tree()."""

    def test_counts_files_and_bytes(self, site_v1: Path) -> None:
        """Test file count and total size cover nested files."""
        summary = summarize_tree(site_v1)
        assert summary.file_count == 3
        assert summary.size_bytes == sum(
            p.stat().st_size for p in site_v1.rglob("*") if p.is_file()
        )
        assert summary.digest.startswith("sha256:")

    def test_digest_independent_of_location(self, site_v1: Path, tmp_path: Path) -> None:
        """Test identical trees in different places hash the same."""
        copy = tmp_path / "elsewhere" / "site"
        shutil.copytree(site_v1, copy)
        assert compute_artifact_digest(copy) == compute_artifact_digest(site_v1)

    def test_digest_covers_paths(self, tmp_path: Path) -> None:
        """Test renaming a file changes the digest."""
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.mkdir()
        b.mkdir()
        (a / "index.html").write_text("same")
        (b / "home.html").write_text("same")
        assert compute_artifact_digest(a) != compute_artifact_digest(b)

    def test_missing_and_empty_trees(self, tmp_path: Path) -> None:
        """Test missing paths and empty directories share the empty digest."""
        empty = tmp_path / "empty"
        empty.mkdir()
        assert summarize_tree(tmp_path / "missing").digest == EMPTY_DIGEST
        assert summarize_tree(empty).file_count == 0
        assert compute_artifact_digest(empty) == EMPTY_DIGEST

    def test_single_file(self, server_binary: Path) -> None:
        """Test a single file is summarised as a one-file tree."""
        summary = summarize_tree(server_binary)
        assert summary.file_count == 1
        assert summary.size_bytes == len(b"\x7fELF v1")
