"""Tests for the backup manager."""

from __future__ import annotations

import stat
from datetime import timedelta
from pathlib import Path

import pytest

from fakes import FakeSession, tree
from rumi.deploy.artifacts import EMPTY_DIGEST
from rumi.deploy.backup import PARTIAL_SUFFIX, BackupManager
from rumi.lib.errors import BackupError, NoPriorStateError
from rumi.models.backup import RetentionClass, RetentionPolicy
from rumi.models.deployment import Deployment, Revision

SITE_DIR = "/var/www/blog.example.com"


@pytest.fixture
def deployed(fake_session: FakeSession, site_v1: Path) -> Path:
    """Upload site_v1 to the fake host and return its local mirror."""
    fake_session.upload_tree(site_v1, SITE_DIR)
    return fake_session.local(SITE_DIR)


def _with_revision(deployment: Deployment, backup_id: str | None = None) -> Deployment:
    revision = Revision(id="r1", artifact_digest="sha256:x", backup_id=backup_id)
    return deployment.model_copy(
        update={"current_revision": "r1", "revisions": [revision]}
    )


@pytest.mark.unit
class TestCreateBackup:
    """Tests for create_backup() and create_empty_backup()."""

    def test_captures_remote_tree(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
        site_v1: Path,
    ) -> None:
        """Test the snapshot mirrors the remote artifact directory."""
        backup = backup_manager.create_backup(_with_revision(blog), fake_session)

        assert backup.deployment == "blog"
        assert backup.revision_id == "r1"
        assert backup.file_count == 3
        assert backup.remote_path == SITE_DIR
        assert backup.retention == RetentionClass.AUTOMATIC
        assert tree(backup_manager.snapshot_path(backup)) == tree(site_v1)
        assert backup_manager.get_backup("blog", backup.id) == backup

    def test_missing_remote_path(
        self, backup_manager: BackupManager, fake_session: FakeSession, blog: Deployment
    ) -> None:
        """Test a deployment with nothing on the host has no prior state."""
        with pytest.raises(NoPriorStateError):
            backup_manager.create_backup(blog, fake_session)
        assert backup_manager.list_backups("blog") == []

    def test_failed_download_leaves_nothing(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
    ) -> None:
        """Test an interrupted download does not produce a catalog entry."""
        fake_session.fail_downloads = True

        with pytest.raises(BackupError, match="snapshot"):
            backup_manager.create_backup(blog, fake_session)

        assert backup_manager.list_backups("blog") == []
        leftovers = list((backup_manager.root / "blog").glob(f"*{PARTIAL_SUFFIX}"))
        assert leftovers == []

    def test_partial_entries_ignored(
        self, backup_manager: BackupManager, blog: Deployment
    ) -> None:
        """Test staging directories from a crashed run are never listed."""
        stale = backup_manager.root / "blog" / f"abc{PARTIAL_SUFFIX}"
        stale.mkdir(parents=True)
        (stale / "backup.json").write_text("{}")
        backup_manager.create_empty_backup(blog)
        assert len(backup_manager.list_backups("blog")) == 1

    def test_empty_backup(self, backup_manager: BackupManager, blog: Deployment) -> None:
        """Test the pre-install backup records an absent directory."""
        backup = backup_manager.create_empty_backup(blog)
        assert backup.empty
        assert backup.digest == EMPTY_DIGEST
        assert backup.revision_id is None
        assert backup.file_count == 0

    def test_listing_is_newest_first(
        self, backup_manager: BackupManager, blog: Deployment
    ) -> None:
        """Test listing order follows strictly increasing timestamps."""
        first = backup_manager.create_empty_backup(blog)
        second = backup_manager.create_empty_backup(blog)
        third = backup_manager.create_empty_backup(blog)
        listed = backup_manager.list_backups("blog")
        assert [b.id for b in listed] == [third.id, second.id, first.id]
        assert listed[0].created_at > listed[1].created_at > listed[2].created_at

    def test_inspect_failure_is_backup_error(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test an unreadable artifact directory fails as a BackupError."""

        def denied(remote_path: str) -> bool:
            raise PermissionError(f"permission denied: {remote_path}")

        monkeypatch.setattr(fake_session, "exists", denied)

        with pytest.raises(BackupError, match="cannot inspect"):
            backup_manager.create_backup(blog, fake_session)

    def test_catalog_private_to_owner(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
    ) -> None:
        """Test catalog directories are readable by their owner only."""
        backup_manager.create_backup(blog, fake_session)
        backup_manager.create_empty_backup(blog.model_copy(update={"name": "wiki"}))

        root = backup_manager.root
        for directory in (root, root / "blog", root / "wiki"):
            assert stat.S_IMODE(directory.stat().st_mode) == 0o700


@pytest.mark.unit
class TestRestoreBackup:
    """Tests for restore_backup()."""

    def test_restore_replaces_remote_tree(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
        site_v1: Path,
    ) -> None:
        """Test restore removes files added after the backup."""
        backup = backup_manager.create_backup(blog, fake_session)
        (deployed / "index.html").write_text("defaced")
        (deployed / "extra.html").write_text("new")

        backup_manager.restore_backup(backup, fake_session)

        assert tree(deployed) == tree(site_v1)

    def test_restore_empty_backup_removes_directory(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
    ) -> None:
        """Test restoring the pre-install backup removes the artifact directory."""
        backup = backup_manager.create_empty_backup(blog)
        backup_manager.restore_backup(backup, fake_session)
        assert not deployed.exists()

    def test_corrupt_snapshot_rejected(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
    ) -> None:
        """Test a tampered snapshot is detected before touching the host."""
        backup = backup_manager.create_backup(blog, fake_session)
        (backup_manager.snapshot_path(backup) / "index.html").write_text("tampered")
        commands_before = list(fake_session.commands)

        with pytest.raises(BackupError, match="corrupt"):
            backup_manager.restore_backup(backup, fake_session)

        assert fake_session.commands == commands_before
        assert (deployed / "about.html").exists()

    def test_upload_failure(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
    ) -> None:
        """Test a failed upload is reported as a backup error."""
        backup = backup_manager.create_backup(blog, fake_session)
        fake_session.fail_uploads = 1

        with pytest.raises(BackupError, match="restore"):
            backup_manager.restore_backup(backup, fake_session)


@pytest.mark.unit
class TestCleanup:
    """Tests for retention cleanup."""

    def test_keeps_newest_count(
        self, backup_manager: BackupManager, blog: Deployment
    ) -> None:
        """Test max_count keeps the newest N automatic backups."""
        backups = [backup_manager.create_empty_backup(blog) for _ in range(4)]

        deleted = backup_manager.cleanup("blog", RetentionPolicy(max_count=2))

        assert {b.id for b in deleted} == {backups[0].id, backups[1].id}
        assert [b.id for b in backup_manager.list_backups("blog")] == [
            backups[3].id,
            backups[2].id,
        ]

    def test_manual_backups_never_pruned(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
    ) -> None:
        """Test manual backups survive any policy."""
        manual = backup_manager.create_backup(
            blog, fake_session, retention=RetentionClass.MANUAL
        )
        backup_manager.create_empty_backup(blog)

        backup_manager.cleanup("blog", RetentionPolicy(max_count=0))

        assert [b.id for b in backup_manager.list_backups("blog")] == [manual.id]

    def test_referenced_backups_protected(
        self, backup_manager: BackupManager, blog: Deployment
    ) -> None:
        """Test backups referenced by revisions are kept."""
        referenced = backup_manager.create_empty_backup(blog)
        backup_manager.create_empty_backup(blog)
        deployment = _with_revision(blog, backup_id=referenced.id)

        backup_manager.cleanup("blog", RetentionPolicy(max_count=0), deployment)

        assert [b.id for b in backup_manager.list_backups("blog")] == [referenced.id]

    def test_latest_backup_of_active_revision_protected(
        self,
        backup_manager: BackupManager,
        fake_session: FakeSession,
        blog: Deployment,
        deployed: Path,
    ) -> None:
        """Test the active revision keeps its newest backup."""
        deployment = _with_revision(blog)
        older = backup_manager.create_backup(deployment, fake_session)
        newer = backup_manager.create_backup(deployment, fake_session)

        deleted = backup_manager.cleanup("blog", RetentionPolicy(max_count=0), deployment)

        assert [b.id for b in deleted] == [older.id]
        assert backup_manager.latest_for_revision("blog", "r1") == newer

    def test_age_and_count_combined(
        self, backup_manager: BackupManager, blog: Deployment
    ) -> None:
        """Test a backup is only pruned when it violates both criteria."""
        old = backup_manager.create_empty_backup(blog)
        recent = backup_manager.create_empty_backup(blog)
        later = old.created_at + timedelta(days=10)

        deleted = backup_manager.cleanup(
            "blog", RetentionPolicy(max_count=1, max_age_days=7), now=later
        )

        assert [b.id for b in deleted] == [old.id]
        assert backup_manager.list_backups("blog") == [recent]

    def test_delete_all(self, backup_manager: BackupManager, blog: Deployment) -> None:
        """Test every backup of a deployment can be removed at once."""
        backup_manager.create_empty_backup(blog)
        backup_manager.create_empty_backup(blog)
        assert backup_manager.delete_all("blog") == 2
        assert backup_manager.list_backups("blog") == []
