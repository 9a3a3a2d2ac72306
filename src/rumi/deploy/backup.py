"""Backup manager: versioned snapshots of a deployment's remote artifacts.

Catalog layout on the local machine::

    <root>/<deployment>/<backup_id>/backup.json
    <root>/<deployment>/<backup_id>/snapshot/...

Every backup is self-contained; restoring one never reads another.
"""

from __future__ import annotations

import json
import os
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from rumi.deploy.artifacts import EMPTY_DIGEST, summarize_tree
from rumi.deploy.layout import RemoteLayout
from rumi.lib.errors import BackupError, NoPriorStateError, SessionError
from rumi.lib.logging_config import get_logger
from rumi.models.backup import Backup, RetentionClass, RetentionPolicy, new_backup_id
from rumi.models.deployment import Deployment
from rumi.remote.base import BaseSession

logger = get_logger(__name__)

METADATA_FILENAME = "backup.json"
SNAPSHOT_DIRNAME = "snapshot"
PARTIAL_SUFFIX = ".partial"
CATALOG_MODE = 0o700  # snapshots can hold credentials such as password.sec


class BackupManager:
    """Creates, lists, restores and prunes deployment backups.

    Args:
        root: Local catalog root
        layout: Remote layout used to locate a deployment's artifact directory
    """

    def __init__(self, root: Path, layout: RemoteLayout) -> None:
        self.root = Path(root).expanduser()
        self.layout = layout

    def _deployment_dir(self, name: str) -> Path:
        return self.root / name

    def _backup_dir(self, name: str, backup_id: str) -> Path:
        return self._deployment_dir(name) / backup_id

    def _prepare_catalog(self, name: str) -> None:
        for directory in (self.root, self._deployment_dir(name)):
            directory.mkdir(parents=True, exist_ok=True)
            os.chmod(directory, CATALOG_MODE)

    def snapshot_path(self, backup: Backup) -> Path:
        """Local directory holding the captured files of a backup."""
        return self._backup_dir(backup.deployment, backup.id) / SNAPSHOT_DIRNAME

    def _write_metadata(self, directory: Path, backup: Backup) -> None:
        payload = json.dumps(backup.model_dump(mode="json"), indent=2, sort_keys=True)
        (directory / METADATA_FILENAME).write_text(payload, encoding="utf-8")

    def _next_timestamp(self, name: str) -> datetime:
        # strictly increasing per deployment so newest-first ordering is total
        now = datetime.now(timezone.utc)
        existing = self.list_backups(name)
        if existing and existing[0].created_at >= now:
            return existing[0].created_at + timedelta(microseconds=1)
        return now

    def _commit_entry(self, staging: Path, backup: Backup) -> Backup:
        self._write_metadata(staging, backup)
        staging.rename(self._backup_dir(backup.deployment, backup.id))
        return backup

    def create_backup(
        self,
        deployment: Deployment,
        session: BaseSession,
        retention: RetentionClass = RetentionClass.AUTOMATIC,
    ) -> Backup:
        """Download the deployment's remote artifact directory into the catalog.

        The entry becomes visible only once the download completed; a failed
        transfer leaves nothing behind.

        Args:
            deployment: Deployment whose live state is captured
            session: Open session to the deployment's host
            retention: Retention class of the new backup

        Returns:
            The recorded backup, attributed to the active revision

        Raises:
            NoPriorStateError: If the remote artifact directory does not exist
            BackupError: If the snapshot could not be downloaded or recorded
        """
        remote_path = self.layout.artifact_dir(deployment)
        try:
            present = session.exists(remote_path)
        except (SessionError, OSError) as exc:
            raise BackupError(deployment.name, f"cannot inspect {remote_path}: {exc}") from exc
        if not present:
            raise NoPriorStateError(deployment.name, remote_path)

        backup_id = new_backup_id()
        staging = self._backup_dir(deployment.name, backup_id + PARTIAL_SUFFIX)
        snapshot = staging / SNAPSHOT_DIRNAME
        try:
            self._prepare_catalog(deployment.name)
            snapshot.mkdir(parents=True)
            session.download_tree(remote_path, snapshot)
            summary = summarize_tree(snapshot)
            backup = Backup(
                id=backup_id,
                deployment=deployment.name,
                revision_id=deployment.current_revision,
                created_at=self._next_timestamp(deployment.name),
                size_bytes=summary.size_bytes,
                file_count=summary.file_count,
                digest=summary.digest,
                remote_path=remote_path,
                retention=retention,
            )
            self._commit_entry(staging, backup)
        except (SessionError, OSError) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise BackupError(
                deployment.name, f"snapshot of {remote_path} failed: {exc}"
            ) from exc

        logger.info(
            f"Created backup {backup.id} of '{deployment.name}' "
            f"({backup.file_count} files, {backup.size_bytes} bytes)"
        )
        return backup

    def create_empty_backup(self, deployment: Deployment) -> Backup:
        """Record that the artifact directory did not exist.

        Restoring an empty backup removes the artifact directory.
        """
        backup_id = new_backup_id()
        staging = self._backup_dir(deployment.name, backup_id + PARTIAL_SUFFIX)
        backup = Backup(
            id=backup_id,
            deployment=deployment.name,
            revision_id=deployment.current_revision,
            created_at=self._next_timestamp(deployment.name),
            digest=EMPTY_DIGEST,
            remote_path=self.layout.artifact_dir(deployment),
            empty=True,
        )
        try:
            self._prepare_catalog(deployment.name)
            (staging / SNAPSHOT_DIRNAME).mkdir(parents=True)
            self._commit_entry(staging, backup)
        except OSError as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise BackupError(deployment.name, f"cannot record empty backup: {exc}") from exc
        logger.info(f"Recorded empty backup {backup.id} for '{deployment.name}'")
        return backup

    def restore_backup(self, backup: Backup, session: BaseSession) -> None:
        """Replace the remote artifact directory with a backup's snapshot.

        Makes no assumption about the current remote state: the path is
        cleared first, then the snapshot is uploaded.

        Raises:
            BackupError: If the snapshot is damaged or the upload fails
        """
        snapshot = self.snapshot_path(backup)
        if not snapshot.is_dir():
            raise BackupError(backup.deployment, f"snapshot for backup {backup.id} is missing")
        digest = summarize_tree(snapshot).digest
        if digest != backup.digest:
            raise BackupError(
                backup.deployment,
                f"snapshot for backup {backup.id} is corrupt "
                f"(expected {backup.digest}, found {digest})",
            )

        logger.info(f"Restoring backup {backup.id} to {backup.remote_path}")
        try:
            session.remove(backup.remote_path)
            if not backup.empty:
                session.upload_tree(snapshot, backup.remote_path)
        except (SessionError, OSError) as exc:
            raise BackupError(
                backup.deployment, f"restore of backup {backup.id} failed: {exc}"
            ) from exc

    def _load(self, metadata: Path) -> Backup | None:
        try:
            return Backup.model_validate_json(metadata.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning(f"Skipping unreadable backup metadata {metadata}: {exc}")
            return None

    def list_backups(self, name: str) -> list[Backup]:
        """Return a deployment's backups, newest first."""
        directory = self._deployment_dir(name)
        if not directory.is_dir():
            return []
        backups = []
        for entry in directory.iterdir():
            if entry.name.endswith(PARTIAL_SUFFIX):
                continue
            metadata = entry / METADATA_FILENAME
            if metadata.is_file():
                backup = self._load(metadata)
                if backup is not None:
                    backups.append(backup)
        return sorted(backups, key=lambda b: (b.created_at, b.id), reverse=True)

    def get_backup(self, name: str, backup_id: str) -> Backup | None:
        """Return one backup by id."""
        metadata = self._backup_dir(name, backup_id) / METADATA_FILENAME
        if not metadata.is_file():
            return None
        return self._load(metadata)

    def latest_for_revision(self, name: str, revision_id: str) -> Backup | None:
        """Return the newest backup that captured a revision."""
        return next(
            (b for b in self.list_backups(name) if b.revision_id == revision_id), None
        )

    def delete_backup(self, backup: Backup) -> None:
        """Delete one backup from the catalog."""
        shutil.rmtree(self._backup_dir(backup.deployment, backup.id), ignore_errors=True)
        logger.info(f"Deleted backup {backup.id} of '{backup.deployment}'")

    def delete_all(self, name: str) -> int:
        """Delete every backup of a deployment and return how many there were."""
        count = len(self.list_backups(name))
        shutil.rmtree(self._deployment_dir(name), ignore_errors=True)
        return count

    def protected_ids(self, deployment: Deployment | None) -> set[str]:
        """Backup ids that retention cleanup must keep for a deployment."""
        if deployment is None:
            return set()
        protected = deployment.referenced_backup_ids()
        if deployment.current_revision is not None:
            latest = self.latest_for_revision(deployment.name, deployment.current_revision)
            if latest is not None:
                protected.add(latest.id)
        return protected

    def cleanup(
        self,
        name: str,
        policy: RetentionPolicy,
        deployment: Deployment | None = None,
        now: datetime | None = None,
    ) -> list[Backup]:
        """Delete automatic backups that fall outside every policy criterion.

        Manual backups are never pruned. Backups referenced by any revision
        in the history are kept, as is the newest backup of the active
        revision, so the active revision never loses its last backup.

        Args:
            name: Deployment name
            policy: Retention policy
            deployment: Current registry entry, used to protect referenced
                backups
            now: Reference time (defaults to the current time)

        Returns:
            The deleted backups
        """
        now = now or datetime.now(timezone.utc)
        protected = self.protected_ids(deployment)
        deleted = []
        for index, backup in enumerate(self.list_backups(name)):
            if backup.retention == RetentionClass.MANUAL or backup.id in protected:
                continue
            if policy.is_expired(backup, index, now):
                self.delete_backup(backup)
                deleted.append(backup)
        if deleted:
            logger.info(f"Retention cleanup removed {len(deleted)} backup(s) of '{name}'")
        return deleted
