"""Backup catalog models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetentionClass(str, Enum):
    """How a backup is treated by retention cleanup."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


def new_backup_id() -> str:
    """Return a fresh backup identifier."""
    return uuid4().hex


class Backup(BaseModel):
    """Point-in-time capture of a deployment's remote artifact directory.

    Stored as ``backup.json`` next to the ``snapshot/`` directory it
    describes. A backup never depends on any other backup being present.

    Attributes:
        id: Unique backup identifier
        deployment: Owning deployment name
        revision_id: Revision whose deployed state was captured (None for the
            empty pre-install backup)
        created_at: Capture time (UTC)
        size_bytes: Total size of captured files
        file_count: Number of captured files
        digest: Content digest of the snapshot tree
        remote_path: Remote artifact path the snapshot was taken from
        retention: Retention class
        empty: True when the remote path did not exist at capture time
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_backup_id, description="Backup identifier")
    deployment: str = Field(..., description="Owning deployment name")
    revision_id: str | None = Field(
        default=None, description="Revision whose state was captured"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Capture timestamp",
    )
    size_bytes: int = Field(default=0, ge=0, description="Total snapshot size")
    file_count: int = Field(default=0, ge=0, description="Number of files captured")
    digest: str = Field(..., description="Snapshot content digest")
    remote_path: str = Field(..., description="Remote path that was captured")
    retention: RetentionClass = Field(
        default=RetentionClass.AUTOMATIC, description="Retention class"
    )
    empty: bool = Field(
        default=False, description="Remote path was absent at capture time"
    )


class RetentionPolicy(BaseModel):
    """Backup retention policy.

    ``max_count`` keeps the newest N backups; ``max_age_days`` keeps backups
    younger than D days. When both are set a backup is only deleted if it
    falls outside both.
    """

    model_config = ConfigDict(extra="forbid")

    max_count: int | None = Field(
        default=None, ge=0, description="Keep the newest N backups"
    )
    max_age_days: int | None = Field(
        default=None, ge=0, description="Delete backups older than D days"
    )

    @model_validator(mode="after")
    def validate_any_criterion(self) -> RetentionPolicy:
        """Require at least one criterion."""
        if self.max_count is None and self.max_age_days is None:
            raise ValueError("retention policy needs max_count or max_age_days")
        return self

    def is_expired(
        self, backup: Backup, newest_index: int, now: datetime
    ) -> bool:
        """Return True if ``backup`` falls outside every supplied criterion.

        Args:
            backup: Candidate backup
            newest_index: Position of the backup in the newest-first listing
            now: Reference time
        """
        outside: list[bool] = []
        if self.max_count is not None:
            outside.append(newest_index >= self.max_count)
        if self.max_age_days is not None:
            outside.append(now - backup.created_at > timedelta(days=self.max_age_days))
        return all(outside)
