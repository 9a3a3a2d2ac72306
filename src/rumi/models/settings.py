"""Pydantic models for rumi settings.

Settings are loaded from ``rumi.yaml`` (see ``rumi.config.loader``) and hold
everything that is not part of a deployment record: SSH host entries, remote
filesystem layout, certificate options, execution bounds and backup
retention.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rumi.config.defaults import (
    DEFAULT_BACKUP_ROOT,
    DEFAULT_EXECUTION_CONFIG,
    DEFAULT_PATHS,
    DEFAULT_RETENTION,
)
from rumi.models.backup import RetentionPolicy


class HostConfig(BaseModel):
    """SSH connection settings for one remote host.

    Attributes:
        host: Hostname or IP address
        user: Remote user name
        port: SSH port
        private_key_path: Private key file for key authentication
        password: Password for password authentication (or key passphrase
            when ``passphrase`` is unset)
        passphrase: Passphrase for an encrypted private key
        connect_timeout: Seconds to wait for TCP connect and handshake
        strict_host_keys: Reject hosts missing from known_hosts
    """

    model_config = ConfigDict(extra="forbid")

    host: str = Field(..., description="Hostname or IP address")
    user: str = Field(default="root", description="Remote user name")
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=22, description="SSH port"
    )
    private_key_path: Path | None = Field(
        default=None, description="Private key file for key authentication"
    )
    password: str | None = Field(
        default=None, repr=False, description="Password for password authentication"
    )
    passphrase: str | None = Field(
        default=None, repr=False, description="Passphrase for the private key"
    )
    connect_timeout: float = Field(
        default=15.0, gt=0, description="Seconds to wait for connect and handshake"
    )
    strict_host_keys: bool = Field(
        default=False, description="Reject hosts missing from known_hosts"
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Reject empty host names."""
        if not v.strip():
            raise ValueError("host cannot be empty")
        return v.strip()

    @property
    def address(self) -> str:
        """Return ``user@host:port`` for log messages."""
        return f"{self.user}@{self.host}:{self.port}"


class PathSettings(BaseModel):
    """Remote filesystem layout used by the planner."""

    model_config = ConfigDict(extra="forbid")

    web_root: str = Field(default=DEFAULT_PATHS["web_root"])
    app_root: str = Field(default=DEFAULT_PATHS["app_root"])
    data_root: str = Field(default=DEFAULT_PATHS["data_root"])
    nginx_sites_available: str = Field(default=DEFAULT_PATHS["nginx_sites_available"])
    nginx_sites_enabled: str = Field(default=DEFAULT_PATHS["nginx_sites_enabled"])
    certificate_root: str = Field(default=DEFAULT_PATHS["certificate_root"])
    systemd_dir: str = Field(default=DEFAULT_PATHS["systemd_dir"])

    @field_validator("*")
    @classmethod
    def validate_absolute(cls, v: str) -> str:
        """Remote paths must be absolute and are stored without a trailing slash."""
        if not v.startswith("/"):
            raise ValueError(f"remote path must be absolute: {v}")
        return v.rstrip("/") or "/"


class CertificateSettings(BaseModel):
    """Options passed to certbot."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(
        default="admin@example.com", description="Let's Encrypt registration email"
    )
    renew_window_days: int = Field(
        default=30,
        ge=0,
        description="Request a new certificate when the current one expires within this window",
    )
    staging: bool = Field(default=False, description="Use the Let's Encrypt staging CA")


class ExecutionSettings(BaseModel):
    """Timeouts and polling bounds for a run."""

    model_config = ConfigDict(extra="forbid")

    command_timeout: float = Field(
        default=float(DEFAULT_EXECUTION_CONFIG["command_timeout"]), gt=0
    )
    transfer_timeout: float = Field(
        default=float(DEFAULT_EXECUTION_CONFIG["transfer_timeout"]), gt=0
    )
    health_check_interval: float = Field(
        default=float(DEFAULT_EXECUTION_CONFIG["health_check_interval"]), ge=0
    )
    health_check_attempts: int = Field(
        default=int(DEFAULT_EXECUTION_CONFIG["health_check_attempts"]), ge=1
    )
    lock_wait_seconds: float = Field(
        default=float(DEFAULT_EXECUTION_CONFIG["lock_wait_seconds"]), ge=0
    )


class BackupSettings(BaseModel):
    """Local backup catalog location and default retention."""

    model_config = ConfigDict(extra="forbid")

    root: Path = Field(default=DEFAULT_BACKUP_ROOT)
    retention: RetentionPolicy = Field(
        default_factory=lambda: RetentionPolicy(**DEFAULT_RETENTION)
    )


class Settings(BaseModel):
    """Top-level rumi settings."""

    model_config = ConfigDict(extra="forbid")

    hosts: dict[str, HostConfig] = Field(
        default_factory=dict, description="SSH host entries keyed by name"
    )
    default_host: str | None = Field(
        default=None, description="Host used when a deployment names none"
    )
    paths: PathSettings = Field(default_factory=PathSettings)
    certificates: CertificateSettings = Field(default_factory=CertificateSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    backups: BackupSettings = Field(default_factory=BackupSettings)
    log_level: str = Field(default="info")

    @model_validator(mode="after")
    def validate_default_host(self) -> Settings:
        """Validate that default_host refers to a configured host."""
        if self.default_host is not None and self.default_host not in self.hosts:
            raise ValueError(
                f"default_host '{self.default_host}' is not defined under hosts"
            )
        return self

    def resolve_host(self, name: str | None) -> HostConfig:
        """Return the host entry for ``name`` (or the default host).

        Raises:
            KeyError: If no matching host is configured
        """
        key = name or self.default_host
        if key is None or key not in self.hosts:
            raise KeyError(key or "<default>")
        return self.hosts[key]
