"""Pydantic models for deployments and their revision history.

A deployment is one named target (website, server binary or Ethereum node)
on one host. Its kind-specific parameters live in a profile, modelled as a
discriminated union on ``kind`` so the planner can dispatch exhaustively.
"""

import ipaddress
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from rumi.config.defaults import GETH_HTTP_PORT, GETH_P2P_PORT, GETH_WS_PORT


class DeploymentKind(str, Enum):
    """Supported deployment kinds."""

    WEBSITE = "website"
    SERVER = "server"
    ETHEREUM_NODE = "ethereum_node"


class RevisionStatus(str, Enum):
    """Lifecycle status of a revision."""

    ACTIVE = "active"
    SUPERSEDED = "superseded"
    ROLLED_BACK = "rolled_back"


# Regex patterns for validation
NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,62}$")
DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)
WALLET_PATTERN = re.compile(r"^(0x)?[0-9a-fA-F]{40}$")
REVISION_PATTERN = re.compile(r"^r(\d+)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebsiteProfile(BaseModel):
    """Static website served directly by nginx.

    Attributes:
        kind: Discriminator, always ``website``
        tls: Request a Let's Encrypt certificate and redirect HTTP to HTTPS
        www_alias: Also serve (and certify) ``www.<domain>``
        index: Index document name
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["website"] = "website"
    tls: bool = Field(default=True, description="Serve over HTTPS")
    www_alias: bool = Field(default=True, description="Also serve www.<domain>")
    index: str = Field(default="index.html", description="Index document")


class ServerProfile(BaseModel):
    """Compiled server binary run under systemd behind an nginx proxy.

    Attributes:
        kind: Discriminator, always ``server``
        port: Local port the binary listens on
        health_check_path: HTTP path probed after a restart
        args: Extra command-line arguments for the binary
        environment: Environment variables for the service unit
        tls: Request a certificate for the proxy
        www_alias: Also serve ``www.<domain>``
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["server"] = "server"
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        ..., description="Port the server binary listens on"
    )
    health_check_path: str = Field(
        default="/", description="HTTP path probed after a restart"
    )
    args: list[str] = Field(default_factory=list, description="Binary arguments")
    environment: dict[str, str] = Field(
        default_factory=dict, description="Service environment variables"
    )
    tls: bool = Field(default=True, description="Serve the proxy over HTTPS")
    www_alias: bool = Field(default=True, description="Also serve www.<domain>")

    @field_validator("health_check_path")
    @classmethod
    def validate_health_check_path(cls, v: str) -> str:
        """Validate health check path starts with '/'."""
        if not v.startswith("/"):
            raise ValueError("health_check_path must start with '/'")
        return v


class EthereumNodeProfile(BaseModel):
    """geth node initialised from a user-supplied genesis file.

    Attributes:
        kind: Discriminator, always ``ethereum_node``
        network_id: Network id passed to ``geth --networkid``
        http_address: Bind address for the HTTP RPC server
        ws_address: Bind address for the WebSocket server
        external_ip: Public address advertised for P2P (``--nat extip``)
        wallet_address: Account to unlock and use as etherbase
        password_file: Local file holding the account password
        create_account: Create a new account in the keystore on install
        mine: Run the node as a miner
        http_port: HTTP RPC port (proxied as ``/rpc``)
        ws_port: WebSocket port (proxied as ``/ws``)
        p2p_port: P2P listening port, opened in the firewall
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["ethereum_node"] = "ethereum_node"
    network_id: Annotated[int, Field(ge=1)] = Field(..., description="Network id")
    http_address: str = Field(default="127.0.0.1", description="HTTP RPC bind address")
    ws_address: str = Field(default="127.0.0.1", description="WebSocket bind address")
    external_ip: str = Field(..., description="Public IP advertised to peers")
    wallet_address: str | None = Field(
        default=None, description="Account to unlock (etherbase)"
    )
    password_file: Path | None = Field(
        default=None, description="Local file holding the account password"
    )
    create_account: bool = Field(
        default=False, description="Create a keystore account on install"
    )
    mine: bool = Field(default=False, description="Enable mining")
    http_port: Annotated[int, Field(ge=1, le=65535)] = GETH_HTTP_PORT
    ws_port: Annotated[int, Field(ge=1, le=65535)] = GETH_WS_PORT
    p2p_port: Annotated[int, Field(ge=1, le=65535)] = GETH_P2P_PORT

    @field_validator("http_address", "ws_address", "external_ip")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        """Validate bind and advertised addresses are IP literals."""
        try:
            ipaddress.ip_address(v)
        except ValueError as exc:
            raise ValueError(f"not a valid IP address: {v}") from exc
        return v

    @field_validator("wallet_address")
    @classmethod
    def validate_wallet(cls, v: str | None) -> str | None:
        """Validate wallet address is 40 hex characters, normalised with 0x."""
        if v is None:
            return v
        if not WALLET_PATTERN.match(v):
            raise ValueError(f"invalid wallet address: {v}")
        return v if v.startswith("0x") else f"0x{v}"

    @model_validator(mode="after")
    def validate_account_options(self) -> "EthereumNodeProfile":
        """Unlocking, mining and account creation need a password file."""
        if (self.wallet_address or self.create_account) and not self.password_file:
            raise ValueError(
                "password_file is required when wallet_address or create_account is set"
            )
        if self.mine and not self.wallet_address:
            raise ValueError("wallet_address is required when mine is enabled")
        ports = {self.http_port, self.ws_port, self.p2p_port}
        if len(ports) != 3:
            raise ValueError("http_port, ws_port and p2p_port must be distinct")
        return self


DeploymentProfile = Annotated[
    WebsiteProfile | ServerProfile | EthereumNodeProfile,
    Field(discriminator="kind"),
]


class Revision(BaseModel):
    """One deployed version of a deployment.

    Attributes:
        id: Monotonic identifier (``r1``, ``r2``, ...)
        created_at: Commit time
        artifact_digest: Digest of the local artifact that was deployed
        artifact: Local artifact path deployed by this revision
        backup_id: Backup capturing this revision's deployed state
        status: Lifecycle status
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., description="Revision identifier")
    created_at: datetime = Field(default_factory=_utcnow)
    artifact_digest: str = Field(..., description="Digest of the deployed artifact")
    artifact: Path | None = Field(
        default=None, description="Local artifact path deployed by this revision"
    )
    backup_id: str | None = Field(
        default=None, description="Backup capturing this revision's state"
    )
    status: RevisionStatus = Field(default=RevisionStatus.ACTIVE)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate revision id format."""
        if not REVISION_PATTERN.match(v):
            raise ValueError(f"invalid revision id: {v} (expected r<N>)")
        return v

    @property
    def number(self) -> int:
        """Numeric part of the revision id."""
        match = REVISION_PATTERN.match(self.id)
        assert match is not None
        return int(match.group(1))


class Deployment(BaseModel):
    """A named deployment and its revision history.

    Attributes:
        name: Unique deployment name
        domain: Public domain name served by nginx
        artifact: Local artifact (site directory, server binary or genesis file)
        host: Host entry name from settings
        profile: Kind-specific parameters
        current_revision: Active revision id, None before the first install
        revisions: Revision history, oldest first
        created_at: First successful install
        updated_at: Last commit
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Unique deployment name")
    domain: str = Field(..., description="Public domain name")
    artifact: Path = Field(..., description="Local artifact path")
    host: str | None = Field(default=None, description="Host entry name")
    profile: DeploymentProfile = Field(..., description="Kind-specific parameters")
    current_revision: str | None = Field(default=None)
    revisions: list[Revision] = Field(default_factory=list)
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate deployment name (used in paths and unit names)."""
        if not NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid deployment name: {v}. Must be lowercase letters, "
                "digits, '-' or '_', starting with a letter or digit"
            )
        return v

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        """Validate and normalise the domain name."""
        v = v.strip().lower().rstrip(".")
        if not DOMAIN_PATTERN.match(v):
            raise ValueError(f"Invalid domain name: {v}")
        return v

    @model_validator(mode="after")
    def validate_revisions(self) -> "Deployment":
        """Validate the revision pointer and status invariants."""
        ids = [r.id for r in self.revisions]
        if len(set(ids)) != len(ids):
            raise ValueError("revision ids must be unique")
        active = [r.id for r in self.revisions if r.status == RevisionStatus.ACTIVE]
        if not self.revisions:
            if self.current_revision is not None:
                raise ValueError("current_revision set but revision list is empty")
            return self
        if self.current_revision not in ids:
            raise ValueError(
                f"current_revision '{self.current_revision}' is not in the revision list"
            )
        if active != [self.current_revision]:
            raise ValueError(
                "exactly one revision must be active and it must be current_revision"
            )
        return self

    @property
    def kind(self) -> DeploymentKind:
        """Deployment kind derived from the profile."""
        return DeploymentKind(self.profile.kind)

    @property
    def is_deployed(self) -> bool:
        """True once a revision has been committed."""
        return self.current_revision is not None

    def get_revision(self, revision_id: str) -> Revision | None:
        """Return a revision by id."""
        return next((r for r in self.revisions if r.id == revision_id), None)

    @property
    def active_revision(self) -> Revision | None:
        """The active revision, if any."""
        if self.current_revision is None:
            return None
        return self.get_revision(self.current_revision)

    def next_revision_id(self) -> str:
        """Return the next monotonic revision id."""
        highest = max((r.number for r in self.revisions), default=0)
        return f"r{highest + 1}"

    def referenced_backup_ids(self) -> set[str]:
        """Backup ids referenced by any revision."""
        return {r.backup_id for r in self.revisions if r.backup_id}
