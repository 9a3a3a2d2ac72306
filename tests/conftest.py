"""Pytest configuration and shared fixtures for rumi tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from fakes import FakeSession
from rumi.deploy.backup import BackupManager
from rumi.deploy.layout import RemoteLayout
from rumi.deploy.orchestrator import DeploymentOrchestrator
from rumi.deploy.registry import JsonDeploymentRegistry
from rumi.models.deployment import Deployment
from rumi.models.settings import (
    BackupSettings,
    ExecutionSettings,
    HostConfig,
    Settings,
)


@pytest.fixture
def remote_root(tmp_path: Path) -> Path:
    """Directory standing in for the remote host's filesystem root."""
    root = tmp_path / "remote"
    root.mkdir()
    return root


@pytest.fixture
def fake_session(remote_root: Path) -> FakeSession:
    return FakeSession(remote_root)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with one host, fast health checks and a temporary catalog."""
    return Settings(
        hosts={"web": HostConfig(host="203.0.113.10", user="deploy")},
        default_host="web",
        execution=ExecutionSettings(health_check_interval=0, health_check_attempts=3),
        backups=BackupSettings(root=tmp_path / "backups"),
    )


@pytest.fixture
def layout(settings: Settings) -> RemoteLayout:
    return RemoteLayout(settings.paths)


@pytest.fixture
def backup_manager(settings: Settings, layout: RemoteLayout) -> BackupManager:
    return BackupManager(settings.backups.root, layout)


@pytest.fixture
def registry(tmp_path: Path) -> JsonDeploymentRegistry:
    return JsonDeploymentRegistry(tmp_path / "config" / "deployments.json")


@pytest.fixture
def orchestrator(
    registry: JsonDeploymentRegistry,
    backup_manager: BackupManager,
    fake_session: FakeSession,
    settings: Settings,
) -> DeploymentOrchestrator:
    """Orchestrator wired to the fake session; health checks never sleep."""
    return DeploymentOrchestrator(
        registry=registry,
        backups=backup_manager,
        session_factory=lambda deployment: fake_session,
        settings=settings,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def site_v1(tmp_path: Path) -> Path:
    """Three-file static site."""
    site = tmp_path / "site-v1"
    (site / "css").mkdir(parents=True)
    (site / "index.html").write_text("<h1>blog v1</h1>")
    (site / "about.html").write_text("<p>about</p>")
    (site / "css" / "main.css").write_text("body { color: black; }")
    return site


@pytest.fixture
def site_v2(tmp_path: Path) -> Path:
    """Two-file static site."""
    site = tmp_path / "site-v2"
    site.mkdir()
    (site / "index.html").write_text("<h1>blog v2</h1>")
    (site / "contact.html").write_text("<p>contact</p>")
    return site


@pytest.fixture
def blog(site_v1: Path) -> Deployment:
    return Deployment(
        name="blog",
        domain="blog.example.com",
        artifact=site_v1,
        profile={"kind": "website"},
    )


@pytest.fixture
def server_binary(tmp_path: Path) -> Path:
    binary = tmp_path / "build" / "api-server"
    binary.parent.mkdir(parents=True)
    binary.write_bytes(b"\x7fELF v1")
    return binary


@pytest.fixture
def api(server_binary: Path) -> Deployment:
    return Deployment(
        name="api",
        domain="api.example.com",
        artifact=server_binary,
        profile={"kind": "server", "port": 8080, "health_check_path": "/healthz"},
    )


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Path]:
    """Point rumi's config directory at a temporary path and clear overrides.

    Yields:
        The temporary config directory
    """
    config_dir = tmp_path / "rumi-config"
    monkeypatch.setenv("RUMI_CONFIG_DIR", str(config_dir))
    for name in (
        "RUMI_SETTINGS",
        "RUMI_COMMAND_TIMEOUT",
        "RUMI_LOCK_WAIT_SECONDS",
        "RUMI_BACKUP_ROOT",
        "RUMI_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    yield config_dir
