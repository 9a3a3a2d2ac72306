"""Tests for the provisioning planner."""

from __future__ import annotations

from pathlib import Path

import pytest

from rumi.deploy.planner import (
    build_activation_plan,
    build_plan,
    build_teardown_plan,
)
from rumi.lib.errors import PlanValidationError
from rumi.models.deployment import Deployment
from rumi.models.plan import StepKind
from rumi.models.settings import Settings

WALLET = "0x8d5c7f1c3bd4a02b6e4f0a1a0d9c1e2f3a4b5c6d"


@pytest.fixture
def genesis(tmp_path: Path) -> Path:
    path = tmp_path / "genesis.json"
    path.write_text('{"config": {"chainId": 1337}}')
    return path


@pytest.fixture
def password_file(tmp_path: Path) -> Path:
    path = tmp_path / "password.txt"
    path.write_text("correct horse")
    return path


def _node(genesis: Path, password_file: Path | None = None, **profile: object) -> Deployment:
    data: dict[str, object] = {
        "kind": "ethereum_node",
        "network_id": 1337,
        "external_ip": "198.51.100.7",
    }
    if password_file is not None:
        data["password_file"] = password_file
    data.update(profile)
    return Deployment(
        name="chain", domain="node.example.com", artifact=genesis, profile=data
    )


def _names(plan) -> list[str]:
    return [step.name for step in plan]


@pytest.mark.unit
class TestWebsitePlan:
    """Tests for website provisioning plans."""

    def test_step_order(self, blog: Deployment, settings: Settings) -> None:
        """Test the website plan runs its steps in dependency order."""
        plan = build_plan(blog, settings)
        assert plan.purpose == "provision"
        assert _names(plan) == [
            "ensure_nginx",
            "transfer_site",
            "write_site_config",
            "enable_site",
            "request_certificate",
            "open_firewall",
            "reload_proxy",
        ]

    def test_transfer_replaces_site_directory(
        self, blog: Deployment, settings: Settings
    ) -> None:
        """Test the site upload replaces the artifact directory."""
        step = next(s for s in build_plan(blog, settings) if s.name == "transfer_site")
        assert step.kind == StepKind.TRANSFER
        assert step.remote_path == "/var/www/blog.example.com"
        assert step.replace and step.mutates_artifact
        assert step.local_path == blog.artifact

    def test_site_config_rendered(self, blog: Deployment, settings: Settings) -> None:
        """Test the nginx site serves the domain and its www alias over TLS."""
        step = next(s for s in build_plan(blog, settings) if s.name == "write_site_config")
        assert step.remote_path == "/etc/nginx/sites-available/rumi-blog.conf"
        assert "server_name blog.example.com www.blog.example.com;" in step.content
        assert "root /var/www/blog.example.com;" in step.content
        assert "ssl_certificate /etc/letsencrypt/live/blog.example.com/fullchain.pem;" in step.content
        assert "return 301 https://$host$request_uri;" in step.content

    def test_certificate_guarded_by_expiry_check(
        self, blog: Deployment, settings: Settings
    ) -> None:
        """Test a valid certificate skips the certbot request."""
        step = next(
            s for s in build_plan(blog, settings) if s.name == "request_certificate"
        )
        assert "certbot certonly --standalone" in step.command
        assert "-d www.blog.example.com" in step.command
        assert "openssl x509 -checkend 2592000" in step.guard

    def test_no_tls_skips_certificate(self, site_v1: Path, settings: Settings) -> None:
        """Test tls=False drops the certificate step and the redirect."""
        plain = Deployment(
            name="plain",
            domain="plain.example.com",
            artifact=site_v1,
            profile={"kind": "website", "tls": False, "www_alias": False},
        )
        plan = build_plan(plain, settings)
        assert "request_certificate" not in _names(plan)
        site = next(s for s in plan if s.name == "write_site_config")
        assert "ssl_certificate" not in site.content
        assert "server_name plain.example.com;" in site.content

    def test_artifact_must_be_directory(
        self, server_binary: Path, settings: Settings
    ) -> None:
        """Test a website artifact that is a file is rejected before any I/O."""
        bad = Deployment(
            name="blog",
            domain="blog.example.com",
            artifact=server_binary,
            profile={"kind": "website"},
        )
        with pytest.raises(PlanValidationError) as exc_info:
            build_plan(bad, settings)
        assert exc_info.value.field == "artifact"

    def test_plans_are_deterministic(self, blog: Deployment, settings: Settings) -> None:
        """Test identical inputs produce identical plans."""
        assert build_plan(blog, settings) == build_plan(blog, settings)


@pytest.mark.unit
class TestServerPlan:
    """Tests for server binary plans."""

    def test_step_order(self, api: Deployment, settings: Settings) -> None:
        """Test the service is stopped before the binary is replaced."""
        assert _names(build_plan(api, settings)) == [
            "ensure_nginx",
            "stop_service",
            "check_port_free",
            "transfer_binary",
            "write_unit",
            "reload_units",
            "restart_service",
            "health_check",
            "write_site_config",
            "enable_site",
            "request_certificate",
            "open_firewall",
            "reload_proxy",
        ]

    def test_binary_named_after_deployment(self, api: Deployment, settings: Settings) -> None:
        """Test the binary lands at a stable path with exec permissions."""
        plan = build_plan(api, settings)
        step = next(s for s in plan if s.name == "transfer_binary")
        assert step.remote_path == "/opt/rumi/api/api"
        assert step.mode == 0o755
        unit = next(s for s in plan if s.name == "write_unit")
        assert unit.remote_path == "/etc/systemd/system/rumi-api.service"
        assert "ExecStart=/opt/rumi/api/api" in unit.content

    def test_health_check_uses_settings(self, api: Deployment, settings: Settings) -> None:
        """Test the probe uses the configured polling bounds."""
        step = next(s for s in build_plan(api, settings) if s.name == "health_check")
        assert step.kind == StepKind.HEALTH_CHECK
        assert "http://127.0.0.1:8080/healthz" in step.command
        assert step.probe is not None
        assert step.probe.attempts == 3

    def test_stop_has_undo(self, api: Deployment, settings: Settings) -> None:
        """Test stopping the service can be undone."""
        step = next(s for s in build_plan(api, settings) if s.name == "stop_service")
        assert step.guard == "! systemctl is-active --quiet rumi-api.service"
        assert step.rollback is not None
        assert step.rollback.command == "systemctl start rumi-api.service"

    def test_proxy_points_at_port(self, api: Deployment, settings: Settings) -> None:
        """Test the proxy forwards to the local port."""
        step = next(s for s in build_plan(api, settings) if s.name == "write_site_config")
        assert "proxy_pass http://127.0.0.1:8080/;" in step.content

    def test_environment_in_unit(self, server_binary: Path, settings: Settings) -> None:
        """Test environment variables and arguments reach the unit."""
        deployment = Deployment(
            name="api",
            domain="api.example.com",
            artifact=server_binary,
            profile={
                "kind": "server",
                "port": 8080,
                "args": ["--listen", "127.0.0.1:8080"],
                "environment": {"APP_ENV": "production"},
            },
        )
        unit = next(
            s for s in build_plan(deployment, settings) if s.name == "write_unit"
        )
        assert 'Environment="APP_ENV=production"' in unit.content
        assert "ExecStart=/opt/rumi/api/api --listen 127.0.0.1:8080" in unit.content

    def test_artifact_must_be_file(self, site_v1: Path, settings: Settings) -> None:
        """Test a server artifact that is a directory is rejected."""
        bad = Deployment(
            name="api",
            domain="api.example.com",
            artifact=site_v1,
            profile={"kind": "server", "port": 8080},
        )
        with pytest.raises(PlanValidationError, match="must be a file"):
            build_plan(bad, settings)


@pytest.mark.unit
class TestEthereumNodePlan:
    """Tests for geth node plans."""

    def test_minimal_node(self, genesis: Path, settings: Settings) -> None:
        """Test a node without account options."""
        plan = build_plan(_node(genesis), settings)
        assert _names(plan) == [
            "ensure_geth",
            "ensure_nginx",
            "transfer_genesis",
            "init_datadir",
            "write_node_unit",
            "reload_units",
            "configure_firewall",
            "start_node",
            "write_site_config",
            "enable_site",
            "request_certificate",
            "reload_proxy",
        ]

    def test_account_creation_is_guarded(
        self, genesis: Path, password_file: Path, settings: Settings
    ) -> None:
        """Test the run-once account step is guarded by a keystore check."""
        plan = build_plan(
            _node(genesis, password_file, create_account=True), settings
        )
        step = next(s for s in plan if s.name == "create_account")
        assert not step.idempotent
        assert "keystore/UTC--" in step.guard
        password = next(s for s in plan if s.name == "transfer_password")
        assert password.mode == 0o600
        assert password.remote_path == "/opt/rumi/chain/password.sec"

    def test_exec_start_flags(
        self, genesis: Path, password_file: Path, settings: Settings
    ) -> None:
        """Test unlock and mining flags follow the profile."""
        plan = build_plan(
            _node(genesis, password_file, wallet_address=WALLET, mine=True), settings
        )
        unit = next(s for s in plan if s.name == "write_node_unit").content
        assert "--networkid 1337" in unit
        assert "--datadir /var/lib/rumi/chain/data" in unit
        assert "--nat extip:198.51.100.7" in unit
        assert f"--unlock {WALLET}" in unit
        assert f"--mine --miner.etherbase {WALLET}" in unit

    def test_firewall_closes_rpc_opens_p2p(self, genesis: Path, settings: Settings) -> None:
        """Test RPC and WS ports stay closed while p2p is opened."""
        step = next(
            s for s in build_plan(_node(genesis), settings) if s.name == "configure_firewall"
        )
        assert "ufw --force delete allow 8545/tcp" in step.command
        assert "ufw --force delete allow 8546/tcp" in step.command
        assert "ufw allow 30303/tcp" in step.command

    def test_proxy_locations(self, genesis: Path, settings: Settings) -> None:
        """Test /ws and /rpc are proxied to the node."""
        site = next(
            s for s in build_plan(_node(genesis), settings) if s.name == "write_site_config"
        ).content
        assert "location ^~ /ws" in site
        assert "proxy_pass http://127.0.0.1:8546/;" in site
        assert "location ^~ /rpc" in site
        assert "proxy_pass http://127.0.0.1:8545/;" in site

    def test_missing_password_file(self, genesis: Path, tmp_path: Path, settings: Settings) -> None:
        """Test a password file that vanished is caught at planning time."""
        deployment = _node(genesis, tmp_path / "gone.txt", create_account=True)
        with pytest.raises(PlanValidationError) as exc_info:
            build_plan(deployment, settings)
        assert exc_info.value.field == "profile.password_file"


@pytest.mark.unit
class TestActivationAndTeardown:
    """Tests for the reactivation and teardown plans."""

    def test_website_activation(self, blog: Deployment, settings: Settings) -> None:
        """Test bringing restored site files live only reloads nginx."""
        plan = build_activation_plan(blog, settings)
        assert plan.purpose == "activate"
        assert _names(plan) == ["reload_proxy"]

    def test_server_activation(self, api: Deployment, settings: Settings) -> None:
        """Test a restored binary is restarted and health checked."""
        assert _names(build_activation_plan(api, settings)) == [
            "restart_service",
            "health_check",
        ]

    def test_website_teardown(self, blog: Deployment, settings: Settings) -> None:
        """Test website teardown removes site, certificate and files."""
        plan = build_teardown_plan(blog, settings)
        assert _names(plan) == [
            "remove_site",
            "reload_proxy",
            "remove_certificate",
            "remove_artifacts",
        ]
        remove = next(s for s in plan if s.name == "remove_artifacts")
        assert remove.command == "rm -rf -- /var/www/blog.example.com"

    def test_node_teardown_removes_chain_data(self, genesis: Path, settings: Settings) -> None:
        """Test node teardown also closes p2p and removes chain data."""
        names = _names(build_teardown_plan(_node(genesis), settings))
        assert names[0] == "disable_service"
        assert "close_firewall" in names
        assert names[-1] == "remove_chain_data"
