"""Tests for rendered configuration files and shell commands."""

import shlex

import pytest

from rumi.deploy import snippets


@pytest.mark.unit
class TestTemplates:
    """Tests for nginx and systemd templates."""

    def test_website_without_tls(self) -> None:
        """Test a plain HTTP site has a single server block."""
        site = snippets.render_website_site(
            "docs",
            "docs.example.com",
            "/var/www/docs.example.com",
            tls=False,
            www_alias=False,
            fullchain="/etc/letsencrypt/live/docs.example.com/fullchain.pem",
            privkey="/etc/letsencrypt/live/docs.example.com/privkey.pem",
        )
        assert site.startswith("# Managed by rumi: docs\n")
        assert site.count("server {") == 1
        assert "listen 443" not in site
        assert "try_files $uri $uri/ /index.html;" in site

    def test_proxy_with_tls(self) -> None:
        """Test a TLS proxy redirects port 80 and lists every location."""
        site = snippets.render_proxy_site(
            "chain",
            "node.example.com",
            [("/ws", 8546), ("/rpc", 8545)],
            tls=True,
            www_alias=True,
            fullchain="/certs/fullchain.pem",
            privkey="/certs/privkey.pem",
        )
        assert site.count("server {") == 2
        assert "listen 443 ssl http2;" in site
        assert "ssl_certificate_key /certs/privkey.pem;" in site
        assert site.index("location ^~ /ws") < site.index("location ^~ /rpc")

    def test_systemd_unit_environment_sorted(self) -> None:
        """Test environment lines are rendered in a stable order."""
        unit = snippets.render_systemd_unit(
            "api",
            "rumi server api",
            "/opt/rumi/api",
            "/opt/rumi/api/api",
            {"ZETA": "1", "ALPHA": "2"},
        )
        assert "ExecStart=/opt/rumi/api/api\n" in unit
        assert unit.index('Environment="ALPHA=2"') < unit.index('Environment="ZETA=1"')
        assert "WantedBy=multi-user.target" in unit

    def test_rendering_is_deterministic(self) -> None:
        """Test identical inputs render identical text."""
        args = ("api", "rumi server api", "/opt/rumi/api", "/opt/rumi/api/api")
        assert snippets.render_systemd_unit(*args) == snippets.render_systemd_unit(*args)


@pytest.mark.unit
class TestCommands:
    """Tests for shell command builders."""

    def test_arguments_are_quoted(self) -> None:
        """Test hostile arguments stay single shell words."""
        command = snippets.join_command(["echo", "a b; rm -rf /"])
        assert shlex.split(command) == ["echo", "a b; rm -rf /"]

    def test_remove_paths(self) -> None:
        """Test paths with spaces are quoted."""
        assert (
            snippets.remove_paths("/var/www/a", "/tmp/with space")
            == "rm -rf -- /var/www/a '/tmp/with space'"
        )

    def test_http_probe(self) -> None:
        """Test the probe targets the loopback port with a timeout."""
        assert snippets.http_probe(8080, "/healthz") == (
            "curl -fsS -o /dev/null --max-time 5 http://127.0.0.1:8080/healthz"
        )

    def test_service_status(self) -> None:
        """Test status output is not paged."""
        assert snippets.service_status("rumi-api.service") == (
            "systemctl status --no-pager rumi-api.service"
        )

    def test_certificate_window(self) -> None:
        """Test the renewal window is converted to seconds."""
        guard = snippets.certificate_valid("/certs/fullchain.pem", 1)
        assert guard == (
            "test -f /certs/fullchain.pem && "
            "openssl x509 -checkend 86400 -noout -in /certs/fullchain.pem"
        )

    def test_certbot_staging(self) -> None:
        """Test staging requests use the staging CA and skip www when disabled."""
        command = snippets.certbot_request(
            "blog.example.com", "ops@example.com", www_alias=False, staging=True
        )
        argv = shlex.split(command)
        assert argv[-1] == "--staging"
        assert "www.blog.example.com" not in argv
        assert argv[argv.index("--pre-hook") + 1] == "systemctl stop nginx"

    def test_firewall_allow_keeps_ssh(self) -> None:
        """Test SSH is always allowed before the firewall is enabled."""
        command = snippets.firewall_allow("Nginx Full")
        assert command.startswith("ufw allow OpenSSH && ")
        assert "ufw allow 'Nginx Full'" in command
        assert command.endswith("ufw --force enable")

    def test_geth_without_account(self) -> None:
        """Test unlock and mining flags are omitted without a wallet."""
        command = snippets.geth_exec_start(
            data_dir="/var/lib/rumi/chain/data",
            network_id=1337,
            http_address="127.0.0.1",
            http_port=8545,
            ws_address="127.0.0.1",
            ws_port=8546,
            p2p_port=30303,
            external_ip="198.51.100.7",
            mine=True,
        )
        argv = shlex.split(command)
        assert argv[0] == snippets.GETH_BINARY
        assert "--unlock" not in argv
        assert "--mine" not in argv
        assert argv[argv.index("--http.addr") + 1] == "127.0.0.1"

    def test_port_free(self) -> None:
        """Test the port check greps the listening sockets."""
        assert "sport = :8080" in snippets.port_free(8080)
