"""Provider-specific configuration files and shell commands.

nginx sites and systemd units are rendered from Jinja2 templates; every
interpolated shell argument goes through ``shlex.quote``. Nothing here talks
to a host. Output is deterministic for identical inputs.
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence

from jinja2 import Template

# nginx site for a static website
WEBSITE_SITE_TEMPLATE = """\
# Managed by rumi: {{ name }}
{% if tls %}
server {
    listen 80;
    listen [::]:80;
    server_name {{ server_names }};
    return 301 https://$host$request_uri;
}

server {
    listen 443 ssl http2;
    listen [::]:443 ssl http2;
    server_name {{ server_names }};
    ssl_certificate {{ fullchain }};
    ssl_certificate_key {{ privkey }};
{% else %}
server {
    listen 80;
    listen [::]:80;
    server_name {{ server_names }};
{% endif %}
    root {{ root }};
    index {{ index }};

    location / {
        try_files $uri $uri/ /{{ index }};
    }

    error_page 500 502 503 504 /50x.html;
    location = /50x.html {
        root /usr/share/nginx/html;
    }
}
"""

# nginx reverse proxy for server binaries and node RPC/WS endpoints
PROXY_SITE_TEMPLATE = """\
# Managed by rumi: {{ name }}
{% if tls %}
server {
    listen 80;
    listen [::]:80;
    server_name {{ server_names }};
    return 301 https://$host$request_uri;
}

server {
    listen 443 ssl http2;
    listen [::]:443 ssl http2;
    server_name {{ server_names }};
    ssl_certificate {{ fullchain }};
    ssl_certificate_key {{ privkey }};
{% else %}
server {
    listen 80;
    listen [::]:80;
    server_name {{ server_names }};
{% endif %}
{% for location in locations %}

    location ^~ {{ location.path }} {
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header Host $http_host;
        proxy_set_header X-NginX-Proxy true;
        proxy_pass http://127.0.0.1:{{ location.port }}/;
    }
{% endfor %}
}
"""

SYSTEMD_UNIT_TEMPLATE = """\
# Managed by rumi: {{ name }}
[Unit]
Description={{ description }}
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
WorkingDirectory={{ working_dir }}
ExecStart={{ exec_start }}
Restart=on-failure
RestartSec=5
{% for key, value in environment %}
Environment="{{ key }}={{ value }}"
{% endfor %}

[Install]
WantedBy=multi-user.target
"""

NGINX_PACKAGES = ("nginx", "certbot", "ufw", "curl")
GETH_BINARY = "/usr/bin/geth"


def _render(source: str, **context: object) -> str:
    template = Template(source, trim_blocks=True, lstrip_blocks=True)
    return template.render(**context)


def server_names(domain: str, www_alias: bool) -> str:
    """Return the nginx ``server_name`` value for a domain."""
    return f"{domain} www.{domain}" if www_alias else domain


def render_website_site(
    name: str,
    domain: str,
    root: str,
    *,
    tls: bool,
    www_alias: bool,
    fullchain: str,
    privkey: str,
    index: str = "index.html",
) -> str:
    """Render the nginx site serving a static website."""
    return _render(
        WEBSITE_SITE_TEMPLATE,
        name=name,
        server_names=server_names(domain, www_alias),
        root=root,
        index=index,
        tls=tls,
        fullchain=fullchain,
        privkey=privkey,
    )


def render_proxy_site(
    name: str,
    domain: str,
    locations: Sequence[tuple[str, int]],
    *,
    tls: bool,
    www_alias: bool,
    fullchain: str,
    privkey: str,
) -> str:
    """Render an nginx reverse proxy.

    Args:
        name: Deployment name (written as a header comment)
        domain: Public domain
        locations: ``(path prefix, local port)`` pairs
        tls: Listen on 443 and redirect port 80
        www_alias: Also serve www.<domain>
        fullchain: Certificate chain path
        privkey: Certificate key path
    """
    return _render(
        PROXY_SITE_TEMPLATE,
        name=name,
        server_names=server_names(domain, www_alias),
        locations=[{"path": path, "port": port} for path, port in locations],
        tls=tls,
        fullchain=fullchain,
        privkey=privkey,
    )


def render_systemd_unit(
    name: str,
    description: str,
    working_dir: str,
    exec_start: str,
    environment: dict[str, str] | None = None,
) -> str:
    """Render a systemd service unit."""
    return _render(
        SYSTEMD_UNIT_TEMPLATE,
        name=name,
        description=description,
        working_dir=working_dir,
        exec_start=exec_start,
        environment=sorted((environment or {}).items()),
    )


def join_command(argv: Sequence[str]) -> str:
    """Quote and join an argument vector into one shell command."""
    return " ".join(shlex.quote(str(arg)) for arg in argv)


def apt_install(packages: Sequence[str]) -> str:
    return (
        "apt-get update -q && DEBIAN_FRONTEND=noninteractive apt-get install -y -q "
        + join_command(packages)
    )


def commands_present(binaries: Sequence[str]) -> str:
    """Guard: exit 0 when every binary is on PATH."""
    return " && ".join(
        f"command -v {shlex.quote(binary)} >/dev/null 2>&1" for binary in binaries
    )


def install_geth() -> str:
    return (
        "apt-get update -q && DEBIAN_FRONTEND=noninteractive apt-get install -y -q "
        "software-properties-common && add-apt-repository -y ppa:ethereum/ethereum && "
        "apt-get update -q && DEBIAN_FRONTEND=noninteractive apt-get install -y -q ethereum"
    )


def enable_site(available: str, enabled: str) -> str:
    return f"ln -sfn {shlex.quote(available)} {shlex.quote(enabled)}"


def remove_paths(*paths: str) -> str:
    return "rm -rf -- " + join_command(paths)


def nginx_reload() -> str:
    return "nginx -t && systemctl reload nginx"


def nginx_reload_if_valid() -> str:
    """Reload nginx, tolerating an invalid or stopped server."""
    return "nginx -t && systemctl reload nginx || true"


def certificate_valid(fullchain: str, window_days: int) -> str:
    """Guard: exit 0 when the certificate exists and outlives the renewal window."""
    seconds = window_days * 86400
    path = shlex.quote(fullchain)
    return f"test -f {path} && openssl x509 -checkend {seconds} -noout -in {path}"


def certbot_request(
    domain: str, email: str, www_alias: bool, staging: bool = False
) -> str:
    """certbot standalone request; nginx is stopped while certbot binds port 80."""
    argv = [
        "certbot",
        "certonly",
        "--standalone",
        "--non-interactive",
        "--agree-tos",
        "--keep-until-expiring",
        "--pre-hook",
        "systemctl stop nginx",
        "--post-hook",
        "systemctl start nginx",
        "-m",
        email,
        "--cert-name",
        domain,
        "-d",
        domain,
    ]
    if www_alias:
        argv += ["-d", f"www.{domain}"]
    if staging:
        argv.append("--staging")
    return join_command(argv)


def certbot_delete(domain: str) -> str:
    return f"certbot delete --non-interactive --cert-name {shlex.quote(domain)}"


def firewall_allow(*rules: str) -> str:
    """Allow SSH plus the given ufw rules, then enable the firewall."""
    allowed = ["ufw allow OpenSSH"] + [f"ufw allow {shlex.quote(r)}" for r in rules]
    return " && ".join(allowed + ["ufw --force enable"])


def firewall_deny(*rules: str) -> str:
    """Delete ufw allow rules; missing rules are not an error."""
    return " ; ".join(
        f"ufw --force delete allow {shlex.quote(r)} >/dev/null 2>&1" for r in rules
    ) + " ; true"


def port_free(port: int) -> str:
    """Fail when something is still listening on a local TCP port."""
    return (
        f"if ss -Hltn 'sport = :{int(port)}' | grep -q .; then "
        f"echo 'port {int(port)} is still in use' >&2; exit 1; fi"
    )


def service_inactive(unit: str) -> str:
    """Guard: exit 0 when the unit is not running."""
    return f"! systemctl is-active --quiet {shlex.quote(unit)}"


def service_stop(unit: str) -> str:
    return f"systemctl stop {shlex.quote(unit)}"


def service_start(unit: str) -> str:
    return f"systemctl start {shlex.quote(unit)}"


def service_restart(unit: str) -> str:
    unit = shlex.quote(unit)
    return f"systemctl enable {unit} && systemctl restart {unit}"


def service_status(unit: str) -> str:
    return f"systemctl status --no-pager {shlex.quote(unit)}"


def service_disable(unit: str) -> str:
    """Stop and disable a unit, tolerating a unit that does not exist."""
    return f"systemctl disable --now {shlex.quote(unit)} >/dev/null 2>&1 || true"


def daemon_reload() -> str:
    return "systemctl daemon-reload"


def http_probe(port: int, path: str, timeout: int = 5) -> str:
    url = f"http://127.0.0.1:{int(port)}{path}"
    return f"curl -fsS -o /dev/null --max-time {int(timeout)} {shlex.quote(url)}"


def geth_exec_start(
    *,
    data_dir: str,
    network_id: int,
    http_address: str,
    http_port: int,
    ws_address: str,
    ws_port: int,
    p2p_port: int,
    external_ip: str,
    wallet_address: str | None = None,
    password_path: str | None = None,
    mine: bool = False,
) -> str:
    """Build the geth command line for the node unit."""
    argv = [
        GETH_BINARY,
        "--networkid", str(network_id),
        "--datadir", data_dir,
        "--nodiscover",
        "--port", str(p2p_port),
        "--syncmode", "full",
        "--nat", f"extip:{external_ip}",
        "--http",
        "--http.addr", http_address,
        "--http.port", str(http_port),
        "--http.api", "eth,net,web3",
        "--http.corsdomain", "*",
        "--http.vhosts", "*",
        "--ws",
        "--ws.addr", ws_address,
        "--ws.port", str(ws_port),
        "--ws.api", "eth,net,web3",
        "--ws.origins", "*",
    ]  # fmt: skip
    if wallet_address and password_path:
        argv += [
            "--unlock", wallet_address,
            "--password", password_path,
            "--allow-insecure-unlock",
        ]  # fmt: skip
    if mine and wallet_address:
        argv += ["--mine", "--miner.etherbase", wallet_address]
    return join_command(argv)


def geth_account_exists(data_dir: str) -> str:
    """Guard: exit 0 when the keystore already holds an account."""
    return f"ls {shlex.quote(data_dir)}/keystore/UTC--* >/dev/null 2>&1"


def geth_new_account(data_dir: str, password_path: str) -> str:
    return join_command(
        ["geth", "account", "new", "--datadir", data_dir, "--password", password_path]
    )


def geth_initialized(data_dir: str) -> str:
    """Guard: exit 0 when the data directory has chain data."""
    return f"test -d {shlex.quote(data_dir)}/geth/chaindata"


def geth_init(data_dir: str, genesis_path: str) -> str:
    return f"mkdir -p {shlex.quote(data_dir)} && " + join_command(
        ["geth", "init", "--datadir", data_dir, genesis_path]
    )


def path_absent(path: str) -> str:
    """Guard: exit 0 when the path does not exist."""
    return f"! test -e {shlex.quote(path)}"
