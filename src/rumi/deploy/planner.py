"""Provisioning planner.

Maps a deployment to the ordered steps that provision it. Builders never
touch the remote host, the clock or randomness; the only local access is a
check that artifact paths exist. Identical inputs yield identical plans.
There is one builder per deployment kind; the dispatch tables below are
checked for exhaustiveness at import time.
"""

from __future__ import annotations

from collections.abc import Callable

from rumi.deploy import snippets
from rumi.deploy.layout import RemoteLayout
from rumi.lib.errors import PlanValidationError
from rumi.models.deployment import (
    Deployment,
    DeploymentKind,
    EthereumNodeProfile,
    ServerProfile,
    WebsiteProfile,
)
from rumi.models.plan import HealthProbe, Plan, Step, StepKind
from rumi.models.settings import Settings

PlanBuilder = Callable[[Deployment, Settings, RemoteLayout], list[Step]]


def _ensure_nginx() -> Step:
    return Step(
        name="ensure_nginx",
        kind=StepKind.REMOTE_EXEC,
        description="Install nginx, certbot and ufw",
        command=snippets.apt_install(snippets.NGINX_PACKAGES),
        guard=snippets.commands_present(snippets.NGINX_PACKAGES),
    )


def _site_steps(deployment: Deployment, layout: RemoteLayout, content: str) -> list[Step]:
    return [
        Step(
            name="write_site_config",
            kind=StepKind.TRANSFER,
            description="Write nginx site configuration",
            content=content,
            remote_path=layout.site_config_path(deployment),
            mode=0o644,
        ),
        Step(
            name="enable_site",
            kind=StepKind.REMOTE_EXEC,
            description="Enable nginx site",
            command=snippets.enable_site(
                layout.site_config_path(deployment), layout.site_link_path(deployment)
            ),
        ),
    ]


def _certificate_step(
    deployment: Deployment, settings: Settings, layout: RemoteLayout, www_alias: bool
) -> Step:
    return Step(
        name="request_certificate",
        kind=StepKind.CERTIFICATE_REQUEST,
        description=f"Request TLS certificate for {deployment.domain}",
        command=snippets.certbot_request(
            deployment.domain,
            settings.certificates.email,
            www_alias,
            staging=settings.certificates.staging,
        ),
        guard=snippets.certificate_valid(
            layout.fullchain_path(deployment), settings.certificates.renew_window_days
        ),
    )


def _reload_proxy() -> Step:
    return Step(
        name="reload_proxy",
        kind=StepKind.SERVICE_RESTART,
        description="Validate and reload nginx",
        command=snippets.nginx_reload(),
        rollback=Step(
            name="reload_proxy_undo",
            kind=StepKind.SERVICE_RESTART,
            command=snippets.nginx_reload_if_valid(),
        ),
    )


def _restart_service(name: str, unit: str, description: str) -> Step:
    return Step(
        name=name,
        kind=StepKind.SERVICE_RESTART,
        description=description,
        command=snippets.service_restart(unit),
        rollback=Step(
            name=f"{name}_undo",
            kind=StepKind.SERVICE_RESTART,
            command=snippets.service_restart(unit),
        ),
    )


def _health_check(profile: ServerProfile, settings: Settings) -> Step:
    return Step(
        name="health_check",
        kind=StepKind.HEALTH_CHECK,
        description=f"Wait for 127.0.0.1:{profile.port}{profile.health_check_path}",
        command=snippets.http_probe(profile.port, profile.health_check_path),
        probe=HealthProbe(
            interval=settings.execution.health_check_interval,
            attempts=settings.execution.health_check_attempts,
        ),
    )


def _build_website(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    profile = deployment.profile
    assert isinstance(profile, WebsiteProfile)
    if not deployment.artifact.is_dir():
        raise PlanValidationError(
            "artifact", f"website artifact must be a directory: {deployment.artifact}"
        )
    site = snippets.render_website_site(
        deployment.name,
        deployment.domain,
        layout.artifact_dir(deployment),
        tls=profile.tls,
        www_alias=profile.www_alias,
        fullchain=layout.fullchain_path(deployment),
        privkey=layout.privkey_path(deployment),
        index=profile.index,
    )
    steps = [
        _ensure_nginx(),
        Step(
            name="transfer_site",
            kind=StepKind.TRANSFER,
            description="Upload site files",
            local_path=deployment.artifact,
            remote_path=layout.artifact_dir(deployment),
            replace=True,
            mutates_artifact=True,
        ),
        *_site_steps(deployment, layout, site),
    ]
    if profile.tls:
        steps.append(_certificate_step(deployment, settings, layout, profile.www_alias))
    steps.append(
        Step(
            name="open_firewall",
            kind=StepKind.FIREWALL_RULE,
            description="Allow HTTP and HTTPS",
            command=snippets.firewall_allow("Nginx Full"),
        )
    )
    steps.append(_reload_proxy())
    return steps


def _build_server(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    profile = deployment.profile
    assert isinstance(profile, ServerProfile)
    if not deployment.artifact.is_file():
        raise PlanValidationError(
            "artifact", f"server artifact must be a file: {deployment.artifact}"
        )
    unit = layout.unit_name(deployment)
    binary = layout.binary_path(deployment)
    exec_start = snippets.join_command([binary, *profile.args])
    proxy = snippets.render_proxy_site(
        deployment.name,
        deployment.domain,
        [("/", profile.port)],
        tls=profile.tls,
        www_alias=profile.www_alias,
        fullchain=layout.fullchain_path(deployment),
        privkey=layout.privkey_path(deployment),
    )
    steps = [
        _ensure_nginx(),
        Step(
            name="stop_service",
            kind=StepKind.SERVICE_RESTART,
            description=f"Stop {unit}",
            command=snippets.service_stop(unit),
            guard=snippets.service_inactive(unit),
            rollback=Step(
                name="stop_service_undo",
                kind=StepKind.SERVICE_RESTART,
                command=snippets.service_start(unit),
            ),
        ),
        Step(
            name="check_port_free",
            kind=StepKind.REMOTE_EXEC,
            description=f"Ensure port {profile.port} is free",
            command=snippets.port_free(profile.port),
        ),
        Step(
            name="transfer_binary",
            kind=StepKind.TRANSFER,
            description="Upload server binary",
            local_path=deployment.artifact,
            remote_path=binary,
            mode=0o755,
            replace=True,
            mutates_artifact=True,
        ),
        Step(
            name="write_unit",
            kind=StepKind.TRANSFER,
            description=f"Write {unit}",
            content=snippets.render_systemd_unit(
                deployment.name,
                f"rumi server {deployment.name}",
                layout.artifact_dir(deployment),
                exec_start,
                profile.environment,
            ),
            remote_path=layout.unit_path(deployment),
            mode=0o644,
        ),
        Step(
            name="reload_units",
            kind=StepKind.REMOTE_EXEC,
            description="Reload systemd units",
            command=snippets.daemon_reload(),
        ),
        _restart_service("restart_service", unit, f"Restart {unit}"),
        _health_check(profile, settings),
        *_site_steps(deployment, layout, proxy),
    ]
    if profile.tls:
        steps.append(_certificate_step(deployment, settings, layout, profile.www_alias))
    steps.append(
        Step(
            name="open_firewall",
            kind=StepKind.FIREWALL_RULE,
            description="Allow HTTP and HTTPS",
            command=snippets.firewall_allow("Nginx Full"),
        )
    )
    steps.append(_reload_proxy())
    return steps


def _build_ethereum_node(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    profile = deployment.profile
    assert isinstance(profile, EthereumNodeProfile)
    if not deployment.artifact.is_file():
        raise PlanValidationError(
            "artifact", f"genesis file not found: {deployment.artifact}"
        )
    if profile.password_file is not None and not profile.password_file.is_file():
        raise PlanValidationError(
            "profile.password_file", f"password file not found: {profile.password_file}"
        )

    unit = layout.unit_name(deployment)
    data_dir = layout.data_dir(deployment)
    password_path = layout.password_path(deployment) if profile.password_file else None
    exec_start = snippets.geth_exec_start(
        data_dir=data_dir,
        network_id=profile.network_id,
        http_address=profile.http_address,
        http_port=profile.http_port,
        ws_address=profile.ws_address,
        ws_port=profile.ws_port,
        p2p_port=profile.p2p_port,
        external_ip=profile.external_ip,
        wallet_address=profile.wallet_address,
        password_path=password_path,
        mine=profile.mine,
    )
    proxy = snippets.render_proxy_site(
        deployment.name,
        deployment.domain,
        [("/ws", profile.ws_port), ("/rpc", profile.http_port)],
        tls=True,
        www_alias=True,
        fullchain=layout.fullchain_path(deployment),
        privkey=layout.privkey_path(deployment),
    )

    steps = [
        Step(
            name="ensure_geth",
            kind=StepKind.REMOTE_EXEC,
            description="Install geth",
            command=snippets.install_geth(),
            guard=snippets.commands_present(["geth"]),
        ),
        _ensure_nginx(),
        Step(
            name="transfer_genesis",
            kind=StepKind.TRANSFER,
            description="Upload genesis file",
            local_path=deployment.artifact,
            remote_path=layout.genesis_path(deployment),
            mode=0o644,
            mutates_artifact=True,
        ),
    ]
    if profile.password_file is not None:
        steps.append(
            Step(
                name="transfer_password",
                kind=StepKind.TRANSFER,
                description="Upload account password file",
                local_path=profile.password_file,
                remote_path=password_path,
                mode=0o600,
                mutates_artifact=True,
            )
        )
    if profile.create_account:
        steps.append(
            Step(
                name="create_account",
                kind=StepKind.REMOTE_EXEC,
                description="Create keystore account",
                command=snippets.geth_new_account(data_dir, password_path or ""),
                guard=snippets.geth_account_exists(data_dir),
                idempotent=False,
            )
        )
    steps += [
        Step(
            name="init_datadir",
            kind=StepKind.REMOTE_EXEC,
            description="Initialise chain data from genesis",
            command=snippets.geth_init(data_dir, layout.genesis_path(deployment)),
            guard=snippets.geth_initialized(data_dir),
        ),
        Step(
            name="write_node_unit",
            kind=StepKind.TRANSFER,
            description=f"Write {unit} with RPC/WS bind addresses",
            content=snippets.render_systemd_unit(
                deployment.name,
                f"rumi geth node {deployment.name}",
                layout.artifact_dir(deployment),
                exec_start,
            ),
            remote_path=layout.unit_path(deployment),
            mode=0o644,
        ),
        Step(
            name="reload_units",
            kind=StepKind.REMOTE_EXEC,
            description="Reload systemd units",
            command=snippets.daemon_reload(),
        ),
        Step(
            name="configure_firewall",
            kind=StepKind.FIREWALL_RULE,
            description="Open p2p and proxy ports, close direct RPC/WS ports",
            command=snippets.firewall_deny(
                f"{profile.http_port}/tcp", f"{profile.ws_port}/tcp"
            )
            + " ; "
            + snippets.firewall_allow(f"{profile.p2p_port}/tcp", "Nginx Full"),
        ),
        _restart_service("start_node", unit, f"Start {unit}"),
        *_site_steps(deployment, layout, proxy),
        _certificate_step(deployment, settings, layout, True),
        _reload_proxy(),
    ]
    return steps


_BUILDERS: dict[DeploymentKind, PlanBuilder] = {
    DeploymentKind.WEBSITE: _build_website,
    DeploymentKind.SERVER: _build_server,
    DeploymentKind.ETHEREUM_NODE: _build_ethereum_node,
}


def _build_website_activation(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    return [_reload_proxy()]


def _build_server_activation(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    profile = deployment.profile
    assert isinstance(profile, ServerProfile)
    unit = layout.unit_name(deployment)
    return [
        _restart_service("restart_service", unit, f"Restart {unit}"),
        _health_check(profile, settings),
    ]


def _build_ethereum_activation(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    unit = layout.unit_name(deployment)
    return [_restart_service("start_node", unit, f"Restart {unit}")]


_ACTIVATION_BUILDERS: dict[DeploymentKind, PlanBuilder] = {
    DeploymentKind.WEBSITE: _build_website_activation,
    DeploymentKind.SERVER: _build_server_activation,
    DeploymentKind.ETHEREUM_NODE: _build_ethereum_activation,
}


def _teardown_site(deployment: Deployment, layout: RemoteLayout) -> list[Step]:
    return [
        Step(
            name="remove_site",
            kind=StepKind.REMOTE_EXEC,
            description="Remove nginx site",
            command=snippets.remove_paths(
                layout.site_link_path(deployment), layout.site_config_path(deployment)
            ),
        ),
        Step(
            name="reload_proxy",
            kind=StepKind.SERVICE_RESTART,
            description="Reload nginx",
            command=snippets.nginx_reload_if_valid(),
        ),
    ]


def _teardown_service(deployment: Deployment, layout: RemoteLayout) -> list[Step]:
    unit = layout.unit_name(deployment)
    return [
        Step(
            name="disable_service",
            kind=StepKind.SERVICE_RESTART,
            description=f"Stop and disable {unit}",
            command=snippets.service_disable(unit),
        ),
        Step(
            name="remove_unit",
            kind=StepKind.REMOTE_EXEC,
            description=f"Remove {unit}",
            command=snippets.remove_paths(layout.unit_path(deployment))
            + " && "
            + snippets.daemon_reload(),
        ),
    ]


def _teardown_common(deployment: Deployment, layout: RemoteLayout) -> list[Step]:
    return [
        Step(
            name="remove_certificate",
            kind=StepKind.CERTIFICATE_REQUEST,
            description=f"Delete certificate for {deployment.domain}",
            command=snippets.certbot_delete(deployment.domain),
            guard=snippets.path_absent(layout.certificate_dir(deployment)),
        ),
        Step(
            name="remove_artifacts",
            kind=StepKind.REMOTE_EXEC,
            description="Remove deployed files",
            command=snippets.remove_paths(layout.artifact_dir(deployment)),
        ),
    ]


def _build_website_teardown(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    return _teardown_site(deployment, layout) + _teardown_common(deployment, layout)


def _build_server_teardown(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    return (
        _teardown_service(deployment, layout)
        + _teardown_site(deployment, layout)
        + _teardown_common(deployment, layout)
    )


def _build_ethereum_teardown(
    deployment: Deployment, settings: Settings, layout: RemoteLayout
) -> list[Step]:
    profile = deployment.profile
    assert isinstance(profile, EthereumNodeProfile)
    return [
        *_teardown_service(deployment, layout),
        Step(
            name="close_firewall",
            kind=StepKind.FIREWALL_RULE,
            description=f"Close p2p port {profile.p2p_port}",
            command=snippets.firewall_deny(f"{profile.p2p_port}/tcp"),
        ),
        *_teardown_site(deployment, layout),
        *_teardown_common(deployment, layout),
        Step(
            name="remove_chain_data",
            kind=StepKind.REMOTE_EXEC,
            description="Remove chain data directory",
            command=snippets.remove_paths(layout.data_dir(deployment)),
        ),
    ]


_TEARDOWN_BUILDERS: dict[DeploymentKind, PlanBuilder] = {
    DeploymentKind.WEBSITE: _build_website_teardown,
    DeploymentKind.SERVER: _build_server_teardown,
    DeploymentKind.ETHEREUM_NODE: _build_ethereum_teardown,
}

for _table in (_BUILDERS, _ACTIVATION_BUILDERS, _TEARDOWN_BUILDERS):
    if set(_table) != set(DeploymentKind):
        raise RuntimeError(
            f"plan builders missing for: {set(DeploymentKind) - set(_table)}"
        )


def _dispatch(
    table: dict[DeploymentKind, PlanBuilder],
    purpose: str,
    deployment: Deployment,
    settings: Settings,
    layout: RemoteLayout | None,
) -> Plan:
    layout = layout or RemoteLayout(settings.paths)
    steps = table[deployment.kind](deployment, settings, layout)
    return Plan(deployment=deployment.name, purpose=purpose, steps=steps).validate()


def build_plan(
    deployment: Deployment, settings: Settings, layout: RemoteLayout | None = None
) -> Plan:
    """Build the provisioning plan for a deployment.

    Args:
        deployment: Deployment to provision, with ``artifact`` pointing at the
            artifact being deployed
        settings: Settings supplying paths, certificate and polling options
        layout: Remote layout (derived from settings when omitted)

    Returns:
        Validated plan

    Raises:
        PlanValidationError: If the profile or artifact cannot produce a plan
    """
    return _dispatch(_BUILDERS, "provision", deployment, settings, layout)


def build_activation_plan(
    deployment: Deployment, settings: Settings, layout: RemoteLayout | None = None
) -> Plan:
    """Build the steps that bring restored artifacts live again."""
    return _dispatch(_ACTIVATION_BUILDERS, "activate", deployment, settings, layout)


def build_teardown_plan(
    deployment: Deployment, settings: Settings, layout: RemoteLayout | None = None
) -> Plan:
    """Build the best-effort steps that remove a deployment from its host."""
    return _dispatch(_TEARDOWN_BUILDERS, "teardown", deployment, settings, layout)
