"""CLI commands for managing rumi deployments.

Implements install, update, rollback, delete and the read-only list,
history and plan commands.
"""

from __future__ import annotations

import signal
import sys
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import Any

import click
from pydantic import ValidationError as PydanticValidationError

from rumi.cli.context import CliContext
from rumi.config.validator import flatten_pydantic_errors
from rumi.deploy.orchestrator import RunReport, StepStatus
from rumi.lib.errors import (
    ConfigError,
    CriticalError,
    DeploymentError,
    LockContentionError,
    PlanValidationError,
    RumiError,
)
from rumi.lib.logging_config import get_logger
from rumi.models.deployment import Deployment, DeploymentKind
from rumi.models.plan import Plan

logger = get_logger(__name__)

pass_cli_context = click.make_pass_decorator(CliContext)


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in rumi commands.

    Exit codes:
        2: Configuration or plan validation error
        3: Deployment/execution error
        4: Critical error, manual intervention required
        5: Another run holds the deployment lock
    """
    try:
        yield
    except (ConfigError, PlanValidationError) as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except CriticalError as e:
        logger.error(f"Critical error: {e.message}")
        click.secho("CRITICAL: manual intervention required", fg="red", bold=True, err=True)
        click.echo(str(e), err=True)
        sys.exit(4)
    except LockContentionError as e:
        logger.error(f"Lock contention: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(5)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except RumiError as e:
        logger.error(f"Run failed: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


@contextmanager
def cancel_on_interrupt() -> Generator[threading.Event, None, None]:
    """Turn the first Ctrl-C into a cancellation at the next step boundary.

    A second Ctrl-C interrupts immediately.
    """
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum: int, frame: FrameType | None) -> None:
        if cancel.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        cancel.set()
        click.secho(
            "Cancelling after the current step (press Ctrl-C again to abort)...",
            fg="yellow",
            err=True,
        )

    signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _display_plan(plan: Plan) -> None:
    click.secho(f"[DRY RUN] {plan.purpose} plan for '{plan.deployment}':", fg="yellow")
    for line in plan.describe():
        click.echo(f"  {line}")
    click.secho("[DRY RUN] No remote changes were made", fg="yellow")


def display_report(report: RunReport, quiet: bool) -> None:
    if report.dry_run and report.plan is not None:
        _display_plan(report.plan)
        return
    if quiet:
        click.echo(report.revision or "")
        return

    ran = sum(1 for s in report.steps if s.status == StepStatus.SUCCEEDED)
    skipped = sum(1 for s in report.steps if s.status == StepStatus.SKIPPED)
    click.echo()
    click.secho(f"{report.operation.capitalize()} Successful!", fg="green", bold=True)
    click.echo(f"  Deployment: {report.deployment}")
    if report.revision:
        click.echo(f"  Revision:   {report.revision}")
    if report.backup:
        click.echo(f"  Backup:     {report.backup.id}")
    click.echo(f"  Steps:      {ran} run, {skipped} already done")
    for warning in report.warnings:
        click.secho(f"  Warning: {warning}", fg="yellow")
    click.echo()


def _parse_env_pairs(pairs: tuple[str, ...]) -> dict[str, str]:
    environment: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(field="env", message=f"Expected KEY=VALUE, got '{pair}'")
        environment[key] = value
    return environment


def _build_deployment(
    name: str,
    domain: str,
    artifact: Path,
    host: str | None,
    profile: dict[str, Any],
) -> Deployment:
    try:
        return Deployment(
            name=name,
            domain=domain,
            artifact=artifact.resolve(),
            host=host,
            profile=profile,
        )
    except PydanticValidationError as e:
        raise ConfigError(
            field="deployment", message="\n  ".join(flatten_pydantic_errors(e))
        ) from e


@click.command()
@click.argument("name")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in DeploymentKind]),
    required=True,
    help="Deployment kind",
)
@click.option("--domain", required=True, help="Public domain name served by nginx")
@click.option(
    "--artifact",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Site directory, server binary or genesis file",
)
@click.option("--host", default=None, help="Host entry from settings (default host if omitted)")
@click.option("--port", type=int, default=None, help="[server] Port the binary listens on")
@click.option("--health-check-path", default=None, help="[server] HTTP path probed after restart")
@click.option("--arg", "args", multiple=True, help="[server] Argument for the binary (repeatable)")
@click.option("--env", "env_pairs", multiple=True, help="[server] KEY=VALUE for the unit (repeatable)")
@click.option("--network-id", type=int, default=None, help="[ethereum_node] Network id")
@click.option("--http-address", default=None, help="[ethereum_node] HTTP RPC bind address")
@click.option("--ws-address", default=None, help="[ethereum_node] WebSocket bind address")
@click.option("--external-ip", default=None, help="[ethereum_node] IP advertised to peers")
@click.option("--wallet-address", default=None, help="[ethereum_node] Account to unlock")
@click.option(
    "--password-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="[ethereum_node] File holding the account password",
)
@click.option("--create-account", is_flag=True, help="[ethereum_node] Create an account")
@click.option("--mine", is_flag=True, help="[ethereum_node] Enable mining")
@click.option("--no-tls", is_flag=True, help="Serve plain HTTP without a certificate")
@click.option("--no-www", is_flag=True, help="Do not serve www.<domain>")
@pass_cli_context
def install(
    cli: CliContext,
    name: str,
    kind: str,
    domain: str,
    artifact: Path,
    host: str | None,
    port: int | None,
    health_check_path: str | None,
    args: tuple[str, ...],
    env_pairs: tuple[str, ...],
    network_id: int | None,
    http_address: str | None,
    ws_address: str | None,
    external_ip: str | None,
    wallet_address: str | None,
    password_file: Path | None,
    create_account: bool,
    mine: bool,
    no_tls: bool,
    no_www: bool,
) -> None:
    """Provision a new deployment and make its first revision live.

    Example:

        rumi install blog --kind website --domain blog.example.com --artifact ./public
    """
    with handle_deployment_errors():
        profile: dict[str, Any] = {"kind": kind}
        if kind == DeploymentKind.WEBSITE.value:
            profile.update(tls=not no_tls, www_alias=not no_www)
        elif kind == DeploymentKind.SERVER.value:
            profile.update(
                port=port,
                args=list(args),
                environment=_parse_env_pairs(env_pairs),
                tls=not no_tls,
                www_alias=not no_www,
            )
            if health_check_path:
                profile["health_check_path"] = health_check_path
        else:
            profile.update(
                network_id=network_id,
                external_ip=external_ip,
                wallet_address=wallet_address,
                password_file=password_file.resolve() if password_file else None,
                create_account=create_account,
                mine=mine,
            )
            if http_address:
                profile["http_address"] = http_address
            if ws_address:
                profile["ws_address"] = ws_address

        deployment = _build_deployment(name, domain, artifact, host, profile)
        with cancel_on_interrupt() as cancel:
            report = cli.orchestrator.install(deployment, cancel=cancel)
        display_report(report, cli.quiet)


@click.command()
@click.argument("name")
@click.option(
    "--artifact",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="New site directory, server binary or genesis file",
)
@pass_cli_context
def update(cli: CliContext, name: str, artifact: Path) -> None:
    """Deploy a new artifact as a new revision (backed up first)."""
    with handle_deployment_errors():
        cli.require(name)
        with cancel_on_interrupt() as cancel:
            report = cli.orchestrator.update(name, artifact.resolve(), cancel=cancel)
        display_report(report, cli.quiet)


@click.command()
@click.argument("name")
@click.argument("revision")
@pass_cli_context
def rollback(cli: CliContext, name: str, revision: str) -> None:
    """Make an earlier REVISION of NAME active again."""
    with handle_deployment_errors():
        cli.require(name)
        report = cli.orchestrator.rollback(name, revision)
        display_report(report, cli.quiet)


@click.command()
@click.argument("name")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@pass_cli_context
def delete(cli: CliContext, name: str, force: bool) -> None:
    """Tear down a deployment and forget it, including its backups."""
    with handle_deployment_errors():
        deployment = cli.require(name)

        if not force and not cli.dry_run:
            confirm = click.confirm(
                f"Delete deployment '{name}' ({deployment.domain}) and all its backups?",
                default=False,
            )
            if not confirm:
                click.secho("Delete aborted.", fg="yellow")
                sys.exit(0)

        report = cli.orchestrator.delete(name)
        if report.dry_run:
            display_report(report, cli.quiet)
            return
        if cli.quiet:
            click.echo("deleted")
            return

        click.echo()
        click.secho("Deployment Deleted", fg="green", bold=True)
        click.echo(f"  Deployment: {name}")
        for warning in report.warnings:
            click.secho(f"  Warning: {warning}", fg="yellow")
        click.echo()


@click.command(name="list")
@pass_cli_context
def list_deployments(cli: CliContext) -> None:
    """List registered deployments."""
    with handle_deployment_errors():
        deployments = cli.registry.list()
        if not deployments:
            if not cli.quiet:
                click.echo("No deployments.")
            return
        if cli.quiet:
            for deployment in deployments:
                click.echo(deployment.name)
            return

        click.secho(
            f"{'NAME':<20} {'KIND':<14} {'REVISION':<9} {'HOST':<12} DOMAIN", bold=True
        )
        for d in deployments:
            click.echo(
                f"{d.name:<20} {d.kind.value:<14} {d.current_revision or '-':<9} "
                f"{d.host or '(default)':<12} {d.domain}"
            )


@click.command()
@click.argument("name")
@pass_cli_context
def history(cli: CliContext, name: str) -> None:
    """Show the revision history of a deployment."""
    with handle_deployment_errors():
        deployment = cli.require(name)

        click.echo()
        click.secho(f"Revisions of '{deployment.name}'", bold=True)
        for revision in deployment.revisions:
            marker = "*" if revision.id == deployment.current_revision else " "
            digest = revision.artifact_digest.split(":")[-1][:12]
            click.echo(
                f" {marker} {revision.id:<5} {revision.status.value:<12} "
                f"{revision.created_at.isoformat(timespec='seconds')}  "
                f"{digest}  backup={revision.backup_id or '-'}"
            )
        click.echo()


@click.command()
@click.argument("name")
@pass_cli_context
def plan(cli: CliContext, name: str) -> None:
    """Show the provisioning plan for a registered deployment."""
    with handle_deployment_errors():
        deployment = cli.require(name)
        provision_plan = cli.orchestrator.plan(deployment)

        click.secho(f"Plan for '{deployment.name}' ({len(provision_plan)} steps):", bold=True)
        for line in provision_plan.describe():
            click.echo(f"  {line}")
