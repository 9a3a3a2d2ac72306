"""CLI commands controlling the systemd unit of a deployment."""

from __future__ import annotations

import click

from rumi.cli.commands.deploy import handle_deployment_errors, pass_cli_context
from rumi.cli.context import CliContext

_DONE = {"start": "Service Started", "stop": "Service Stopped", "restart": "Service Restarted"}


@click.group(name="service", invoke_without_command=True)
@click.pass_context
def service(ctx: click.Context) -> None:
    """Control the service of a server or Ethereum node deployment.

    Subcommands:

        start    Start the service
        stop     Stop the service
        restart  Restart the service
        status   Show systemctl status
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _control(cli: CliContext, name: str, action: str) -> None:
    with handle_deployment_errors():
        cli.require(name)
        report = cli.orchestrator.service(name, action)
        if report.dry_run:
            click.secho(f"[DRY RUN] Would {action} '{name}'", fg="yellow")
            return
        if action == "status":
            click.echo(report.output.rstrip("\n"))
            return
        if cli.quiet:
            click.echo(action)
            return
        click.secho(_DONE[action], fg="green", bold=True)
        click.echo(f"  Deployment: {name}")


@service.command()
@click.argument("name")
@pass_cli_context
def start(cli: CliContext, name: str) -> None:
    """Start the service of NAME."""
    _control(cli, name, "start")


@service.command()
@click.argument("name")
@pass_cli_context
def stop(cli: CliContext, name: str) -> None:
    """Stop the service of NAME."""
    _control(cli, name, "stop")


@service.command()
@click.argument("name")
@pass_cli_context
def restart(cli: CliContext, name: str) -> None:
    """Restart the service of NAME."""
    _control(cli, name, "restart")


@service.command()
@click.argument("name")
@pass_cli_context
def status(cli: CliContext, name: str) -> None:
    """Show the systemd status of NAME's service."""
    _control(cli, name, "status")
