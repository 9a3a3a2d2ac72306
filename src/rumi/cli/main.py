"""Entry point for the ``rumi`` command."""

from __future__ import annotations

from pathlib import Path

import click

from rumi import __version__
from rumi.cli.commands.backup import backup
from rumi.cli.commands.deploy import (
    delete,
    history,
    install,
    list_deployments,
    plan,
    rollback,
    update,
)
from rumi.cli.commands.service import service
from rumi.cli.context import CliContext
from rumi.lib.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="rumi")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Deployment registry file (default: ~/.config/rumi/deployments.json)",
)
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (default: $RUMI_SETTINGS or ~/.config/rumi/rumi.yaml)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show the plan without connecting to any host",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug logging",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress progress output",
)
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Extra connection attempts when a host is unreachable",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    settings_path: Path | None,
    dry_run: bool,
    verbose: bool,
    quiet: bool,
    retries: int,
) -> None:
    """Deploy websites, server binaries and Ethereum nodes to remote hosts.

    Every change is backed up first and rolled back on failure.

    Example:

        rumi install blog --kind website --domain blog.example.com --artifact ./public

        rumi update blog --artifact ./public

        rumi rollback blog r1
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    ctx.obj = CliContext(
        config_path=config_path,
        settings_path=settings_path,
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet,
        retries=retries,
    )


main.add_command(install)
main.add_command(update)
main.add_command(rollback)
main.add_command(delete)
main.add_command(list_deployments)
main.add_command(history)
main.add_command(plan)
main.add_command(backup)
main.add_command(service)


if __name__ == "__main__":
    main()
