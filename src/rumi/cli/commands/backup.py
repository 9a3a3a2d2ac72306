"""CLI commands for the local backup catalog."""

from __future__ import annotations

import sys

import click
from pydantic import ValidationError as PydanticValidationError

from rumi.cli.commands.deploy import (
    display_report,
    handle_deployment_errors,
    pass_cli_context,
)
from rumi.cli.context import CliContext
from rumi.config.validator import flatten_pydantic_errors
from rumi.lib.errors import ConfigError
from rumi.models.backup import Backup, RetentionPolicy


def _format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = size_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _backup_line(backup: Backup) -> str:
    contents = "empty" if backup.empty else (
        f"{backup.file_count} files, {_format_size(backup.size_bytes)}"
    )
    return (
        f"{backup.id}  {backup.created_at.isoformat(timespec='seconds')}  "
        f"{backup.revision_id or '-':<5} {backup.retention.value:<9} {contents}"
    )


@click.group(name="backup", invoke_without_command=True)
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Inspect and manage deployment backups.

    Subcommands:

        list     List backups of a deployment, newest first
        create   Take a manual backup of the live state
        cleanup  Apply the retention policy
        restore  Restore a backup onto the host
        delete   Delete one backup no revision depends on
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@backup.command(name="list")
@click.argument("name")
@pass_cli_context
def list_backups(cli: CliContext, name: str) -> None:
    """List backups of NAME, newest first."""
    with handle_deployment_errors():
        backups = cli.backups.list_backups(name)
        if cli.quiet:
            for entry in backups:
                click.echo(entry.id)
            return
        if not backups:
            click.echo(f"No backups for '{name}'.")
            return

        deployment = cli.registry.get(name)
        protected = cli.backups.protected_ids(deployment)
        click.secho(f"Backups of '{name}'", bold=True)
        for entry in backups:
            marker = "*" if entry.id in protected else " "
            click.echo(f" {marker} {_backup_line(entry)}")
        click.echo("  (* = referenced by a revision, kept by cleanup)")


@backup.command()
@click.argument("name")
@pass_cli_context
def create(cli: CliContext, name: str) -> None:
    """Take a manual backup of NAME (never removed by cleanup)."""
    with handle_deployment_errors():
        cli.require(name)
        if cli.dry_run:
            click.secho(f"[DRY RUN] Would back up '{name}'", fg="yellow")
            return
        entry = cli.orchestrator.snapshot(name)
        if cli.quiet:
            click.echo(entry.id)
            return
        click.secho("Backup Created", fg="green", bold=True)
        click.echo(f"  {_backup_line(entry)}")


@backup.command()
@click.argument("name")
@click.option("--max-count", type=int, default=None, help="Keep the newest N backups")
@click.option("--max-age-days", type=int, default=None, help="Keep backups younger than D days")
@pass_cli_context
def cleanup(
    cli: CliContext, name: str, max_count: int | None, max_age_days: int | None
) -> None:
    """Delete automatic backups of NAME outside the retention policy.

    Without options the policy from settings applies. Manual backups and
    backups referenced by a revision are always kept.
    """
    with handle_deployment_errors():
        policy = None
        if max_count is not None or max_age_days is not None:
            try:
                policy = RetentionPolicy(max_count=max_count, max_age_days=max_age_days)
            except PydanticValidationError as e:
                raise ConfigError(
                    field="retention", message="\n  ".join(flatten_pydantic_errors(e))
                ) from e

        if cli.dry_run:
            click.secho(f"[DRY RUN] Would apply retention to '{name}'", fg="yellow")
            return
        deleted = cli.orchestrator.prune(name, policy)
        if cli.quiet:
            for entry in deleted:
                click.echo(entry.id)
            return
        click.echo(f"Removed {len(deleted)} backup(s) of '{name}'.")
        for entry in deleted:
            click.echo(f"  {_backup_line(entry)}")


@backup.command()
@click.argument("name")
@click.argument("backup_id")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@pass_cli_context
def restore(cli: CliContext, name: str, backup_id: str, force: bool) -> None:
    """Restore BACKUP_ID onto the host of NAME (manual recovery)."""
    with handle_deployment_errors():
        cli.require(name)
        if not force and not cli.dry_run:
            confirm = click.confirm(
                f"Replace the live files of '{name}' with backup {backup_id}?",
                default=False,
            )
            if not confirm:
                click.secho("Restore aborted.", fg="yellow")
                sys.exit(0)

        report = cli.orchestrator.restore(name, backup_id)
        display_report(report, cli.quiet)


@backup.command(name="delete")
@click.argument("name")
@click.argument("backup_id")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@pass_cli_context
def delete_backup(cli: CliContext, name: str, backup_id: str, force: bool) -> None:
    """Delete BACKUP_ID of NAME from the catalog.

    Backups a revision may roll back to are refused.
    """
    with handle_deployment_errors():
        cli.require(name)
        if not force and not cli.dry_run:
            confirm = click.confirm(f"Delete backup {backup_id} of '{name}'?", default=False)
            if not confirm:
                click.secho("Delete aborted.", fg="yellow")
                sys.exit(0)

        entry = cli.orchestrator.delete_backup(name, backup_id)
        if cli.dry_run:
            click.secho(f"[DRY RUN] Would delete backup {entry.id} of '{name}'", fg="yellow")
            return
        if cli.quiet:
            click.echo(entry.id)
            return
        click.secho("Backup Deleted", fg="green", bold=True)
        click.echo(f"  {_backup_line(entry)}")
