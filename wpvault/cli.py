# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command-line interface.

    wpvault --run            scheduled, non-interactive backup
    wpvault                  interactive restore
    wpvault restore ...      scriptable restore
    wpvault list | status | history | prune | rollback RUN_ID | cron-line

The process exit status is the machine-readable outcome: 0 on success,
otherwise the exit code of the failure's ErrorKind.
"""

import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Coroutine, List

import aiosqlite
import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from wpvault import __version__
from wpvault.backup.manager import list_local_archives
from wpvault.backup.restore import (
    RestoreMode,
    describe_restore_impact,
    list_remote_archives,
    load_session,
    restore_archive,
    rollback,
    select_archive,
)
from wpvault.backup.retention import prune_local, prune_remote
from wpvault.config import VaultConfig
from wpvault.core import get_status, run_backup
from wpvault.env import load_config_file, resolve_config_path
from wpvault.exceptions import (
    ErrorKind,
    PruneError,
    RestoreValidationError,
    WPVaultError,
)
from wpvault.lock import PipelineLock
from wpvault.log import configure_logging
from wpvault.remote import create_remote_store
from wpvault.vault.journal import init_journal_db, list_runs

console = Console()
logger = structlog.get_logger()

CONFIRM_WORD = "YES"


def _fail(ctx: click.Context, exc: WPVaultError) -> None:
    console.print(f"[bold red]✗ {exc.kind.value}:[/bold red] {exc.message}")
    for key, value in exc.details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")
    ctx.exit(exc.exit_code)


def _load_config(ctx: click.Context, log_name: str) -> VaultConfig:
    """Load configuration once and set up logging for this command."""
    level = logging.DEBUG if ctx.obj["verbose"] else logging.INFO
    try:
        config = load_config_file(ctx.obj["config_path"])
    except WPVaultError as e:
        configure_logging(None, level)
        _fail(ctx, e)
    configure_logging(config.log_dir / log_name, level)
    return config


def _execute(ctx: click.Context, coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine, mapping failures to exit codes."""
    try:
        return asyncio.run(coro)
    except WPVaultError as e:
        _fail(ctx, e)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        ctx.exit(130)
    except Exception as e:
        logger.exception("unexpected_error", error=str(e))
        console.print(f"[bold red]✗ unexpected:[/bold red] {e}")
        ctx.exit(ErrorKind.UNEXPECTED.exit_code)


@click.group(invoke_without_command=True)
@click.option("--run", "run_now", is_flag=True, help="Run the backup pipeline non-interactively")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="secure.conf path (default: $WPVAULT_CONFIG or /etc/wpvault/secure.conf)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="wpvault")
@click.pass_context
def main(ctx: click.Context, run_now: bool, config_path: Path | None, verbose: bool):
    """
    WordPress backup and restore.

    Without a subcommand, starts the interactive restore.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    if run_now:
        ctx.invoke(run)
    elif ctx.invoked_subcommand is None:
        ctx.invoke(restore)


@main.command()
@click.pass_context
def run(ctx: click.Context):
    """Run the backup pipeline once (for cron)."""
    config = _load_config(ctx, "backup.log")
    result = _execute(ctx, run_backup(config))

    table = Table(title="Backup complete", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Archive", result.archive)
    table.add_row("SHA-256", result.sha256)
    table.add_row("Size", f"{result.size_bytes / (1024 * 1024):.2f} MB")
    table.add_row("Remote", result.remote)
    table.add_row("Duration", f"{result.duration_seconds:.1f}s")
    if result.local_prune:
        table.add_row("Pruned (local)", ", ".join(result.local_prune.deleted_archives) or "-")
    if result.remote_prune:
        table.add_row("Pruned (remote)", ", ".join(result.remote_prune.deleted_archives) or "-")
    console.print(table)

    for error in result.prune_errors:
        console.print(f"[yellow]⚠ prune: {error}[/yellow]")


def _archive_table(archives: List[str], local: set) -> Table:
    table = Table(title="Remote archives (newest first)")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Archive")
    table.add_column("Local copy", justify="center")
    for index, name in enumerate(archives, start=1):
        table.add_row(str(index), name, "✓" if name in local else "")
    return table


def _mode_table() -> Table:
    table = Table(title="Restore modes")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Mode")
    for mode in RestoreMode:
        table.add_row(str(mode.value), mode.label)
    return table


@main.command()
@click.option("--archive", "archive_name", default=None, help="Archive name (default: choose interactively)")
@click.option("--mode", type=click.IntRange(1, 4), default=None, help="1=database 2=uploads 3=files 4=full")
@click.option("--yes", "assume_yes", is_flag=True, help="Skip the confirmation prompt")
@click.option("--unlock-wp-config", is_flag=True, help="Leave wp-config.php writable by the web server (664)")
@click.pass_context
def restore(
    ctx: click.Context,
    archive_name: str | None,
    mode: int | None,
    assume_yes: bool,
    unlock_wp_config: bool,
):
    """Restore an archive from the remote store."""
    config = _load_config(ctx, "restore.log")
    store = create_remote_store(config)

    archives = _execute(ctx, list_remote_archives(config, store))
    if archive_name is None:
        if not archives:
            _fail(ctx, RestoreValidationError("No archives found on the remote store"))
        console.print(_archive_table(archives, set(list_local_archives(config.backup_dir))))
        index = IntPrompt.ask("Select archive", default=1, console=console)
        try:
            archive_name = select_archive(archives, index)
        except WPVaultError as e:
            _fail(ctx, e)
    elif archive_name not in archives:
        _fail(
            ctx,
            RestoreValidationError(
                f"Archive not found on the remote store: {archive_name}",
                details={"remote": store.describe()},
            ),
        )

    if mode is None:
        console.print(_mode_table())
        mode = IntPrompt.ask(
            "Select restore mode",
            choices=[str(m.value) for m in RestoreMode],
            default=RestoreMode.FULL.value,
            console=console,
        )
    restore_mode = RestoreMode(mode)

    impact = "\n".join(f"• {line}" for line in describe_restore_impact(config, restore_mode))
    console.print(
        Panel(
            f"[bold]{archive_name}[/bold]\n\n{impact}",
            title="This restore will overwrite current data",
            border_style="red",
        )
    )

    if not assume_yes:
        answer = Prompt.ask(f"Type {CONFIRM_WORD} to continue", console=console)
        if answer != CONFIRM_WORD:
            console.print("[yellow]Restore cancelled, nothing was changed.[/yellow]")
            return
        if restore_mode.restores_site and not unlock_wp_config:
            unlock_wp_config = Confirm.ask(
                "Allow plugins to write wp-config.php?", default=False, console=console
            )

    result = _execute(
        ctx,
        restore_archive(
            config,
            store,
            archive_name,
            restore_mode,
            wp_config_writable=unlock_wp_config,
        ),
    )

    console.print(f"[bold green]✓ Restore complete[/bold green] (run {result.run_id})")
    for snapshot in result.snapshots:
        console.print(f"  safety snapshot: {snapshot['path']}")
    if result.snapshots:
        console.print(f"  [dim]Undo with: wpvault rollback {result.run_id}[/dim]")


@main.command("list")
@click.pass_context
def list_archives(ctx: click.Context):
    """List archives on the remote store."""
    config = _load_config(ctx, "restore.log")
    archives = _execute(ctx, list_remote_archives(config, create_remote_store(config)))
    console.print(_archive_table(archives, set(list_local_archives(config.backup_dir))))


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show local backups and journal statistics."""
    config = _load_config(ctx, "backup.log")
    data = _execute(ctx, get_status(config))
    local = data["local"]

    table = Table(title="Local backups", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Directory", local["backup_dir"])
    table.add_row("Archives", f"{local['archive_count']} (keep {config.local_keep_count})")
    table.add_row("Size", f"{local['total_mb']} MB")
    table.add_row("Newest", local["newest"] or "-")
    table.add_row("Oldest", local["oldest"] or "-")
    if local["unpaired"]:
        table.add_row("[red]Missing sidecar[/red]", ", ".join(local["unpaired"]))

    journal = data["journal"]
    if journal:
        table.add_row("Runs", str(journal["total_runs"]))
        table.add_row("Last backup", journal["last_backup_at"] or "-")
        table.add_row("Last error", journal["last_error"] or "-")
        table.add_row("Safety snapshots kept", str(journal["safety_snapshots_kept"]))
    console.print(table)


@main.command()
@click.option("--limit", type=click.IntRange(1, 1000), default=20, show_default=True)
@click.option("--kind", type=click.Choice(["backup", "restore", "rollback"]), default=None)
@click.pass_context
def history(ctx: click.Context, limit: int, kind: str | None):
    """Show recent runs from the journal."""
    config = _load_config(ctx, "backup.log")

    async def _runs():
        await init_journal_db(config.journal_path)
        async with aiosqlite.connect(config.journal_path) as db:
            return await list_runs(db, limit=limit, kind=kind)

    runs = _execute(ctx, _runs())
    table = Table(title="Run history")
    for column in ("Run", "Kind", "Started", "Status", "Archive", "Error"):
        table.add_column(column)
    for record in runs:
        style = "green" if record["status"] == "succeeded" else "red"
        table.add_row(
            record["id"],
            record["kind"],
            record["started_at"],
            f"[{style}]{record['status']}[/{style}]",
            record["archive"] or "",
            record["error_kind"] or "",
        )
    console.print(table)


@main.command()
@click.pass_context
def prune(ctx: click.Context):
    """Apply the retention policy without taking a new backup."""
    config = _load_config(ctx, "backup.log")
    store = create_remote_store(config)

    async def _prune():
        with PipelineLock(config.lock_path):
            local = prune_local(config.backup_dir, config.local_keep_count)
            remote = await prune_remote(store, config.remote_path, config.remote_keep_count)
        return local, remote

    local, remote = _execute(ctx, _prune())
    for result in (local, remote):
        console.print(
            f"{result.store}: deleted {len(result.deleted_archives)}, "
            f"{result.remaining} remaining (keep {result.keep_count})"
        )
    errors = local.errors + remote.errors
    if errors:
        _fail(ctx, PruneError("Some archives could not be deleted", details={"errors": errors}))


@main.command("rollback")
@click.argument("run_id")
@click.option("--yes", "assume_yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def rollback_command(ctx: click.Context, run_id: str, assume_yes: bool):
    """Put back the safety snapshots taken by restore RUN_ID."""
    config = _load_config(ctx, "restore.log")
    session = _execute(ctx, load_session(config.journal_path, run_id))

    if not session.snapshots:
        console.print("[yellow]No safety snapshots left to roll back for this run.[/yellow]")
        return

    table = Table(title=f"Safety snapshots of {run_id} (replayed newest first)")
    table.add_column("Kind")
    table.add_column("Target")
    table.add_column("Snapshot")
    for snapshot in session.snapshots:
        table.add_row(snapshot.kind, snapshot.target, str(snapshot.path))
    console.print(table)

    if not assume_yes:
        answer = Prompt.ask(f"Type {CONFIRM_WORD} to roll back", console=console)
        if answer != CONFIRM_WORD:
            console.print("[yellow]Rollback cancelled.[/yellow]")
            return

    result = _execute(ctx, rollback(config, session))
    console.print(f"[bold green]✓ Rolled back {len(result.restored)} snapshot(s)[/bold green]")
    for path in result.moved_aside:
        console.print(f"  restored tree moved aside: {path}")


def cron_line(minute: int, hour: int, day_of_week: str, command: str) -> str:
    return f"{minute} {hour} * * {day_of_week} {command}"


@main.command("cron-line")
@click.option("--hour", type=click.IntRange(0, 23), default=4, show_default=True)
@click.option("--minute", type=click.IntRange(0, 59), default=0, show_default=True)
@click.option("--day-of-week", default="*", show_default=True, help="0-6 (0=Sunday) or * for daily")
@click.pass_context
def cron_line_command(ctx: click.Context, hour: int, minute: int, day_of_week: str):
    """Print the crontab entry for the scheduled backup."""
    if day_of_week != "*" and day_of_week not in {str(d) for d in range(7)}:
        raise click.BadParameter("must be 0-6 or *", param_hint="--day-of-week")

    executable = shutil.which("wpvault") or f"{sys.executable} -m wpvault"
    config_path = resolve_config_path(ctx.obj["config_path"])
    command = f"{executable} --config {config_path} --run"
    click.echo(cron_line(minute, hour, day_of_week, command))


if __name__ == "__main__":
    main()
