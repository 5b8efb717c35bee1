"""Backup and restore commands for LedgerVault CLI."""
import json
from typing import Optional

import click

from ledgervault.errors import LedgerVaultError

# Local CLI imports
from .common import (
    VERBOSITY_NORMAL,
    build_vault,
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    run_async,
)


def _format_size(size: Optional[int]) -> str:
    if size is None:
        return "?"
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _state_printer(verbosity: int):
    def on_state(event) -> None:
        echo_verbose(f"  {event.previous} -> {event.state}", verbosity)
    return on_state


@click.group()
def backup_group():
    """Backup and restore commands."""
    pass


@backup_group.command('backup')
@click.option('--owner-id', required=True, help='Stable user identifier that names the archive')
@click.option('--email', 'account_email', default=None, help='Backup account email to remember')
@click.pass_context
def backup(ctx, owner_id: str, account_email: Optional[str]) -> None:
    """Back up local databases and preferences now.

    Examples:
        ledgervault backup --owner-id uid123 --email me@example.com
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    vault = build_vault(ctx)

    def on_progress(sent: int, total: int) -> None:
        echo_verbose(f"  uploaded {sent}/{total} bytes", verbosity)

    try:
        with vault.event_bus.listening('vault.state_changed', _state_printer(verbosity)):
            record = run_async(vault, vault.perform_backup(
                owner_id, account_email=account_email, progress=on_progress,
            ))
    except LedgerVaultError as e:
        fail(f"Backup failed: {e}", verbosity)
        return

    echo_normal(click.style("✓ Backup complete", fg="green", bold=True), verbosity)
    echo_normal(f"  File: {click.style(record.name or owner_id, fg='cyan')}", verbosity)
    echo_normal(f"  ID: {click.style(record.id, fg='cyan')}", verbosity)


@backup_group.command('restore')
@click.option('--file-id', default=None, help='Remote file id (default: latest backup)')
@click.option('--owner-id', default=None, help='Owner whose latest backup to restore')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.option('--clear-pending', is_flag=True,
              help='Clear the flag left by an unfinished restore so auto-backup resumes')
@click.pass_context
def restore(ctx, file_id: Optional[str], owner_id: Optional[str], yes: bool, clear_pending: bool) -> None:
    """Replace local state with a remote backup.

    Restart the app afterwards; open database handles may hold stale pages.

    Examples:
        ledgervault restore --owner-id uid123
        ledgervault restore --file-id 1AbC --yes
        ledgervault restore --clear-pending
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    vault = build_vault(ctx)

    if clear_pending:
        try:
            run_async(vault, vault.clear_restore_pending())
        except (LedgerVaultError, ValueError) as e:
            fail(f"Failed to clear restore flag: {e}", verbosity)
            return
        echo_normal(click.style("✓ Restore flag cleared, auto-backup can run again", fg="green"), verbosity)
        return

    target = file_id
    try:
        if not target:
            latest = run_async(vault, vault.find_latest_backup(owner_id))
            if latest is None:
                fail("No backup available.", verbosity)
                return
            target = latest.id
            echo_normal(f"Latest backup: {latest.name} ({latest.id})", verbosity)

        if not yes and not click.confirm("This replaces all local data. Continue?", default=False):
            raise click.Abort()

        with vault.event_bus.listening('vault.state_changed', _state_printer(verbosity)):
            run_async(vault, vault.restore_from_backup(target))
    except LedgerVaultError as e:
        failure = vault.event_bus.latest('restore.failed')
        if failure is not None and failure.live_files_touched:
            echo_quiet(click.style(
                "Local data was partially replaced; run restore again before using the app", fg="yellow",
            ), verbosity)
        elif failure is not None:
            echo_normal("Local data was not changed.", verbosity)
        fail(f"Restore failed: {e}", verbosity)
        return

    echo_normal(click.style("✓ Restore complete", fg="green", bold=True), verbosity)
    echo_normal("  Restart the app to load the restored data.", verbosity)


@backup_group.command('list')
@click.option('--owner-id', default=None, help='Only show this owner\'s archive')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def list_backups(ctx, owner_id: Optional[str], json_output: bool) -> None:
    """List backups in the remote app space."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    vault = build_vault(ctx)
    try:
        files = run_async(vault, vault.list_backups(owner_id))
    except LedgerVaultError as e:
        fail(f"Failed to list backups: {e}", verbosity)
        return

    if json_output:
        click.echo(json.dumps([f.to_dict() for f in files], indent=2))
        return
    if not files:
        echo_normal(click.style("No backups found", fg="yellow"), verbosity)
        return
    for f in files:
        modified = f.modified_time.strftime('%Y-%m-%d %H:%M:%S') if f.modified_time else "?"
        echo_quiet(f"{click.style(f.id, fg='cyan')}  {f.name}  {_format_size(f.size)}  {modified}", verbosity)


@backup_group.command('delete')
@click.argument('file_id')
@click.pass_context
def delete(ctx, file_id: str) -> None:
    """Delete a remote backup."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    vault = build_vault(ctx)
    try:
        run_async(vault, vault.delete_backup(file_id))
    except LedgerVaultError as e:
        fail(f"Failed to delete backup: {e}", verbosity)
        return
    echo_normal(click.style(f"✓ Deleted {file_id}", fg="green"), verbosity)


@backup_group.command('quota')
@click.pass_context
def quota(ctx) -> None:
    """Show remote storage usage."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    vault = build_vault(ctx)
    try:
        result = run_async(vault, vault.get_quota())
    except LedgerVaultError as e:
        fail(f"Failed to read quota: {e}", verbosity)
        return
    limit = _format_size(result.limit) if result.limit is not None else "unlimited"
    echo_quiet(f"Used {_format_size(result.usage)} of {limit}", verbosity)


@backup_group.command('status')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def status(ctx, json_output: bool) -> None:
    """Show the locally remembered backup state."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    vault = build_vault(ctx)
    try:
        info = run_async(vault, vault.last_backup_info())
    except (LedgerVaultError, ValueError) as e:
        fail(f"Failed to read backup state: {e}", verbosity)
        return

    if json_output:
        click.echo(json.dumps(info.to_dict(), indent=2))
        return
    last = info.last_success_at.strftime('%Y-%m-%d %H:%M:%S') if info.last_success_at else "never"
    echo_normal(click.style("Backup status", fg="cyan", bold=True), verbosity)
    echo_quiet(f"  Last backup: {last}", verbosity)
    echo_quiet(f"  Remote file: {info.file_id or '-'}", verbosity)
    echo_quiet(f"  Account: {info.account_email or '-'}", verbosity)
    echo_quiet(f"  Auto-backup: {'on' if info.auto_backup_enabled else 'off'}", verbosity)
    if info.restore_pending:
        echo_quiet(click.style("  Restore pending: a previous restore did not finish", fg="yellow"), verbosity)
        echo_quiet("  Run 'ledgervault restore' again, or 'ledgervault restore --clear-pending' to resume auto-backup", verbosity)
    if info.manifest:
        echo_verbose(f"  Files: {', '.join(info.manifest.db_files) or '-'}", verbosity)


@backup_group.command('auto-backup')
@click.argument('mode', type=click.Choice(['on', 'off']))
@click.pass_context
def auto_backup(ctx, mode: str) -> None:
    """Turn automatic background backups on or off."""
    from ledgervault.backup_queue import AutoBackupQueue

    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    vault = build_vault(ctx)
    queue = AutoBackupQueue(vault)
    run_async(vault, queue.set_enabled(mode == 'on'))
    echo_normal(click.style(f"✓ Auto-backup {mode}", fg="green"), verbosity)
