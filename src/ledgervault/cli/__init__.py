"""LedgerVault CLI - manual backup and restore

Command modules:
- backup.py: backup, restore, list, delete, quota, status, auto-backup
- config.py: config init, set, get, show
- common.py: shared utilities
"""
from pathlib import Path

import click

from ledgervault import __version__

# Local imports
from .common import VERBOSITY_NORMAL, VERBOSITY_QUIET, VERBOSITY_VERBOSE, configure_logging
from .backup import backup_group
from .config import config_group


@click.group()
@click.version_option(version=__version__, prog_name="ledgervault")
@click.option('--data-dir', type=click.Path(), default=None, envvar='LEDGERVAULT_BASE_PATH',
              help='Base directory holding config.yaml (default: ~/.ledgervault)')
@click.option('--token', default=None, envvar='LEDGERVAULT_ACCESS_TOKEN',
              help='Bearer token for the remote app space')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, token, verbose, quiet):
    """LedgerVault - Backup & Restore for your finance data

    \b
    Key Commands:
        backup       Back up databases and preferences now
        restore      Replace local data from a remote backup
        list         List remote backups
        status       Show last backup state
        auto-backup  Turn background backups on or off
        config       Configuration management

    \b
    Examples:
        ledgervault backup --owner-id uid123 --email me@example.com
        ledgervault list
        ledgervault restore --owner-id uid123
    """
    ctx.ensure_object(dict)

    # Validate mutually exclusive flags
    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL
    configure_logging(ctx.obj['verbosity'])

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None
    ctx.obj['token'] = token


# Register backup commands at the top level
for name, command in backup_group.commands.items():
    cli.add_command(command, name=name)

# Register config command group (config init, set, get, show)
cli.add_command(config_group, name='config')


def main():
    """Entry point for CLI."""
    cli(obj={})


__all__ = ["cli", "main"]
