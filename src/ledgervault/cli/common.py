"""Shared utilities for LedgerVault CLI commands."""
import asyncio
import logging
import os
import sys
from typing import Any, Awaitable, Optional, TypeVar

import click

from ledgervault.config import BackupConfig, get_base_path, load_config
from ledgervault.errors import ConfigError
from ledgervault.vault import BackupVault

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

T = TypeVar("T")


def configure_logging(verbosity: int) -> None:
    if verbosity >= VERBOSITY_VERBOSE:
        level = logging.DEBUG
    elif verbosity <= VERBOSITY_QUIET:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def should_print(verbosity: int, message_level: int) -> bool:
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_quiet(message: Any, verbosity: int) -> None:
    """Print a critical message that should always be shown (even in quiet mode)."""
    click.echo(message, err=False)


def fail(message: str, verbosity: int) -> None:
    echo_quiet(click.style(f"Error: {message}", fg="red"), verbosity)
    sys.exit(1)


def get_config(ctx: click.Context) -> BackupConfig:
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    try:
        return load_config(get_base_path(ctx.obj.get('data_dir')))
    except ConfigError as e:
        fail(str(e), verbosity)
        raise  # unreachable


def get_token(ctx: click.Context) -> Optional[str]:
    return ctx.obj.get('token') or os.getenv("LEDGERVAULT_ACCESS_TOKEN")


def build_vault(ctx: click.Context) -> BackupVault:
    """Vault wired from config.yaml and the --token / env bearer token"""
    config = get_config(ctx)
    token = get_token(ctx)
    return BackupVault.from_config(config, lambda: token)


def run_async(vault: BackupVault, coro: Awaitable[T]) -> T:
    """Run a vault coroutine to completion and close the HTTP client"""
    async def runner() -> T:
        try:
            return await coro
        finally:
            await vault.client.close()
    return asyncio.run(runner())
