"""Configuration management commands for LedgerVault CLI."""
import sys

import click
import yaml

from ledgervault.config import CONFIG_FILE, BackupConfig, get_base_path, save_config
from ledgervault.errors import ConfigError

# Local CLI imports
from .common import VERBOSITY_NORMAL, echo_normal, echo_quiet, fail, get_config


@click.group()
def config_group():
    """Configuration management commands."""
    pass


@config_group.command('init')
@click.pass_context
def config_init(ctx) -> None:
    """Write a config.yaml with default values."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path = get_base_path(ctx.obj.get('data_dir'))
    if (base_path / CONFIG_FILE).exists():
        echo_normal(click.style(f"Config already exists at {base_path / CONFIG_FILE}", fg="yellow"), verbosity)
        return
    path = save_config(BackupConfig.defaults(base_path), base_path)
    echo_normal(click.style(f"✓ Wrote {path}", fg="green"), verbosity)


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    Args:
        key: Configuration key (e.g., 'backup.debounce_seconds')
        value: Value to set (parsed as YAML)

    Examples:
        ledgervault config set backup.debounce_seconds 30
        ledgervault config set backup.fallback_dirs "[/data/legacy]"
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path = get_base_path(ctx.obj.get('data_dir'))
    config_path = base_path / CONFIG_FILE

    config_data = {}
    if config_path.exists():
        config_data = yaml.safe_load(config_path.read_text()) or {}

    # Parse nested keys (e.g., 'backup.data_dir')
    keys = key.split('.')
    current = config_data
    for k in keys[:-1]:
        if not isinstance(current.get(k), dict):
            current[k] = {}
        current = current[k]
    current[keys[-1]] = yaml.safe_load(value)

    try:
        BackupConfig.from_dict(config_data, base_path)
    except ConfigError as e:
        fail(f"Invalid value for {key}: {e}", verbosity)
        return

    base_path.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.dump(config_data, default_flow_style=False))
    echo_normal(click.style(f"✓ Set {key} = {value}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get an effective configuration value.

    Examples:
        ledgervault config get backup.databases
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    current = get_config(ctx).to_dict()
    for k in key.split('.'):
        if not isinstance(current, dict) or k not in current:
            echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
            sys.exit(1)
        current = current[k]
    echo_quiet(current, verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display the effective configuration."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = get_config(ctx)
    echo_normal(click.style("Current configuration:", fg="cyan", bold=True), verbosity)
    echo_quiet(yaml.dump(config.to_dict(), default_flow_style=False).rstrip(), verbosity)
