"""
Configuration for LedgerVault

Loaded from <base_path>/config.yaml (section 'backup'), with
LEDGERVAULT_* environment variables taking precedence.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .databases import DEFAULT_DATABASES
from .errors import ConfigError
from .remote_store import DRIVE_BASE_URL, DRIVE_UPLOAD_URL

DEFAULT_BASE_PATH = Path.home() / ".ledgervault"
CONFIG_FILE = "config.yaml"
DEFAULT_DEBOUNCE_SECONDS = 90.0
DEFAULT_HTTP_TIMEOUT = 60.0


def get_base_path(override: Optional[Path] = None) -> Path:
    """
    Priority: explicit override > LEDGERVAULT_BASE_PATH env var > default path.
    """
    if override:
        return Path(override)
    env_path = os.getenv("LEDGERVAULT_BASE_PATH")
    if env_path:
        return Path(env_path)
    return DEFAULT_BASE_PATH


@dataclass
class BackupConfig:
    """Settings for the backup pipeline"""
    data_dir: Path
    scratch_dir: Path
    kv_store_path: Path
    databases: List[str] = field(default_factory=lambda: list(DEFAULT_DATABASES))
    fallback_dirs: List[Path] = field(default_factory=list)
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    http_timeout: Optional[float] = DEFAULT_HTTP_TIMEOUT
    api_base_url: str = DRIVE_BASE_URL
    upload_base_url: str = DRIVE_UPLOAD_URL

    @classmethod
    def defaults(cls, base_path: Path) -> "BackupConfig":
        base_path = Path(base_path)
        return cls(
            data_dir=base_path,
            scratch_dir=base_path / "cache",
            kv_store_path=base_path / "asyncStorage.json",
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_path: Path) -> "BackupConfig":
        """
        Build config from the 'backup' section of config.yaml.

        Relative paths are resolved against base_path.
        """
        config = cls.defaults(base_path)
        backup = data.get("backup") or {}
        if not isinstance(backup, dict):
            raise ConfigError("'backup' section in config.yaml must be a mapping")

        def as_path(value: Any) -> Path:
            path = Path(os.path.expanduser(str(value)))
            return path if path.is_absolute() else Path(base_path) / path

        if "data_dir" in backup:
            config.data_dir = as_path(backup["data_dir"])
        if "scratch_dir" in backup:
            config.scratch_dir = as_path(backup["scratch_dir"])
        if "kv_store" in backup:
            config.kv_store_path = as_path(backup["kv_store"])
        if "databases" in backup:
            databases = backup["databases"]
            if not isinstance(databases, list) or not all(isinstance(d, str) for d in databases):
                raise ConfigError("backup.databases must be a list of file names")
            config.databases = list(databases)
        if "fallback_dirs" in backup:
            config.fallback_dirs = [as_path(d) for d in backup["fallback_dirs"] or []]
        if "debounce_seconds" in backup:
            config.debounce_seconds = _positive_float(backup["debounce_seconds"], "backup.debounce_seconds")
        if "http_timeout" in backup:
            value = backup["http_timeout"]
            config.http_timeout = None if value is None else _positive_float(value, "backup.http_timeout")
        if "api_base_url" in backup:
            config.api_base_url = str(backup["api_base_url"])
        if "upload_base_url" in backup:
            config.upload_base_url = str(backup["upload_base_url"])
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backup": {
                "data_dir": str(self.data_dir),
                "scratch_dir": str(self.scratch_dir),
                "kv_store": str(self.kv_store_path),
                "databases": list(self.databases),
                "fallback_dirs": [str(d) for d in self.fallback_dirs],
                "debounce_seconds": self.debounce_seconds,
                "http_timeout": self.http_timeout,
                "api_base_url": self.api_base_url,
                "upload_base_url": self.upload_base_url,
            }
        }


def _positive_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number


def load_config(base_path: Optional[Path] = None) -> BackupConfig:
    """
    Load config.yaml from base_path, falling back to defaults when absent.

    Raises:
        ConfigError: If the file is not valid YAML or holds invalid values
    """
    base_path = get_base_path(base_path)
    config_path = base_path / CONFIG_FILE
    if not config_path.exists():
        return BackupConfig.defaults(base_path)
    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")
    return BackupConfig.from_dict(data, base_path)


def save_config(config: BackupConfig, base_path: Optional[Path] = None) -> Path:
    base_path = get_base_path(base_path)
    base_path.mkdir(parents=True, exist_ok=True)
    config_path = base_path / CONFIG_FILE
    config_path.write_text(yaml.dump(config.to_dict(), default_flow_style=False))
    return config_path
