"""
LedgerVault - Backup & Restore for a personal finance tracker

Snapshots the app's SQLite databases and preference store, ships them to an
app-private remote space as one archive per owner, and rebuilds local state
from that archive on another device.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .errors import LedgerVaultError, SnapshotError, ArchiveError, RestoreError, ConfigError
from .remote_store import (
    AppDataClient,
    RemoteFile,
    Quota,
    UploadSession,
    StorageError,
    StorageAuthError,
    StorageConnectionError,
)
from .databases import DatabaseFileSet, PathResolver
from .kv_store import KeyValueStore, JSONFileStore
from .snapshot import Manifest, Snapshot, SnapshotBuilder
from .archive import archive_name_for, package, unpack
from .config import BackupConfig, load_config
from .vault import BackupVault, BackupState, BackupInfo, BackupInProgressError
from .backup_queue import AutoBackupQueue
from .event_bus import EventBus, get_event_bus

__all__ = [
    "LedgerVaultError",
    "SnapshotError",
    "ArchiveError",
    "RestoreError",
    "ConfigError",
    "AppDataClient",
    "RemoteFile",
    "Quota",
    "UploadSession",
    "StorageError",
    "StorageAuthError",
    "StorageConnectionError",
    "DatabaseFileSet",
    "PathResolver",
    "KeyValueStore",
    "JSONFileStore",
    "Manifest",
    "Snapshot",
    "SnapshotBuilder",
    "archive_name_for",
    "package",
    "unpack",
    "BackupConfig",
    "load_config",
    "BackupVault",
    "BackupState",
    "BackupInfo",
    "BackupInProgressError",
    "AutoBackupQueue",
    "EventBus",
    "get_event_bus",
]
