"""
Snapshot Builder - stage live databases and preferences for packaging

Staging layout:
    <scratch>/backup_tmp/data/<db>[-wal|-shm]
    <scratch>/backup_tmp/data/asyncStorage.json
    <scratch>/backup_tmp/data/manifest.json
"""

import asyncio
import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from .bookkeeping import filter_denied
from .databases import (
    SIDE_SUFFIXES,
    DatabaseFileSet,
    PathResolver,
    checkpoint_connection,
    checkpoint_database,
    side_path,
)
from .errors import SnapshotError
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1
STAGING_DIR_NAME = "backup_tmp"
DATA_DIR_NAME = "data"
MANIFEST_FILE = "manifest.json"
KV_SNAPSHOT_FILE = "asyncStorage.json"


@dataclass
class Manifest:
    """Diagnostic record of what a backup captured. Restore never depends on it."""
    created_at: int  # epoch milliseconds
    owner_id: Optional[str]
    db_files: List[str] = field(default_factory=list)
    backup_version: int = BACKUP_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backupVersion": self.backup_version,
            "createdAt": self.created_at,
            "ownerId": self.owner_id,
            "dbFiles": list(self.db_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        return cls(
            created_at=int(data.get("createdAt") or 0),
            owner_id=data.get("ownerId"),
            db_files=list(data.get("dbFiles") or []),
            backup_version=int(data.get("backupVersion") or BACKUP_VERSION),
        )


@dataclass
class Snapshot:
    staging_dir: Path
    data_dir: Path
    manifest: Manifest


def _reset_dir(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def _copy_if_present(source: Path, dest: Path) -> bool:
    if not source.is_file():
        return False
    shutil.copyfile(source, dest)
    logger.debug(f"Backup file size: {dest.name} {dest.stat().st_size}")
    return True


class SnapshotBuilder:
    """
    Copy each database (after a checkpoint) and the filtered key-value store
    into a fresh staging directory.

    Missing databases and side files are skipped. Checkpoint failures only
    log. A staging directory that cannot be created raises SnapshotError.
    """

    def __init__(
        self,
        scratch_root: Path,
        kv_store: KeyValueStore,
        resolver: PathResolver,
        databases: Optional[DatabaseFileSet] = None,
    ):
        self.scratch_root = Path(scratch_root)
        self.kv_store = kv_store
        self.resolver = resolver
        self.databases = databases or DatabaseFileSet()

    @property
    def staging_dir(self) -> Path:
        return self.scratch_root / STAGING_DIR_NAME

    async def build(self, owner_id: Optional[str]) -> Snapshot:
        staging_dir = self.staging_dir
        data_dir = staging_dir / DATA_DIR_NAME
        try:
            await asyncio.to_thread(_reset_dir, staging_dir)
            data_dir.mkdir()
        except OSError as e:
            raise SnapshotError(f"Cannot prepare staging directory {staging_dir}: {e}") from e

        db_files: List[str] = []
        for name in self.databases:
            db_files.extend(await self._stage_database(name, data_dir))

        await self._write_kv_snapshot(data_dir / KV_SNAPSHOT_FILE)

        manifest = Manifest(
            created_at=int(time.time() * 1000),
            owner_id=owner_id or None,
            db_files=db_files,
        )
        await self._write_json(data_dir / MANIFEST_FILE, manifest.to_dict())

        logger.info(f"Snapshot staged {len(db_files)} database file(s): {db_files}")
        return Snapshot(staging_dir=staging_dir, data_dir=data_dir, manifest=manifest)

    async def _stage_database(self, name: str, data_dir: Path) -> List[str]:
        source = self.resolver.locate(name)
        # Registered handles are bound to the loop thread, so they run inline.
        conn = self.resolver.connections.get(name)
        if conn is None or not checkpoint_connection(conn, name):
            await asyncio.to_thread(checkpoint_database, source)

        if not await asyncio.to_thread(_copy_if_present, source, data_dir / name):
            logger.info(f"Database not found, skipping: {name} ({source})")
            return []

        copied = [name]
        for suffix in SIDE_SUFFIXES:
            side_name = f"{name}{suffix}"
            if await asyncio.to_thread(_copy_if_present, side_path(source, suffix), data_dir / side_name):
                copied.append(side_name)
        return copied

    async def _write_kv_snapshot(self, path: Path) -> None:
        entries = filter_denied(await self.kv_store.get_all())
        await self._write_json(path, entries)

    async def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        try:
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(payload))
        except OSError as e:
            raise SnapshotError(f"Failed to write {path.name}: {e}") from e
