"""
LedgerVault - Backup/Restore orchestration

Backup:  snapshot -> package -> resumable upload -> record bookkeeping
Restore: download -> unpack -> replace databases -> replace key-value store
"""

import asyncio
import json
import logging
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles

from .archive import ARCHIVE_NAME_PREFIX, archive_name_for, package, unpack
from .bookkeeping import (
    ACCOUNT_EMAIL_KEY,
    DENY_LIST,
    ENABLED_KEY,
    FILE_ID_KEY,
    LAST_SUCCESS_KEY,
    MANIFEST_KEY,
    RESTORE_PENDING_KEY,
    filter_denied,
)
from .config import BackupConfig
from .databases import SIDE_SUFFIXES, DatabaseFileSet, PathResolver, side_path
from .errors import ArchiveError, LedgerVaultError, RestoreError
from .event_bus import EventBus, get_event_bus
from .events import (
    BackupCompletedEvent,
    BackupFailedEvent,
    RestoreCompletedEvent,
    RestoreFailedEvent,
    StateChangedEvent,
    UploadProgressEvent,
)
from .kv_store import JSONFileStore, KeyValueStore
from .remote_store import AppDataClient, ProgressCallback, Quota, RemoteFile, StorageError, TokenProvider
from .snapshot import KV_SNAPSHOT_FILE, STAGING_DIR_NAME, Manifest, SnapshotBuilder

logger = logging.getLogger(__name__)

RESTORE_ARCHIVE_NAME = "restore.zip"
RESTORE_DIR_NAME = "restore"


class BackupState(str, Enum):
    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    PACKAGING = "packaging"
    UPLOADING = "uploading"
    RECORDED = "recorded"
    DOWNLOADING = "downloading"
    UNPACKING = "unpacking"
    RESTORING = "restoring"
    RESTORED = "restored"


class BackupInProgressError(LedgerVaultError):
    """Raised when a backup or restore is requested while another one runs"""
    pass


@dataclass
class BackupInfo:
    """Locally remembered state of the last successful backup"""
    file_id: Optional[str]
    last_success_at: Optional[datetime]
    account_email: Optional[str]
    manifest: Optional[Manifest]
    auto_backup_enabled: bool
    restore_pending: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": self.file_id,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "account_email": self.account_email,
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "auto_backup_enabled": self.auto_backup_enabled,
            "restore_pending": self.restore_pending,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


def _reset_dir(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


class BackupVault:
    """
    Backup/Restore orchestrator

    Constructed once at app start. Holds no state across process restarts
    other than what it persists in the key-value store. At most one backup
    or restore runs at a time; the running flag is checked and set with no
    await in between.

    Args:
        client: Remote object store client
        kv_store: The app's key-value configuration store
        resolver: Database path resolver
        scratch_dir: Root for staging and restore scratch trees
        databases: Database File Set (default: the app's three databases)
        event_bus: Status channel (default: global bus)
    """

    def __init__(
        self,
        client: AppDataClient,
        kv_store: KeyValueStore,
        resolver: PathResolver,
        scratch_dir: Path,
        databases: Optional[DatabaseFileSet] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.client = client
        self.kv_store = kv_store
        self.resolver = resolver
        self.scratch_dir = Path(scratch_dir)
        self.databases = databases or DatabaseFileSet()
        self.event_bus = event_bus or get_event_bus()
        self.snapshot_builder = SnapshotBuilder(
            self.scratch_dir, kv_store, resolver, self.databases,
        )
        self._state = BackupState.IDLE
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: BackupConfig,
        token_provider: TokenProvider,
        connections: Optional[Dict[str, Any]] = None,
        event_bus: Optional[EventBus] = None,
    ) -> "BackupVault":
        client = AppDataClient(
            token_provider,
            base_url=config.api_base_url,
            upload_url=config.upload_base_url,
            timeout=config.http_timeout,
        )
        resolver = PathResolver(config.data_dir, config.fallback_dirs, connections=connections)
        return cls(
            client=client,
            kv_store=JSONFileStore(config.kv_store_path),
            resolver=resolver,
            scratch_dir=config.scratch_dir,
            databases=DatabaseFileSet(tuple(config.databases)),
            event_bus=event_bus,
        )

    @property
    def state(self) -> BackupState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    @property
    def staging_dir(self) -> Path:
        return self.scratch_dir / STAGING_DIR_NAME

    def _set_state(self, state: BackupState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.info(f"Vault state: {previous.value} -> {state.value}")
        self.event_bus.publish(StateChangedEvent(state=state.value, previous=previous.value))

    def _acquire(self) -> None:
        if self._running:
            raise BackupInProgressError("A backup or restore is already running")
        self._running = True

    def _release(self) -> None:
        self._running = False
        self._set_state(BackupState.IDLE)

    # ------------------------------------------------------------------
    # Backup

    async def perform_backup(
        self,
        owner_id: Optional[str],
        account_email: Optional[str] = None,
        trigger: str = "manual",
        progress: Optional[ProgressCallback] = None,
    ) -> RemoteFile:
        """
        Snapshot, package and upload local state, then remember the result.

        Reuses the remembered remote file id so repeated backups update one
        remote object. Nothing is recorded unless the upload succeeds.

        Args:
            owner_id: Stable user identifier; names the archive
            account_email: Backup account to remember on success
            trigger: 'manual' or 'auto', reported on events
            progress: Optional callback(sent_bytes, total_bytes)

        Returns:
            RemoteFile for the uploaded archive

        Raises:
            BackupInProgressError: If another run is active
            SnapshotError, ArchiveError, StorageError: From the failing stage
        """
        self._acquire()
        stage = BackupState.SNAPSHOTTING
        try:
            self._set_state(stage)
            snapshot = await self.snapshot_builder.build(owner_id)

            stage = BackupState.PACKAGING
            self._set_state(stage)
            archive_name = archive_name_for(owner_id)
            archive_path = await asyncio.to_thread(package, snapshot.staging_dir, archive_name)

            stage = BackupState.UPLOADING
            self._set_state(stage)
            existing_file_id = await self.kv_store.get_item(FILE_ID_KEY) or None
            record = await self._upload(archive_path, archive_name, existing_file_id, progress)

            entries = [
                (FILE_ID_KEY, record.id),
                (LAST_SUCCESS_KEY, str(_now_ms())),
                (MANIFEST_KEY, json.dumps(snapshot.manifest.to_dict())),
            ]
            if account_email:
                entries.append((ACCOUNT_EMAIL_KEY, account_email))
            await self.kv_store.multi_set(entries)

            stage = BackupState.RECORDED
            self._set_state(stage)
            await asyncio.to_thread(shutil.rmtree, snapshot.staging_dir, True)

            logger.info(f"Backup complete: {archive_name} -> {record.id}")
            self.event_bus.publish(BackupCompletedEvent(
                file_id=record.id,
                file_name=archive_name,
                db_files=list(snapshot.manifest.db_files),
                updated_existing=existing_file_id is not None and record.id == existing_file_id,
                trigger=trigger,
            ))
            return record
        except Exception as e:
            logger.error(f"Backup failed during {stage.value}: {e}")
            self.event_bus.publish(BackupFailedEvent(stage=stage.value, error=str(e), trigger=trigger))
            raise
        finally:
            self._release()

    async def _upload(
        self,
        archive_path: Path,
        archive_name: str,
        existing_file_id: Optional[str],
        progress: Optional[ProgressCallback],
    ) -> RemoteFile:
        def on_progress(sent: int, total: int) -> None:
            self.event_bus.publish(UploadProgressEvent(
                file_name=archive_name, sent_bytes=sent, total_bytes=total,
            ))
            if progress:
                progress(sent, total)

        try:
            return await self.client.upload_file(
                archive_path, archive_name,
                existing_file_id=existing_file_id, progress=on_progress,
            )
        except StorageError as e:
            # Remembered file was deleted remotely; create a fresh one
            if existing_file_id and e.status_code == 404:
                logger.warning(f"Remembered backup {existing_file_id} no longer exists, creating new file")
                return await self.client.upload_file(
                    archive_path, archive_name, progress=on_progress,
                )
            raise

    async def find_latest_backup(self, owner_id: Optional[str] = None) -> Optional[RemoteFile]:
        """
        Newest archive in the remote space.

        With owner_id, only backup_<ownerId>.zip matches. If nothing
        matches, every listed file is a candidate.
        """
        files = await self.client.list_files()
        expected = archive_name_for(owner_id) if owner_id else None

        filtered = [
            f for f in files
            if f.name and f.name.startswith(ARCHIVE_NAME_PREFIX)
            and (expected is None or f.name == expected)
        ]
        candidates = filtered or files
        if not candidates:
            logger.info("No backup file found")
            return None

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        latest = max(candidates, key=lambda f: f.modified_time or epoch)
        logger.info(f"Latest backup selected: {latest.name} ({latest.id})")
        return latest

    async def list_backups(self, owner_id: Optional[str] = None) -> List[RemoteFile]:
        """Archives in the remote space, newest first"""
        name_filter = archive_name_for(owner_id) if owner_id else None
        files = [
            f for f in await self.client.list_files(name_filter)
            if f.name.startswith(ARCHIVE_NAME_PREFIX)
        ]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        files.sort(key=lambda f: f.modified_time or epoch, reverse=True)
        return files

    async def delete_backup(self, file_id: str) -> bool:
        await self.client.delete_file(file_id)
        if await self.kv_store.get_item(FILE_ID_KEY) == file_id:
            await self.kv_store.remove_item(FILE_ID_KEY)
        return True

    async def get_quota(self) -> Quota:
        return await self.client.get_quota()

    async def last_backup_info(self) -> BackupInfo:
        values = dict(await self.kv_store.multi_get([
            FILE_ID_KEY, LAST_SUCCESS_KEY, ACCOUNT_EMAIL_KEY,
            MANIFEST_KEY, ENABLED_KEY, RESTORE_PENDING_KEY,
        ]))
        last_success = values.get(LAST_SUCCESS_KEY)
        manifest_raw = values.get(MANIFEST_KEY)
        manifest = None
        if manifest_raw:
            try:
                manifest = Manifest.from_dict(json.loads(manifest_raw))
            except (ValueError, TypeError):
                logger.warning("Stored backup manifest is unreadable")
        return BackupInfo(
            file_id=values.get(FILE_ID_KEY) or None,
            last_success_at=(
                datetime.fromtimestamp(int(last_success) / 1000, tz=timezone.utc)
                if last_success and last_success.isdigit() else None
            ),
            account_email=values.get(ACCOUNT_EMAIL_KEY),
            manifest=manifest,
            auto_backup_enabled=values.get(ENABLED_KEY) != "false",
            restore_pending=values.get(RESTORE_PENDING_KEY) == "true",
        )

    async def check_for_restore(self, owner_id: Optional[str]) -> Optional[RemoteFile]:
        """
        Login-time check: the backup to offer for restore, if any.

        A device that already remembers a remote file id has backed up
        before and is not offered a restore.
        """
        if await self.kv_store.get_item(FILE_ID_KEY):
            return None
        return await self.find_latest_backup(owner_id)

    async def clear_restore_pending(self) -> None:
        await self.kv_store.remove_item(RESTORE_PENDING_KEY)

    # ------------------------------------------------------------------
    # Restore

    async def restore_from_backup(self, file_id: str) -> bool:
        """
        Replace local databases and preferences from a remote archive.

        Download and unpack failures abort before any live file is touched.
        Failures while copying databases are not rolled back; the
        restore-pending flag then stays set so queued backups cannot upload
        the half-restored state. The caller should restart the process
        afterwards because open database handles may hold stale pages.

        Raises:
            BackupInProgressError: If another run is active
            RestoreError: On any failure, chaining the cause
        """
        self._acquire()
        stage = BackupState.DOWNLOADING
        touched = False
        try:
            self._set_state(stage)
            scratch = self.staging_dir
            archive_path = scratch / RESTORE_ARCHIVE_NAME
            try:
                await asyncio.to_thread(_reset_dir, scratch)
                await self.client.download_file(file_id, archive_path)
            except (OSError, StorageError) as e:
                raise RestoreError(f"Download failed: {e}") from e

            stage = BackupState.UNPACKING
            self._set_state(stage)
            try:
                data_dir = await asyncio.to_thread(unpack, archive_path, scratch / RESTORE_DIR_NAME)
            except ArchiveError as e:
                raise RestoreError(f"Unzip failed: {e}") from e
            kv_payload = await self._read_kv_snapshot(data_dir / KV_SNAPSHOT_FILE)

            stage = BackupState.RESTORING
            self._set_state(stage)
            touched = True
            await self.kv_store.set_item(RESTORE_PENDING_KEY, "true")
            try:
                restored, removed = await asyncio.to_thread(self._replace_databases, data_dir)
            except OSError as e:
                raise RestoreError(f"Database copy failed: {e}") from e

            restored_keys = 0
            if kv_payload is not None:
                restored_keys = await self._replace_kv_store(kv_payload)

            await self.kv_store.set_item(FILE_ID_KEY, str(file_id))
            await self.kv_store.remove_item(RESTORE_PENDING_KEY)

            self._set_state(BackupState.RESTORED)
            logger.info(f"Restore complete from {file_id}: {restored}")
            self.event_bus.publish(RestoreCompletedEvent(
                file_id=str(file_id),
                restored_files=restored,
                removed_files=removed,
                restored_keys=restored_keys,
            ))
            return True
        except Exception as e:
            logger.error(f"Restore failed during {stage.value}: {e}")
            self.event_bus.publish(RestoreFailedEvent(
                file_id=str(file_id), stage=stage.value, error=str(e), live_files_touched=touched,
            ))
            if isinstance(e, RestoreError):
                raise
            raise RestoreError(f"Restore failed during {stage.value}: {e}") from e
        finally:
            self._release()

    async def _read_kv_snapshot(self, path: Path) -> Optional[Dict[str, str]]:
        if not path.is_file():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        try:
            payload = json.loads(raw or "{}")
        except ValueError as e:
            raise RestoreError(f"Key-value snapshot is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise RestoreError("Key-value snapshot must be a JSON object")
        return {str(k): str(v) for k, v in payload.items() if v is not None}

    def _replace_databases(self, data_dir: Path) -> Tuple[List[str], List[str]]:
        """
        Copy backed-up databases over the live ones.

        A main file missing from the archive is left alone. Side files are
        reconciled for every base name: copied when the archive has them and
        deleted otherwise, so a stale WAL cannot replay on next open.
        """
        restored: List[str] = []
        removed: List[str] = []
        for name in self.databases:
            source = data_dir / name
            target = self.resolver.restore_target(name)
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_file():
                shutil.copyfile(source, target)
                restored.append(name)
            else:
                logger.warning(f"{name} not found in backup")

            for suffix in SIDE_SUFFIXES:
                side_name = f"{name}{suffix}"
                side_source = data_dir / side_name
                side_target = side_path(target, suffix)
                if side_source.is_file():
                    shutil.copyfile(side_source, side_target)
                    restored.append(side_name)
                elif side_target.exists():
                    side_target.unlink()
                    removed.append(side_name)
        return restored, removed

    async def _replace_kv_store(self, payload: Dict[str, str]) -> int:
        """Wipe the live store, write restored pairs, then re-apply deny-listed values"""
        preserved = [
            (key, value)
            for key, value in await self.kv_store.multi_get(sorted(DENY_LIST))
            if value is not None
        ]
        await self.kv_store.clear()
        entries = list(filter_denied(payload).items())
        await self.kv_store.multi_set(entries)
        await self.kv_store.multi_set(preserved)
        return len(entries)
