"""
Auto-Backup Queue - debounced single-slot scheduler in front of the vault

Every local mutation calls enqueue(). Calls inside the idle window collapse
into one backup using the most recent payload. Guards are evaluated when
the timer fires, not when work is enqueued:
- auto-backup must be enabled
- no restore may be pending
- no backup may already be running (the request is dropped; the next
  mutation enqueues again)
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from .bookkeeping import ACCOUNT_EMAIL_KEY, ENABLED_KEY, OWNER_ID_KEY, RESTORE_PENDING_KEY
from .config import DEFAULT_DEBOUNCE_SECONDS
from .event_bus import EventBus
from .events import BackupSkippedEvent
from .kv_store import KeyValueStore
from .remote_store import RemoteFile
from .vault import BackupVault

logger = logging.getLogger(__name__)


class AutoBackupQueue:
    """
    Single-slot debounced backup scheduler.

    Args:
        vault: Orchestrator that performs the backup
        debounce_seconds: Idle window before a queued backup fires
        kv_store: Store holding the enable and restore-pending flags
                  (default: the vault's store)
        event_bus: Status channel (default: the vault's bus)
    """

    def __init__(
        self,
        vault: BackupVault,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        kv_store: Optional[KeyValueStore] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.vault = vault
        self.debounce_seconds = debounce_seconds
        self.kv_store = kv_store or vault.kv_store
        self.event_bus = event_bus or vault.event_bus
        self._payload: Optional[Dict[str, Any]] = None
        self._timer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

    @property
    def pending(self) -> bool:
        """True while a queued backup is waiting for its timer"""
        return self._timer is not None and not self._timer.done()

    @property
    def running(self) -> bool:
        return self._running

    async def is_enabled(self) -> bool:
        """Auto-backup is on unless explicitly switched off"""
        value = await self.kv_store.get_item(ENABLED_KEY)
        return value != "false"

    async def set_enabled(self, enabled: bool) -> None:
        await self.kv_store.set_item(ENABLED_KEY, "true" if enabled else "false")

    def enqueue(self, payload: Dict[str, Any]) -> None:
        """
        Queue a backup with payload (owner_id, account_email).

        Replaces any waiting payload and restarts the idle window. Must be
        called from a running event loop.
        """
        self._payload = dict(payload)
        self._cancel_timer()
        self._timer = self._spawn(self._fire_after(self.debounce_seconds))
        logger.debug(f"Backup queued, firing in {self.debounce_seconds}s")

    async def enqueue_from_storage(self) -> bool:
        """
        Queue a backup for the signed-in owner recorded in the key-value store.

        Returns:
            False when a restore is pending or no backup account is set
        """
        values = dict(await self.kv_store.multi_get(
            [RESTORE_PENDING_KEY, OWNER_ID_KEY, ACCOUNT_EMAIL_KEY]
        ))
        if values.get(RESTORE_PENDING_KEY) == "true":
            return False
        account_email = values.get(ACCOUNT_EMAIL_KEY)
        if not account_email:
            return False
        self.enqueue({"owner_id": values.get(OWNER_ID_KEY), "account_email": account_email})
        return True

    async def flush(self) -> Optional[RemoteFile]:
        """Fire the queued backup now instead of waiting for the timer"""
        self._cancel_timer()
        return await self._run()

    def close(self) -> None:
        """Drop the queued payload and cancel the timer"""
        self._cancel_timer()
        self._payload = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach so a later enqueue cannot cancel the running backup
        self._timer = None
        await self._run()

    def _skip(self, reason: str) -> None:
        logger.info(f"Auto-backup skipped: {reason}")
        self.event_bus.publish(BackupSkippedEvent(reason=reason))

    async def _run(self) -> Optional[RemoteFile]:
        payload, self._payload = self._payload, None
        if payload is None:
            return None

        if not await self.is_enabled():
            self._skip("disabled")
            return None
        if await self.kv_store.get_item(RESTORE_PENDING_KEY) == "true":
            self._skip("restore_pending")
            return None
        if self._running or self.vault.running:
            self._skip("already_running")
            return None

        self._running = True
        try:
            return await self.vault.perform_backup(
                owner_id=payload.get("owner_id"),
                account_email=payload.get("account_email"),
                trigger="auto",
            )
        except Exception as e:
            # Already published on the bus by the vault
            logger.error(f"Auto-backup failed: {e}", exc_info=True)
            return None
        finally:
            self._running = False
