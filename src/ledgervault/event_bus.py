"""
In-process status channel for backup and restore runs.

The vault and the auto-backup queue publish the typed events from
``ledgervault.events``; whoever renders status (a settings screen, the CLI)
listens by event type, or on ``'*'`` for everything. The bus also keeps
the most recent event of each type so a caller can ask how a run ended.

Usage:
    bus = EventBus()
    stop = bus.subscribe('backup.failed', lambda event: show_alert(event.error))
    ...
    stop()

    with bus.listening('vault.state_changed', update_progress_title):
        await vault.perform_backup(owner_id)

    failure = bus.latest('restore.failed')
"""

from contextlib import contextmanager
from threading import Lock
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]

WILDCARD = '*'


class EventBus:
    """
    Thread-safe fan-out of status events to listeners.

    Upload progress is reported from the client's callback and the queue's
    timer task, so listeners may be called from any thread or task that
    publishes. A listener that raises is logged and skipped.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._latest: Dict[str, Any] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, callback: Listener) -> Callable[[], bool]:
        """
        Start delivering events of one type to callback.

        Args:
            event_type: Event type such as 'backup.completed', or '*'
            callback: Called with each event object

        Returns:
            A function that removes this subscription
        """
        with self._lock:
            self._listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Listening on {event_type}: {getattr(callback, '__name__', 'lambda')}")
        return lambda: self.unsubscribe(event_type, callback)

    def unsubscribe(self, event_type: str, callback: Listener) -> bool:
        """Remove one subscription; False if it was not registered"""
        with self._lock:
            listeners = self._listeners.get(event_type)
            if not listeners or callback not in listeners:
                return False
            listeners.remove(callback)
            if not listeners:
                del self._listeners[event_type]
        return True

    @contextmanager
    def listening(self, event_type: str, callback: Listener) -> Iterator[None]:
        """Subscribe for the duration of a with-block"""
        stop = self.subscribe(event_type, callback)
        try:
            yield
        finally:
            stop()

    def publish(self, event: Any) -> None:
        """
        Retain event as the latest of its type and hand it to listeners.

        Objects without an ``event_type`` attribute are dropped with a warning.
        """
        event_type = getattr(event, 'event_type', None)
        if event_type is None:
            logger.warning(f"Dropping event without event_type: {type(event).__name__}")
            return

        with self._lock:
            self._latest[event_type] = event
            targets = list(self._listeners.get(event_type, ())) + list(self._listeners.get(WILDCARD, ()))

        for callback in targets:
            self._deliver(callback, event)

    def latest(self, event_type: str) -> Optional[Any]:
        """Most recent event of this type published on this bus, if any"""
        with self._lock:
            return self._latest.get(event_type)

    def _deliver(self, callback: Listener, event: Any) -> None:
        try:
            callback(event)
        except Exception as e:
            logger.error(f"Listener failed on {event.event_type}: {e}", exc_info=True)


_global_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Process-wide bus used when a vault is built without one"""
    global _global_bus
    if _global_bus is None:
        _global_bus = EventBus()
    return _global_bus
