"""
Event type definitions for the backup status channel.

Every backup and restore run reports through these events so that
background failures are observable instead of print-only:
- StateChangedEvent: When the vault moves between pipeline stages
- UploadProgressEvent: While archive bytes are streamed
- BackupCompletedEvent / BackupFailedEvent / BackupSkippedEvent
- RestoreCompletedEvent / RestoreFailedEvent
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any


@dataclass
class StateChangedEvent:
    """Event emitted when the vault enters a new pipeline stage."""
    state: str
    previous: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "vault.state_changed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "state": self.state,
            "previous": self.previous,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class UploadProgressEvent:
    """Event emitted as archive bytes are sent."""
    file_name: str
    sent_bytes: int
    total_bytes: int
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "backup.upload_progress"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "file_name": self.file_name,
            "sent_bytes": self.sent_bytes,
            "total_bytes": self.total_bytes,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class BackupCompletedEvent:
    """Event emitted when an archive is uploaded and recorded."""
    file_id: str
    file_name: str
    db_files: List[str] = field(default_factory=list)
    updated_existing: bool = False
    trigger: str = "manual"  # manual | auto
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "backup.completed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "file_id": self.file_id,
            "file_name": self.file_name,
            "db_files": self.db_files,
            "updated_existing": self.updated_existing,
            "trigger": self.trigger,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class BackupFailedEvent:
    """Event emitted when any backup stage raises."""
    stage: str
    error: str
    trigger: str = "manual"  # manual | auto
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "backup.failed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "stage": self.stage,
            "error": self.error,
            "trigger": self.trigger,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class BackupSkippedEvent:
    """Event emitted when a queued backup fires but a guard blocks it."""
    reason: str  # disabled | restore_pending | already_running
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "backup.skipped"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class RestoreCompletedEvent:
    """Event emitted after local state has been replaced from an archive."""
    file_id: str
    restored_files: List[str] = field(default_factory=list)
    removed_files: List[str] = field(default_factory=list)
    restored_keys: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "restore.completed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "file_id": self.file_id,
            "restored_files": self.restored_files,
            "removed_files": self.removed_files,
            "restored_keys": self.restored_keys,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class RestoreFailedEvent:
    """Event emitted when a restore aborts or fails partway."""
    file_id: str
    stage: str
    error: str
    live_files_touched: bool = False
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "restore.failed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "file_id": self.file_id,
            "stage": self.stage,
            "error": self.error,
            "live_files_touched": self.live_files_touched,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# Export all event types
__all__ = [
    "StateChangedEvent",
    "UploadProgressEvent",
    "BackupCompletedEvent",
    "BackupFailedEvent",
    "BackupSkippedEvent",
    "RestoreCompletedEvent",
    "RestoreFailedEvent",
]
