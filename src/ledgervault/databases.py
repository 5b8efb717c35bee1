"""
Database File Set and on-disk path resolution

Pattern: The app owns a fixed, ordered list of SQLite databases. Each may
sit next to a write-ahead log (-wal) and shared-memory (-shm) file. The
PathResolver is injected into the snapshot and restore stages so the
location rules can change per platform without touching orchestration.
"""

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_DATABASES: Tuple[str, ...] = ("accountsDB.db", "ledgerDB.db", "accountApp.db")
SIDE_SUFFIXES: Tuple[str, ...] = ("-wal", "-shm")


@dataclass
class DatabaseFileSet:
    """Ordered database base names known at build time"""
    names: Tuple[str, ...] = DEFAULT_DATABASES

    def __post_init__(self) -> None:
        self.names = tuple(self.names)
        if len(set(self.names)) != len(self.names):
            raise ValueError(f"Duplicate database names: {list(self.names)}")
        for name in self.names:
            if not name or "/" in name or "\\" in name:
                raise ValueError(f"Invalid database base name: {name!r}")

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    @staticmethod
    def side_files(name: str) -> List[str]:
        """-wal and -shm names for a base name"""
        return [f"{name}{suffix}" for suffix in SIDE_SUFFIXES]


class PathResolver:
    """
    Resolve where each live database file actually lives.

    Lookup order for an existing database:
    1. The path the engine reports for a registered live connection
       (PRAGMA database_list, 'main' row)
    2. data_dir / name
    3. Each fallback directory / name
    4. data_dir / name, even if it does not exist

    Args:
        data_dir: Default directory the app opens databases from
        fallback_dirs: Extra directories engines are known to relocate into
        connections: Optional live connections keyed by base name
    """

    def __init__(
        self,
        data_dir: Path,
        fallback_dirs: Sequence[Path] = (),
        connections: Optional[Dict[str, sqlite3.Connection]] = None,
    ):
        self.data_dir = Path(data_dir)
        self.fallback_dirs = [Path(d) for d in fallback_dirs]
        self.connections: Dict[str, sqlite3.Connection] = dict(connections or {})

    def register(self, name: str, conn: sqlite3.Connection) -> None:
        """Attach a live connection so the engine-reported path is used"""
        self.connections[name] = conn

    def default_path(self, name: str) -> Path:
        return self.data_dir / name

    def engine_path(self, name: str) -> Optional[Path]:
        """Path reported by the engine for a registered connection, if any"""
        conn = self.connections.get(name)
        if conn is None:
            return None
        try:
            rows = conn.execute("PRAGMA database_list").fetchall()
        except sqlite3.Error as e:
            logger.warning(f"Path lookup failed for {name}: {e}")
            return None
        for row in rows:
            # (seq, name, file)
            if row[1] == "main" and row[2]:
                return Path(row[2])
        return None

    def locate(self, name: str) -> Path:
        """Best path to read an existing database from"""
        reported = self.engine_path(name)
        if reported is not None and reported.exists():
            return reported
        primary = self.default_path(name)
        if primary.exists():
            return primary
        for directory in self.fallback_dirs:
            candidate = directory / name
            if candidate.exists():
                return candidate
        return primary

    def restore_target(self, name: str) -> Path:
        """Path a restored database should be written to"""
        reported = self.engine_path(name)
        if reported is not None:
            return reported
        return self.default_path(name)


def side_path(main_path: Path, suffix: str) -> Path:
    return main_path.with_name(main_path.name + suffix)


def checkpoint_database(db_path: Path) -> bool:
    """
    Merge the write-ahead log into the main file.

    Opens a short-lived read-write connection that never creates a missing
    file. Failures are logged and reported as False; a checkpoint problem
    must not block a backup.
    """
    if not db_path.exists():
        return False
    try:
        conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=rw", uri=True, timeout=5.0)
        try:
            conn.execute("PRAGMA wal_checkpoint(FULL)").fetchone()
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.warning(f"Backup checkpoint skipped for {db_path.name}: {e}")
        return False
    return True


def checkpoint_connection(conn: sqlite3.Connection, name: str) -> bool:
    """
    Checkpoint through the app's own live handle.

    Must be called from the thread that owns conn. Returns False when the
    handle is unusable so the caller can fall back to checkpoint_database.
    """
    try:
        conn.execute("PRAGMA wal_checkpoint(FULL)").fetchone()
    except sqlite3.Error as e:
        logger.warning(f"Checkpoint on live handle failed for {name}: {e}")
        return False
    return True
