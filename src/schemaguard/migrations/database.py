"""
Database handle and file helpers for the migration engine.

This module provides:
- DatabaseHandle: the single live connection owned by one migration run
- Sidecar helpers for the -wal and -shm files that travel with a database
- Moving a database (with sidecars) from a legacy location
"""

import errno
import logging
import os
import shutil
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000
SIDECAR_SUFFIXES = ("-wal", "-shm")


def sidecar_paths(db_path: Union[str, Path]) -> List[Path]:
    """Return the -wal and -shm paths belonging to a database file."""
    db_path = Path(db_path)
    return [db_path.with_name(db_path.name + suffix) for suffix in SIDECAR_SUFFIXES]


def remove_sidecars(db_path: Union[str, Path]) -> List[Path]:
    """
    Delete stale -wal/-shm files next to a database.

    Returns:
        Paths that were removed

    Raises:
        OSError: If a sidecar exists but cannot be deleted
    """
    removed = []
    for aux in sidecar_paths(db_path):
        if aux.exists():
            aux.unlink()
            removed.append(aux)
    return removed


def _move_file(source: Path, dest: Path) -> None:
    try:
        os.replace(source, dest)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        # Cross-device: copy then delete
        shutil.copy2(source, dest)
        source.unlink()


def move_database(source: Union[str, Path], dest: Union[str, Path]) -> Path:
    """
    Move a database file and its sidecars to a new location.

    Uses rename where possible and falls back to copy-then-delete when the
    two paths live on different filesystems.

    Args:
        source: Current database path
        dest: New database path (parent directories are created)

    Returns:
        The destination path

    Raises:
        NotFoundError: If the source database does not exist
    """
    source = Path(source)
    dest = Path(dest)
    if not source.exists():
        raise NotFoundError("Legacy database", source)

    dest.parent.mkdir(parents=True, exist_ok=True)
    _move_file(source, dest)
    for src_aux, dest_aux in zip(sidecar_paths(source), sidecar_paths(dest)):
        if src_aux.exists():
            _move_file(src_aux, dest_aux)

    logger.info(f"Moved database from {source} to {dest}")
    return dest


class DatabaseHandle:
    """
    DatabaseHandle - The one live connection of a migration run

    Pattern: Explicit transactions (autocommit connection), context manager
    Lifetime: Opened at run start, closed on every exit path

    Pragmas set on open:
    - foreign_keys = ON
    - journal_mode = WAL
    - busy_timeout = configured milliseconds

    Example:
        with DatabaseHandle.open(db_path, busy_timeout_ms=5000) as handle:
            handle.conn.execute("SELECT 1")
    """

    def __init__(self, path: Path, conn: sqlite3.Connection, pragmas: Dict[str, object]):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = conn
        self.pragmas = pragmas

    @classmethod
    def open(cls, db_path: Union[str, Path], busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> "DatabaseHandle":
        """
        Open a connection and apply the engine pragmas.

        Args:
            db_path: Path to SQLite database file (created if missing)
            busy_timeout_ms: How long to wait on a locked database

        Returns:
            An open DatabaseHandle
        """
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(path, timeout=busy_timeout_ms / 1000.0, isolation_level=None)
        try:
            # busy_timeout first so the WAL switch waits on a held lock
            conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
            conn.execute("PRAGMA foreign_keys = ON")
            journal_mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
        except sqlite3.Error:
            conn.close()
            raise

        pragmas = {
            "busy_timeout": int(busy_timeout_ms),
            "foreign_keys": True,
            "journal_mode": str(journal_mode).lower(),
        }
        logger.debug(f"Opened {path} with pragmas {pragmas}")
        return cls(path, conn, pragmas)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Database handle for {self.path} is closed")
        return self._conn

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug(f"Closed {self.path}")

    def __enter__(self) -> "DatabaseHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<DatabaseHandle {self.path} ({state})>"
