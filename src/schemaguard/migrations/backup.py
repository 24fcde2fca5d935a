"""
Backup Manager for SQLite databases

Handles database backup and restore operations for safe migrations.

Features:
- Timestamped, named backups next to (or away from) the database
- WAL-safe backup: full checkpoint, then the SQLite online backup API
- Retention pruning per backup name
- Restore via temp file and atomic rename, with integrity verification
"""

import logging
import os
import re
import shutil
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import BackupError, NotFoundError, RestoreError
from .database import DEFAULT_BUSY_TIMEOUT_MS, remove_sidecars
from .integrity import IntegrityChecker

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_COUNT = 10

# Matches backup_timestamp() output plus the collision counter
STAMP_PATTERN = r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z(?:-\d+)?"


def normalize_name(name: str) -> str:
    """Reduce a backup name to [a-z0-9._-], at most 64 characters."""
    name = re.sub(r"[^a-z0-9._-]+", "-", name.strip().lower())
    return name.strip("-")[:64]


def backup_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO-8601 timestamp that is safe to use in a filename."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")


@dataclass
class BackupRecord:
    """A backup file as seen on disk."""
    path: Path
    size_bytes: int
    mtime: datetime

    @classmethod
    def from_path(cls, path: Path) -> "BackupRecord":
        st = path.stat()
        return cls(
            path=path,
            size_bytes=st.st_size,
            mtime=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "path": str(self.path),
            "sizeBytes": self.size_bytes,
            "mtimeIso": self.mtime.isoformat(),
        }


class BackupManager:
    """
    Backup Manager - Safe database backup and restore for migrations

    Pattern: Named, timestamped snapshot files; WAL-safe operations
    Lifetime: Backups persist until pruned by retention or removed manually

    Backup filename pattern: {db_basename}.{name}.{timestamp}.sqlite

    Example:
        manager = BackupManager(db_path, backup_dir)
        backup_path = manager.create_backup("pre-migrate")
        # ... perform migration ...
        if migration_failed:
            manager.restore_backup(backup_path)
    """

    BACKUP_EXTENSION = "sqlite"
    DEFAULT_NAME = "manual"

    def __init__(
        self,
        db_path: Union[str, Path],
        backup_dir: Union[str, Path, None] = None,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        retention_count: int = DEFAULT_RETENTION_COUNT,
        integrity_checker: Optional[IntegrityChecker] = None,
    ):
        """
        Initialize Backup Manager.

        Args:
            db_path: Path to SQLite database file to backup
            backup_dir: Directory to store backups (default: {db_path.parent}/backups)
            busy_timeout_ms: Lock wait used by connections this manager opens
            retention_count: Backups kept per name; 0 keeps everything
            integrity_checker: Checker run after restores
        """
        self.db_path = Path(db_path)
        if backup_dir is None:
            self.backup_dir = self.db_path.parent / "backups"
        else:
            self.backup_dir = Path(backup_dir)
        self.busy_timeout_ms = busy_timeout_ms
        self.retention_count = retention_count
        self.integrity_checker = integrity_checker or IntegrityChecker(busy_timeout_ms)

    def _prefix(self, name: Optional[str] = None) -> str:
        if name is None:
            return f"{self.db_path.name}."
        return f"{self.db_path.name}.{name}."

    def _matching(self, prefix: str) -> List[Path]:
        if not self.backup_dir.is_dir():
            return []
        suffix = f".{self.BACKUP_EXTENSION}"
        return [
            p for p in self.backup_dir.iterdir()
            if p.is_file() and p.name.startswith(prefix) and p.name.endswith(suffix)
        ]

    def create_backup(
        self,
        name: Optional[str] = None,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Path:
        """
        Create a named, timestamped snapshot of the database.

        The WAL is checkpointed fully first, then the SQLite online backup API
        copies the database page by page into the backup file.

        Args:
            name: Backup name (normalized; default "manual")
            connection: Open connection to reuse instead of opening a new one

        Returns:
            Path of the new backup file

        Raises:
            NotFoundError: If the database file does not exist
            BackupError: If the backup directory or file cannot be written
        """
        if not self.db_path.exists():
            raise NotFoundError("Database file", self.db_path)

        name = normalize_name(name or self.DEFAULT_NAME) or self.DEFAULT_NAME
        stem = f"{self._prefix(name)}{backup_timestamp()}"
        backup_path = self.backup_dir / f"{stem}.{self.BACKUP_EXTENSION}"

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            counter = 1
            while backup_path.exists():
                backup_path = self.backup_dir / f"{stem}-{counter}.{self.BACKUP_EXTENSION}"
                counter += 1

            if connection is not None:
                self._sqlite_backup(connection, backup_path)
            else:
                source_conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_ms / 1000.0)
                try:
                    source_conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
                    self._sqlite_backup(source_conn, backup_path)
                finally:
                    source_conn.close()
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Backup of {self.db_path} failed: {e}")
            raise BackupError(self.db_path, backup_path, str(e)) from e

        logger.info(f"Created backup {backup_path}")
        self.cleanup_old_backups(name)
        return backup_path

    def _sqlite_backup(self, source_conn: sqlite3.Connection, dest: Path) -> None:
        """
        Checkpoint the WAL, then copy with the SQLite backup API.

        Args:
            source_conn: Connection to the source database
            dest: Destination backup path
        """
        source_conn.execute("PRAGMA wal_checkpoint(FULL)")
        dest_conn = sqlite3.connect(dest)
        try:
            source_conn.backup(dest_conn)
        except sqlite3.Error:
            dest_conn.close()
            if dest.exists():
                dest.unlink()
            raise
        dest_conn.close()

    def list_backups(self) -> List[BackupRecord]:
        """
        List all available backups for this database.

        Returns:
            List of BackupRecord objects, newest first
        """
        records = [BackupRecord.from_path(p) for p in self._matching(self._prefix())]
        records.sort(key=lambda r: (r.path.stat().st_mtime_ns, r.path.name), reverse=True)
        return records

    def get_latest_backup(self) -> Optional[BackupRecord]:
        """
        Get the most recent backup.

        Returns:
            BackupRecord for latest backup, or None if no backups exist
        """
        backups = self.list_backups()
        return backups[0] if backups else None

    def cleanup_old_backups(self, name: str) -> int:
        """
        Remove the oldest backups sharing a name beyond the retention count.

        Args:
            name: Normalized backup name whose files are pruned

        Returns:
            Number of backups deleted
        """
        if self.retention_count <= 0:
            return 0

        prefix = self._prefix(name)
        exact = re.compile(re.escape(prefix) + STAMP_PATTERN + re.escape(f".{self.BACKUP_EXTENSION}"))
        # "nightly" must not claim "nightly.full" backups
        candidates = [p for p in self._matching(prefix) if exact.fullmatch(p.name)]
        if len(candidates) <= self.retention_count:
            return 0

        candidates.sort(key=lambda p: (p.stat().st_mtime_ns, p.name))
        excess = candidates[: len(candidates) - self.retention_count]
        for path in excess:
            path.unlink()
            logger.info(f"Pruned old backup {path}")
        return len(excess)

    def resolve_backup_file(self, file_arg: Union[str, Path]) -> Path:
        """
        Resolve a backup argument to an existing file.

        Accepts an absolute path, a path relative to the working directory,
        or a bare filename inside the backup directory.

        Raises:
            NotFoundError: If neither location exists
        """
        candidate = Path(file_arg).resolve()
        if candidate.exists():
            return candidate
        in_dir = (self.backup_dir / file_arg).resolve()
        if in_dir.exists():
            return in_dir
        raise NotFoundError("Backup file", file_arg)

    def restore_backup(self, backup_path: Union[str, Path]) -> None:
        """
        Restore database from backup.

        WARNING: This overwrites the current database. The caller must make
        sure no connection to the database is open.

        The backup is copied to a temporary file beside the database and
        renamed over it, stale -wal/-shm files are deleted, and the result is
        integrity checked.

        Args:
            backup_path: Path to backup file to restore

        Raises:
            NotFoundError: If backup file doesn't exist
            RestoreError: If copying, renaming, sidecar removal or verification fails
            IntegrityError: If the restored database fails its integrity check
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise NotFoundError("Backup file", backup_path)

        tmp_path = self.db_path.with_name(self.db_path.name + ".restore-tmp")
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(backup_path, tmp_path)
            os.replace(tmp_path, self.db_path)
        except OSError as e:
            raise RestoreError(self.db_path, backup_path, str(e)) from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        # Sidecars belong to the superseded database
        try:
            remove_sidecars(self.db_path)
        except OSError as e:
            raise RestoreError(self.db_path, backup_path, f"could not remove sidecar: {e}") from e

        try:
            self.integrity_checker.assert_healthy(self.db_path)
        except sqlite3.OperationalError as e:
            raise RestoreError(self.db_path, backup_path, f"could not verify restored database: {e}") from e
        logger.info(f"Restored {self.db_path} from {backup_path}")

    def verify_backup(self, backup_path: Union[str, Path]) -> bool:
        """
        Verify that a backup file is a healthy SQLite database.

        Returns:
            True if backup is valid, False otherwise
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            return False
        return not self.integrity_checker.check(backup_path)
