"""
Integrity checks for SQLite databases.

Runs PRAGMA integrity_check before a pre-change snapshot is taken and after
every restore.
"""

import logging
import sqlite3
from pathlib import Path
from typing import List, Union

from ..errors import IntegrityError
from .database import DEFAULT_BUSY_TIMEOUT_MS

logger = logging.getLogger(__name__)

Target = Union[str, Path, sqlite3.Connection]


class IntegrityChecker:
    """
    IntegrityChecker - Wraps SQLite's native consistency check

    An empty problem list means the database is healthy. A file SQLite cannot
    read at all is reported as a problem rather than raised. Lock contention
    and other operational errors are raised as sqlite3.OperationalError.
    """

    def __init__(self, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS):
        self.busy_timeout_ms = busy_timeout_ms

    def check(self, target: Target) -> List[str]:
        """
        Run PRAGMA integrity_check.

        Args:
            target: Database path or an already open connection

        Returns:
            Problems reported by SQLite (empty when healthy)

        Raises:
            sqlite3.OperationalError: If the database stays locked past the busy timeout
        """
        if isinstance(target, sqlite3.Connection):
            return self._run(target)

        path = Path(target)
        if not path.exists():
            return [f"database file does not exist: {path}"]

        conn = sqlite3.connect(path, timeout=self.busy_timeout_ms / 1000.0)
        try:
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            return self._run(conn)
        finally:
            conn.close()

    @staticmethod
    def _run(conn: sqlite3.Connection) -> List[str]:
        try:
            rows = conn.execute("PRAGMA integrity_check").fetchall()
        except sqlite3.OperationalError:
            raise
        except sqlite3.DatabaseError as e:
            return [str(e)]
        problems = []
        for row in rows:
            value = str(row[0] if row else "").strip()
            if value and value.lower() != "ok":
                problems.append(value)
        return problems

    def assert_healthy(self, target: Target, path: Union[str, Path, None] = None) -> None:
        """
        Raise IntegrityError if the database reports any problem.

        Args:
            target: Database path or open connection
            path: Path used in the error when target is a connection
        """
        problems = self.check(target)
        if problems:
            if path is None:
                path = target if not isinstance(target, sqlite3.Connection) else "<connection>"
            logger.error(f"Integrity check failed for {path}: {problems}")
            raise IntegrityError(path, problems)
