"""
Migration Ledger
Tracks which migration scripts have been applied.

This module provides migration tracking capabilities:
- Record applied scripts in the schema_migrations table
- Query applied names and migration history
- Insert ledger rows inside the caller's open transaction, so the ledger
  and the schema change commit or roll back together
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

DEFAULT_TABLE = "schema_migrations"


@dataclass
class LedgerEntry:
    """A stored ledger row."""
    name: str
    applied_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "appliedAt": self.applied_at.isoformat() if self.applied_at else None,
        }


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # fromisoformat only accepts a trailing Z from 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class MigrationLedger:
    """
    Migration Ledger - Persistent record of applied migration scripts

    Pattern: One row per applied script in schema_migrations, keyed by file name
    Lifetime: Bound to the connection of one migration run

    The ledger never commits on its own. record_applied() runs on the
    caller's connection, inside the transaction that applied the script.

    Example:
        ledger = MigrationLedger(handle.conn)
        ledger.ensure_table()
        if "0001_init.sql" not in ledger.applied_names():
            ...
    """

    def __init__(self, conn: sqlite3.Connection, table: str = DEFAULT_TABLE):
        """
        Initialize Migration Ledger.

        Args:
            conn: Open SQLite connection (owned by the caller)
            table: Ledger table name (default: schema_migrations)
        """
        if not table.replace("_", "").isalnum():
            raise ValueError(f"Invalid ledger table name: {table!r}")
        self.conn = conn
        self.table = table

    def ensure_table(self) -> None:
        """Create the ledger table if it does not exist (idempotent)."""
        self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                name TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
            )
        """)

    def applied_names(self) -> Set[str]:
        """
        Get the names of all applied scripts.

        Returns:
            Set of migration file names recorded in the ledger
        """
        cursor = self.conn.execute(f"SELECT name FROM {self.table} ORDER BY name")
        return {row[0] for row in cursor}

    def record_applied(self, name: str) -> None:
        """
        Record a script as applied.

        Must be called inside the transaction that applied the script; the
        caller commits.

        Raises:
            sqlite3.IntegrityError: If the name is already recorded
        """
        self.conn.execute(f"INSERT INTO {self.table} (name) VALUES (?)", (name,))

    def get_applied_migrations(self) -> List[LedgerEntry]:
        """
        Get all ledger entries ordered by name.

        Returns:
            List of LedgerEntry objects, in apply order
        """
        cursor = self.conn.execute(
            f"SELECT name, applied_at FROM {self.table} ORDER BY name ASC"
        )
        return [LedgerEntry(name=row[0], applied_at=_parse_timestamp(row[1])) for row in cursor]

    def get_migration_count(self) -> int:
        """
        Get total number of applied migrations.

        Returns:
            Count of ledger rows
        """
        cursor = self.conn.execute(f"SELECT COUNT(*) FROM {self.table}")
        return cursor.fetchone()[0]
