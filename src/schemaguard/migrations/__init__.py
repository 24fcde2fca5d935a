"""
schemaguard migration engine

Handles SQLite schema changes over an application's lifetime with automatic
backup, ledger tracking, and rollback-by-restore.

Key Features:
- Plain *.sql scripts applied in file name order
- Applied scripts recorded in the schema_migrations table
- Integrity check and automatic backup before changes
- One transaction per script; restore from backup on failure
- Dry-run support
"""

from .backup import BackupManager, BackupRecord
from .database import DatabaseHandle
from .integrity import IntegrityChecker
from .manager import LedgerEntry, MigrationLedger
from .registry import MigrationFile, MigrationRegistry
from .runner import MigrationResult, MigrationRunner, MigrationStatus, run_migrations

__all__ = [
    "BackupManager",
    "BackupRecord",
    "DatabaseHandle",
    "IntegrityChecker",
    "LedgerEntry",
    "MigrationFile",
    "MigrationLedger",
    "MigrationRegistry",
    "MigrationResult",
    "MigrationRunner",
    "MigrationStatus",
    "run_migrations",
]
