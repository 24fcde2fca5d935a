"""
Migration Runner

Applies pending SQL migration scripts with automatic backup and
rollback-by-restore.

One run:
1. Adopts a database from its legacy location if needed
2. Opens the single database handle and ensures the ledger table
3. Computes pending scripts
4. Checks integrity and takes one pre-change snapshot (existing db only)
5. Applies each script in its own transaction together with its ledger row
6. On failure, restores the snapshot and re-checks integrity

After a run either every pending script is applied and recorded, or the
database is back in its pre-run state. A failed restore is reported
together with the script failure that caused it.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import CombinedFailure, IntegrityError, MigrationScriptError, SchemaGuardError
from .backup import DEFAULT_RETENTION_COUNT, BackupManager
from .database import DEFAULT_BUSY_TIMEOUT_MS, DatabaseHandle, move_database
from .integrity import IntegrityChecker
from .manager import LedgerEntry, MigrationLedger
from .registry import MigrationRegistry

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "pre-migrate"


@dataclass
class MigrationResult:
    """Outcome of a successful run."""
    applied_count: int
    total_count: int
    applied: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    backup_path: Optional[Path] = None
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appliedCount": self.applied_count,
            "totalCount": self.total_count,
            "applied": self.applied,
            "pending": self.pending,
            "backupPath": str(self.backup_path) if self.backup_path else None,
            "dryRun": self.dry_run,
        }


@dataclass
class MigrationStatus:
    """Applied and pending scripts for a database."""
    applied: List[LedgerEntry]
    pending: List[str]
    total_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": [entry.to_dict() for entry in self.applied],
            "pending": self.pending,
            "totalCount": self.total_count,
        }


class MigrationRunner:
    """
    Migration Runner - Orchestrates discovery, backup, apply and recovery

    Pattern: One handle per run, one transaction per script, restore on failure
    Lifetime: Created per invocation; run() may be called again for a new run

    Example:
        runner = MigrationRunner(db_path, migrations_dir)
        result = runner.run()
        print(f"applied {result.applied_count} of {result.total_count}")
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        migrations_dir: Union[str, Path],
        backup_dir: Union[str, Path, None] = None,
        legacy_db_path: Union[str, Path, None] = None,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        retention_count: int = DEFAULT_RETENTION_COUNT,
        integrity_checker: Optional[IntegrityChecker] = None,
        backup_manager: Optional[BackupManager] = None,
    ):
        """
        Initialize Migration Runner.

        Args:
            db_path: Path to SQLite database file
            migrations_dir: Directory of *.sql scripts
            backup_dir: Where pre-change snapshots go (default: {db dir}/backups)
            legacy_db_path: Old database location to adopt when db_path is new
            busy_timeout_ms: Lock wait for the run's connection
            retention_count: Snapshots kept per name
        """
        self.db_path = Path(db_path)
        self.migrations_dir = Path(migrations_dir)
        self.legacy_db_path = Path(legacy_db_path) if legacy_db_path else None
        self.busy_timeout_ms = busy_timeout_ms
        self.integrity_checker = integrity_checker or IntegrityChecker(busy_timeout_ms)
        self.backup_manager = backup_manager or BackupManager(
            self.db_path,
            backup_dir,
            busy_timeout_ms=busy_timeout_ms,
            retention_count=retention_count,
            integrity_checker=self.integrity_checker,
        )

    def _legacy_to_adopt(self) -> Optional[Path]:
        if self.legacy_db_path is None or self.db_path.exists():
            return None
        if not self.legacy_db_path.exists():
            logger.debug(f"No legacy database at {self.legacy_db_path}")
            return None
        return self.legacy_db_path

    def adopt_legacy_database(self) -> bool:
        """
        Move the legacy database to db_path if only the legacy one exists.

        Returns:
            True if a database was moved
        """
        if self._legacy_to_adopt() is None:
            return False
        move_database(self.legacy_db_path, self.db_path)
        return True

    def status(self) -> MigrationStatus:
        """
        Report applied and pending scripts without applying anything.

        Raises:
            ConfigurationError: If the migrations directory is missing
        """
        registry = MigrationRegistry(self.migrations_dir)
        registry.discover()
        with DatabaseHandle.open(self.db_path, self.busy_timeout_ms) as handle:
            ledger = MigrationLedger(handle.conn)
            ledger.ensure_table()
            applied = ledger.get_applied_migrations()
            pending = registry.get_pending_names(entry.name for entry in applied)
        return MigrationStatus(applied=applied, pending=pending, total_count=registry.get_migration_count())

    def run(self, dry_run: bool = False) -> MigrationResult:
        """
        Apply all pending migrations.

        Args:
            dry_run: Only report what would be applied; a legacy database
                is inspected in place, not moved

        Returns:
            MigrationResult with applied and total counts

        Raises:
            ConfigurationError: If the migrations directory is missing
            IntegrityError: If the existing database fails its integrity check
            BackupError: If the pre-change snapshot cannot be written
            MigrationScriptError: If a script fails (the database is restored
                from the pre-change snapshot when one was taken)
            CombinedFailure: If a script fails and the restore fails as well
        """
        target = self.db_path
        if dry_run:
            # Inspect a legacy database where it is instead of moving it
            legacy = self._legacy_to_adopt()
            if legacy is not None:
                logger.info(f"Dry run against legacy database {legacy}")
                target = legacy
        else:
            self.adopt_legacy_database()

        registry = MigrationRegistry(self.migrations_dir)
        registry.discover()
        db_existed = target.exists()

        applied: List[str] = []
        backup_path: Optional[Path] = None
        failure: Optional[MigrationScriptError] = None

        try:
            handle = DatabaseHandle.open(target, self.busy_timeout_ms)
        except sqlite3.DatabaseError as e:
            # "file is not a database" and friends, not lock contention
            if db_existed and not isinstance(e, sqlite3.OperationalError):
                raise IntegrityError(target, [str(e)]) from e
            raise

        try:
            ledger = MigrationLedger(handle.conn)
            ledger.ensure_table()
            pending = registry.get_pending_names(ledger.applied_names())
            total = registry.get_migration_count()

            if dry_run:
                for name in pending:
                    logger.info(f"Would apply {name}")
                return MigrationResult(0, total, pending=pending, dry_run=True)

            if db_existed and pending:
                self.integrity_checker.assert_healthy(handle.conn, path=self.db_path)
                backup_path = self.backup_manager.create_backup(SNAPSHOT_NAME, connection=handle.conn)
                logger.info(f"Pre-migration backup at {backup_path}")

            for name in pending:
                failure = self._apply(handle.conn, ledger, registry, name)
                if failure is not None:
                    break
                applied.append(name)
                logger.info(f"Applied {name}")
        finally:
            handle.close()

        if failure is not None:
            self._recover(failure, backup_path)

        logger.info(f"Migrations done (db={self.db_path}, ran={len(applied)}, total={total})")
        return MigrationResult(
            applied_count=len(applied),
            total_count=total,
            applied=applied,
            pending=pending,
            backup_path=backup_path,
        )

    def _apply(
        self,
        conn: sqlite3.Connection,
        ledger: MigrationLedger,
        registry: MigrationRegistry,
        name: str,
    ) -> Optional[MigrationScriptError]:
        """Apply one script and its ledger row in a single transaction."""
        path = registry.migrations_dir / name
        try:
            migration = registry.load(name)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Migration {name} could not be read: {e}")
            error = MigrationScriptError(name, path, f"cannot read script: {e}")
            error.__cause__ = e
            return error

        try:
            # executescript commits an open transaction first, so BEGIN goes
            # into the script itself
            conn.executescript("BEGIN;\n" + migration.sql_text)
            ledger.record_applied(name)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Migration {name} failed: {e}")
            error = MigrationScriptError(name, path, str(e))
            error.__cause__ = e
            return error
        return None

    def _recover(self, failure: MigrationScriptError, backup_path: Optional[Path]) -> None:
        """Restore the pre-change snapshot, then raise the failure."""
        if backup_path is None:
            raise failure

        logger.warning(f"Restoring {self.db_path} from {backup_path} after failed {failure.name}")
        try:
            self.backup_manager.restore_backup(backup_path)
        except SchemaGuardError as restore_error:
            logger.error(f"Restore from {backup_path} failed: {restore_error}")
            raise CombinedFailure(failure, restore_error) from failure
        failure.restored_from = backup_path
        logger.warning(f"Restored db from backup {backup_path}")
        raise failure


def run_migrations(
    db_path: Union[str, Path],
    migrations_dir: Union[str, Path],
    legacy_db_path: Union[str, Path, None] = None,
    **kwargs: Any,
) -> MigrationResult:
    """Apply pending migrations; see MigrationRunner.run()."""
    return MigrationRunner(db_path, migrations_dir, legacy_db_path=legacy_db_path, **kwargs).run()
