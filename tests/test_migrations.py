"""
Unit tests for MigrationLedger and BackupManager

Tests cover:
- Ledger table creation and applied-name tracking
- Ledger rows inside the caller's transaction
- Backup creation, naming and listing
- Retention pruning
- Restore operations and their failure modes
- Backup file resolution
"""

import os
import shutil
import sqlite3
import tempfile
import time
import unittest
from contextlib import closing
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from schemaguard.errors import BackupError, IntegrityError, NotFoundError, RestoreError
from schemaguard.migrations.backup import BackupManager, BackupRecord, normalize_name
from schemaguard.migrations.database import DatabaseHandle, sidecar_paths
from schemaguard.migrations.manager import LedgerEntry, MigrationLedger


class TestMigrationLedger(unittest.TestCase):
    """Test suite for MigrationLedger."""

    def setUp(self):
        """Set up test database."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "ledger.db"
        self.handle = DatabaseHandle.open(self.db_path)
        self.ledger = MigrationLedger(self.handle.conn)
        self.ledger.ensure_table()

    def tearDown(self):
        """Clean up test database."""
        self.handle.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    # ==================== Table ====================

    def test_ensure_table_is_idempotent(self):
        """Test that ensure_table can run repeatedly."""
        self.ledger.ensure_table()
        self.ledger.ensure_table()
        self.assertEqual(self.ledger.get_migration_count(), 0)

    def test_invalid_table_name(self):
        """Test that table names are restricted to identifiers."""
        with self.assertRaises(ValueError):
            MigrationLedger(self.handle.conn, table="x; DROP TABLE y")

    # ==================== Recording ====================

    def test_record_applied(self):
        """Test recording a script."""
        self.ledger.record_applied("0001_init.sql")

        self.assertEqual(self.ledger.applied_names(), {"0001_init.sql"})

    def test_record_duplicate_name(self):
        """Test that a name can only be recorded once."""
        self.ledger.record_applied("0001_init.sql")

        with self.assertRaises(sqlite3.IntegrityError):
            self.ledger.record_applied("0001_init.sql")

    def test_record_rolls_back_with_transaction(self):
        """Test that a ledger row disappears when its transaction rolls back."""
        conn = self.handle.conn
        conn.execute("BEGIN")
        self.ledger.record_applied("0001_init.sql")
        conn.execute("ROLLBACK")

        self.assertEqual(self.ledger.applied_names(), set())

    def test_record_commits_with_transaction(self):
        """Test that a committed ledger row is visible to other connections."""
        conn = self.handle.conn
        conn.execute("BEGIN")
        self.ledger.record_applied("0001_init.sql")
        conn.execute("COMMIT")

        with closing(sqlite3.connect(self.db_path)) as other:
            rows = other.execute("SELECT name FROM schema_migrations").fetchall()
        self.assertEqual(rows, [("0001_init.sql",)])

    # ==================== Retrieval ====================

    def test_get_applied_migrations_ordered(self):
        """Test that entries come back in name order with timestamps."""
        self.ledger.record_applied("0003_c.sql")
        self.ledger.record_applied("0001_a.sql")
        self.ledger.record_applied("0002_b.sql")

        entries = self.ledger.get_applied_migrations()

        self.assertEqual([e.name for e in entries], ["0001_a.sql", "0002_b.sql", "0003_c.sql"])
        for entry in entries:
            self.assertIsInstance(entry.applied_at, datetime)
            self.assertIsNotNone(entry.applied_at.tzinfo)

    def test_ledger_entry_to_dict(self):
        """Test LedgerEntry serialization."""
        self.ledger.record_applied("0001_init.sql")
        entry = self.ledger.get_applied_migrations()[0]

        data = entry.to_dict()
        self.assertEqual(data["name"], "0001_init.sql")
        self.assertIsInstance(data["appliedAt"], str)

    def test_ledger_entry_without_timestamp(self):
        """Test LedgerEntry serialization with a missing timestamp."""
        self.assertEqual(LedgerEntry("x.sql", None).to_dict(), {"name": "x.sql", "appliedAt": None})

    # ==================== Handle ====================

    def test_handle_pragmas(self):
        """Test that the handle enables WAL, foreign keys and the busy timeout."""
        conn = self.handle.conn
        self.assertEqual(conn.execute("PRAGMA journal_mode").fetchone()[0].lower(), "wal")
        self.assertEqual(conn.execute("PRAGMA foreign_keys").fetchone()[0], 1)
        self.assertEqual(conn.execute("PRAGMA busy_timeout").fetchone()[0], 5000)
        self.assertEqual(self.handle.pragmas["journal_mode"], "wal")

    def test_handle_close(self):
        """Test that closing twice is safe and the connection is gone."""
        handle = DatabaseHandle.open(Path(self.temp_dir) / "other.db", busy_timeout_ms=250)
        self.assertTrue(handle.is_open)
        handle.close()
        handle.close()
        self.assertFalse(handle.is_open)
        with self.assertRaises(RuntimeError):
            handle.conn


class TestBackupManager(unittest.TestCase):
    """Test suite for BackupManager."""

    def setUp(self):
        """Set up test database and backup manager."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "app.db"
        self.backup_dir = Path(self.temp_dir) / "backups"

        self._create_test_database()

        self.backup_manager = BackupManager(self.db_path, self.backup_dir)

    def tearDown(self):
        """Clean up test files."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _create_test_database(self):
        """Create a WAL-mode test database with sample data."""
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE test_table (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL
                )
            """)
            conn.execute("INSERT INTO test_table (name) VALUES ('test_data')")
            conn.commit()

    def _row_count(self, db_path=None):
        with closing(sqlite3.connect(db_path or self.db_path)) as conn:
            return conn.execute("SELECT COUNT(*) FROM test_table").fetchone()[0]

    def _insert_rows(self, count):
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.executemany(
                "INSERT INTO test_table (name) VALUES (?)",
                [(f"row-{i}",) for i in range(count)],
            )
            conn.commit()

    # ==================== Backup Creation ====================

    def test_create_backup(self):
        """Test creating a basic backup."""
        backup_path = self.backup_manager.create_backup()

        self.assertTrue(backup_path.exists())
        self.assertEqual(backup_path.parent, self.backup_dir)
        self.assertEqual(self._row_count(backup_path), 1)

    def test_create_backup_naming_pattern(self):
        """Test that backup files follow {basename}.{name}.{timestamp}.sqlite."""
        backup_path = self.backup_manager.create_backup("Before Upgrade!")

        self.assertTrue(backup_path.name.startswith("app.db.before-upgrade."))
        self.assertTrue(backup_path.name.endswith(".sqlite"))
        stamp = backup_path.name[len("app.db.before-upgrade."):-len(".sqlite")]
        self.assertRegex(stamp, r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z$")

    def test_create_backup_default_name(self):
        """Test that an empty or unusable name falls back to manual."""
        self.assertIn(".manual.", self.backup_manager.create_backup().name)
        self.assertIn(".manual.", self.backup_manager.create_backup("!!!").name)

    def test_create_backup_creates_directory(self):
        """Test that the backup directory is created on demand."""
        self.assertFalse(self.backup_dir.exists())
        self.backup_manager.create_backup()
        self.assertTrue(self.backup_dir.is_dir())

    def test_create_backup_default_directory(self):
        """Test the default backup directory next to the database."""
        manager = BackupManager(self.db_path)
        backup_path = manager.create_backup()
        self.assertEqual(backup_path.parent, self.db_path.parent / "backups")

    def test_create_backup_nonexistent_database(self):
        """Test that backing up a missing database raises NotFoundError."""
        manager = BackupManager(Path(self.temp_dir) / "missing.db", self.backup_dir)

        with self.assertRaises(NotFoundError):
            manager.create_backup()
        self.assertFalse(self.backup_dir.exists())

    def test_create_backup_includes_wal_contents(self):
        """Test that committed rows still in the WAL end up in the backup."""
        with closing(sqlite3.connect(self.db_path)) as writer:
            writer.execute("PRAGMA wal_autocheckpoint=0")
            writer.execute("INSERT INTO test_table (name) VALUES ('in_wal')")
            writer.commit()

            backup_path = self.backup_manager.create_backup()

        self.assertEqual(self._row_count(backup_path), 2)

    def test_create_backup_with_connection(self):
        """Test that an existing connection can be reused for the snapshot."""
        with DatabaseHandle.open(self.db_path) as handle:
            backup_path = self.backup_manager.create_backup("pre-migrate", connection=handle.conn)
            self.assertTrue(handle.is_open)

        self.assertEqual(self._row_count(backup_path), 1)

    def test_normalize_name(self):
        """Test backup name normalization."""
        self.assertEqual(normalize_name("  Nightly Run  "), "nightly-run")
        self.assertEqual(normalize_name("a/b\\c"), "a-b-c")
        self.assertEqual(normalize_name("v1.2_rc-3"), "v1.2_rc-3")
        self.assertEqual(normalize_name("x" * 100), "x" * 64)
        self.assertEqual(normalize_name("---"), "")

    # ==================== Backup Listing ====================

    def test_list_backups_empty(self):
        """Test listing when no backup directory exists."""
        self.assertEqual(self.backup_manager.list_backups(), [])
        self.assertIsNone(self.backup_manager.get_latest_backup())

    def test_list_backups_newest_first(self):
        """Test that backups are listed newest first."""
        first = self.backup_manager.create_backup("one")
        second = self.backup_manager.create_backup("two")
        os.utime(first, (time.time() - 60, time.time() - 60))

        backups = self.backup_manager.list_backups()

        self.assertEqual([b.path for b in backups], [second, first])
        self.assertEqual(self.backup_manager.get_latest_backup().path, second)

    def test_list_backups_ignores_other_files(self):
        """Test that only this database's *.sqlite backups are listed."""
        backup_path = self.backup_manager.create_backup()
        (self.backup_dir / "other.db.manual.2026-01-01T00-00-00-000000Z.sqlite").write_bytes(b"")
        (self.backup_dir / "app.db.notes.txt").write_text("x")

        backups = self.backup_manager.list_backups()

        self.assertEqual([b.path for b in backups], [backup_path])

    def test_backup_record_to_dict(self):
        """Test BackupRecord serialization."""
        backup_path = self.backup_manager.create_backup()
        record = BackupRecord.from_path(backup_path)

        data = record.to_dict()
        self.assertEqual(data["path"], str(backup_path))
        self.assertEqual(data["sizeBytes"], backup_path.stat().st_size)
        self.assertGreater(data["sizeBytes"], 0)
        self.assertTrue(data["mtimeIso"].endswith("+00:00"))

    # ==================== Retention ====================

    def test_retention_keeps_newest(self):
        """Test that N+1 backups with retention N leaves N, oldest deleted."""
        manager = BackupManager(self.db_path, self.backup_dir, retention_count=3)
        created = [manager.create_backup("nightly") for _ in range(4)]

        remaining = sorted(p.path for p in manager.list_backups())

        self.assertEqual(len(remaining), 3)
        self.assertFalse(created[0].exists())
        self.assertEqual(remaining, sorted(created[1:]))

    def test_retention_is_per_name(self):
        """Test that pruning only counts backups with the same name."""
        manager = BackupManager(self.db_path, self.backup_dir, retention_count=1)
        manual = manager.create_backup("manual")
        nightly = manager.create_backup("nightly")

        self.assertTrue(manual.exists())
        self.assertTrue(nightly.exists())
        self.assertEqual(len(manager.list_backups()), 2)

    def test_retention_ignores_dotted_names_sharing_a_prefix(self):
        """Test that pruning "nightly" leaves "nightly.full" backups alone."""
        manager = BackupManager(self.db_path, self.backup_dir, retention_count=1)
        full = manager.create_backup("nightly.full")
        first = manager.create_backup("nightly")
        second = manager.create_backup("nightly")

        self.assertTrue(full.exists())
        self.assertFalse(first.exists())
        self.assertTrue(second.exists())

    def test_retention_keeps_collision_suffixed_backups_in_count(self):
        """Test that "-N" collision names still belong to their backup name."""
        self.backup_dir.mkdir()
        stamp = "2026-01-01T00-00-00-000000Z"
        old = self.backup_dir / f"app.db.nightly.{stamp}.sqlite"
        dup = self.backup_dir / f"app.db.nightly.{stamp}-1.sqlite"
        for path in (old, dup):
            shutil.copyfile(self.db_path, path)
            os.utime(path, (time.time() - 600, time.time() - 600))
        manager = BackupManager(self.db_path, self.backup_dir, retention_count=1)

        newest = manager.create_backup("nightly")

        self.assertFalse(old.exists())
        self.assertFalse(dup.exists())
        self.assertTrue(newest.exists())

    def test_retention_disabled(self):
        """Test that retention_count=0 keeps every backup."""
        manager = BackupManager(self.db_path, self.backup_dir, retention_count=0)
        for _ in range(4):
            manager.create_backup("nightly")

        self.assertEqual(len(manager.list_backups()), 4)
        self.assertEqual(manager.cleanup_old_backups("nightly"), 0)

    def test_create_backup_write_failure(self):
        """Test that a failing backup copy raises BackupError with the cause chained."""
        with patch.object(BackupManager, "_sqlite_backup",
                          side_effect=sqlite3.OperationalError("disk I/O error")):
            with self.assertRaises(BackupError) as context:
                self.backup_manager.create_backup("nightly")

        self.assertIsInstance(context.exception.__cause__, sqlite3.OperationalError)
        self.assertIn("disk I/O error", str(context.exception))
        self.assertEqual(context.exception.to_dict()["kind"], "backup")
        self.assertEqual(self.backup_manager.list_backups(), [])

    def test_create_backup_directory_failure(self):
        """Test that an unwritable backup directory raises BackupError."""
        with patch.object(Path, "mkdir", side_effect=PermissionError("read-only file system")):
            with self.assertRaises(BackupError) as context:
                self.backup_manager.create_backup()

        self.assertIsInstance(context.exception.__cause__, PermissionError)

    # ==================== Restore ====================

    def test_restore_round_trip(self):
        """Test that create then restore returns the database to backup time."""
        backup_path = self.backup_manager.create_backup()
        self._insert_rows(5)
        self.assertEqual(self._row_count(), 6)

        self.backup_manager.restore_backup(backup_path)

        self.assertEqual(self._row_count(), 1)
        self.assertEqual(self.backup_manager.integrity_checker.check(self.db_path), [])

    def test_restore_removes_sidecars(self):
        """Test that stale -wal/-shm files are deleted on restore."""
        backup_path = self.backup_manager.create_backup()
        for aux in sidecar_paths(self.db_path):
            aux.write_bytes(b"stale")

        self.backup_manager.restore_backup(backup_path)

        for aux in sidecar_paths(self.db_path):
            self.assertFalse(aux.exists())

    def test_restore_missing_backup(self):
        """Test restoring from a non-existent backup raises NotFoundError."""
        with self.assertRaises(NotFoundError):
            self.backup_manager.restore_backup(self.backup_dir / "nope.sqlite")

    def test_restore_corrupt_backup(self):
        """Test that restoring a file that is not a database fails loudly."""
        self.backup_dir.mkdir()
        garbage = self.backup_dir / "app.db.manual.2026-01-01T00-00-00-000000Z.sqlite"
        garbage.write_bytes(b"this is not a sqlite database" * 100)

        with self.assertRaises(IntegrityError) as context:
            self.backup_manager.restore_backup(garbage)
        self.assertTrue(context.exception.problems)

    def test_restore_copy_failure(self):
        """Test that a failed copy raises RestoreError and leaves the database alone."""
        backup_path = self.backup_manager.create_backup()
        self._insert_rows(2)

        with patch("schemaguard.migrations.backup.shutil.copyfile", side_effect=OSError("disk full")):
            with self.assertRaises(RestoreError) as context:
                self.backup_manager.restore_backup(backup_path)

        self.assertIn("disk full", str(context.exception))
        self.assertFalse(self.db_path.with_name("app.db.restore-tmp").exists())
        self.assertEqual(self._row_count(), 3)

    def test_restore_verification_locked(self):
        """Test that a locked database during verification raises RestoreError."""
        backup_path = self.backup_manager.create_backup()

        with patch.object(self.backup_manager.integrity_checker, "check",
                          side_effect=sqlite3.OperationalError("database is locked")):
            with self.assertRaises(RestoreError) as context:
                self.backup_manager.restore_backup(backup_path)

        self.assertIn("database is locked", str(context.exception))
        self.assertIsInstance(context.exception.__cause__, sqlite3.OperationalError)

    def test_verify_backup(self):
        """Test backup verification."""
        backup_path = self.backup_manager.create_backup()
        self.assertTrue(self.backup_manager.verify_backup(backup_path))
        self.assertFalse(self.backup_manager.verify_backup(self.backup_dir / "missing.sqlite"))

        garbage = self.backup_dir / "garbage.sqlite"
        garbage.write_bytes(b"\x00garbage" * 200)
        self.assertFalse(self.backup_manager.verify_backup(garbage))

    # ==================== Resolution ====================

    def test_resolve_backup_file_by_name(self):
        """Test that a bare file name resolves inside the backup directory."""
        backup_path = self.backup_manager.create_backup()

        resolved = self.backup_manager.resolve_backup_file(backup_path.name)

        self.assertEqual(resolved, backup_path.resolve())

    def test_resolve_backup_file_by_path(self):
        """Test that an absolute path resolves to itself."""
        backup_path = self.backup_manager.create_backup()

        self.assertEqual(self.backup_manager.resolve_backup_file(str(backup_path)), backup_path.resolve())

    def test_resolve_backup_file_missing(self):
        """Test that an unknown backup raises NotFoundError."""
        with self.assertRaises(NotFoundError) as context:
            self.backup_manager.resolve_backup_file("does-not-exist.sqlite")
        self.assertIn("does-not-exist.sqlite", str(context.exception))


if __name__ == "__main__":
    unittest.main()
