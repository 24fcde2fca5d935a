"""Pytest fixtures for schemaguard tests"""
import sqlite3
import sys
from contextlib import closing
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep tests away from the user's data directory and SCHEMAGUARD_* settings."""
    import os
    for key in list(os.environ):
        if key.startswith("SCHEMAGUARD_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SCHEMAGUARD_DATA_DIR", str(tmp_path / "data-home"))


@pytest.fixture
def workspace(tmp_path):
    """Temporary database, migrations and backup locations.

    Returns a dict with:
        - db_path: Path to app.db (not created)
        - migrations_dir: Path to an empty migrations directory
        - backup_dir: Path to the backup directory (not created)
    """
    migrations_dir = tmp_path / "migrations"
    migrations_dir.mkdir()
    return {
        "db_path": tmp_path / "app.db",
        "migrations_dir": migrations_dir,
        "backup_dir": tmp_path / "backups",
    }


def write_migration(migrations_dir: Path, name: str, sql: str) -> Path:
    """Write a migration script into a migrations directory."""
    path = Path(migrations_dir) / name
    path.write_text(sql, encoding="utf-8")
    return path


def query(db_path: Path, sql: str, params=()):
    """Run a query on a short-lived connection and return all rows."""
    with closing(sqlite3.connect(db_path)) as conn:
        return conn.execute(sql, params).fetchall()


def ledger_names(db_path: Path):
    return [row[0] for row in query(db_path, "SELECT name FROM schema_migrations ORDER BY name")]


def table_names(db_path: Path):
    rows = query(db_path, "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
    return [row[0] for row in rows]


def create_sample_db(db_path: Path, rows: int = 1) -> Path:
    """Create a database with a populated `items` table."""
    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
        conn.executemany(
            "INSERT INTO items (name) VALUES (?)",
            [(f"item-{i}",) for i in range(rows)],
        )
        conn.commit()
    return db_path
