"""Database path resolution for schemaguard.

Works out where the database lives (flag, environment, config file, or a
per-platform default) and where a database from older releases may still
sit. The engine only consumes the resolved paths.
"""
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

APP_DIR_NAME = "schemaguard"
DB_FILENAME = "schemaguard.db"

SOURCE_ARG = "arg"
SOURCE_ENV = "env"
SOURCE_CONFIG = "config"
SOURCE_DEFAULT = "default"


def _env(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


def get_default_data_dir() -> Path:
    """Get the per-user data directory.

    Priority: SCHEMAGUARD_DATA_DIR > platform convention.
    """
    override = _env("SCHEMAGUARD_DATA_DIR")
    if override:
        return Path(override).resolve()

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME

    if sys.platform == "win32":
        appdata = _env("APPDATA")
        if appdata:
            return Path(appdata) / APP_DIR_NAME
        return Path.home() / "AppData" / "Roaming" / APP_DIR_NAME

    xdg_data_home = _env("XDG_DATA_HOME")
    if xdg_data_home:
        return Path(xdg_data_home) / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME


def get_default_db_path() -> Path:
    return get_default_data_dir() / DB_FILENAME


def get_legacy_db_path(root: Union[str, Path, None] = None) -> Path:
    """Database location used before the per-user data directory existed.

    Args:
        root: Project root the old layout was relative to (default: cwd)
    """
    override = _env("SCHEMAGUARD_LEGACY_DB_PATH")
    if override:
        return Path(override).resolve()
    root = Path(root) if root else Path.cwd()
    return (root / "data" / DB_FILENAME).resolve()


def resolve_db_path(db_path_arg: Optional[str] = None,
                    configured: Optional[str] = None) -> Tuple[Path, str]:
    """Resolve the database path and report where it came from.

    Priority: --db flag > SCHEMAGUARD_DB_PATH > config file > default.

    Returns:
        (absolute path, one of "arg", "env", "config", "default")
    """
    arg = (db_path_arg or "").strip()
    if arg:
        return Path(arg).resolve(), SOURCE_ARG

    env_path = _env("SCHEMAGUARD_DB_PATH")
    if env_path:
        return Path(env_path).resolve(), SOURCE_ENV

    if configured:
        return Path(configured).expanduser().resolve(), SOURCE_CONFIG

    return get_default_db_path(), SOURCE_DEFAULT


def resolve_db_path_for_ops(db_path: Path, source: str,
                            legacy_db_path: Optional[Path]) -> Path:
    """Pick the database backup commands should act on.

    When the path is only the default and nothing exists there yet, a
    database at the legacy location is used in place.
    """
    if source != SOURCE_DEFAULT or db_path.exists():
        return db_path
    if legacy_db_path is not None and legacy_db_path.exists():
        return legacy_db_path
    return db_path


@dataclass
class ResolvedPaths:
    """Paths handed to the migration engine."""
    db_path: Path
    migrations_dir: Path
    legacy_db_path: Optional[Path] = None
    db_path_source: str = SOURCE_DEFAULT


def resolve_paths(db_path_arg: Optional[str] = None,
                  migrations_arg: Optional[str] = None,
                  configured_db: Optional[str] = None,
                  configured_migrations: Optional[str] = None) -> ResolvedPaths:
    """Resolve database, migrations and legacy paths for a migration run.

    The legacy path is only offered when the database path is the default.
    """
    db_path, source = resolve_db_path(db_path_arg, configured_db)

    migrations = ((migrations_arg or "").strip()
                  or _env("SCHEMAGUARD_MIGRATIONS_DIR")
                  or configured_migrations
                  or "migrations")
    migrations_dir = Path(migrations).expanduser().resolve()

    legacy = get_legacy_db_path() if source == SOURCE_DEFAULT else None
    if legacy is not None and legacy == db_path:
        legacy = None
    return ResolvedPaths(db_path=db_path, migrations_dir=migrations_dir,
                         legacy_db_path=legacy, db_path_source=source)
