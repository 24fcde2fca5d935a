"""Configuration for schemaguard.

Settings are resolved with the precedence
CLI flag > environment variable > config.yaml > default.

Example config.yaml:

    database:
      path: /srv/app/app.db
      busy_timeout_ms: 5000
    migrations:
      dir: ./migrations
    backup:
      dir: ./backups
      retention: 10
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError
from .migrations.backup import DEFAULT_RETENTION_COUNT
from .migrations.database import DEFAULT_BUSY_TIMEOUT_MS
from .paths import (
    get_default_data_dir,
    resolve_db_path_for_ops,
    resolve_paths,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"


@dataclass
class Settings:
    """Resolved configuration handed to the engine."""
    db_path: Path
    db_path_source: str
    migrations_dir: Path
    backup_dir: Path
    legacy_db_path: Optional[Path]
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    retention_count: int = DEFAULT_RETENTION_COUNT


def parse_busy_timeout_ms(raw: Any) -> int:
    """Parse a busy timeout in milliseconds; invalid or negative values give the default."""
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return DEFAULT_BUSY_TIMEOUT_MS
    if value != value or value < 0 or value == float("inf"):
        return DEFAULT_BUSY_TIMEOUT_MS
    return int(value)


def parse_retention_count(raw: Any) -> int:
    """Parse a retention count. 0 disables pruning.

    Raises:
        ConfigurationError: If the value is not a non-negative integer
    """
    if raw is None or str(raw).strip() == "":
        return DEFAULT_RETENTION_COUNT
    try:
        value = int(str(raw).strip())
    except ValueError as e:
        raise ConfigurationError(f"Backup retention must be an integer, got {raw!r}") from e
    if value < 0:
        raise ConfigurationError(f"Backup retention must be >= 0, got {value}")
    return value


def load_config_file(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load config.yaml.

    Priority: explicit path > SCHEMAGUARD_CONFIG > {data dir}/config.yaml.
    A missing default file yields an empty config; a missing explicit file
    is an error.

    Raises:
        ConfigurationError: If the file is missing (explicit only) or invalid
    """
    explicit = config_path is not None
    if config_path is None and os.getenv("SCHEMAGUARD_CONFIG"):
        config_path = Path(os.environ["SCHEMAGUARD_CONFIG"])
        explicit = True
    if config_path is None:
        config_path = get_default_data_dir() / CONFIG_FILENAME

    config_path = Path(config_path)
    if not config_path.exists():
        if explicit:
            raise ConfigurationError(f"Config file not found: {config_path}")
        return {}

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read config {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {config_path} must be a mapping")
    logger.debug(f"Loaded config from {config_path}")
    return data


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return section


def load_settings(db_path: Optional[str] = None,
                  migrations_dir: Optional[str] = None,
                  backup_dir: Optional[str] = None,
                  config_path: Optional[Path] = None,
                  for_backup_ops: bool = False) -> Settings:
    """Resolve settings from flags, environment and config.yaml.

    Args:
        db_path: --db flag value
        migrations_dir: --migrations flag value
        backup_dir: --backup-dir flag value
        config_path: --config flag value
        for_backup_ops: Fall back to a legacy database in place (backup
            commands) instead of offering it for adoption (migrate)
    """
    config = load_config_file(config_path)
    database = _section(config, "database")
    migrations = _section(config, "migrations")
    backup = _section(config, "backup")

    resolved = resolve_paths(
        db_path,
        migrations_dir,
        configured_db=database.get("path"),
        configured_migrations=migrations.get("dir"),
    )
    source = resolved.db_path_source

    db = resolved.db_path
    legacy = resolved.legacy_db_path
    if for_backup_ops:
        db = resolve_db_path_for_ops(db, source, legacy)
        legacy = None

    backup_value = ((backup_dir or "").strip()
                    or os.getenv("SCHEMAGUARD_DB_BACKUP_DIR", "").strip()
                    or backup.get("dir"))
    resolved_backup_dir = Path(backup_value).expanduser().resolve() if backup_value else db.parent / "backups"

    busy_raw = os.getenv("SCHEMAGUARD_SQLITE_BUSY_TIMEOUT_MS") or database.get("busy_timeout_ms")
    retention_raw = os.getenv("SCHEMAGUARD_BACKUP_RETENTION") or backup.get("retention")

    return Settings(
        db_path=db,
        db_path_source=source,
        migrations_dir=resolved.migrations_dir,
        backup_dir=resolved_backup_dir,
        legacy_db_path=legacy,
        busy_timeout_ms=parse_busy_timeout_ms(busy_raw),
        retention_count=parse_retention_count(retention_raw),
    )
