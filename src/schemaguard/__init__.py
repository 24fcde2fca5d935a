"""
schemaguard - safe schema migrations for single-file SQLite databases

Applies plain SQL migration scripts in order, records them in a ledger,
backs the database up before changing it, and restores the backup when a
script fails.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .errors import (
    BackupError,
    CombinedFailure,
    ConfigurationError,
    IntegrityError,
    MigrationScriptError,
    NotFoundError,
    RestoreError,
    SchemaGuardError,
)
from .migrations import (
    BackupManager,
    BackupRecord,
    IntegrityChecker,
    MigrationLedger,
    MigrationResult,
    MigrationRunner,
    run_migrations,
)

__all__ = [
    "__version__",
    "BackupError",
    "BackupManager",
    "BackupRecord",
    "CombinedFailure",
    "ConfigurationError",
    "IntegrityChecker",
    "IntegrityError",
    "MigrationLedger",
    "MigrationResult",
    "MigrationRunner",
    "MigrationScriptError",
    "NotFoundError",
    "RestoreError",
    "SchemaGuardError",
    "run_migrations",
]
