"""
Error taxonomy for schemaguard.

Every failure the engine reports is one of the classes below. Each carries
structured context (file names, paths, underlying messages) so callers and
the CLI can report the full picture without parsing strings.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union


class SchemaGuardError(Exception):
    """Base exception for migration and backup errors"""

    kind = "error"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {"kind": self.kind, "error": str(self)}


class ConfigurationError(SchemaGuardError):
    """Raised for bad or missing arguments and settings"""

    kind = "configuration"


class NotFoundError(SchemaGuardError):
    """Raised when a database, legacy database or backup file is missing"""

    kind = "not_found"

    def __init__(self, what: str, path: Union[str, Path]):
        self.what = what
        self.path = Path(path)
        super().__init__(f"{what} not found: {path}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["path"] = str(self.path)
        return data


class IntegrityError(SchemaGuardError):
    """Raised when SQLite's integrity check reports problems"""

    kind = "integrity"

    def __init__(self, path: Union[str, Path], problems: List[str]):
        self.path = Path(path)
        self.problems = list(problems)
        super().__init__(
            f"SQLite integrity_check failed for {path}: {'; '.join(self.problems)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["path"] = str(self.path)
        data["problems"] = self.problems
        return data


class MigrationScriptError(SchemaGuardError):
    """Raised when a migration script fails to apply"""

    kind = "migration_script"

    def __init__(
        self,
        name: str,
        path: Union[str, Path],
        message: str,
        restored_from: Optional[Path] = None,
    ):
        self.name = name
        self.path = Path(path)
        self.message = message
        self.restored_from = restored_from
        super().__init__(f"Migration {name} failed: {message}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["migration"] = self.name
        data["path"] = str(self.path)
        data["restoredFrom"] = str(self.restored_from) if self.restored_from else None
        return data


class BackupError(SchemaGuardError):
    """Raised when a snapshot cannot be written"""

    kind = "backup"

    def __init__(self, db_path: Union[str, Path], backup_path: Union[str, Path], message: str):
        self.db_path = Path(db_path)
        self.backup_path = Path(backup_path)
        self.message = message
        super().__init__(f"Backup of {db_path} to {backup_path} failed: {message}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["dbPath"] = str(self.db_path)
        data["backupPath"] = str(self.backup_path)
        return data


class RestoreError(SchemaGuardError):
    """Raised when copying a backup into place fails"""

    kind = "restore"

    def __init__(self, db_path: Union[str, Path], backup_path: Union[str, Path], message: str):
        self.db_path = Path(db_path)
        self.backup_path = Path(backup_path)
        self.message = message
        super().__init__(f"Restore of {db_path} from {backup_path} failed: {message}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["dbPath"] = str(self.db_path)
        data["backupPath"] = str(self.backup_path)
        return data


class CombinedFailure(SchemaGuardError):
    """Raised when a script failed and the compensating restore failed too"""

    kind = "combined"

    def __init__(self, script_error: MigrationScriptError, restore_error: SchemaGuardError):
        self.script_error = script_error
        self.restore_error = restore_error
        super().__init__(
            f"{script_error}; additionally the restore from backup failed: {restore_error}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["scriptError"] = self.script_error.to_dict()
        data["restoreError"] = self.restore_error.to_dict()
        return data
