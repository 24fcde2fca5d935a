"""
Migration Registry

Discovers the SQL migration scripts available on disk.

Features:
- Discovery of *.sql files from a migrations directory
- Lexicographic ordering by file name (file name order is apply order)
- Pending computation against the names already in the ledger
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Union

from ..errors import ConfigurationError


@dataclass(frozen=True)
class MigrationFile:
    """A migration script read from disk."""
    name: str
    path: Path
    sql_text: str

    def __repr__(self) -> str:
        return f"<Migration {self.name}>"


class MigrationRegistry:
    """
    Migration Registry - Discovers and orders migration scripts

    Pattern: Lazy discovery from a directory of *.sql files
    Lifetime: Created per migration run

    Example:
        registry = MigrationRegistry(migrations_dir)
        for name in registry.get_pending_names(ledger.applied_names()):
            print(f"Apply {name}")
    """

    PATTERN = "*.sql"

    def __init__(self, migrations_dir: Union[str, Path]):
        """
        Initialize Migration Registry.

        Args:
            migrations_dir: Directory containing the *.sql scripts
        """
        self.migrations_dir = Path(migrations_dir)
        self._files: Dict[str, Path] = {}
        self._discovered = False

    def discover(self) -> None:
        """
        Discover all *.sql files in the migrations directory.

        Raises:
            ConfigurationError: If the directory does not exist
        """
        if self._discovered:
            return

        if not self.migrations_dir.is_dir():
            raise ConfigurationError(
                f"Migrations directory does not exist: {self.migrations_dir}"
            )

        for path in self.migrations_dir.glob(self.PATTERN):
            if path.is_file():
                self._files[path.name] = path
        self._discovered = True

    def get_names(self) -> List[str]:
        """
        Get all script names in apply order.

        Returns:
            File names sorted lexicographically
        """
        if not self._discovered:
            self.discover()
        return sorted(self._files)

    def load(self, name: str) -> MigrationFile:
        """
        Read a script from disk.

        Raises:
            KeyError: If no script with that name was discovered
            OSError: If the file cannot be read
            UnicodeDecodeError: If the file is not UTF-8
        """
        if not self._discovered:
            self.discover()
        path = self._files[name]
        return MigrationFile(name=name, path=path, sql_text=path.read_text(encoding="utf-8"))

    def get_pending_names(self, applied: Iterable[str]) -> List[str]:
        """
        Get scripts that still need to be applied.

        Args:
            applied: Names already recorded in the ledger

        Returns:
            Pending names in apply order
        """
        applied = set(applied)
        return [name for name in self.get_names() if name not in applied]

    def get_migration_count(self) -> int:
        """Total number of scripts on disk."""
        return len(self.get_names())

    def __repr__(self) -> str:
        return f"<MigrationRegistry {self.migrations_dir}: {len(self._files)} scripts>"
