"""Configuration defaults for Flat Tables storage engines."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_DATABASE_NAME = "db.sqlite"


@dataclass(frozen=True)
class StorageConfiguration:
    """Settings shared by a storage engine and its reference tables."""

    # None means DEFAULT_DATABASE_NAME in the current working directory
    database_path: Path | str | None = None
    # Row bound for delete when the caller gives none
    default_limit: int = 100
    # Row bound for update when the caller gives none
    update_limit: int = 1
    table_prefix: str = "DATA_"
    table_suffix: str = "_TABLE"
    row_id_column: str = "_Id_"
    primary_key_column: str = "_PrimaryKey_"
    foreign_key_column: str = "_ForeignKey_"
    # SQLite's historical SQLITE_MAX_VARIABLE_NUMBER
    max_parameters: int = 999

    def resolve_database_path(self) -> Path | str:
        """Return the configured store location, defaulting to the working directory."""
        if self.database_path is None:
            return Path.cwd() / DEFAULT_DATABASE_NAME
        return self.database_path

    def table_name(self, name: str) -> str:
        """Return the table name used for a model or reference name."""
        return f"{self.table_prefix}{name}{self.table_suffix}"

    @property
    def reserved_columns(self) -> frozenset[str]:
        """Column names the engine manages itself."""
        return frozenset(
            {self.row_id_column, self.primary_key_column, self.foreign_key_column}
        )


DEFAULT_CONFIGURATION = StorageConfiguration()
