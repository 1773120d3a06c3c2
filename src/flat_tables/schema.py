"""DDL generation for flattened models."""

from __future__ import annotations

from flat_tables.codec import CodecRegistry, default_registry
from flat_tables.config import DEFAULT_CONFIGURATION, StorageConfiguration
from flat_tables.exceptions import SchemaError
from flat_tables.paths import ModelSchema, PropertyPath
from flat_tables.types import ColumnType


def quote_identifier(name: str) -> str:
    """Quote a table or column name, doubling embedded quote characters."""
    return '"' + name.replace('"', '""') + '"'


def reference_name(owner: str, path: str) -> str:
    """Return the logical name of the reference table behind a collection field.

    Reference tables are named after their owner and the field path, so the
    same element type used by two owners gets two tables.
    """
    return f"{owner}__{path.replace('.', '__')}"


def table_name_for(
    name: str, configuration: StorageConfiguration = DEFAULT_CONFIGURATION
) -> str:
    """Return the table name for a model or reference name."""
    return configuration.table_name(name)


class SchemaBuilder:
    """Builds CREATE/DROP statements from a ModelSchema."""

    def __init__(
        self,
        registry: CodecRegistry | None = None,
        configuration: StorageConfiguration = DEFAULT_CONFIGURATION,
    ) -> None:
        self.registry = registry if registry is not None else default_registry
        self.configuration = configuration

    def column_type(self, prop: PropertyPath) -> ColumnType:
        """Return the storage class of a leaf path.

        Raises:
            SchemaError: If the leaf type has no column mapping.
        """
        column_type = self.registry.column_type(prop.leaf_type)
        if column_type is None:
            raise SchemaError(f"No column type for '{prop.path}' ({prop.leaf_type!r})")
        return column_type

    def columns(
        self,
        schema: ModelSchema,
        has_references: bool = False,
        is_element_table: bool = False,
    ) -> list[tuple[str, str]]:
        """List (column, declaration) pairs in table order."""
        config = self.configuration
        # SQLite compares identifiers case-insensitively
        reserved = {name.casefold() for name in config.reserved_columns}
        seen: dict[str, str] = {}
        columns = [(config.row_id_column, "INTEGER PRIMARY KEY AUTOINCREMENT")]
        for prop in schema:
            folded = prop.path.casefold()
            if folded in reserved:
                raise SchemaError(
                    f"Field '{prop.path}' of {schema.model.__name__} collides with "
                    "a column managed by the engine"
                )
            if folded in seen:
                raise SchemaError(
                    f"Fields '{seen[folded]}' and '{prop.path}' of "
                    f"{schema.model.__name__} map to the same column"
                )
            seen[folded] = prop.path
            columns.append((prop.path, self.column_type(prop).value))
        if has_references:
            columns.append((config.primary_key_column, ColumnType.TEXT.value))
        if is_element_table:
            columns.append((config.foreign_key_column, ColumnType.TEXT.value))
        return columns

    def build_ddl(
        self,
        table: str,
        schema: ModelSchema,
        has_references: bool = False,
        is_element_table: bool = False,
    ) -> str:
        """Build an idempotent CREATE TABLE statement."""
        columns = self.columns(schema, has_references, is_element_table)
        body = ", ".join(f"{quote_identifier(name)} {decl}" for name, decl in columns)
        return f"CREATE TABLE IF NOT EXISTS {quote_identifier(table)} ({body})"

    def build_drop(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {quote_identifier(table)}"
