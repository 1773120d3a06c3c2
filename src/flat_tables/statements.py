"""SQL statement generation for flattened models.

All values are bound as parameters; identifiers are always quoted.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from flat_tables.codec import ValueCodec
from flat_tables.config import DEFAULT_CONFIGURATION, StorageConfiguration
from flat_tables.exceptions import ValidationError
from flat_tables.parsing.filter_parser import (
    CompoundCondition,
    Condition,
    FilterNode,
    FilterParser,
    NegatedCondition,
)
from flat_tables.paths import ModelSchema
from flat_tables.schema import quote_identifier

_COMPARISON_SQL = {"eq": "=", "neq": "!=", "lt": "<", "lte": "<=", "gt": ">", "gte": ">="}

_parsers = threading.local()


def parse_filter(expression: str) -> FilterNode:
    """Parse a filter expression with a per-thread parser.

    Raises:
        ValidationError: If the expression is malformed.
    """
    parser = getattr(_parsers, "parser", None)
    if parser is None:
        parser = _parsers.parser = FilterParser()
    try:
        return parser.parse(expression)
    except SyntaxError as e:
        raise ValidationError(f"Invalid filter expression {expression!r}: {e}") from e


@dataclass(frozen=True)
class Statement:
    """Statement text plus its bound parameters."""

    text: str
    parameters: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class Clause:
    """A WHERE-clause fragment; the empty clause matches every row."""

    text: str = ""
    parameters: tuple[Any, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.text)

    def __and__(self, other: Clause) -> Clause:
        if not self:
            return other
        if not other:
            return self
        return Clause(
            text=f"({self.text}) AND ({other.text})",
            parameters=self.parameters + other.parameters,
        )

    def sql(self) -> str:
        """Return the clause with its WHERE keyword, or an empty string."""
        return f" WHERE {self.text}" if self.text else ""


class StatementBuilder:
    """Builds INSERT/SELECT/UPDATE/DELETE statements for one table."""

    def __init__(
        self,
        table: str,
        schema: ModelSchema,
        codec: ValueCodec,
        *,
        has_primary_key: bool = False,
        has_foreign_key: bool = False,
        configuration: StorageConfiguration = DEFAULT_CONFIGURATION,
    ) -> None:
        self.table = table
        self.schema = schema
        self.codec = codec
        self.has_primary_key = has_primary_key
        self.has_foreign_key = has_foreign_key
        self.configuration = configuration
        self._table = quote_identifier(table)
        self._row_id = quote_identifier(configuration.row_id_column)

    # -- Columns ---------------------------------------------------------------

    @property
    def insert_columns(self) -> list[str]:
        """Columns written by an insert, in value order."""
        columns = self.schema.names()
        if self.has_primary_key:
            columns.append(self.configuration.primary_key_column)
        if self.has_foreign_key:
            columns.append(self.configuration.foreign_key_column)
        return columns

    @property
    def select_columns(self) -> list[str]:
        """Columns read by a select: row id, linking keys, then every path."""
        columns = [self.configuration.row_id_column]
        if self.has_primary_key:
            columns.append(self.configuration.primary_key_column)
        if self.has_foreign_key:
            columns.append(self.configuration.foreign_key_column)
        return columns + self.schema.names()

    def encode(self, path: str, value: Any) -> Any:
        """Encode a value for the column at ``path``."""
        prop = self.schema.get(path)
        if prop is None:
            raise ValidationError(
                f"Unknown property path '{path}' for {self.schema.model.__name__}"
            )
        return self.codec.encode(value, prop.leaf_type)

    def validate_keys(self, keys: Iterable[str]) -> None:
        """Ensure every key is a known schema path."""
        unknown = [k for k in keys if k not in self.schema]
        if unknown:
            raise ValidationError(
                f"Unknown property path(s) for {self.schema.model.__name__}: "
                + ", ".join(repr(k) for k in unknown)
            )

    # -- Clauses ---------------------------------------------------------------

    def where(
        self,
        filter: Mapping[str, Any] | None = None,
        expression: str | None = None,
    ) -> Clause:
        """Build a clause from a key/value map and/or a filter expression.

        Map entries are AND-ed equality tests; a None value tests for NULL.
        """
        clause = Clause()
        if filter:
            self.validate_keys(filter)
            parts = []
            parameters: list[Any] = []
            for path, value in filter.items():
                column = quote_identifier(path)
                if value is None:
                    parts.append(f"{column} IS NULL")
                else:
                    parts.append(f"{column} = ?")
                    parameters.append(self.encode(path, value))
            clause = Clause(text=" AND ".join(parts), parameters=tuple(parameters))
        if expression is not None:
            clause = clause & self.compile(parse_filter(expression))
        return clause

    def where_row_ids(self, row_ids: Sequence[int]) -> Clause:
        """Clause matching explicit row ids."""
        placeholders = ", ".join("?" for _ in row_ids)
        return Clause(text=f"{self._row_id} IN ({placeholders})", parameters=tuple(row_ids))

    def where_foreign_keys(self, keys: Sequence[str]) -> Clause:
        """Clause matching child rows of the given parent linking keys."""
        column = quote_identifier(self.configuration.foreign_key_column)
        placeholders = ", ".join("?" for _ in keys)
        return Clause(text=f"{column} IN ({placeholders})", parameters=tuple(keys))

    def compile(self, node: FilterNode) -> Clause:
        """Compile a parsed filter expression into a parameterized clause."""
        if isinstance(node, CompoundCondition):
            left = self.compile(node.left)
            right = self.compile(node.right)
            return Clause(
                text=f"({left.text}) {node.operator.upper()} ({right.text})",
                parameters=left.parameters + right.parameters,
            )
        if isinstance(node, NegatedCondition):
            inner = self.compile(node.operand)
            return Clause(text=f"NOT ({inner.text})", parameters=inner.parameters)

        assert isinstance(node, Condition)
        self.validate_keys([node.path])
        column = quote_identifier(node.path)

        if node.operator == "is_null" or (node.value is None and node.operator in ("eq", "neq")):
            negate = node.negate != (node.operator == "neq")
            return Clause(text=f"{column} IS {'NOT ' if negate else ''}NULL")

        if node.value is None:
            raise ValidationError(f"Cannot compare '{node.path}' with null using an ordering operator")

        if node.operator == "starts_with":
            pattern = (
                str(node.value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
            )
            text = f"{column} LIKE ? ESCAPE '\\'"
            parameters: tuple[Any, ...] = (pattern,)
        else:
            text = f"{column} {_COMPARISON_SQL[node.operator]} ?"
            parameters = (self.encode(node.path, node.value),)

        if node.negate:
            text = f"NOT ({text})"
        return Clause(text=text, parameters=parameters)

    def _bounded(self, clause: Clause, limit: int | None) -> Clause:
        """Restrict a clause to at most ``limit`` rows via a row-id subquery."""
        if limit is None:
            return clause
        return Clause(
            text=(
                f"{self._row_id} IN (SELECT {self._row_id} FROM {self._table}"
                f"{clause.sql()} ORDER BY {self._row_id} LIMIT ?)"
            ),
            parameters=clause.parameters + (limit,),
        )

    # -- Statements ------------------------------------------------------------

    def insert(
        self,
        instance: Any,
        primary_key: str | None = None,
        foreign_key: str | None = None,
    ) -> Statement:
        """Build a single-row insert."""
        return self.insert_many([instance], [primary_key], [foreign_key])

    def insert_many(
        self,
        instances: Sequence[Any],
        primary_keys: Sequence[str | None] | None = None,
        foreign_keys: Sequence[str | None] | None = None,
    ) -> Statement:
        """Build one multi-row insert with a value tuple per instance."""
        if not instances:
            raise ValidationError("Insert requires at least one instance")
        primary_keys = list(primary_keys) if primary_keys is not None else [None] * len(instances)
        foreign_keys = list(foreign_keys) if foreign_keys is not None else [None] * len(instances)
        if len(primary_keys) != len(instances) or len(foreign_keys) != len(instances):
            raise ValidationError("Linking keys must be given for every instance")

        columns = self.insert_columns
        if not columns:
            if len(instances) != 1:
                raise ValidationError("Tables without columns take one row per insert")
            return Statement(f"INSERT INTO {self._table} DEFAULT VALUES")

        parameters: list[Any] = []
        for instance, primary_key, foreign_key in zip(instances, primary_keys, foreign_keys):
            for prop in self.schema:
                parameters.append(self.codec.encode(prop.getter(instance), prop.leaf_type))
            if self.has_primary_key:
                parameters.append(primary_key)
            if self.has_foreign_key:
                parameters.append(foreign_key)

        row = "(" + ", ".join("?" for _ in columns) + ")"
        text = (
            f"INSERT INTO {self._table} ({', '.join(quote_identifier(c) for c in columns)}) "
            f"VALUES {', '.join(row for _ in instances)}"
        )
        return Statement(text, tuple(parameters))

    def select(
        self,
        clause: Clause = Clause(),
        limit: int | None = None,
        offset: int = 0,
    ) -> Statement:
        """Build a select of every column, ordered by row id."""
        columns = ", ".join(quote_identifier(c) for c in self.select_columns)
        text = f"SELECT {columns} FROM {self._table}{clause.sql()} ORDER BY {self._row_id}"
        parameters = clause.parameters
        if limit is not None or offset:
            text += " LIMIT ? OFFSET ?"
            parameters += (-1 if limit is None else limit, offset)
        return Statement(text, parameters)

    def select_keys(self, clause: Clause = Clause(), limit: int | None = None) -> Statement:
        """Build a select of the linking keys of the rows a clause targets."""
        column = quote_identifier(self.configuration.primary_key_column)
        bounded = self._bounded(clause, limit)
        return Statement(f"SELECT {column} FROM {self._table}{bounded.sql()}", bounded.parameters)

    def update(
        self,
        clause: Clause,
        destination: Mapping[str, Any],
        limit: int | None = None,
    ) -> Statement:
        """Build an update setting ``destination`` on at most ``limit`` matching rows."""
        if not destination:
            raise ValidationError("Update destination must set at least one property")
        self.validate_keys(destination)

        assignments = ", ".join(f"{quote_identifier(path)} = ?" for path in destination)
        values = tuple(self.encode(path, value) for path, value in destination.items())
        bounded = self._bounded(clause, limit)
        return Statement(
            f"UPDATE {self._table} SET {assignments}{bounded.sql()}",
            values + bounded.parameters,
        )

    def delete(self, clause: Clause = Clause(), limit: int | None = None) -> Statement:
        """Build a delete of at most ``limit`` matching rows."""
        bounded = self._bounded(clause, limit)
        return Statement(f"DELETE FROM {self._table}{bounded.sql()}", bounded.parameters)

    def update_rows(self, row_ids: Sequence[int], destination: Mapping[str, Any]) -> Statement:
        """Build an update of explicit rows."""
        return self.update(self.where_row_ids(row_ids), destination)

    def delete_rows(self, row_ids: Sequence[int]) -> Statement:
        return self.delete(self.where_row_ids(row_ids))

    def delete_all(self) -> Statement:
        return Statement(f"DELETE FROM {self._table}")

    def drop(self) -> Statement:
        return Statement(f"DROP TABLE IF EXISTS {self._table}")

    def count(self, clause: Clause = Clause()) -> Statement:
        return Statement(f"SELECT COUNT(*) FROM {self._table}{clause.sql()}", clause.parameters)
