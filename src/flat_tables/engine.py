"""Storage engine: CRUD operations for one dataclass model."""

from __future__ import annotations

import logging
import sqlite3
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, Mapping, Sequence, TypeVar

from flat_tables.codec import CodecRegistry, ValueCodec, default_registry
from flat_tables.config import DEFAULT_CONFIGURATION, StorageConfiguration
from flat_tables.exceptions import EngineStateError, ValidationError
from flat_tables.gate import ConnectionGate
from flat_tables.paths import ModelSchema, PropertyPathEngine
from flat_tables.reference import ReferenceTableManager
from flat_tables.schema import SchemaBuilder, table_name_for
from flat_tables.statements import Clause, StatementBuilder

log = logging.getLogger(__name__)

T = TypeVar("T")

# A filter is a where-expression, a {path: value} map, an example instance
# (matched on its non-None leaves) or a predicate evaluated in Python.
Filter = Any


class EngineState(Enum):
    """Lifecycle of a storage engine."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class StorageEngine(Generic[T]):
    """Stores instances of one dataclass model in a SQLite table.

    Scalar fields, including the fields of nested dataclasses, are flattened
    into columns named by dotted path. Collection fields are stored in
    reference tables owned by nested engines.

    Example::

        @dataclass
        class Person:
            first_name: str = ""
            age: int = 0

        with StorageEngine(Person, "people.sqlite") as people:
            people.add(Person("Ann", 30))
            ann = people.find({"first_name": "Ann"})
    """

    def __init__(
        self,
        model: type[T],
        path: Path | str | None = None,
        *,
        name: str | None = None,
        gate: ConnectionGate | None = None,
        codecs: CodecRegistry | None = None,
        configuration: StorageConfiguration | None = None,
        is_element_table: bool = False,
        initialize: bool = True,
    ) -> None:
        """Create an engine.

        Args:
            model: Dataclass type stored by this engine.
            path: Database file; defaults to the configured database path.
            name: Logical table name; defaults to the model's class name.
            gate: Connection gate to share; defaults to the gate for ``path``.
            codecs: Registry of custom leaf types; defaults to the
                process-wide registry.
            configuration: Limits and naming; defaults to
                ``DEFAULT_CONFIGURATION``.
            is_element_table: Whether rows are elements of a parent's
                collection and carry a foreign linking key.
            initialize: Whether to build the schema and create the table now.
        """
        self.model = model
        self.name = name or model.__name__
        self.configuration = configuration or DEFAULT_CONFIGURATION
        self.table = table_name_for(self.name, self.configuration)
        self.registry = codecs if codecs is not None else default_registry
        self.is_element_table = is_element_table

        if gate is None:
            gate = ConnectionGate.for_path(
                path if path is not None else self.configuration.resolve_database_path()
            )
        self.gate = gate

        self.codec = ValueCodec(self.registry)
        self.paths = PropertyPathEngine(self.registry)
        self.state = EngineState.UNINITIALIZED

        self._schema: ModelSchema | None = None
        self._references: ReferenceTableManager | None = None
        self._statements: StatementBuilder | None = None
        self._ddl: SchemaBuilder | None = None

        if initialize:
            self.initialize()

    # -- Lifecycle -------------------------------------------------------------

    def initialize(self) -> None:
        """Build the schema, bind reference tables and create the tables.

        Calling it again once the engine is ready does nothing.
        """
        if self.state is EngineState.READY:
            return
        if self.state is EngineState.INITIALIZING:
            raise EngineStateError(f"Engine for {self.name} is already initializing")

        self.state = EngineState.INITIALIZING
        try:
            schema = self.paths.flatten(self.model)
            references = ReferenceTableManager(self)
            for collection in schema.collections.values():
                references.bind(collection)

            self._schema = schema
            self._references = references
            self._ddl = SchemaBuilder(self.registry, self.configuration)
            self._statements = StatementBuilder(
                self.table,
                schema,
                self.codec,
                has_primary_key=bool(references),
                has_foreign_key=self.is_element_table,
                configuration=self.configuration,
            )
            self._create_table()
        except BaseException:
            self.state = EngineState.UNINITIALIZED
            raise
        self.state = EngineState.READY

    def _require_ready(self) -> None:
        if self.state is not EngineState.READY:
            raise EngineStateError(
                f"Engine for {self.name} is {self.state.value}; call initialize() first"
            )

    @property
    def schema(self) -> ModelSchema:
        self._require_ready()
        assert self._schema is not None
        return self._schema

    @property
    def references(self) -> ReferenceTableManager:
        self._require_ready()
        assert self._references is not None
        return self._references

    @property
    def statements(self) -> StatementBuilder:
        self._require_ready()
        assert self._statements is not None
        return self._statements

    def _create_table(self) -> None:
        assert self._schema is not None and self._ddl is not None
        ddl = self._ddl.build_ddl(
            self.table,
            self._schema,
            has_references=bool(self._references),
            is_element_table=self.is_element_table,
        )
        self.gate.execute(ddl)
        log.info("Created table %s", self.table)

    def close(self) -> None:
        """Close the underlying connection; file databases reopen on the next operation."""
        self.gate.close()

    def __enter__(self) -> StorageEngine[T]:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"StorageEngine({self.model.__name__}, table={self.table!r}, state={self.state.value})"

    # -- Filters ---------------------------------------------------------------

    def _is_predicate(self, filter: Filter) -> bool:
        return (
            callable(filter)
            and not isinstance(filter, (str, Mapping, type))
            and not isinstance(filter, self.model)
        )

    def _clause(self, filter: Filter) -> Clause:
        """Compile a non-predicate filter into a WHERE clause."""
        if filter is None:
            return Clause()
        if isinstance(filter, str):
            return self.statements.where(expression=filter)
        if isinstance(filter, Mapping):
            return self.statements.where(filter)
        if isinstance(filter, self.model):
            return self.statements.where(self.paths.to_filter(filter))
        raise ValidationError(
            f"Unsupported filter for {self.name}: {type(filter).__name__}"
        )

    def _destination(self, destination: Any) -> dict[str, Any]:
        if isinstance(destination, Mapping):
            return dict(destination)
        if isinstance(destination, self.model):
            return self.paths.to_filter(destination)
        raise ValidationError(
            f"Update destination must be a mapping or a {self.model.__name__}"
        )

    def _scan(self, predicate: Callable[[T], bool]) -> list[tuple[sqlite3.Row, T]]:
        """Load every row and keep those whose instance satisfies ``predicate``."""
        rows = self.gate.query(self.statements.select())
        instances = self._materialize_rows(rows)
        return [(row, obj) for row, obj in zip(rows, instances) if predicate(obj)]

    # -- Reading ---------------------------------------------------------------

    def _materialize_rows(self, rows: Sequence[sqlite3.Row]) -> list[T]:
        """Build instances from selected rows, then load their collections."""
        instances: list[T] = []
        for row in rows:
            obj = self.paths.materialize_default(self.model)
            for prop in self.schema:
                prop.setter(obj, self.codec.decode(row[prop.path], prop.leaf_type))
            instances.append(obj)

        if self.references and instances:
            column = self.configuration.primary_key_column
            self.references.load_children(instances, [row[column] for row in rows])
        return instances

    def find(self, filter: Filter = None) -> T | None:
        """Return the first stored instance matching ``filter``, or None."""
        found = self.find_all(filter, limit=1)
        return found[0] if found else None

    def find_all(self, filter: Filter = None, limit: int | None = None, offset: int = 0) -> list[T]:
        """Return the stored instances matching ``filter`` in insertion order.

        Args:
            filter: Where-expression, path map, example instance or predicate.
                None matches every row.
            limit: Maximum number of instances; None means no bound.
            offset: Number of matches to skip.
        """
        self._require_ready()
        if limit is not None and limit < 0:
            raise ValidationError(f"limit must not be negative, got {limit}")
        if offset < 0:
            raise ValidationError(f"offset must not be negative, got {offset}")

        if self._is_predicate(filter):
            matches = [obj for _, obj in self._scan(filter)]
            end = None if limit is None else offset + limit
            return matches[offset:end]

        with self.gate.transaction():
            rows = self.gate.query(self.statements.select(self._clause(filter), limit, offset))
            return self._materialize_rows(rows)

    def find_linked(self, keys: Sequence[str]) -> dict[str, list[T]]:
        """Return element instances grouped by the parent key they belong to."""
        self._require_ready()
        column = self.configuration.foreign_key_column
        grouped: dict[str, list[T]] = {}
        for chunk in _chunks(keys, self.configuration.max_parameters):
            rows = self.gate.query(self.statements.select(self.statements.where_foreign_keys(chunk)))
            for row, obj in zip(rows, self._materialize_rows(rows)):
                grouped.setdefault(row[column], []).append(obj)
        return grouped

    def count(self, filter: Filter = None) -> int:
        """Return the number of stored rows matching ``filter``."""
        self._require_ready()
        if self._is_predicate(filter):
            return len(self._scan(filter))
        return int(self.gate.scalar(self.statements.count(self._clause(filter))))

    # -- Writing ---------------------------------------------------------------

    def create_table(self) -> None:
        """Create this table and every reference table if they do not exist."""
        self._require_ready()
        with self.gate.transaction():
            self.references.create_tables()
            self._create_table()

    def add(self, obj: T) -> int:
        """Store one instance together with its collections."""
        return self.add_all([obj])

    def add_all(self, objs: Iterable[T]) -> int:
        """Store several instances; returns the number of rows written to this table.

        The rows and all of their collection elements are written atomically.
        """
        return self._insert(list(objs))

    def add_linked(self, objs: Sequence[T], foreign_keys: Sequence[str]) -> int:
        """Store collection elements linked to their parents' keys."""
        if not self.is_element_table:
            raise EngineStateError(f"{self.table} is not a reference table")
        return self._insert(list(objs), list(foreign_keys))

    def _insert(self, objs: list[T], foreign_keys: list[str] | None = None) -> int:
        self._require_ready()
        if not objs:
            return 0
        for obj in objs:
            if not isinstance(obj, self.model):
                raise ValidationError(
                    f"Expected {self.model.__name__}, got {type(obj).__name__}"
                )

        references = self.references
        primary_keys: list[str | None] = (
            [references.new_key(obj) for obj in objs] if references else [None] * len(objs)
        )
        linked: list[str | None] = list(foreign_keys) if foreign_keys else [None] * len(objs)

        # Keep each statement under SQLite's bound-parameter limit
        columns = len(self.statements.insert_columns)
        size = max(1, self.configuration.max_parameters // columns) if columns else 1

        written = 0
        with self.gate.transaction():
            for start in range(0, len(objs), size):
                end = start + size
                written += self.gate.execute(
                    self.statements.insert_many(
                        objs[start:end], primary_keys[start:end], linked[start:end]
                    )
                )
            if references:
                references.add_children(objs, primary_keys)
        log.debug("Inserted %d row(s) into %s", written, self.table)
        return written

    def update(self, source: Filter, destination: Any, limit: int | None = None) -> int:
        """Set the ``destination`` values on at most ``limit`` rows matching ``source``.

        Only scalar columns are updated; collection fields are left as stored.

        Args:
            source: Filter selecting the rows to update.
            destination: Mapping of path to new value, or an instance whose
                non-None leaves are written.
            limit: Row bound; defaults to ``configuration.update_limit``.

        Returns:
            The number of updated rows.
        """
        self._require_ready()
        if limit is None:
            limit = self.configuration.update_limit
        values = self._destination(destination)

        if self._is_predicate(source):
            row_ids = [row[0] for row, _ in self._scan(source)][:limit]
            if not row_ids:
                self.statements.validate_keys(values)
                return 0
            with self.gate.transaction():
                return sum(
                    self.gate.execute(self.statements.update_rows(chunk, values))
                    for chunk in _chunks(row_ids, max(1, self.configuration.max_parameters - len(values)))
                )

        return self.gate.execute(self.statements.update(self._clause(source), values, limit))

    def delete(self, filter: Filter = None, limit: int | None = None) -> int:
        """Delete at most ``limit`` rows matching ``filter`` and their collections.

        ``filter`` may also be a list of instances, each deleting one
        matching row.

        Returns:
            The number of rows deleted from this table.
        """
        self._require_ready()
        if limit is None:
            limit = self.configuration.default_limit

        if isinstance(filter, (list, tuple)):
            with self.gate.transaction():
                return sum(self.delete(item, limit=1) for item in filter)

        if self._is_predicate(filter):
            rows = [row for row, _ in self._scan(filter)][:limit]
            if not rows:
                return 0
            deleted = 0
            with self.gate.transaction():
                for chunk in _chunks(rows, self.configuration.max_parameters):
                    if self.references:
                        column = self.configuration.primary_key_column
                        self.references.delete_children([row[column] for row in chunk])
                    deleted += self.gate.execute(
                        self.statements.delete_rows([row[0] for row in chunk])
                    )
            return deleted

        clause = self._clause(filter)
        with self.gate.transaction():
            if self.references:
                keys = self.gate.query(self.statements.select_keys(clause, limit))
                self.references.delete_children([row[0] for row in keys])
            return self.gate.execute(self.statements.delete(clause, limit))

    def delete_linked(self, keys: Sequence[str]) -> int:
        """Delete the element rows of the given parent keys, recursively."""
        self._require_ready()
        deleted = 0
        with self.gate.transaction():
            for chunk in _chunks(keys, self.configuration.max_parameters):
                clause = self.statements.where_foreign_keys(chunk)
                if self.references:
                    rows = self.gate.query(self.statements.select_keys(clause))
                    self.references.delete_children([row[0] for row in rows])
                deleted += self.gate.execute(self.statements.delete(clause))
        return deleted

    def delete_all(self) -> int:
        """Delete every row of this table and of its reference tables."""
        self._require_ready()
        with self.gate.transaction():
            self.references.delete_all()
            return self.gate.execute(self.statements.delete_all())

    def delete_table(self) -> None:
        """Drop this table and its reference tables.

        The engine stays ready; :meth:`create_table` re-creates the tables.
        """
        self._require_ready()
        with self.gate.transaction():
            self.references.drop_all()
            self.gate.execute(self.statements.drop())
        log.info("Dropped table %s", self.table)
