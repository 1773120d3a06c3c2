"""Serialized access to a SQLite database file."""

from __future__ import annotations

import logging
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ClassVar, Iterator, Sequence

from flat_tables.exceptions import EngineStateError, StorageExecutionError
from flat_tables.statements import Statement

log = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"


def _as_statement(statement: Statement | str, parameters: Sequence[Any] = ()) -> Statement:
    if isinstance(statement, Statement):
        return statement
    return Statement(statement, tuple(parameters))


class ConnectionGate:
    """One lazily opened connection guarded by one re-entrant lock.

    Every statement runs while the lock is held. Writes run in their own
    ``BEGIN``/``COMMIT`` unless a :meth:`transaction` is already open on
    the gate, in which case they join it.
    """

    # Gates stay registered only while some engine still holds them
    _gates: ClassVar[weakref.WeakValueDictionary[str, ConnectionGate]] = weakref.WeakValueDictionary()
    _gates_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, database: Path | str) -> None:
        self.database = str(database)
        self._lock = threading.RLock()
        self._connection: sqlite3.Connection | None = None
        self._depth = 0
        self._closed = False

    @classmethod
    def for_path(cls, database: Path | str) -> ConnectionGate:
        """Return the gate shared by every engine on ``database``.

        In-memory databases are private to their connection, so each call
        returns a new gate.
        """
        if str(database) == MEMORY_DATABASE:
            return cls(MEMORY_DATABASE)
        key = str(Path(database).resolve())
        with cls._gates_lock:
            gate = cls._gates.get(key)
            if gate is None:
                gate = cls._gates[key] = cls(key)
            return gate

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def in_transaction(self) -> bool:
        return self._connection is not None and self._connection.in_transaction

    def _ensure_open(self) -> sqlite3.Connection:
        if self._connection is None:
            if self._closed:
                # A closed in-memory database is gone; reopening would start empty
                raise EngineStateError(f"{self!r} was closed and cannot be reopened")
            log.debug("Opening connection to %s", self.database)
            # Autocommit mode: transactions are issued explicitly
            self._connection = sqlite3.connect(
                self.database, check_same_thread=False, isolation_level=None
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def _run(self, connection: sqlite3.Connection, statement: Statement) -> sqlite3.Cursor:
        log.debug("%s %r", statement.text, statement.parameters)
        try:
            return connection.execute(statement.text, statement.parameters)
        except sqlite3.Error as e:
            log.error("Statement failed on %s: %s", self.database, e)
            raise StorageExecutionError(str(e), statement.text) from e

    def execute(self, statement: Statement | str, parameters: Sequence[Any] = ()) -> int:
        """Run a write statement and return the number of affected rows.

        Raises:
            StorageExecutionError: If SQLite rejects the statement.
        """
        statement = _as_statement(statement, parameters)
        with self._lock:
            connection = self._ensure_open()
            if self._depth > 0:
                return self._run(connection, statement).rowcount

            connection.execute("BEGIN")
            try:
                return self._run(connection, statement).rowcount
            finally:
                if connection.in_transaction:
                    connection.execute("COMMIT")

    def query(self, statement: Statement | str, parameters: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run a read statement and return every row."""
        statement = _as_statement(statement, parameters)
        with self._lock:
            cursor = self._run(self._ensure_open(), statement)
            try:
                return cursor.fetchall()
            finally:
                cursor.close()

    def scalar(self, statement: Statement | str, parameters: Sequence[Any] = ()) -> Any:
        """Run a read statement and return the first column of the first row."""
        rows = self.query(statement, parameters)
        if not rows:
            return None
        return rows[0][0]

    @contextmanager
    def transaction(self) -> Iterator[ConnectionGate]:
        """Hold the lock and one transaction across several statements.

        Nested transactions join the outermost one. An exception rolls the
        whole unit back and propagates.
        """
        with self._lock:
            connection = self._ensure_open()
            if self._depth == 0:
                connection.execute("BEGIN")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0 and connection.in_transaction:
                    log.warning("Rolling back transaction on %s", self.database)
                    connection.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if self._depth == 0 and connection.in_transaction:
                    connection.execute("COMMIT")

    def rollback_last_operation(self) -> bool:
        """Roll back the open transaction, if any.

        Returns:
            True if a transaction was rolled back.
        """
        with self._lock:
            if not self.in_transaction:
                log.warning("No open transaction to roll back on %s", self.database)
                return False
            log.warning("Rolling back open transaction on %s", self.database)
            assert self._connection is not None
            self._connection.execute("ROLLBACK")
            return True

    def tables(self) -> list[str]:
        """List the user tables in the database."""
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row[0] for row in rows]

    def close(self) -> None:
        """Close the connection.

        A file database reopens on the next statement. An in-memory database
        is discarded, and later statements raise :class:`EngineStateError`.
        """
        with self._lock:
            if self._connection is not None:
                log.debug("Closing connection to %s", self.database)
                self._connection.close()
                self._connection = None
                self._depth = 0
                self._closed = self.database == MEMORY_DATABASE

    def __repr__(self) -> str:
        return f"ConnectionGate({self.database!r})"
