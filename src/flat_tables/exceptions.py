"""Flat Tables exception hierarchy."""

from __future__ import annotations


class FlatTablesError(Exception):
    """Base exception for all Flat Tables errors."""


class SchemaError(FlatTablesError, TypeError):
    """Raised when a model type cannot be flattened or mapped to columns."""


class UnsupportedTypeError(SchemaError):
    """Raised when a field type is neither a leaf, a dataclass nor a collection."""


class ValidationError(FlatTablesError, ValueError):
    """Raised when a filter, update map or expression is rejected before execution."""


class EngineStateError(FlatTablesError, RuntimeError):
    """Raised when an engine operation is invoked before initialization completes."""


class StorageExecutionError(FlatTablesError):
    """Raised when SQLite rejects a statement.

    The offending statement text is kept on ``statement`` and the original
    ``sqlite3`` error is chained as ``__cause__``.
    """

    def __init__(self, message: str, statement: str) -> None:
        super().__init__(f"{message}\nStatement: {statement.strip()}")
        self.message = message
        self.statement = statement
