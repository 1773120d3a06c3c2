"""Type definitions for the flat_tables library.

Every dataclass field is described once as one of three variants:

- ``LeafTypeDefinition``: an atomic value stored in a single column.
- ``CompositeTypeDefinition``: a nested dataclass whose leaves are inlined
  into the owner's table under dotted paths.
- ``CollectionTypeDefinition``: an iterable of elements stored in a separate
  reference table.
"""

from __future__ import annotations

import datetime
import decimal
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ColumnType(Enum):
    """SQLite storage classes used for table columns."""

    INTEGER = "INTEGER"
    NUMERIC = "NUMERIC"
    REAL = "REAL"
    TEXT = "TEXT"
    BLOB = "BLOB"


# Mapping from built-in leaf types to their column storage class.
# Booleans, timestamps and decimals are stored as text.
PRIMITIVE_COLUMN_TYPES: dict[type, ColumnType] = {
    bool: ColumnType.TEXT,
    int: ColumnType.INTEGER,
    float: ColumnType.REAL,
    str: ColumnType.TEXT,
    bytes: ColumnType.BLOB,
    datetime.datetime: ColumnType.TEXT,
    datetime.date: ColumnType.TEXT,
    decimal.Decimal: ColumnType.TEXT,
    uuid.UUID: ColumnType.TEXT,
}


# Zero values used when materializing a fresh instance
ZERO_VALUES: dict[type, Any] = {
    bool: False,
    int: 0,
    float: 0.0,
    str: "",
    bytes: b"",
    datetime.datetime: datetime.datetime.min,
    datetime.date: datetime.date.min,
    decimal.Decimal: decimal.Decimal(0),
    uuid.UUID: uuid.UUID(int=0),
}


def is_primitive_type(tp: Any) -> bool:
    """Check if a type is a built-in leaf type (including enums)."""
    if tp in PRIMITIVE_COLUMN_TYPES:
        return True
    return isinstance(tp, type) and issubclass(tp, Enum)


@dataclass
class TypeDefinition:
    """Base class for all type definitions."""

    name: str
    python_type: Any

    @property
    def is_leaf(self) -> bool:
        """Return whether values of this type occupy a single column."""
        return False

    @property
    def is_composite(self) -> bool:
        """Return whether this type is a nested dataclass."""
        return False

    @property
    def is_collection(self) -> bool:
        """Return whether this type is stored in a reference table."""
        return False


@dataclass
class LeafTypeDefinition(TypeDefinition):
    """A primitive, enum or registered opaque type."""

    optional: bool = False

    @property
    def is_leaf(self) -> bool:
        return True


@dataclass
class FieldDefinition:
    """Definition of a field within a composite type."""

    name: str
    type_def: TypeDefinition


@dataclass
class CompositeTypeDefinition(TypeDefinition):
    """Type definition for a dataclass whose fields are flattened into columns."""

    fields: list[FieldDefinition] = field(default_factory=list)

    @property
    def is_composite(self) -> bool:
        return True

    def get_field(self, name: str) -> FieldDefinition | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass
class CollectionTypeDefinition(TypeDefinition):
    """Type definition for a collection-valued field.

    ``container`` is the concrete type rebuilt on read (``list``, ``tuple``,
    ``set``, ``frozenset`` or a user subclass of one of them).
    """

    container: type = list
    element_type: TypeDefinition | None = None

    @property
    def is_collection(self) -> bool:
        return True

    def build(self, items: list[Any]) -> Any:
        """Rebuild the declared container from loaded elements."""
        if self.container is list:
            return items
        return self.container(items)
