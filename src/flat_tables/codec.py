"""Conversion of leaf values to and from their stored representation."""

from __future__ import annotations

import datetime
import decimal
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from flat_tables.exceptions import ValidationError
from flat_tables.types import PRIMITIVE_COLUMN_TYPES, ColumnType, is_primitive_type


@dataclass(frozen=True)
class TypeCodec:
    """Encode/decode pair registered for an opaque leaf type."""

    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]
    column_type: ColumnType = ColumnType.TEXT


class CodecRegistry:
    """Registry of custom leaf types.

    A registered type is treated as atomic by the path engine and is
    converted with its own codec ahead of the built-in coercions. A registry
    may fall back to a parent, so an engine can extend the process-wide
    default registry without mutating it.
    """

    def __init__(self, parent: CodecRegistry | None = None) -> None:
        self.parent = parent
        self._codecs: dict[type, TypeCodec] = {}

    def register(
        self,
        tp: type,
        encode: Callable[[Any], Any],
        decode: Callable[[Any], Any],
        column_type: ColumnType = ColumnType.TEXT,
    ) -> TypeCodec:
        """Register a codec for a type, replacing any previous one."""
        codec = TypeCodec(encode=encode, decode=decode, column_type=column_type)
        self._codecs[tp] = codec
        return codec

    def unregister(self, tp: type) -> None:
        """Remove a type's codec from this registry (parents are untouched)."""
        self._codecs.pop(tp, None)

    def get(self, tp: Any) -> TypeCodec | None:
        """Get the codec for a type, searching its MRO and then the parent."""
        for klass in getattr(tp, "__mro__", (tp,)):
            codec = self._codecs.get(klass)
            if codec is not None:
                return codec
        if self.parent is not None:
            return self.parent.get(tp)
        return None

    def is_leaf(self, tp: Any) -> bool:
        """Check if a type is stored in a single column."""
        return self.get(tp) is not None or is_primitive_type(tp)

    def column_type(self, tp: Any) -> ColumnType | None:
        """Return the column type for a leaf type, or None if it is not a leaf."""
        codec = self.get(tp)
        if codec is not None:
            return codec.column_type
        if tp in PRIMITIVE_COLUMN_TYPES:
            return PRIMITIVE_COLUMN_TYPES[tp]
        if isinstance(tp, type) and issubclass(tp, Enum):
            return ColumnType.TEXT
        return None

    def __contains__(self, tp: Any) -> bool:
        return self.get(tp) is not None


# Process-wide registry consulted by every engine that is not given its own
default_registry = CodecRegistry()


def register_type(
    tp: type,
    encode: Callable[[Any], Any],
    decode: Callable[[Any], Any],
    column_type: ColumnType = ColumnType.TEXT,
) -> TypeCodec:
    """Register a custom leaf type in the process-wide registry."""
    return default_registry.register(tp, encode, decode, column_type)


_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no", ""})


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"Not a boolean: {raw!r}")
    return bool(raw)


class ValueCodec:
    """Converts leaf values to SQLite parameters and back."""

    def __init__(self, registry: CodecRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry

    def encode(self, value: Any, tp: Any) -> Any:
        """Convert a Python value of leaf type ``tp`` to its stored form.

        Raises:
            ValidationError: If the value cannot be coerced to ``tp``.
        """
        if value is None:
            return None

        codec = self.registry.get(tp)
        if codec is not None:
            return codec.encode(value)

        try:
            return self._encode_builtin(value, tp)
        except (TypeError, ValueError, KeyError, decimal.InvalidOperation) as e:
            raise ValidationError(
                f"Cannot store {value!r} as {getattr(tp, '__name__', tp)}: {e}"
            ) from e

    def _encode_builtin(self, value: Any, tp: Any) -> Any:
        if tp is bool:
            return str(_parse_bool(value))
        if isinstance(tp, type) and issubclass(tp, Enum):
            if isinstance(value, tp):
                return value.name
            return tp[value].name
        if tp is int:
            return int(value)
        if tp is float:
            return float(value)
        if tp is str:
            return str(value)
        if tp is bytes:
            return bytes(value)
        if tp is datetime.datetime:
            if isinstance(value, str):
                value = datetime.datetime.fromisoformat(value)
            return value.isoformat()
        if tp is datetime.date:
            if isinstance(value, datetime.datetime):
                value = value.date()
            elif isinstance(value, str):
                value = datetime.date.fromisoformat(value)
            return value.isoformat()
        if tp is decimal.Decimal:
            return str(decimal.Decimal(value))
        if tp is uuid.UUID:
            return str(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))
        raise TypeError(f"Unsupported leaf type: {tp!r}")

    def decode(self, raw: Any, tp: Any) -> Any:
        """Convert a stored value back to leaf type ``tp``."""
        if raw is None:
            return None

        codec = self.registry.get(tp)
        if codec is not None:
            return codec.decode(raw)

        if tp is bool:
            return _parse_bool(raw)
        if isinstance(tp, type) and issubclass(tp, Enum):
            return tp[raw]
        if tp is int:
            return int(raw)
        if tp is float:
            return float(raw)
        if tp is str:
            return str(raw)
        if tp is bytes:
            return bytes(raw)
        if tp is datetime.datetime:
            return datetime.datetime.fromisoformat(raw)
        if tp is datetime.date:
            return datetime.date.fromisoformat(raw)
        if tp is decimal.Decimal:
            return decimal.Decimal(raw)
        if tp is uuid.UUID:
            return uuid.UUID(raw)
        raise TypeError(f"Unsupported leaf type: {tp!r}")
