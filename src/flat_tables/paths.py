"""Property-path engine: flattening of nested dataclasses into dotted paths."""

from __future__ import annotations

import collections.abc
import dataclasses
import types
import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator

from flat_tables.codec import CodecRegistry, default_registry
from flat_tables.exceptions import SchemaError, UnsupportedTypeError, ValidationError
from flat_tables.types import (
    ZERO_VALUES,
    CollectionTypeDefinition,
    CompositeTypeDefinition,
    FieldDefinition,
    LeafTypeDefinition,
    TypeDefinition,
)

# Generic origins accepted as collections, mapped to the container rebuilt on read
_COLLECTION_ORIGINS: dict[Any, type] = {
    list: list,
    tuple: tuple,
    set: set,
    frozenset: frozenset,
    collections.abc.Iterable: list,
    collections.abc.Collection: list,
    collections.abc.Sequence: list,
    collections.abc.MutableSequence: list,
    collections.abc.Set: frozenset,
    collections.abc.MutableSet: set,
}


def element_type(tp: Any) -> Any | None:
    """Return ``T`` for a collection-of-``T`` annotation, or None.

    Handles ``list[T]``, ``tuple[T, ...]``, ``set[T]``, abstract iterables,
    and classes deriving from one of those generics (``class Tags(list[str])``).
    """
    origin = typing.get_origin(tp)
    if origin in _COLLECTION_ORIGINS:
        args = typing.get_args(tp)
        if origin is tuple:
            if len(args) == 2 and args[1] is Ellipsis:
                return args[0]
            return None
        return args[0] if args else None

    if isinstance(tp, type):
        for base in getattr(tp, "__orig_bases__", ()):
            found = element_type(base)
            if found is not None:
                return found
    return None


def _container_for(tp: Any) -> type:
    origin = typing.get_origin(tp)
    if origin in _COLLECTION_ORIGINS:
        return _COLLECTION_ORIGINS[origin]
    return tp


def _unwrap_optional(tp: Any) -> tuple[Any, bool]:
    """Strip ``Annotated`` and ``Optional`` wrappers: returns (type, optional)."""
    if typing.get_origin(tp) is typing.Annotated:
        tp = typing.get_args(tp)[0]

    origin = typing.get_origin(tp)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(tp)) == 2:
            inner, _ = _unwrap_optional(args[0])
            return inner, True
        raise UnsupportedTypeError(f"Union types are not supported: {tp!r}")
    return tp, False


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", repr(tp))


def _make_getter(segments: tuple[str, ...]) -> Callable[[Any], Any]:
    def getter(instance: Any) -> Any:
        for segment in segments:
            if instance is None:
                return None
            instance = getattr(instance, segment)
        return instance

    return getter


def _make_setter(segments: tuple[str, ...]) -> Callable[[Any, Any], None]:
    parents, last = segments[:-1], segments[-1]

    def setter(target: Any, value: Any) -> None:
        for segment in parents:
            target = getattr(target, segment)
        # object.__setattr__ also writes through frozen dataclasses
        object.__setattr__(target, last, value)

    return setter


@dataclass
class PropertyPath:
    """A flattened leaf field with accessors bound to its field chain."""

    path: str
    type_def: LeafTypeDefinition
    getter: Callable[[Any], Any] = field(repr=False)
    setter: Callable[[Any, Any], None] = field(repr=False)

    @property
    def leaf_type(self) -> Any:
        return self.type_def.python_type

    @property
    def optional(self) -> bool:
        return self.type_def.optional

    @property
    def segments(self) -> list[str]:
        return self.path.split(".")


@dataclass
class CollectionPath:
    """A collection-valued field, stored in a reference table."""

    path: str
    type_def: CollectionTypeDefinition
    getter: Callable[[Any], Any] = field(repr=False)
    setter: Callable[[Any, Any], None] = field(repr=False)

    @property
    def element(self) -> TypeDefinition:
        assert self.type_def.element_type is not None
        return self.type_def.element_type


@dataclass
class ModelSchema:
    """Ordered flattened view of a model type.

    ``paths`` maps each dotted path to its leaf; ``collections`` holds the
    collection-valued fields, which never become columns.
    """

    model: type
    definition: CompositeTypeDefinition
    paths: dict[str, PropertyPath] = field(default_factory=dict)
    collections: dict[str, CollectionPath] = field(default_factory=dict)

    def names(self) -> list[str]:
        """List all leaf paths in declaration order."""
        return list(self.paths)

    def leaf_types(self) -> dict[str, Any]:
        """Return the mapping from path to leaf Python type."""
        return {name: p.leaf_type for name, p in self.paths.items()}

    def get(self, path: str) -> PropertyPath | None:
        return self.paths.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self.paths

    def __iter__(self) -> Iterator[PropertyPath]:
        return iter(self.paths.values())

    def __len__(self) -> int:
        return len(self.paths)


class PropertyPathEngine:
    """Discovers leaf fields of dataclass graphs and reads/writes them by path."""

    def __init__(self, registry: CodecRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry
        self._definitions: dict[type, CompositeTypeDefinition] = {}
        self._schemas: dict[type, ModelSchema] = {}

    # -- Type description ------------------------------------------------------

    def describe(self, cls: type) -> CompositeTypeDefinition:
        """Build (or return the cached) type definition tree for a dataclass.

        Raises:
            UnsupportedTypeError: If ``cls`` or one of its field types cannot be
                stored.
            SchemaError: If the type graph is cyclic.
        """
        if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
            raise UnsupportedTypeError(f"Model types must be dataclasses, got {cls!r}")
        return self._describe_composite(cls, ())

    def _describe_composite(
        self, cls: type, stack: tuple[type, ...]
    ) -> CompositeTypeDefinition:
        cached = self._definitions.get(cls)
        if cached is not None:
            return cached
        if cls in stack:
            chain = " -> ".join(_type_name(t) for t in (*stack, cls))
            raise SchemaError(f"Cyclic type graph is not supported: {chain}")

        try:
            hints = typing.get_type_hints(cls, include_extras=True)
        except Exception as e:
            raise SchemaError(f"Cannot resolve annotations of {_type_name(cls)}: {e}") from e

        definition = CompositeTypeDefinition(name=_type_name(cls), python_type=cls)
        for f in dataclasses.fields(cls):
            tp = hints.get(f.name, f.type)
            try:
                type_def = self._describe_field(tp, (*stack, cls))
            except UnsupportedTypeError as e:
                raise UnsupportedTypeError(f"Field '{_type_name(cls)}.{f.name}': {e}") from e
            definition.fields.append(FieldDefinition(name=f.name, type_def=type_def))

        self._definitions[cls] = definition
        return definition

    def _describe_field(self, tp: Any, stack: tuple[type, ...]) -> TypeDefinition:
        tp, optional = _unwrap_optional(tp)

        if self.registry.is_leaf(tp):
            return LeafTypeDefinition(name=_type_name(tp), python_type=tp, optional=optional)

        if isinstance(tp, type) and dataclasses.is_dataclass(tp):
            definition = self._describe_composite(tp, stack)
            if optional:
                # Nested dataclasses are always materialized on read
                raise UnsupportedTypeError(
                    f"Optional[{_type_name(tp)}] cannot be stored; nested dataclasses are never None"
                )
            return definition

        item_type = element_type(tp)
        if item_type is not None:
            item_type, item_optional = _unwrap_optional(item_type)
            if self.registry.is_leaf(item_type):
                item_def: TypeDefinition = LeafTypeDefinition(
                    name=_type_name(item_type), python_type=item_type, optional=item_optional
                )
            elif isinstance(item_type, type) and dataclasses.is_dataclass(item_type):
                item_def = self._describe_composite(item_type, stack)
            else:
                raise UnsupportedTypeError(
                    f"collection element type {item_type!r} is neither a leaf nor a dataclass"
                )
            return CollectionTypeDefinition(
                name=f"{_type_name(item_type)}[]",
                python_type=tp,
                container=_container_for(tp),
                element_type=item_def,
            )

        raise UnsupportedTypeError(f"type {tp!r} has no column mapping and cannot be flattened")

    # -- Flattening ------------------------------------------------------------

    def flatten(self, cls: type) -> ModelSchema:
        """Return the ordered path -> leaf schema of a dataclass type."""
        cached = self._schemas.get(cls)
        if cached is not None:
            return cached

        definition = self.describe(cls)
        schema = ModelSchema(model=cls, definition=definition)
        self._flatten_into(schema, definition, ())
        self._schemas[cls] = schema
        return schema

    def _flatten_into(
        self,
        schema: ModelSchema,
        definition: CompositeTypeDefinition,
        prefix: tuple[str, ...],
    ) -> None:
        for f in definition.fields:
            segments = (*prefix, f.name)
            path = ".".join(segments)
            type_def = f.type_def
            if isinstance(type_def, LeafTypeDefinition):
                schema.paths[path] = PropertyPath(
                    path=path,
                    type_def=type_def,
                    getter=_make_getter(segments),
                    setter=_make_setter(segments),
                )
            elif isinstance(type_def, CompositeTypeDefinition):
                self._flatten_into(schema, type_def, segments)
            elif isinstance(type_def, CollectionTypeDefinition):
                schema.collections[path] = CollectionPath(
                    path=path,
                    type_def=type_def,
                    getter=_make_getter(segments),
                    setter=_make_setter(segments),
                )

    # -- Dynamic access --------------------------------------------------------

    def get_value(self, path: str, instance: Any) -> Any:
        """Read the value at a dotted path; a None intermediate yields None."""
        current = instance
        for segment in path.split("."):
            if current is None:
                return None
            if not _has_field(current, segment):
                raise ValidationError(
                    f"'{_type_name(type(current))}' has no field '{segment}' (path '{path}')"
                )
            current = getattr(current, segment)
        return current

    def set_value(self, path: str, target: Any, value: Any) -> None:
        """Write a value at a dotted path; every intermediate must be non-None."""
        segments = path.split(".")
        for segment in segments[:-1]:
            if not _has_field(target, segment):
                raise ValidationError(
                    f"'{_type_name(type(target))}' has no field '{segment}' (path '{path}')"
                )
            target = getattr(target, segment)
            if target is None:
                raise ValidationError(f"Intermediate '{segment}' of path '{path}' is None")
        if not _has_field(target, segments[-1]):
            raise ValidationError(
                f"'{_type_name(type(target))}' has no field '{segments[-1]}' (path '{path}')"
            )
        object.__setattr__(target, segments[-1], value)

    def to_filter(self, instance: Any) -> dict[str, Any]:
        """Flatten an instance into a {path: value} map of its non-None leaves."""
        schema = self.flatten(type(instance))
        result: dict[str, Any] = {}
        for name, p in schema.paths.items():
            value = p.getter(instance)
            if value is not None:
                result[name] = value
        return result

    # -- Default materialization -----------------------------------------------

    def materialize_default(self, cls: type) -> Any:
        """Create an instance with zero values and every composite field populated."""
        return self._materialize(self.describe(cls))

    def _materialize(self, definition: CompositeTypeDefinition) -> Any:
        cls = definition.python_type
        init_values: dict[str, Any] = {}
        late_values: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            field_def = definition.get_field(f.name)
            assert field_def is not None
            value = self._default_for(f, field_def.type_def)
            if f.init:
                init_values[f.name] = value
            else:
                late_values[f.name] = value

        instance = cls(**init_values)
        for name, value in late_values.items():
            object.__setattr__(instance, name, value)
        return instance

    def _default_for(self, f: dataclasses.Field, type_def: TypeDefinition) -> Any:
        if isinstance(type_def, CompositeTypeDefinition):
            return self._materialize(type_def)
        if f.default is not dataclasses.MISSING:
            return f.default
        if f.default_factory is not dataclasses.MISSING:
            return f.default_factory()
        if isinstance(type_def, CollectionTypeDefinition):
            return type_def.build([])
        assert isinstance(type_def, LeafTypeDefinition)
        if type_def.optional:
            return None
        return self.zero_value(type_def.python_type)

    def zero_value(self, tp: Any) -> Any:
        """Return the zero value of a leaf type."""
        if tp in ZERO_VALUES:
            return ZERO_VALUES[tp]
        if isinstance(tp, type) and issubclass(tp, Enum):
            return next(iter(tp), None)
        try:
            return tp()
        except Exception:
            return None


def _has_field(instance: Any, name: str) -> bool:
    if dataclasses.is_dataclass(instance):
        return any(f.name == name for f in dataclasses.fields(instance))
    return hasattr(instance, name)
