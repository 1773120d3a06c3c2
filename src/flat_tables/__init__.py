"""Flat Tables - Store nested dataclasses in flat SQLite tables."""

from flat_tables.codec import CodecRegistry, TypeCodec, ValueCodec, default_registry, register_type
from flat_tables.config import DEFAULT_CONFIGURATION, StorageConfiguration
from flat_tables.engine import EngineState, StorageEngine
from flat_tables.exceptions import (
    EngineStateError,
    FlatTablesError,
    SchemaError,
    StorageExecutionError,
    UnsupportedTypeError,
    ValidationError,
)
from flat_tables.gate import ConnectionGate
from flat_tables.paths import CollectionPath, ModelSchema, PropertyPath, PropertyPathEngine
from flat_tables.types import (
    CollectionTypeDefinition,
    ColumnType,
    CompositeTypeDefinition,
    FieldDefinition,
    LeafTypeDefinition,
    TypeDefinition,
)

__all__ = [
    # Main API
    "StorageEngine",
    "EngineState",
    "StorageConfiguration",
    "DEFAULT_CONFIGURATION",
    "ConnectionGate",
    # Custom leaf types
    "CodecRegistry",
    "TypeCodec",
    "ValueCodec",
    "default_registry",
    "register_type",
    # Flattening
    "PropertyPathEngine",
    "ModelSchema",
    "PropertyPath",
    "CollectionPath",
    # Type definitions
    "TypeDefinition",
    "ColumnType",
    "LeafTypeDefinition",
    "CompositeTypeDefinition",
    "CollectionTypeDefinition",
    "FieldDefinition",
    # Errors
    "FlatTablesError",
    "SchemaError",
    "UnsupportedTypeError",
    "ValidationError",
    "StorageExecutionError",
    "EngineStateError",
]

__version__ = "0.1.0"
