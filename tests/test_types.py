"""Tests for type definitions."""

import enum

from flat_tables.types import (
    CollectionTypeDefinition,
    CompositeTypeDefinition,
    FieldDefinition,
    LeafTypeDefinition,
    is_primitive_type,
)


class Shape(enum.Enum):
    CIRCLE = "circle"
    SQUARE = "square"


class TestTypeDefinitions:
    """Tests for the leaf/composite/collection variants."""

    def test_leaf_flags(self):
        """Test that a leaf reports only is_leaf."""
        leaf = LeafTypeDefinition(name="int", python_type=int)
        assert leaf.is_leaf
        assert not leaf.is_composite
        assert not leaf.is_collection
        assert not leaf.optional

    def test_composite_get_field(self):
        """Test looking up a field of a composite type."""
        age = FieldDefinition(name="age", type_def=LeafTypeDefinition(name="int", python_type=int))
        composite = CompositeTypeDefinition(name="Person", python_type=object, fields=[age])

        assert composite.is_composite
        assert composite.get_field("age") is age
        assert composite.get_field("missing") is None

    def test_collection_build_keeps_list(self):
        """Test that list collections are returned as-is."""
        items = [1, 2]
        collection = CollectionTypeDefinition(name="int[]", python_type=list, container=list)
        assert collection.is_collection
        assert collection.build(items) is items

    def test_collection_build_other_containers(self):
        """Test that other containers are rebuilt from the loaded items."""
        as_tuple = CollectionTypeDefinition(name="int[]", python_type=tuple, container=tuple)
        as_set = CollectionTypeDefinition(name="int[]", python_type=frozenset, container=frozenset)

        assert as_tuple.build([1, 2]) == (1, 2)
        assert as_set.build([1, 2, 2]) == frozenset({1, 2})


class TestPrimitiveTypes:
    """Tests for built-in leaf detection."""

    def test_builtin_leaves(self):
        """Test that built-in scalars and enums are primitive."""
        assert is_primitive_type(int)
        assert is_primitive_type(str)
        assert is_primitive_type(bytes)
        assert is_primitive_type(Shape)

    def test_non_leaves(self):
        """Test that containers and arbitrary classes are not primitive."""
        assert not is_primitive_type(list)
        assert not is_primitive_type(dict)
        assert not is_primitive_type(object)
