"""Tests for leaf value encoding and the custom type registry."""

import datetime
import decimal
import enum
import uuid
from fractions import Fraction

import pytest

from flat_tables.codec import CodecRegistry, ValueCodec, default_registry
from flat_tables.exceptions import ValidationError
from flat_tables.types import ColumnType


class Color(enum.Enum):
    RED = 1
    GREEN = 2


class TestValueCodecEncode:
    """Tests for converting values to their stored form."""

    def test_none_is_stored_as_null(self):
        """Test that None encodes to None for every type."""
        codec = ValueCodec()
        assert codec.encode(None, int) is None
        assert codec.encode(None, str) is None

    def test_bool_is_stored_as_text(self):
        """Test that booleans are stored as 'True'/'False'."""
        codec = ValueCodec()
        assert codec.encode(True, bool) == "True"
        assert codec.encode(False, bool) == "False"
        assert codec.encode("yes", bool) == "True"

    def test_numbers_are_coerced(self):
        """Test integer and float coercion."""
        codec = ValueCodec()
        assert codec.encode("42", int) == 42
        assert codec.encode(3, float) == 3.0

    def test_enum_is_stored_by_name(self):
        """Test that enums are stored by member name."""
        codec = ValueCodec()
        assert codec.encode(Color.GREEN, Color) == "GREEN"
        assert codec.encode("RED", Color) == "RED"

    def test_timestamps_are_stored_as_iso_text(self):
        """Test datetime and date encoding."""
        codec = ValueCodec()
        moment = datetime.datetime(2024, 5, 17, 8, 30, 15)
        assert codec.encode(moment, datetime.datetime) == "2024-05-17T08:30:15"
        assert codec.encode(moment, datetime.date) == "2024-05-17"

    def test_decimal_and_uuid(self):
        """Test decimal and UUID encoding."""
        codec = ValueCodec()
        ident = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert codec.encode(decimal.Decimal("1.50"), decimal.Decimal) == "1.50"
        assert codec.encode(ident, uuid.UUID) == "12345678-1234-5678-1234-567812345678"

    def test_uncoercible_value_raises(self):
        """Test that a value that cannot be coerced raises ValidationError."""
        codec = ValueCodec()
        with pytest.raises(ValidationError):
            codec.encode("not a number", int)
        with pytest.raises(ValidationError):
            codec.encode("PURPLE", Color)
        with pytest.raises(ValidationError):
            codec.encode("maybe", bool)


class TestValueCodecDecode:
    """Tests for converting stored values back."""

    def test_null_decodes_to_none(self):
        """Test that NULL decodes to None."""
        assert ValueCodec().decode(None, int) is None

    @pytest.mark.parametrize(
        "value, tp",
        [
            (True, bool),
            (False, bool),
            (-7, int),
            (2.5, float),
            ("hello", str),
            (b"\x00\x01", bytes),
            (Color.RED, Color),
            (datetime.datetime(2020, 1, 2, 3, 4, 5), datetime.datetime),
            (datetime.date(2020, 1, 2), datetime.date),
            (decimal.Decimal("10.25"), decimal.Decimal),
            (uuid.UUID(int=5), uuid.UUID),
        ],
    )
    def test_decode_inverts_encode(self, value, tp):
        """Test that every built-in leaf type survives encoding."""
        codec = ValueCodec()
        assert codec.decode(codec.encode(value, tp), tp) == value

    def test_decimal_keeps_digits(self):
        """Test that decimals are stored as their exact text."""
        codec = ValueCodec()
        encoded = codec.encode(decimal.Decimal("12345678901234567.89"), decimal.Decimal)

        assert encoded == "12345678901234567.89"
        assert codec.decode(encoded, decimal.Decimal) == decimal.Decimal("12345678901234567.89")


class TestCodecRegistry:
    """Tests for custom leaf types."""

    def test_registered_type_is_leaf(self):
        """Test that a registered type is treated as a leaf with its column type."""
        registry = CodecRegistry()
        registry.register(Fraction, str, Fraction, ColumnType.TEXT)

        assert Fraction in registry
        assert registry.is_leaf(Fraction)
        assert registry.column_type(Fraction) is ColumnType.TEXT

    def test_registered_codec_is_used(self):
        """Test that the registered codec takes precedence."""
        registry = CodecRegistry()
        registry.register(Fraction, str, Fraction)
        codec = ValueCodec(registry)

        assert codec.encode(Fraction(1, 3), Fraction) == "1/3"
        assert codec.decode("1/3", Fraction) == Fraction(1, 3)

    def test_child_registry_falls_back_to_parent(self):
        """Test that lookups fall back to the parent registry."""
        parent = CodecRegistry()
        parent.register(Fraction, str, Fraction)
        child = CodecRegistry(parent)

        assert Fraction in child
        child.unregister(Fraction)
        assert Fraction in child  # parent untouched

    def test_subclass_uses_base_codec(self):
        """Test that a codec registered for a base class applies to subclasses."""

        class Base:
            pass

        class Derived(Base):
            pass

        registry = CodecRegistry()
        registry.register(Base, lambda v: "base", lambda raw: Derived())
        assert registry.get(Derived) is registry.get(Base)

    def test_builtin_column_types(self):
        """Test the fixed type-to-storage mapping."""
        registry = CodecRegistry()
        assert registry.column_type(int) is ColumnType.INTEGER
        assert registry.column_type(float) is ColumnType.REAL
        assert registry.column_type(str) is ColumnType.TEXT
        assert registry.column_type(bool) is ColumnType.TEXT
        assert registry.column_type(bytes) is ColumnType.BLOB
        assert registry.column_type(decimal.Decimal) is ColumnType.TEXT
        assert registry.column_type(Color) is ColumnType.TEXT
        assert registry.column_type(list) is None

    def test_default_registry_is_shared(self):
        """Test that a codec without a registry uses the default one."""
        assert ValueCodec().registry is default_registry
