"""Tests for SQL statement generation."""

from dataclasses import dataclass, field

import pytest

from flat_tables.codec import ValueCodec
from flat_tables.exceptions import ValidationError
from flat_tables.paths import PropertyPathEngine
from flat_tables.statements import Clause, StatementBuilder


@dataclass
class Address:
    city: str = ""


@dataclass
class Person:
    first_name: str = ""
    age: int = 0
    active: bool = True
    address: Address = field(default_factory=Address)


@pytest.fixture
def builder():
    schema = PropertyPathEngine().flatten(Person)
    return StatementBuilder("DATA_Person_TABLE", schema, ValueCodec())


class TestClause:
    """Tests for WHERE clause fragments."""

    def test_empty_clause(self):
        """Test that the empty clause emits no WHERE."""
        assert not Clause()
        assert Clause().sql() == ""

    def test_and_combines_parameters(self):
        """Test combining clauses with &."""
        combined = Clause('"a" = ?', (1,)) & Clause('"b" = ?', (2,))
        assert combined.text == '("a" = ?) AND ("b" = ?)'
        assert combined.parameters == (1, 2)

    def test_and_with_empty(self):
        """Test that the empty clause is the identity for &."""
        clause = Clause('"a" = ?', (1,))
        assert (Clause() & clause) is clause
        assert (clause & Clause()) is clause


class TestWhere:
    """Tests for filter map and expression compilation."""

    def test_filter_map(self, builder):
        """Test that filter entries become AND-ed equality tests."""
        clause = builder.where({"first_name": "Ann", "address.city": "Oslo"})
        assert clause.text == '"first_name" = ? AND "address.city" = ?'
        assert clause.parameters == ("Ann", "Oslo")

    def test_filter_map_none_is_null(self, builder):
        """Test that None values test for NULL."""
        clause = builder.where({"first_name": None})
        assert clause.text == '"first_name" IS NULL'
        assert clause.parameters == ()

    def test_filter_values_are_encoded(self, builder):
        """Test that filter values go through the value codec."""
        assert builder.where({"active": False}).parameters == ("False",)

    def test_unknown_path_raises(self, builder):
        """Test that an unknown path raises ValidationError."""
        with pytest.raises(ValidationError, match="nickname"):
            builder.where({"nickname": "x"})

    def test_expression(self, builder):
        """Test compiling a where-expression."""
        clause = builder.where(expression='age >= 18 and address.city = "Oslo"')
        assert clause.text == '("age" >= ?) AND ("address.city" = ?)'
        assert clause.parameters == (18, "Oslo")

    def test_expression_or_and_not(self, builder):
        """Test OR and negation."""
        clause = builder.where(expression="not (age < 18 or first_name is null)")
        assert clause.text == 'NOT (("age" < ?) OR ("first_name" IS NULL))'
        assert clause.parameters == (18,)

    def test_expression_is_not_null(self, builder):
        """Test IS NOT NULL and comparisons with null."""
        assert builder.where(expression="first_name is not null").text == '"first_name" IS NOT NULL'
        assert builder.where(expression="first_name != null").text == '"first_name" IS NOT NULL'
        assert builder.where(expression="first_name = null").text == '"first_name" IS NULL'

    def test_expression_starts_with_escapes_wildcards(self, builder):
        """Test that starts with escapes LIKE wildcards."""
        clause = builder.where(expression='first_name starts with "A_%"')
        assert clause.text == "\"first_name\" LIKE ? ESCAPE '\\'"
        assert clause.parameters == ("A\\_\\%%",)

    def test_expression_combined_with_map(self, builder):
        """Test that a map and an expression are AND-ed."""
        clause = builder.where({"first_name": "Ann"}, expression="age > 1")
        assert clause.text == '("first_name" = ?) AND ("age" > ?)'
        assert clause.parameters == ("Ann", 1)

    def test_expression_unknown_path(self, builder):
        """Test that unknown paths in expressions raise ValidationError."""
        with pytest.raises(ValidationError):
            builder.where(expression="height > 3")

    def test_expression_syntax_error(self, builder):
        """Test that malformed expressions raise ValidationError."""
        with pytest.raises(ValidationError, match="Invalid filter expression"):
            builder.where(expression="age >")

    def test_ordering_against_null_raises(self, builder):
        """Test that < null is rejected."""
        with pytest.raises(ValidationError):
            builder.where(expression="age < null")


class TestStatements:
    """Tests for generated statements."""

    def test_insert(self, builder):
        """Test a single-row insert."""
        statement = builder.insert(Person("Ann", 30, True, Address("Oslo")))
        assert statement.text == (
            'INSERT INTO "DATA_Person_TABLE" ("first_name", "age", "active", "address.city") '
            "VALUES (?, ?, ?, ?)"
        )
        assert statement.parameters == ("Ann", 30, "True", "Oslo")

    def test_insert_many(self, builder):
        """Test that a batch insert has one tuple per object."""
        statement = builder.insert_many([Person("Ann"), Person("Lee")])
        assert statement.text.endswith("VALUES (?, ?, ?, ?), (?, ?, ?, ?)")
        assert statement.parameters[0] == "Ann"
        assert statement.parameters[4] == "Lee"

    def test_insert_with_linking_keys(self):
        """Test that linking keys are appended to each row."""
        schema = PropertyPathEngine().flatten(Address)
        builder = StatementBuilder("t", schema, ValueCodec(), has_primary_key=True, has_foreign_key=True)

        statement = builder.insert(Address("Oslo"), primary_key="pk", foreign_key="fk")
        assert '("city", "_PrimaryKey_", "_ForeignKey_")' in statement.text
        assert statement.parameters == ("Oslo", "pk", "fk")

    def test_insert_requires_instances(self, builder):
        """Test that an empty batch is rejected."""
        with pytest.raises(ValidationError):
            builder.insert_many([])

    def test_select(self, builder):
        """Test a select of every column ordered by row id."""
        statement = builder.select(builder.where({"age": 30}), limit=5)
        assert statement.text == (
            'SELECT "_Id_", "first_name", "age", "active", "address.city" '
            'FROM "DATA_Person_TABLE" WHERE "age" = ? ORDER BY "_Id_" LIMIT ? OFFSET ?'
        )
        assert statement.parameters == (30, 5, 0)

    def test_select_offset_without_limit(self, builder):
        """Test that an offset alone uses an unbounded limit."""
        statement = builder.select(offset=10)
        assert statement.text.endswith("LIMIT ? OFFSET ?")
        assert statement.parameters == (-1, 10)

    def test_select_without_bounds(self, builder):
        """Test that no limit means no LIMIT clause."""
        assert "LIMIT" not in builder.select().text

    def test_update_uses_row_id_subquery(self, builder):
        """Test that update bounds the target rows through a subquery."""
        statement = builder.update(builder.where({"first_name": "Ann"}), {"age": 31}, limit=1)
        assert statement.text == (
            'UPDATE "DATA_Person_TABLE" SET "age" = ? WHERE "_Id_" IN '
            '(SELECT "_Id_" FROM "DATA_Person_TABLE" WHERE "first_name" = ? '
            'ORDER BY "_Id_" LIMIT ?)'
        )
        assert statement.parameters == (31, "Ann", 1)

    def test_update_empty_destination(self, builder):
        """Test that an empty destination raises ValidationError."""
        with pytest.raises(ValidationError):
            builder.update(Clause(), {})

    def test_update_unknown_destination(self, builder):
        """Test that unknown destination paths raise ValidationError."""
        with pytest.raises(ValidationError):
            builder.update(Clause(), {"height": 2})

    def test_delete(self, builder):
        """Test a bounded delete."""
        statement = builder.delete(builder.where({"first_name": "Ann"}), limit=100)
        assert statement.text.startswith('DELETE FROM "DATA_Person_TABLE" WHERE "_Id_" IN (SELECT')
        assert statement.parameters == ("Ann", 100)

    def test_delete_all_and_drop(self, builder):
        """Test delete-all and drop statements."""
        assert builder.delete_all().text == 'DELETE FROM "DATA_Person_TABLE"'
        assert builder.drop().text == 'DROP TABLE IF EXISTS "DATA_Person_TABLE"'

    def test_rows_by_id(self, builder):
        """Test statements targeting explicit row ids."""
        statement = builder.delete_rows([3, 4])
        assert statement.text == 'DELETE FROM "DATA_Person_TABLE" WHERE "_Id_" IN (?, ?)'
        assert statement.parameters == (3, 4)

        update = builder.update_rows([7], {"age": 1})
        assert update.parameters == (1, 7)

    def test_count(self, builder):
        """Test the count statement."""
        assert builder.count().text == 'SELECT COUNT(*) FROM "DATA_Person_TABLE"'
