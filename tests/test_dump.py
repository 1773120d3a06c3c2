"""Tests for the dump tool."""

import json
from dataclasses import dataclass, field

import pytest

from flat_tables import StorageEngine
from flat_tables.dump import format_value, main


@dataclass
class Book:
    title: str = ""
    pages: int = 0
    cover: bytes = b""
    authors: list[str] = field(default_factory=list)


@pytest.fixture
def database(tmp_path):
    path = tmp_path / "library.sqlite"
    with StorageEngine(Book, path) as books:
        books.add_all(
            [
                Book("Dune", 412, b"\x01\x02", ["Herbert"]),
                Book("Emma", 320, b"", ["Austen"]),
            ]
        )
    return path


class TestFormatValue:
    """Tests for display formatting."""

    def test_format_values(self):
        """Test formatting of stored values."""
        assert format_value(None) == "NULL"
        assert format_value("a") == "'a'"
        assert format_value(3) == "3"
        assert format_value(b"abc") == "<3 bytes>"


class TestMain:
    """Tests for the command-line entry point."""

    def test_list_tables(self, database, capsys):
        """Test listing tables with row counts."""
        assert main([str(database)]) == 0
        out = capsys.readouterr().out

        assert "DATA_Book_TABLE" in out
        assert "DATA_Book__authors_TABLE" in out
        assert "2 records" in out

    def test_dump_by_model_name(self, database, capsys):
        """Test dumping a table by its model name as a grid."""
        assert main([str(database), "Book"]) == 0
        out = capsys.readouterr().out

        assert "Table: DATA_Book_TABLE" in out
        assert "Records: 2" in out
        assert "'Dune'" in out
        assert "<2 bytes>" in out

    def test_dump_json_with_limit(self, database, capsys):
        """Test JSON output with a row limit."""
        assert main([str(database), "DATA_Book_TABLE", "--json", "-n", "1"]) == 0
        output = json.loads(capsys.readouterr().out)

        assert output["table"] == "DATA_Book_TABLE"
        assert output["count"] == 2
        assert len(output["records"]) == 1
        assert output["records"][0]["title"] == "Dune"
        assert output["records"][0]["cover"] == "AQI="

    def test_grid_limit_notice(self, database, capsys):
        """Test the notice for rows beyond the limit."""
        assert main([str(database), "Book", "-n", "1"]) == 0
        assert "(1 more records)" in capsys.readouterr().out

    def test_unknown_table(self, database, capsys):
        """Test that an unknown table fails with exit code 1."""
        assert main([str(database), "Movie"]) == 1
        assert "Unknown table: Movie" in capsys.readouterr().err

    def test_missing_database(self, tmp_path, capsys):
        """Test that a missing database fails with exit code 1."""
        assert main([str(tmp_path / "nope.sqlite")]) == 1
        assert "Database not found" in capsys.readouterr().err
