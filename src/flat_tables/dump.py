"""Tool for dumping table contents to the console."""

from __future__ import annotations

import argparse
import base64
import json
import sys
from pathlib import Path
from typing import Any

from flat_tables.config import DEFAULT_CONFIGURATION
from flat_tables.exceptions import FlatTablesError
from flat_tables.gate import ConnectionGate
from flat_tables.schema import quote_identifier


def format_value(value: Any) -> str:
    """Format a stored value for display."""
    if value is None:
        return "NULL"
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if isinstance(value, str):
        return repr(value)
    return str(value)


def _json_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    return value


def resolve_table(gate: ConnectionGate, name: str) -> str | None:
    """Resolve a table by its full name or by its model name."""
    tables = gate.tables()
    if name in tables:
        return name
    full = DEFAULT_CONFIGURATION.table_name(name)
    if full in tables:
        return full
    return None


def list_tables(gate: ConnectionGate) -> None:
    """List all tables with their row counts."""
    print("Available tables:")
    print("-" * 60)
    for table in gate.tables():
        count = gate.scalar(f"SELECT COUNT(*) FROM {quote_identifier(table)}")
        print(f"  {table:<44} {count:>6} records")


def _read_table(gate: ConnectionGate, table: str, limit: int | None) -> tuple[list[str], list[tuple[Any, ...]], int]:
    quoted = quote_identifier(table)
    count = gate.scalar(f"SELECT COUNT(*) FROM {quoted}")
    rows = gate.query(
        f"SELECT * FROM {quoted} LIMIT ?", (-1 if limit is None else limit,)
    )
    if rows:
        columns = list(rows[0].keys())
    else:
        columns = [row[1] for row in gate.query(f"PRAGMA table_info({quoted})")]
    return columns, [tuple(row) for row in rows], count


def dump_table(gate: ConnectionGate, table: str, limit: int | None = None) -> None:
    """Dump table rows as a text grid."""
    columns, rows, count = _read_table(gate, table, limit)

    print(f"Table: {table}")
    print(f"Records: {count}")
    print("-" * 60)

    cells = [[format_value(v) for v in row] for row in rows]
    widths = [
        max([len(column)] + [len(row[i]) for row in cells]) for i, column in enumerate(columns)
    ]
    print("  ".join(f"{c:<{w}}" for c, w in zip(columns, widths)))
    print("  ".join("-" * w for w in widths))
    for row in cells:
        print("  ".join(f"{v:<{w}}" for v, w in zip(row, widths)))

    if limit is not None and count > limit:
        print(f"... ({count - limit} more records)")


def dump_table_json(gate: ConnectionGate, table: str, limit: int | None = None) -> None:
    """Dump table rows as JSON."""
    columns, rows, count = _read_table(gate, table, limit)
    output = {
        "table": table,
        "count": count,
        "records": [
            {column: _json_value(value) for column, value in zip(columns, row)} for row in rows
        ],
    }
    print(json.dumps(output, indent=2))


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Dump flat table contents to the console"
    )
    parser.add_argument(
        "database",
        type=Path,
        help="Path to the SQLite database file",
    )
    parser.add_argument(
        "table",
        nargs="?",
        help="Name of the table or model to dump (omit to list tables)",
    )
    parser.add_argument(
        "-j", "--json",
        action="store_true",
        help="Output as JSON",
    )
    parser.add_argument(
        "-n", "--limit",
        type=int,
        default=None,
        help="Limit number of records to display",
    )

    args = parser.parse_args(argv)

    if not args.database.exists():
        print(f"Error: Database not found: {args.database}", file=sys.stderr)
        return 1

    gate = ConnectionGate(args.database)
    try:
        if args.table is None:
            list_tables(gate)
            return 0

        table = resolve_table(gate, args.table)
        if table is None:
            print(f"Error: Unknown table: {args.table}", file=sys.stderr)
            print("\nAvailable tables:")
            list_tables(gate)
            return 1

        if args.json:
            dump_table_json(gate, table, args.limit)
        else:
            dump_table(gate, table, args.limit)
    except FlatTablesError as e:
        print(f"Error reading database: {e}", file=sys.stderr)
        return 1
    finally:
        gate.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
