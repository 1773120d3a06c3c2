"""Parsing module for filter expressions."""

from flat_tables.parsing.filter_parser import (
    CompoundCondition,
    Condition,
    FilterParser,
    NegatedCondition,
)

__all__ = [
    "CompoundCondition",
    "Condition",
    "FilterParser",
    "NegatedCondition",
]
