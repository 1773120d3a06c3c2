"""Parser for the filter expression language.

Grammar (keywords are case-insensitive)::

    condition  : path OP value
               | path STARTS WITH STRING
               | path IS NULL
               | path IS NOT NULL
               | NOT condition
               | condition AND condition
               | condition OR condition
               | ( condition )
    path       : IDENTIFIER ( . IDENTIFIER )*
    value      : INTEGER | FLOAT | STRING | TRUE | FALSE | NULL
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import ply.yacc as yacc

from flat_tables.parsing.filter_lexer import FilterLexer


@dataclass
class Condition:
    """A single comparison against a property path."""

    path: str
    operator: str  # eq, neq, lt, lte, gt, gte, starts_with, is_null
    value: Any = None
    negate: bool = False


@dataclass
class CompoundCondition:
    """A compound condition (AND/OR)."""

    left: FilterNode
    operator: str  # and, or
    right: FilterNode


@dataclass
class NegatedCondition:
    """NOT applied to a compound condition."""

    operand: FilterNode


FilterNode = Condition | CompoundCondition | NegatedCondition


class FilterParser:
    """Parser for filter expressions."""

    tokens = FilterLexer.tokens

    # Operator precedence
    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("right", "NOT"),
    )

    def __init__(self) -> None:
        self.lexer = FilterLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_condition_comparison(self, p: yacc.YaccProduction) -> None:
        """condition : path EQ value
                     | path NEQ value
                     | path LT value
                     | path LTE value
                     | path GT value
                     | path GTE value"""
        op_map = {"=": "eq", "==": "eq", "!=": "neq", "<>": "neq", "<": "lt", "<=": "lte", ">": "gt", ">=": "gte"}
        p[0] = Condition(path=p[1], operator=op_map[p[2]], value=p[3])

    def p_condition_starts_with(self, p: yacc.YaccProduction) -> None:
        """condition : path STARTS WITH STRING"""
        p[0] = Condition(path=p[1], operator="starts_with", value=p[4])

    def p_condition_is_null(self, p: yacc.YaccProduction) -> None:
        """condition : path IS NULL"""
        p[0] = Condition(path=p[1], operator="is_null")

    def p_condition_is_not_null(self, p: yacc.YaccProduction) -> None:
        """condition : path IS NOT NULL"""
        p[0] = Condition(path=p[1], operator="is_null", negate=True)

    def p_condition_not(self, p: yacc.YaccProduction) -> None:
        """condition : NOT condition"""
        cond = p[2]
        if isinstance(cond, Condition):
            cond.negate = not cond.negate
            p[0] = cond
        elif isinstance(cond, NegatedCondition):
            p[0] = cond.operand
        else:
            p[0] = NegatedCondition(operand=cond)

    def p_condition_and(self, p: yacc.YaccProduction) -> None:
        """condition : condition AND condition"""
        p[0] = CompoundCondition(left=p[1], operator="and", right=p[3])

    def p_condition_or(self, p: yacc.YaccProduction) -> None:
        """condition : condition OR condition"""
        p[0] = CompoundCondition(left=p[1], operator="or", right=p[3])

    def p_condition_paren(self, p: yacc.YaccProduction) -> None:
        """condition : LPAREN condition RPAREN"""
        p[0] = p[2]

    def p_path_single(self, p: yacc.YaccProduction) -> None:
        """path : IDENTIFIER"""
        p[0] = p[1]

    def p_path_dotted(self, p: yacc.YaccProduction) -> None:
        """path : path DOT IDENTIFIER"""
        p[0] = f"{p[1]}.{p[3]}"

    def p_value_literal(self, p: yacc.YaccProduction) -> None:
        """value : INTEGER
                 | FLOAT
                 | STRING"""
        p[0] = p[1]

    def p_value_true(self, p: yacc.YaccProduction) -> None:
        """value : TRUE"""
        p[0] = True

    def p_value_false(self, p: yacc.YaccProduction) -> None:
        """value : FALSE"""
        p[0] = False

    def p_value_null(self, p: yacc.YaccProduction) -> None:
        """value : NULL"""
        p[0] = None

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="condition", **kwargs)

    def parse(self, data: str) -> FilterNode:
        """Parse a filter expression."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)

        if not data.strip():
            raise SyntaxError("Empty filter expression")
        return self.parser.parse(data, lexer=self.lexer.lexer)
