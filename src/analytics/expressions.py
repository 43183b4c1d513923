"""
Expresiones de Cálculo

Gramática de los cálculos derivados del catálogo:

    calculo  := FUNC "(" expr ")"          FUNC ∈ SUM, AVG, COUNT, MIN, MAX
    expr     := term (("+" | "-") term)*
    term     := factor (("*" | "/") factor)*
    factor   := NUMERO | columna | "(" expr ")" | "-" factor

Las expresiones se parsean a un AST y se compilan a expresiones de
SQLAlchemy Core. Los literales viajan como parámetros y las columnas se
resuelven contra la tabla de la métrica; nada se interpola como texto.
"""

import operator
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, List, Tuple, Union

from sqlalchemy import func, literal
from sqlalchemy.sql.expression import ColumnElement, TableClause

from config.constants import CALCULATION_FUNCTIONS, IDENTIFIER_PATTERN


class ExpressionError(ValueError):
    """Expresión de cálculo inválida."""


_TOKEN_RE = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d+)?)|(?P<name>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/()]))"
)
_IDENTIFIER_RE = re.compile(IDENTIFIER_PATTERN)

_BINARY_OPERATORS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}


# ============================================================================
# AST
# ============================================================================

@dataclass(frozen=True)
class Number:
    value: Union[int, float]

    def columns(self) -> FrozenSet[str]:
        return frozenset()

    def to_sql(self, table: TableClause) -> ColumnElement:
        return literal(self.value)


@dataclass(frozen=True)
class Column:
    name: str

    def columns(self) -> FrozenSet[str]:
        return frozenset([self.name])

    def to_sql(self, table: TableClause) -> ColumnElement:
        return table.c[self.name]


@dataclass(frozen=True)
class Negate:
    operand: "Node"

    def columns(self) -> FrozenSet[str]:
        return self.operand.columns()

    def to_sql(self, table: TableClause) -> ColumnElement:
        return -self.operand.to_sql(table)


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"

    def columns(self) -> FrozenSet[str]:
        return self.left.columns() | self.right.columns()

    def to_sql(self, table: TableClause) -> ColumnElement:
        return _BINARY_OPERATORS[self.op](
            self.left.to_sql(table), self.right.to_sql(table)
        )


Node = Union[Number, Column, Negate, BinaryOp]


@dataclass(frozen=True)
class Aggregate:
    """Raíz del AST: función de agregación sobre una expresión de fila."""
    function: str
    argument: Node

    def columns(self) -> FrozenSet[str]:
        return self.argument.columns()

    def to_sql(self, table: TableClause) -> ColumnElement:
        return getattr(func, self.function.lower())(self.argument.to_sql(table))


# ============================================================================
# PARSER
# ============================================================================

def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match or match.end() == pos:
            raise ExpressionError(f"Carácter inesperado en posición {pos}: {text[pos:]!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> Tuple[str, str]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return ("eof", "")

    def _next(self) -> Tuple[str, str]:
        token = self._peek()
        self.pos += 1
        return token

    def _expect(self, value: str) -> None:
        kind, token = self._next()
        if token != value:
            raise ExpressionError(f"Se esperaba {value!r} en {self.text!r}")

    def parse(self) -> Aggregate:
        kind, name = self._next()
        function = name.upper()
        if kind != "name" or function not in CALCULATION_FUNCTIONS:
            raise ExpressionError(
                f"El cálculo debe iniciar con {', '.join(CALCULATION_FUNCTIONS)}: {self.text!r}"
            )
        self._expect("(")
        argument = self._expr()
        self._expect(")")
        if self._peek()[0] != "eof":
            raise ExpressionError(f"Texto sobrante en {self.text!r}")
        return Aggregate(function, argument)

    def _expr(self) -> Node:
        node = self._term()
        while self._peek()[1] in ("+", "-"):
            op = self._next()[1]
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while self._peek()[1] in ("*", "/"):
            op = self._next()[1]
            node = BinaryOp(op, node, self._factor())
        return node

    def _factor(self) -> Node:
        kind, token = self._next()
        if kind == "number":
            return Number(float(token) if "." in token else int(token))
        if kind == "name":
            if token.upper() in CALCULATION_FUNCTIONS and self._peek()[1] == "(":
                raise ExpressionError(f"Agregaciones anidadas no soportadas: {self.text!r}")
            if not _IDENTIFIER_RE.match(token):
                raise ExpressionError(f"Identificador inválido: {token!r}")
            return Column(token)
        if token == "(":
            node = self._expr()
            self._expect(")")
            return node
        if token == "-":
            return Negate(self._factor())
        raise ExpressionError(f"Token inesperado {token!r} en {self.text!r}")


@lru_cache(maxsize=256)
def parse_calculation(text: str) -> Aggregate:
    """
    Parsea un cálculo del catálogo.

    Args:
        text: Expresión, por ejemplo "SUM(cost_price * quantity_sold)"

    Returns:
        AST con la agregación raíz

    Raises:
        ExpressionError: Si la expresión no cumple la gramática
    """
    if not text or not text.strip():
        raise ExpressionError("Expresión vacía")
    return _Parser(text).parse()
