"""Restricted expression evaluator for ``set`` values, ``if`` conditions and
macro ``return`` lines.

Expressions are tokenized against an allow-list, parsed by recursive descent
into a small tree, and evaluated over typed values (int, float, bool, str).
Nothing is ever handed to Python's own ``eval``.
"""

from __future__ import annotations

import functools
import re
import string
from dataclasses import dataclass
from typing import Mapping, Union

from coslang.nodes import Value, format_value, parse_number


class ExpressionError(Exception):
    """Raised when an expression cannot be parsed or evaluated."""


class UnsafeExpressionError(ExpressionError):
    """Raised when an expression contains characters outside the allow-list."""


class UnknownIdentifierError(ExpressionError):
    """Raised when an identifier has no value in the evaluation context."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown identifier: {name}")
        self.name = name


ALLOWED_CHARACTERS = frozenset(string.ascii_letters + string.digits + "_+-*/().<>=!\"' :&|\t")

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<number>\d+\.\d*|\.\d+|\d+)
  | (?P<string>"[^"]*"|'[^']*')
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>==|!=|>=|<=|&&|\|\||[-+*/()<>!])
    """,
    re.VERBOSE,
)

_KEYWORD_OPS = {"and": "and", "or": "or", "not": "not"}
_SYMBOL_OPS = {"&&": "and", "||": "or", "!": "not"}
_COMPARISONS = ("==", "!=", ">=", "<=", ">", "<")


@dataclass(frozen=True)
class Token:
    kind: str  # number | string | bool | name | op | end
    text: str
    value: Value | None = None


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Value


@dataclass(frozen=True)
class Name:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Expr"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Logical:
    op: str
    left: "Expr"
    right: "Expr"


Expr = Union[Literal, Name, Unary, Binary, Logical]


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    position = 0
    while position < len(source):
        match = _TOKEN_RE.match(source, position)
        if match is None:
            char = source[position]
            if char not in ALLOWED_CHARACTERS:
                raise UnsafeExpressionError(f"Unsafe or invalid expression: {source}")
            raise ExpressionError(f"Unexpected {char!r} in expression: {source}")
        position = match.end()
        kind = match.lastgroup
        text = match.group()
        if kind == "space":
            continue
        if kind == "number":
            tokens.append(Token("number", text, parse_number(text)))
        elif kind == "string":
            tokens.append(Token("string", text, text[1:-1]))
        elif kind == "name" and text in _KEYWORD_OPS:
            tokens.append(Token("op", _KEYWORD_OPS[text]))
        elif kind == "name" and text in ("true", "false"):
            tokens.append(Token("bool", text, text == "true"))
        elif kind == "op" and text in _SYMBOL_OPS:
            tokens.append(Token("op", _SYMBOL_OPS[text]))
        else:
            tokens.append(Token(kind, text))
    tokens.append(Token("end", ""))
    return tokens


class _Parser:
    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = tokenize(source)
        self.index = 0

    def peek(self) -> Token:
        return self.tokens[self.index]

    def take(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def accept(self, *ops: str) -> str | None:
        token = self.peek()
        if token.kind == "op" and token.text in ops:
            self.index += 1
            return token.text
        return None

    def parse(self) -> Expr:
        if self.peek().kind == "end":
            raise ExpressionError("Empty expression")
        expr = self.or_expr()
        if self.peek().kind != "end":
            raise ExpressionError(f"Unexpected {self.peek().text!r} in expression: {self.source}")
        return expr

    def or_expr(self) -> Expr:
        expr = self.and_expr()
        while self.accept("or"):
            expr = Logical("or", expr, self.and_expr())
        return expr

    def and_expr(self) -> Expr:
        expr = self.not_expr()
        while self.accept("and"):
            expr = Logical("and", expr, self.not_expr())
        return expr

    def not_expr(self) -> Expr:
        if self.accept("not"):
            return Unary("not", self.not_expr())
        return self.comparison()

    def comparison(self) -> Expr:
        expr = self.additive()
        op = self.accept(*_COMPARISONS)
        if op:
            expr = Binary(op, expr, self.additive())
        return expr

    def additive(self) -> Expr:
        expr = self.term()
        while True:
            op = self.accept("+", "-")
            if not op:
                return expr
            expr = Binary(op, expr, self.term())

    def term(self) -> Expr:
        expr = self.unary()
        while True:
            op = self.accept("*", "/")
            if not op:
                return expr
            expr = Binary(op, expr, self.unary())

    def unary(self) -> Expr:
        if self.accept("-"):
            return Unary("-", self.unary())
        if self.accept("not"):
            return Unary("not", self.unary())
        return self.primary()

    def primary(self) -> Expr:
        token = self.take()
        if token.kind in ("number", "string", "bool"):
            return Literal(token.value)
        if token.kind == "name":
            return Name(token.text)
        if token.kind == "op" and token.text == "(":
            expr = self.or_expr()
            if not self.accept(")"):
                raise ExpressionError(f"Missing ')' in expression: {self.source}")
            return expr
        found = token.text or "end of expression"
        raise ExpressionError(f"Unexpected {found!r} in expression: {self.source}")


@functools.lru_cache(maxsize=512)
def parse_expression(source: str) -> Expr:
    """Parse *source* into an expression tree (cached per source string)."""
    return _Parser(source).parse()


def evaluate(source: str, context: Mapping[str, Value]) -> Value:
    """Evaluate *source* against *context*.

    Raises UnsafeExpressionError for characters outside the allow-list,
    UnknownIdentifierError for names missing from *context*, and
    ExpressionError for any other parse or type problem.
    """
    return evaluate_tree(parse_expression(source.strip()), context)


def evaluate_tree(expr: Expr, context: Mapping[str, Value]) -> Value:
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, Name):
        if expr.name not in context:
            raise UnknownIdentifierError(expr.name)
        return context[expr.name]
    if isinstance(expr, Logical):
        left = evaluate_tree(expr.left, context)
        if expr.op == "and":
            return evaluate_tree(expr.right, context) if left else left
        return left if left else evaluate_tree(expr.right, context)
    if isinstance(expr, Unary):
        operand = evaluate_tree(expr.operand, context)
        if expr.op == "not":
            return not operand
        return -_number(operand, "-")
    left = evaluate_tree(expr.left, context)
    right = evaluate_tree(expr.right, context)
    return _binary(expr.op, left, right)


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _number(value: Value, op: str) -> int | float:
    if isinstance(value, (int, float)):
        return value
    number = parse_number(value) if isinstance(value, str) else None
    if number is None:
        raise ExpressionError(f"Operator {op!r} needs a number, got {value!r}")
    return number


def _binary(op: str, left: Value, right: Value) -> Value:
    if op == "+":
        if isinstance(left, str) or isinstance(right, str):
            return format_value(left) + format_value(right)
        return left + right
    if op in ("-", "*"):
        a, b = _number(left, op), _number(right, op)
        return a - b if op == "-" else a * b
    if op == "/":
        a, b = _number(left, op), _number(right, op)
        if b == 0:
            raise ExpressionError("Division by zero")
        if isinstance(a, int) and isinstance(b, int) and a % b == 0:
            return a // b
        return a / b
    if op == "==":
        return _equals(left, right)
    if op == "!=":
        return not _equals(left, right)
    a, b = _ordered(left, right, op)
    if op == ">":
        return a > b
    if op == "<":
        return a < b
    if op == ">=":
        return a >= b
    return a <= b


def _equals(left: Value, right: Value) -> bool:
    if isinstance(left, bool) and isinstance(right, str) or isinstance(right, bool) and isinstance(left, str):
        return format_value(left) == format_value(right)
    if isinstance(left, str) and not isinstance(right, str):
        number = parse_number(left)
        return number is not None and number == right
    if isinstance(right, str) and not isinstance(left, str):
        number = parse_number(right)
        return number is not None and number == left
    return left == right


def _ordered(left: Value, right: Value, op: str) -> tuple:
    if isinstance(left, str) and isinstance(right, str):
        a, b = parse_number(left), parse_number(right)
        if a is not None and b is not None:
            return a, b
        return left, right
    return _number(left, op), _number(right, op)
