"""Boolean filter expressions over JSON-like documents.

A small jq-flavoured language used by CUSTOM response checks,
expectedResponse filters and secret injection paths:

    expr       := or_expr
    or_expr    := and_expr ("or" and_expr)*
    and_expr   := not_expr ("and" not_expr)*
    not_expr   := "not" not_expr | comparison
    comparison := operand (("==" | "!=" | "<" | "<=" | ">" | ">=") operand)?
    operand    := path | string | number | "true" | "false" | "null" | "(" expr ")"
    path       := "." [name | "[" index "]"] ("." name | "[" index "]")*
    index      := integer | string

Examples:
    .body.job_status == "success"
    .statusCode == 200 and .body.items[0].state != "failed"
    not (.headers["content-type"][0] == "text/html")

Unlike jq, reading a path that does not exist is an evaluation error rather
than null, so a typo in a check cannot silently evaluate to false.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any


class ExpressionError(Exception):
    """Base class for expression failures."""

    pass


class ExpressionSyntaxError(ExpressionError):
    """Raised when an expression cannot be parsed."""

    pass


class ExpressionEvaluationError(ExpressionError):
    """Raised when a parsed expression cannot be evaluated against a document."""

    pass


# =============================================================================
# Tokenizer
# =============================================================================

_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<string>"(?:[^"\\]|\\.)*")
    | (?P<number>-?\d+(?:\.\d+)?)
    | (?P<op>==|!=|<=|>=|<|>)
    | (?P<punct>[.\[\]()])
    | (?P<name>[A-Za-z_][A-Za-z0-9_-]*)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ExpressionSyntaxError(f"unexpected character {text[pos]!r} at position {pos}")
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


# =============================================================================
# AST
# =============================================================================


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _format_path(segments: tuple[str | int, ...]) -> str:
    if not segments:
        return "."
    parts = []
    for segment in segments:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        elif re.fullmatch(r"[A-Za-z_][A-Za-z0-9_-]*", segment):
            parts.append(f".{segment}")
        else:
            parts.append(f"[{json.dumps(segment)}]")
    text = "".join(parts)
    return text if text.startswith(".") else "." + text


@dataclass(frozen=True)
class Literal:
    value: Any

    def evaluate(self, document: Any) -> Any:
        return self.value


@dataclass(frozen=True)
class Path:
    segments: tuple[str | int, ...]

    def evaluate(self, document: Any) -> Any:
        current = document
        for depth, segment in enumerate(self.segments):
            walked = _format_path(self.segments[: depth + 1])
            if isinstance(segment, int):
                if not isinstance(current, list):
                    raise ExpressionEvaluationError(
                        f"cannot index {_describe(current)} with number at {walked}"
                    )
                if not -len(current) <= segment < len(current):
                    raise ExpressionEvaluationError(f"index out of range at {walked}")
                current = current[segment]
            else:
                if not isinstance(current, dict):
                    raise ExpressionEvaluationError(
                        f"cannot index {_describe(current)} with {segment!r} at {walked}"
                    )
                if segment not in current:
                    raise ExpressionEvaluationError(f"path {walked} not found")
                current = current[segment]
        return current

    def __str__(self) -> str:
        return _format_path(self.segments)


@dataclass(frozen=True)
class Not:
    operand: Any

    def evaluate(self, document: Any) -> bool:
        value = self.operand.evaluate(document)
        if not isinstance(value, bool):
            raise ExpressionEvaluationError(f"'not' expects a boolean, got {_describe(value)}")
        return not value


@dataclass(frozen=True)
class BoolOp:
    op: str
    operands: tuple[Any, ...]

    def evaluate(self, document: Any) -> bool:
        for operand in self.operands:
            value = operand.evaluate(document)
            if not isinstance(value, bool):
                raise ExpressionEvaluationError(
                    f"'{self.op}' expects boolean operands, got {_describe(value)}"
                )
            # Short-circuit like jq
            if self.op == "and" and not value:
                return False
            if self.op == "or" and value:
                return True
        return self.op == "and"


def _equal(left: Any, right: Any) -> bool:
    # Booleans never compare equal to numbers
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True)
class Compare:
    op: str
    left: Any
    right: Any

    def evaluate(self, document: Any) -> bool:
        left = self.left.evaluate(document)
        right = self.right.evaluate(document)

        if self.op == "==":
            return _equal(left, right)
        if self.op == "!=":
            return not _equal(left, right)

        comparable = (_is_number(left) and _is_number(right)) or (
            isinstance(left, str) and isinstance(right, str)
        )
        if not comparable:
            raise ExpressionEvaluationError(
                f"cannot compare {_describe(left)} {self.op} {_describe(right)}"
            )
        match self.op:
            case "<":
                return left < right
            case "<=":
                return left <= right
            case ">":
                return left > right
            case _:
                return left >= right


# =============================================================================
# Parser
# =============================================================================


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = tokenize(text)
        self._index = 0

    def parse(self) -> Any:
        if not self._tokens:
            raise ExpressionSyntaxError("empty expression")
        node = self._or()
        if self._index < len(self._tokens):
            token = self._tokens[self._index]
            raise ExpressionSyntaxError(f"unexpected {token.text!r} at position {token.pos}")
        return node

    def _peek(self) -> Token | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise ExpressionSyntaxError("unexpected end of expression")
        self._index += 1
        return token

    def _accept_keyword(self, word: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == "name" and token.text == word:
            self._index += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        token = self._next()
        if token.text != text:
            raise ExpressionSyntaxError(
                f"expected {text!r} but found {token.text!r} at position {token.pos}"
            )

    def _or(self) -> Any:
        operands = [self._and()]
        while self._accept_keyword("or"):
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else BoolOp("or", tuple(operands))

    def _and(self) -> Any:
        operands = [self._not()]
        while self._accept_keyword("and"):
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else BoolOp("and", tuple(operands))

    def _not(self) -> Any:
        if self._accept_keyword("not"):
            return Not(self._not())
        return self._comparison()

    def _comparison(self) -> Any:
        left = self._operand()
        token = self._peek()
        if token is not None and token.kind == "op":
            self._index += 1
            return Compare(token.text, left, self._operand())
        return left

    def _operand(self) -> Any:
        token = self._next()
        if token.kind == "string":
            return Literal(json.loads(token.text))
        if token.kind == "number":
            if "." in token.text:
                return Literal(float(token.text))
            return Literal(int(token.text))
        if token.kind == "name":
            match token.text:
                case "true":
                    return Literal(True)
                case "false":
                    return Literal(False)
                case "null":
                    return Literal(None)
            raise ExpressionSyntaxError(
                f"unexpected name {token.text!r} at position {token.pos}; paths start with '.'"
            )
        if token.text == "(":
            node = self._or()
            self._expect(")")
            return node
        if token.text == ".":
            return self._path()
        raise ExpressionSyntaxError(f"unexpected {token.text!r} at position {token.pos}")

    def _path(self) -> Path:
        segments: list[str | int] = []
        token = self._peek()
        # Leading "." may be followed directly by a name or an index
        if token is not None and token.kind == "name":
            segments.append(self._next().text)
        elif token is not None and token.text == "[":
            segments.append(self._index_segment())

        while True:
            token = self._peek()
            if token is None:
                break
            if token.text == "[":
                segments.append(self._index_segment())
            elif token.text == ".":
                self._index += 1
                name = self._next()
                if name.kind == "string":
                    segments.append(json.loads(name.text))
                elif name.kind == "name":
                    segments.append(name.text)
                else:
                    raise ExpressionSyntaxError(
                        f"expected a field name after '.' at position {name.pos}"
                    )
            else:
                break
        return Path(tuple(segments))

    def _index_segment(self) -> str | int:
        self._expect("[")
        token = self._next()
        if token.kind == "string":
            segment: str | int = json.loads(token.text)
        elif token.kind == "number" and "." not in token.text:
            segment = int(token.text)
        else:
            raise ExpressionSyntaxError(
                f"index must be an integer or string at position {token.pos}"
            )
        self._expect("]")
        return segment


# =============================================================================
# Public API
# =============================================================================


@dataclass(frozen=True)
class Expression:
    """A compiled expression."""

    source: str
    root: Any

    def evaluate(self, document: Any) -> Any:
        return self.root.evaluate(document)

    @property
    def is_path(self) -> bool:
        return isinstance(self.root, Path)


@lru_cache(maxsize=256)
def compile_expression(text: str) -> Expression:
    """Parse an expression.

    Raises:
        ExpressionSyntaxError: If the text is not a valid expression.
    """
    return Expression(source=text, root=_Parser(text.strip()).parse())


def evaluate(text: str, document: Any) -> Any:
    """Compile and evaluate an expression in one step."""
    return compile_expression(text).evaluate(document)


def resolve_path(text: str, document: Any) -> Any:
    """Resolve a path expression such as ``.body.id`` against a document.

    Raises:
        ExpressionSyntaxError: If ``text`` is not a bare path.
        ExpressionEvaluationError: If the path does not exist.
    """
    expression = compile_expression(text)
    if not expression.is_path:
        raise ExpressionSyntaxError(f"expected a path expression, got {text!r}")
    return expression.evaluate(document)
