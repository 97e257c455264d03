"""Recursive-descent parser for template expressions.

Grammar:

    pipeline := unary ("|" unary)*
    unary    := "!" unary | postfix
    postfix  := primary ("." NAME | "[" pipeline "]" | "(" [args] ")")*
    primary  := NUMBER | STRING | "true" | "false" | "null" | NAME
              | "(" pipeline ")" | "[" [args] "]" | "{" [pairs] "}"
    args     := pipeline ("," pipeline)*
    pairs    := (NAME | STRING) ":" pipeline ("," (NAME | STRING) ":" pipeline)*

Parsing produces a small AST; nothing is ever compiled to host code.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from ..errors import ExpressionError
from .lexer import Token, tokenize


class Node:
    """Base class for AST nodes."""


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class Name(Node):
    name: str


@dataclass(frozen=True)
class Member(Node):
    target: Node
    name: str


@dataclass(frozen=True)
class Index(Node):
    target: Node
    index: Node


@dataclass(frozen=True)
class Call(Node):
    func: Node
    args: tuple[Node, ...]


@dataclass(frozen=True)
class Not(Node):
    operand: Node


@dataclass(frozen=True)
class Pipe(Node):
    seed: Node
    steps: tuple[Node, ...]


@dataclass(frozen=True)
class ListExpr(Node):
    items: tuple[Node, ...]


@dataclass(frozen=True)
class MapExpr(Node):
    pairs: tuple[tuple[str, Node], ...]


_KEYWORDS = {"true": True, "false": False, "null": None}


class Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens: list[Token] = tokenize(source)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "eof":
            self.pos += 1
        return token

    def _at(self, value: str) -> bool:
        token = self.current
        return token.kind == "punct" and token.value == value

    def _expect(self, value: str) -> Token:
        if not self._at(value):
            found = self.current.value or "end of expression"
            raise self._error(f"Expected {value!r}, found {found!r}")
        return self._advance()

    def _error(self, message: str) -> ExpressionError:
        return ExpressionError(message, self.source, self.current.pos)

    def parse(self) -> Node:
        if self.current.kind == "eof":
            raise self._error("Empty expression")
        node = self.pipeline()
        if self.current.kind != "eof":
            raise self._error(f"Unexpected {self.current.value!r}")
        return node

    def pipeline(self) -> Node:
        seed = self.unary()
        steps: list[Node] = []
        while self._at("|"):
            self._advance()
            steps.append(self.unary())
        if steps:
            return Pipe(seed, tuple(steps))
        return seed

    def unary(self) -> Node:
        if self._at("!"):
            self._advance()
            return Not(self.unary())
        return self.postfix()

    def postfix(self) -> Node:
        node = self.primary()
        while True:
            if self._at("."):
                self._advance()
                token = self._advance()
                if token.kind != "name":
                    raise ExpressionError("Expected a name after '.'", self.source, token.pos)
                node = Member(node, token.value)
            elif self._at("["):
                self._advance()
                index = self.pipeline()
                self._expect("]")
                node = Index(node, index)
            elif self._at("("):
                self._advance()
                args = self._arguments(")")
                node = Call(node, args)
            else:
                return node

    def primary(self) -> Node:
        token = self.current

        if token.kind == "number":
            self._advance()
            return Literal(float(token.value) if "." in token.value else int(token.value))

        if token.kind == "string":
            self._advance()
            return Literal(token.value)

        if token.kind == "name":
            self._advance()
            if token.value in _KEYWORDS:
                return Literal(_KEYWORDS[token.value])
            return Name(token.value)

        if self._at("("):
            self._advance()
            node = self.pipeline()
            self._expect(")")
            return node

        if self._at("["):
            self._advance()
            return ListExpr(self._arguments("]"))

        if self._at("{"):
            self._advance()
            return MapExpr(self._pairs())

        raise self._error(f"Unexpected {token.value or 'end of expression'!r}")

    def _arguments(self, closing: str) -> tuple[Node, ...]:
        args: list[Node] = []
        if self._at(closing):
            self._advance()
            return ()
        while True:
            args.append(self.pipeline())
            if self._at(","):
                self._advance()
                continue
            self._expect(closing)
            return tuple(args)

    def _pairs(self) -> tuple[tuple[str, Node], ...]:
        pairs: list[tuple[str, Node]] = []
        if self._at("}"):
            self._advance()
            return ()
        while True:
            key = self._advance()
            if key.kind not in ("name", "string"):
                raise ExpressionError("Expected a key", self.source, key.pos)
            self._expect(":")
            pairs.append((key.value, self.pipeline()))
            if self._at(","):
                self._advance()
                continue
            self._expect("}")
            return tuple(pairs)


@lru_cache(maxsize=512)
def parse_expression(source: str) -> Node:
    """Parse an expression into an AST. Results are cached per source string.

    Raises:
        ExpressionError: If the expression is malformed.
    """
    return Parser(source.strip()).parse()
