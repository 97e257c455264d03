"""Tokenizer for template expressions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ..errors import ExpressionError

TokenKind = Literal["number", "string", "name", "punct", "eof"]

PUNCTUATION = frozenset(".,()[]{}:|!")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    pos: int


def tokenize(source: str) -> list[Token]:
    """Split an expression into tokens, ending with an ``eof`` token.

    Raises:
        ExpressionError: On an unterminated string or an unexpected character.
    """
    tokens: list[Token] = []
    i = 0
    length = len(source)

    while i < length:
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if ch in PUNCTUATION:
            tokens.append(Token("punct", ch, i))
            i += 1
            continue

        if ch in ("'", '"'):
            start = i
            value, i = _read_string(source, i)
            tokens.append(Token("string", value, start))
            continue

        if ch.isdigit() or (ch == "-" and i + 1 < length and source[i + 1].isdigit()):
            start = i
            i += 1
            while i < length and (source[i].isdigit() or source[i] == "."):
                i += 1
            text = source[start:i]
            if text.count(".") > 1:
                raise ExpressionError(f"Malformed number {text!r}", source, start)
            tokens.append(Token("number", text, start))
            continue

        if ch.isalpha() or ch in "_$":
            start = i
            while i < length and (source[i].isalnum() or source[i] in "_$"):
                i += 1
            tokens.append(Token("name", source[start:i], start))
            continue

        raise ExpressionError(f"Unexpected character {ch!r}", source, i)

    tokens.append(Token("eof", "", length))
    return tokens


def _read_string(source: str, start: int) -> tuple[str, int]:
    quote = source[start]
    i = start + 1
    chars: list[str] = []

    while i < len(source):
        ch = source[i]
        if ch == "\\":
            if i + 1 >= len(source):
                break
            nxt = source[i + 1]
            chars.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1

    raise ExpressionError("Unterminated string", source, start)
