"""Tokenizer and recursive-descent parser for Python literals.

The .npy header is the ``repr`` of a small dict.  Rather than handing it to
``eval`` we accept a fixed subset of Python literal syntax:

* strings in single or double quotes, with backslash escapes and an
  optional ``u`` prefix (Python 2 era files)
* integers, with an optional sign and legacy ``L`` suffix
* ``True``, ``False``, ``None``
* tuples, lists, and dicts, trailing commas allowed
"""

from __future__ import annotations

import re
from typing import Any, NamedTuple

from .errors import MalformedHeaderDict


class Token(NamedTuple):
    kind: str       # "str", "int", "name", "punct", or "end"
    value: Any
    pos: int


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<int>[+-]?\d+)[lL]?(?![\w.])
    | (?P<name>[A-Za-z_]\w*)
    | (?P<punct>[{}()\[\],:])
    """,
    re.VERBOSE,
)

_SIMPLE_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "0": "\0", "a": "\a", "b": "\b",
    "f": "\f", "v": "\v", "\\": "\\", "'": "'", '"': '"', "\n": "",
}
_HEX_ESCAPES = {"x": 2, "u": 4, "U": 8}

_CONSTANTS = {"True": True, "False": False, "None": None}

_CLOSERS = {"(": ")", "[": "]", "{": "}"}

# Deepest container nesting accepted; real headers stay in single digits.
MAX_DEPTH = 64


# ── Tokenizer ───────────────────────────────────────────────────────────────


def _scan_string(text: str, start: int) -> tuple[str, int]:
    """Scan a quoted string at *start*; return (value, end position)."""
    quote = text[start]
    out: list[str] = []
    i = start + 1
    n = len(text)
    while i < n:
        c = text[i]
        if c == quote:
            return "".join(out), i + 1
        if c == "\n":
            break
        if c != "\\":
            out.append(c)
            i += 1
            continue
        if i + 1 >= n:
            break
        esc = text[i + 1]
        if esc in _HEX_ESCAPES:
            width = _HEX_ESCAPES[esc]
            digits = text[i + 2 : i + 2 + width]
            if (
                len(digits) != width
                or not all(d in "0123456789abcdefABCDEF" for d in digits)
                or int(digits, 16) > 0x10FFFF
            ):
                raise MalformedHeaderDict(
                    f"bad \\{esc} escape at position {i}"
                )
            out.append(chr(int(digits, 16)))
            i += 2 + width
        elif esc in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[esc])
            i += 2
        else:
            # Unknown escapes are kept verbatim, as Python does.
            out.append("\\" + esc)
            i += 2
    raise MalformedHeaderDict(f"unterminated string starting at position {start}")


def tokenize(text: str) -> list[Token]:
    """Split *text* into literal tokens, ending with an ``end`` token."""
    tokens: list[Token] = []
    pos = 0
    n = len(text)
    while pos < n:
        c = text[pos]
        if c in "'\"":
            value, pos_end = _scan_string(text, pos)
            tokens.append(Token("str", value, pos))
            pos = pos_end
            continue
        if c in "uU" and pos + 1 < n and text[pos + 1] in "'\"":
            value, pos_end = _scan_string(text, pos + 1)
            tokens.append(Token("str", value, pos))
            pos = pos_end
            continue
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise MalformedHeaderDict(
                f"unexpected character {c!r} at position {pos}"
            )
        kind = m.lastgroup
        if kind == "int":
            tokens.append(Token("int", int(m.group("int")), pos))
        elif kind == "name":
            tokens.append(Token("name", m.group("name"), pos))
        elif kind == "punct":
            tokens.append(Token("punct", m.group("punct"), pos))
        pos = m.end()
    tokens.append(Token("end", None, n))
    return tokens


# ── Parser ──────────────────────────────────────────────────────────────────


class _Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._i = 0
        self._depth = 0

    def _peek(self) -> Token:
        return self._tokens[self._i]

    def _next(self) -> Token:
        tok = self._tokens[self._i]
        if tok.kind != "end":
            self._i += 1
        return tok

    def _at(self, punct: str) -> bool:
        tok = self._peek()
        return tok.kind == "punct" and tok.value == punct

    def _fail(self, tok: Token, expected: str) -> MalformedHeaderDict:
        if tok.kind == "end":
            return MalformedHeaderDict(f"unexpected end of input, expected {expected}")
        return MalformedHeaderDict(
            f"unexpected {tok.value!r} at position {tok.pos}, expected {expected}"
        )

    def parse(self) -> Any:
        value = self.value()
        tok = self._peek()
        if tok.kind != "end":
            raise self._fail(tok, "end of input")
        return value

    def value(self) -> Any:
        tok = self._next()
        if tok.kind in ("str", "int"):
            return tok.value
        if tok.kind == "name":
            if tok.value in _CONSTANTS:
                return _CONSTANTS[tok.value]
            raise MalformedHeaderDict(
                f"unknown name {tok.value!r} at position {tok.pos}"
            )
        if tok.kind == "punct" and tok.value in _CLOSERS:
            if self._depth >= MAX_DEPTH:
                raise MalformedHeaderDict(
                    f"literal nested deeper than {MAX_DEPTH} at position {tok.pos}"
                )
            self._depth += 1
            try:
                return self._container(tok.value)
            finally:
                self._depth -= 1
        raise self._fail(tok, "a value")

    def _container(self, opener: str) -> Any:
        if opener == "{":
            return self._dict()
        if opener == "[":
            return self._sequence("]")[0]
        items, saw_comma = self._sequence(")")
        if len(items) == 1 and not saw_comma:
            return items[0]
        return tuple(items)

    def _sequence(self, close: str) -> tuple[list, bool]:
        items: list = []
        saw_comma = False
        while True:
            if self._at(close):
                self._next()
                return items, saw_comma
            items.append(self.value())
            tok = self._next()
            if tok.kind == "punct" and tok.value == close:
                return items, saw_comma
            if not (tok.kind == "punct" and tok.value == ","):
                raise self._fail(tok, f"',' or {close!r}")
            saw_comma = True

    def _dict(self) -> dict:
        out: dict = {}
        while True:
            if self._at("}"):
                self._next()
                return out
            key_tok = self._peek()
            key = self.value()
            tok = self._next()
            if not (tok.kind == "punct" and tok.value == ":"):
                raise self._fail(tok, "':'")
            try:
                out[key] = self.value()
            except TypeError:
                raise MalformedHeaderDict(
                    f"unhashable dict key at position {key_tok.pos}"
                ) from None
            tok = self._next()
            if tok.kind == "punct" and tok.value == "}":
                return out
            if not (tok.kind == "punct" and tok.value == ","):
                raise self._fail(tok, "',' or '}'")


def parse_literal(text: str) -> Any:
    """Parse *text* as a single Python literal value.

    Raises :class:`MalformedHeaderDict` on any syntax error, including
    unbalanced brackets and unterminated strings.
    """
    return _Parser(tokenize(text)).parse()
