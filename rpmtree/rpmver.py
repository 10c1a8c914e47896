"""Comparison of RPM epoch, version and release strings."""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass
from typing import Iterator, Protocol


class TokenType(str, enum.Enum):
    """Kinds of token a version segment is split into."""

    NUM = "num"
    ALPHA = "alpha"
    SEP = "sep"


def _sign(a, b) -> int:
    return (a > b) - (a < b)


def _is_num(char: str) -> bool:
    return "0" <= char <= "9"


@dataclass(frozen=True)
class Token:
    """A single token; a token without a type marks the end of the input."""

    text: str = ""
    type: TokenType | None = None

    def compare(self, other: Token) -> int:
        """Return -1, 0 or 1 as this token sorts before, with or after ``other``."""
        if self.type is None and other.type is None:
            return 0
        if other.type is None:
            return 1
        if self.type is None:
            return -1

        if self.type is not TokenType.SEP and other.type is TokenType.SEP:
            return 1
        if self.type is TokenType.SEP and other.type is not TokenType.SEP:
            return -1

        if self.type is TokenType.NUM and other.type is TokenType.ALPHA:
            return 1
        if self.type is TokenType.ALPHA and other.type is TokenType.NUM:
            return -1

        if self.type is TokenType.NUM and other.type is TokenType.NUM:
            return _sign(int(self.text), int(other.text))
        return _sign(self.text, other.text)


class Tokenizer:
    """Splits a version segment into numeric, alphabetic and separator tokens."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._end = False

    def next_token(self) -> Token | None:
        """Return the next token, an end token once, and then ``None``."""
        if self._end:
            return None
        if not self._text:
            self._end = True
            return Token()
        if self._text[0] == ".":
            self._text = self._text[1:]
            return Token(type=TokenType.SEP)

        numeric = _is_num(self._text[0])
        run = "".join(
            itertools.takewhile(
                lambda c: c != "." and _is_num(c) == numeric, self._text
            )
        )
        self._text = self._text[len(run):]

        stripped = run.lstrip("0") or run[-1]
        return Token(text=stripped, type=TokenType.NUM if numeric else TokenType.ALPHA)

    def __iter__(self) -> Iterator[Token]:
        while (token := self.next_token()) is not None:
            yield token


def compare_segment(a: str, b: str) -> int:
    """Compare two epoch, version or release strings the RPM way."""
    if not a and b:
        return -1
    if not b and a:
        return 1
    if not a and not b:
        return 0

    if a[0] == "~" and b[0] != "~":
        return -1
    if a[0] != "~" and b[0] == "~":
        return 1
    if a[0] == "~" and b[0] == "~":
        a, b = a[1:], b[1:]

    tokens_a = Tokenizer(a)
    tokens_b = Tokenizer(b)
    while True:
        ta = tokens_a.next_token()
        tb = tokens_b.next_token()
        result = ta.compare(tb)
        if result != 0 or ta.type is None or tb.type is None:
            return result


class _Versioned(Protocol):
    epoch: str
    ver: str
    rel: str


def compare(a: _Versioned, b: _Versioned) -> int:
    """Compare two versions by epoch, then version, then release."""
    for left, right in ((a.epoch, b.epoch), (a.ver, b.ver), (a.rel, b.rel)):
        result = compare_segment(left, right)
        if result:
            return result
    return 0