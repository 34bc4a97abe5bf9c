"""Greedy scanner producing one `Token` at a time.

Input is consumed line by line so an interactive session only waits for more
text when the parser actually asks for the next token.
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Deque, Iterable, Iterator, Optional

from lark import Lark
from lark.exceptions import LexError as LarkLexError

from .ast import Located
from .errors import LexError

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_LEXER = Lark(_GRAMMAR_SRC, parser="lalr", lexer="basic", start="start")

KEYWORDS = frozenset({"def", "extern", "if", "then", "else", "for", "in"})

# Longest prefix of a digit/dot run that reads as a decimal number.
_FLOAT_PREFIX = re.compile(r"\d*\.?\d*")


class TokenKind(Enum):
    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    NUMBER = "number"
    CHAR = "char"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: object = None
    loc: Optional[Located] = field(default=None, compare=False)

    @classmethod
    def keyword(cls, word: str) -> "Token":
        return cls(TokenKind.KEYWORD, word)

    @classmethod
    def char(cls, ch: str) -> "Token":
        return cls(TokenKind.CHAR, ch)

    @classmethod
    def eof(cls, loc: Optional[Located] = None) -> "Token":
        return cls(TokenKind.EOF, None, loc)

    def is_char(self, ch: str) -> bool:
        return self.kind is TokenKind.CHAR and self.value == ch

    def is_keyword(self, word: str) -> bool:
        return self.kind is TokenKind.KEYWORD and self.value == word

    def __str__(self) -> str:
        if self.kind is TokenKind.EOF:
            return "end of input"
        if self.kind is TokenKind.NUMBER:
            return f"number {self.value:g}"
        if self.kind is TokenKind.IDENTIFIER:
            return f"identifier '{self.value}'"
        return f"'{self.value}'"


def number_value(text: str) -> float:
    """Value of a scanned number, reading only its leading decimal part."""
    prefix = _FLOAT_PREFIX.match(text).group(0)
    try:
        return float(prefix)
    except ValueError:
        return 0.0


class Lexer:
    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = iter(lines)
        self._pending: Deque[Token] = deque()
        self._lineno = 0
        self._done = False

    @classmethod
    def from_text(cls, text: str) -> "Lexer":
        return cls(text.splitlines(keepends=True))

    def next_token(self) -> Token:
        while not self._pending:
            if self._done:
                return Token.eof(Located(self._lineno + 1, 1))
            try:
                line = next(self._lines)
            except StopIteration:
                self._done = True
                continue
            self._lineno += 1
            self._pending.extend(self._scan(line))
        return self._pending.popleft()

    def __iter__(self) -> Iterator[Token]:
        while True:
            tok = self.next_token()
            yield tok
            if tok.kind is TokenKind.EOF:
                return

    def _scan(self, line: str) -> Iterator[Token]:
        try:
            raw = list(_LEXER.lex(line))
        except LarkLexError as e:
            column = getattr(e, "column", 1)
            raise LexError(f"unexpected input: {e}", Located(self._lineno, column)) from e
        for tok in raw:
            loc = Located(self._lineno, tok.column)
            if tok.type == "NAME":
                yield Token(TokenKind.IDENTIFIER, tok.value, loc)
            elif tok.type == "NUMBER":
                yield Token(TokenKind.NUMBER, number_value(tok.value), loc)
            elif tok.type == "CHAR":
                yield Token(TokenKind.CHAR, tok.value, loc)
            elif tok.value in KEYWORDS:
                yield Token(TokenKind.KEYWORD, tok.value, loc)
            else:
                raise LexError(f"unexpected token type {tok.type}", loc)


def tokenize(text: str) -> list[Token]:
    """All tokens of `text`, ending with a single EOF token."""
    return list(Lexer.from_text(text))
