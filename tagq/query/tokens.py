"""
Tokenizer for the tagq query language.

Turns query text such as

    find task where Status = Done and not Priority exists order by -created limit 10

into a flat list of typed tokens. Keywords are case-insensitive and always
emitted in lowercase; every other character is either consumed into a token
or rejected with a LexicalError carrying its position.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Union

from ..errors import LexicalError


# =============================================================================
# Token Types
# =============================================================================

class TokenKind(Enum):
    KEYWORD = "keyword"
    OPERATOR = "operator"
    IDENTIFIER = "identifier"
    STRING = "string"
    NUMBER = "number"
    LPAREN = "lparen"
    RPAREN = "rparen"
    COMMA = "comma"
    MINUS = "minus"


KEYWORDS = frozenset({
    "find", "where", "order", "by", "limit", "offset",
    "and", "or", "not", "exists", "select",
    "is", "empty", "null",
})

# Longest first so ">=" is never read as ">" followed by "="
OPERATORS = ("!=", ">=", "<=", "=", ">", "<", "~")

OPERATOR_CHARS = frozenset("=!<>~")
QUOTES = frozenset("'\"")

# Characters that end a bare word following an operator
_BARE_WORD_STOP = OPERATOR_CHARS | QUOTES | frozenset("(),")

_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")


@dataclass
class Token:
    """A single lexical token. Position is informational and ignored by ==."""
    kind: TokenKind
    value: Union[str, int, float]
    position: int = field(default=0, compare=False)

    def describe(self) -> str:
        """Human readable form used in error messages."""
        if self.kind == TokenKind.STRING:
            return f"string {self.value!r}"
        if self.kind in (TokenKind.LPAREN, TokenKind.RPAREN, TokenKind.COMMA):
            return f"'{self.value}'"
        return f"{self.kind.value} '{self.value}'"

    def is_keyword(self, *words: str) -> bool:
        return self.kind == TokenKind.KEYWORD and self.value in words


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_."


def _number_value(text: str) -> Union[int, float]:
    if "." in text:
        return float(text)
    return int(text)


# =============================================================================
# Tokenizer
# =============================================================================

class Tokenizer:
    """Single-use scanner over one query string."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]

            if ch.isspace():
                self.pos += 1
            elif ch in QUOTES:
                self._read_string()
            elif ch in OPERATOR_CHARS:
                self._read_operator()
            elif ch == "(":
                self._emit(TokenKind.LPAREN, ch, self.pos)
                self.pos += 1
            elif ch == ")":
                self._emit(TokenKind.RPAREN, ch, self.pos)
                self.pos += 1
            elif ch == ",":
                self._emit(TokenKind.COMMA, ch, self.pos)
                self.pos += 1
            elif ch == "*":
                self._emit(TokenKind.IDENTIFIER, ch, self.pos)
                self.pos += 1
            elif ch == "-":
                self._read_signed()
            elif _is_word_char(ch):
                self._read_word()
            else:
                raise LexicalError(f"Unexpected character {ch!r}", self.pos)

        return self.tokens

    def _emit(self, kind: TokenKind, value, position: int) -> None:
        self.tokens.append(Token(kind, value, position))

    def _read_string(self) -> None:
        start = self.pos
        quote = self.text[start]
        chars = []
        self.pos += 1

        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if ch == quote:
                self.pos += 1
                self._emit(TokenKind.STRING, "".join(chars), start)
                return
            chars.append(ch)
            self.pos += 1

        raise LexicalError("Unterminated string", start)

    def _read_operator(self) -> None:
        start = self.pos
        for op in OPERATORS:
            if self.text.startswith(op, start):
                self._emit(TokenKind.OPERATOR, op, start)
                self.pos += len(op)
                self._read_value()
                return
        raise LexicalError(f"Unexpected character {self.text[start]!r}", start)

    def _read_value(self) -> None:
        """Read the bare word (if any) that follows an operator."""
        text = self.text
        while self.pos < len(text) and text[self.pos].isspace():
            self.pos += 1

        start = self.pos
        while self.pos < len(text):
            ch = text[self.pos]
            if ch.isspace() or ch in _BARE_WORD_STOP:
                break
            self.pos += 1

        word = text[start:self.pos]
        if word:
            self._emit_word(word, start)

    def _read_signed(self) -> None:
        start = self.pos
        nxt = self.text[start + 1] if start + 1 < len(self.text) else ""

        if nxt and _is_word_char(nxt):
            self.pos += 1
            self._consume_word_chars()
            word = self.text[start:self.pos]
            if _NUMBER_RE.match(word):
                self._emit(TokenKind.NUMBER, _number_value(word), start)
            else:
                self._emit(TokenKind.IDENTIFIER, word, start)
        elif nxt in QUOTES:
            # -"Due Date": descending marker before a quoted name
            self._emit(TokenKind.MINUS, "-", start)
            self.pos += 1
        else:
            raise LexicalError("Unexpected character '-'", start)

    def _read_word(self) -> None:
        start = self.pos
        self._consume_word_chars()
        self._emit_word(self.text[start:self.pos], start)

    def _consume_word_chars(self) -> None:
        while self.pos < len(self.text) and _is_word_char(self.text[self.pos]):
            self.pos += 1

    def _emit_word(self, word: str, start: int) -> None:
        lowered = word.lower()
        if lowered in KEYWORDS:
            self._emit(TokenKind.KEYWORD, lowered, start)
        elif _NUMBER_RE.match(word):
            self._emit(TokenKind.NUMBER, _number_value(word), start)
        else:
            self._emit(TokenKind.IDENTIFIER, word, start)


def tokenize(text: str) -> List[Token]:
    """
    Convert query text into tokens.

    Raises:
        LexicalError: on an unterminated string or an invalid character
    """
    return Tokenizer(text).tokenize()
