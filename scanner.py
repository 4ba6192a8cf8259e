from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional


class YalError(Exception):
    """Base class for yal errors."""

    def __init__(self, message: str, *, location: Optional[Any] = None, rule: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


class YalLexError(YalError):
    """Raised when scanning fails."""

    def __init__(self, message: str, *, char: str, line: int, column: int) -> None:
        super().__init__(message, rule="SCAN")
        self.char = char
        self.line = line
        self.column = column


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int


KEYWORDS = {
    "func": "FUNC",
    "return": "RETURN",
    "import": "IMPORT",
    "from": "FROM",
    "true": "BOOL",
    "false": "BOOL",
}

SYMBOLS = {
    "\n": "NEWLINE",
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    ",": "COMMA",
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
}

OPERATORS = {
    "!=": "NOT_EQUAL",
    "==": "EQUAL",
}

BLANKS = " \t\r"
DIGITS = "0123456789"
WORD_CHARS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_"


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in BLANKS:
                self._advance()
                continue
            if ch in SYMBOLS:
                tokens_append(Token(SYMBOLS[ch], ch, self.line, self.column))
                self._advance()
                continue
            pair = text[self.index:self.index + 2]
            if pair in OPERATORS:
                tokens_append(Token(OPERATORS[pair], pair, self.line, self.column))
                self._advance()
                self._advance()
                continue
            if ch in DIGITS:
                tokens_append(self._consume_number())
                continue
            if ch in WORD_CHARS:
                tokens_append(self._consume_word())
                continue
            if pair == ":=":
                tokens_append(Token("DECLARE", pair, self.line, self.column))
                self._advance()
                self._advance()
                continue
            if ch == '"':
                tokens_append(self._consume_string())
                continue
            raise YalLexError(
                f"Unexpected character {ch!r} at {self.filename}:{self.line}:{self.column}",
                char=ch,
                line=self.line,
                column=self.column,
            )
        tokens_append(Token("EOF", "", self.line, self.column))
        return tokens

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        while not self._eof and self._peek() in DIGITS:
            self._advance()
        return Token("NUMBER", self.text[start:self.index], line, col)

    def _consume_word(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        while not self._eof and self._peek() in WORD_CHARS:
            self._advance()
        value = self.text[start:self.index]
        return Token(KEYWORDS.get(value, "IDENT"), value, line, col)

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        self._advance()  # opening quote
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                return Token("STRING", self.text[start:self.index], line, col)
            if ch == "\n":
                break
            self._advance()
        raise YalLexError(
            f"Unterminated string literal at {self.filename}:{line}:{col}",
            char='"',
            line=line,
            column=col,
        )

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def scan(source: str, filename: str = "<string>") -> List[Token]:
    return Lexer(source, filename).tokenize()
