"""feac/lexer.py – feature-file tokenizer.

The lexer is context free and never fails: it turns any text into a lazy
sequence of :class:`~feac.kinds.Token` values whose texts concatenate back
to the input, ending with an ``EOF`` token.  Malformed lexemes become error
tokens (``ERROR``, ``STRING_UNTERMINATED``, ``HEX_EMPTY``) which the parser
reports and carries into the tree.

Literal values are not interpreted here; numbers, strings and escaped
glyph names are parsed by the AST layer on demand.
"""

from __future__ import annotations

from typing import Iterator

from feac.kinds import KEYWORDS, Kind, Token

__all__ = ["Lexer", "tokenize", "iter_significant"]

_WHITESPACE = frozenset(" \t\n\r\x0b\x0c")
_DIGITS = frozenset("0123456789")
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

_PUNCTUATION = {
    "\\": Kind.BACKSLASH,
    "=": Kind.EQ,
    ";": Kind.SEMI,
    ",": Kind.COMMA,
    "'": Kind.SINGLE_QUOTE,
    "{": Kind.LBRACE,
    "}": Kind.RBRACE,
    "[": Kind.LSQUARE,
    "]": Kind.RSQUARE,
    "(": Kind.LPAREN,
    ")": Kind.RPAREN,
    "<": Kind.LANGLE,
    ">": Kind.RANGLE,
}

# characters that end an identifier; '-' is handled separately
_IDENT_STOP = frozenset(_PUNCTUATION) | frozenset('@#"') | _WHITESPACE


def _is_control(ch: str) -> bool:
    code = ord(ch)
    return (code < 0x20 or code == 0x7F) and ch not in _WHITESPACE


class Lexer:
    """Scan *text* one token at a time.

    ``next_token`` may be called repeatedly after the end of input; it keeps
    returning empty ``EOF`` tokens.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self._after_backslash = False

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.kind is Kind.EOF:
                return

    def next_token(self) -> Token:
        text = self.text
        start = self.pos
        if start >= len(text):
            return Token(Kind.EOF, "", start)

        after_backslash = self._after_backslash
        self._after_backslash = False
        ch = text[start]

        if ch in _WHITESPACE:
            kind = Kind.WHITESPACE
            self._eat_while(lambda c: c in _WHITESPACE)
        elif ch == "#":
            kind = Kind.COMMENT
            end = text.find("\n", start)
            self.pos = len(text) if end == -1 else end
        elif ch == '"':
            end = text.find('"', start + 1)
            if end == -1:
                kind = Kind.STRING_UNTERMINATED
                self.pos = len(text)
            else:
                kind = Kind.STRING
                self.pos = end + 1
        elif ch == "0" and text[start + 1:start + 2] in ("x", "X"):
            self.pos = start + 2
            self._eat_while(lambda c: c in _HEX_DIGITS)
            kind = Kind.HEX if self.pos > start + 2 else Kind.HEX_EMPTY
        elif ch in _DIGITS:
            kind = self._number()
        elif ch == "@":
            self.pos = start + 1
            self._eat_ident_chars()
            kind = Kind.NAMED_GLYPH_CLASS if self.pos > start + 1 else Kind.ERROR
        elif ch == "-":
            if text[start + 1:start + 2] == ">":
                kind = Kind.ARROW
                self.pos = start + 2
            else:
                kind = Kind.HYPHEN
                self.pos = start + 1
        elif ch in _PUNCTUATION:
            kind = _PUNCTUATION[ch]
            self.pos = start + 1
        elif _is_control(ch):
            kind = Kind.ERROR
            self._eat_while(_is_control)
        else:
            self._eat_ident_chars()
            word = text[start:self.pos]
            kind = Kind.IDENT
            if not after_backslash:
                kind = KEYWORDS.get(word, Kind.IDENT)

        if kind is Kind.BACKSLASH:
            self._after_backslash = True
        return Token(kind, text[start:self.pos], start)

    # ── helpers ─────────────────────────────────────────────────────────

    def _eat_while(self, predicate) -> None:
        text = self.text
        pos = self.pos
        while pos < len(text) and predicate(text[pos]):
            pos += 1
        self.pos = pos

    def _eat_ident_chars(self) -> None:
        text = self.text
        pos = self.pos
        while pos < len(text):
            ch = text[pos]
            if ch in _IDENT_STOP or _is_control(ch):
                break
            # "a->b" lexes as "a", "->", "b"
            if ch == "-" and text[pos + 1:pos + 2] == ">":
                break
            pos += 1
        self.pos = pos

    def _number(self) -> Kind:
        text = self.text
        self._eat_while(lambda c: c in _DIGITS)
        if (
            self.pos + 1 < len(text)
            and text[self.pos] == "."
            and text[self.pos + 1] in _DIGITS
        ):
            self.pos += 1
            self._eat_while(lambda c: c in _DIGITS)
            return Kind.FLOAT
        return Kind.NUMBER


def tokenize(text: str) -> Iterator[Token]:
    """Lazily tokenize *text*; the last token is always ``EOF``."""
    return iter(Lexer(text))


def iter_significant(text: str) -> Iterator[Token]:
    """Tokens of *text* without whitespace and comments."""
    return (tok for tok in tokenize(text) if not tok.is_trivia())
