"""
metal_analyzer/lexer.py
═══════════════════════

Token-level lexer for Metal Shading Language source.

The lexer only needs to be good enough for declaration extraction and
call-site discovery: it recognises identifiers, numeric / string / char
literals and the C++ punctuators, and classifies numeric literals so the
overload resolver can type ``1``, ``1u``, ``1.0f`` and ``1.0h``.

Comments are expected to have been blanked by the scanner already, but
the lexer skips any it meets so it can also be used on directive
arguments (``#if`` expressions, ``#define`` bodies).

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, List, Optional


class TokenKind(Enum):
    IDENT = auto()
    NUMBER = auto()
    STRING = auto()
    CHAR = auto()
    PUNCT = auto()
    OTHER = auto()


@dataclass(frozen=True, slots=True)
class Token:
    """A lexed token with its 1-based source position."""
    kind: TokenKind
    text: str
    line: int = 0
    column: int = 0

    @property
    def is_ident(self) -> bool:
        return self.kind is TokenKind.IDENT

    def at(self, line: int, column: int) -> "Token":
        """Copy of this token relocated to ``line:column``."""
        return Token(self.kind, self.text, line, column)

    def __repr__(self) -> str:
        return f"Token({self.text!r} @{self.line}:{self.column})"


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>[ \t\r\f\v\n]+)
    | (?P<line_comment>//[^\n]*)
    | (?P<block_comment>/\*.*?\*/)
    | (?P<string>(?:u8|[uUL])?"(?:\\.|[^"\\\n])*")
    | (?P<char>(?:u8|[uUL])?'(?:\\.|[^'\\\n])+')
    | (?P<number>
          0[xX][0-9a-fA-F']+[uUlL]*
        | (?:\d[\d']*\.?[\d']*|\.\d[\d']*)(?:[eE][+-]?\d+)?[uUlLfFhH]*
      )
    | (?P<ident>[A-Za-z_]\w*)
    | (?P<punct>
          \#\#|\.\.\.|->\*|<<=|>>=|<=>|::|->|\+\+|--|&&|\|\||<<|>>
        | [-+*/%&|^!=<>]=
        | [][{}();:,.?~!%^&*+\-=<>/|\#@]
      )
    | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_KIND_BY_GROUP = {
    "string": TokenKind.STRING,
    "char": TokenKind.CHAR,
    "number": TokenKind.NUMBER,
    "ident": TokenKind.IDENT,
    "punct": TokenKind.PUNCT,
    "other": TokenKind.OTHER,
}


def iter_tokens(text: str, line: int = 1, column: int = 1) -> Iterator[Token]:
    """
    Yield tokens of ``text``.

    ``line``/``column`` give the position of ``text[0]``; newlines inside
    ``text`` advance the line counter and reset the column to 1.
    """
    line_start = 0
    col_base = column
    for m in _TOKEN_RE.finditer(text):
        group = m.lastgroup
        start = m.start()
        if group in ("ws", "line_comment", "block_comment"):
            chunk = m.group()
            newlines = chunk.count("\n")
            if newlines:
                line += newlines
                line_start = start + chunk.rindex("\n") + 1
                col_base = 1
            continue
        yield Token(
            _KIND_BY_GROUP[group],
            m.group(),
            line,
            col_base + (start - line_start),
        )


def tokenize(text: str, line: int = 1, column: int = 1) -> List[Token]:
    return list(iter_tokens(text, line, column))


# ─────────────────────────────────────────────────────────────────────────
#  Literal classification
# ─────────────────────────────────────────────────────────────────────────

def literal_type(tok: Token) -> Optional[str]:
    """
    Static type of a literal token, or ``None`` for non-literals.

    >>> literal_type(Token(TokenKind.NUMBER, "1.0f"))
    'float'
    >>> literal_type(Token(TokenKind.NUMBER, "3u"))
    'uint'
    """
    if tok.kind is TokenKind.CHAR:
        return "char"
    if tok.kind is TokenKind.STRING:
        return "const char*"
    if tok.kind is TokenKind.IDENT and tok.text in ("true", "false"):
        return "bool"
    if tok.kind is not TokenKind.NUMBER:
        return None

    text = tok.text.replace("'", "")
    lower = text.lower()
    if lower.startswith("0x"):
        suffix = re.search(r"[uUlL]*$", text).group().lower()
        return _integer_type(suffix)

    suffix = re.search(r"[uUlLfFhH]*$", text).group().lower()
    body = text[: len(text) - len(suffix)]
    if "h" in suffix:
        return "half"
    if "f" in suffix:
        return "float"
    if "." in body or "e" in body.lower():
        # Unsuffixed floating literals are double in C++; Metal has no
        # double, so they are treated as float.
        return "float"
    return _integer_type(suffix)


def _integer_type(suffix: str) -> str:
    unsigned = "u" in suffix
    long_ = "l" in suffix
    if long_:
        return "ulong" if unsigned else "long"
    return "uint" if unsigned else "int"


__all__ = [
    "TokenKind",
    "Token",
    "iter_tokens",
    "tokenize",
    "literal_type",
]
