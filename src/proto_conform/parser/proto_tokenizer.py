"""Tokenizer for protobuf (.proto) files.

Comments are not emitted as tokens. A comment block that sits directly above
a token (no blank line in between) is attached to that token as its
``leading_comment``; a comment that follows a token on the same line is
attached to that token as its ``trailing_comment``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional


class ProtoTokenType(Enum):
    # Keywords
    SYNTAX = auto()
    PACKAGE = auto()
    IMPORT = auto()
    OPTION = auto()
    MESSAGE = auto()
    ENUM = auto()
    SERVICE = auto()
    RPC = auto()
    RETURNS = auto()
    STREAM = auto()
    ONEOF = auto()
    MAP = auto()
    REPEATED = auto()
    OPTIONAL = auto()
    REQUIRED = auto()
    RESERVED = auto()
    EXTENSIONS = auto()
    EXTEND = auto()

    # Delimiters
    LBRACE = auto()
    RBRACE = auto()
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LANGLE = auto()
    RANGLE = auto()
    SEMICOLON = auto()
    EQUALS = auto()
    COMMA = auto()
    COLON = auto()

    # Literals
    IDENT = auto()
    NUMBER = auto()
    STRING_LIT = auto()

    # Special
    EOF = auto()


_KEYWORDS = {
    "syntax": ProtoTokenType.SYNTAX,
    "package": ProtoTokenType.PACKAGE,
    "import": ProtoTokenType.IMPORT,
    "option": ProtoTokenType.OPTION,
    "message": ProtoTokenType.MESSAGE,
    "enum": ProtoTokenType.ENUM,
    "service": ProtoTokenType.SERVICE,
    "rpc": ProtoTokenType.RPC,
    "returns": ProtoTokenType.RETURNS,
    "stream": ProtoTokenType.STREAM,
    "oneof": ProtoTokenType.ONEOF,
    "map": ProtoTokenType.MAP,
    "repeated": ProtoTokenType.REPEATED,
    "optional": ProtoTokenType.OPTIONAL,
    "required": ProtoTokenType.REQUIRED,
    "reserved": ProtoTokenType.RESERVED,
    "extensions": ProtoTokenType.EXTENSIONS,
    "extend": ProtoTokenType.EXTEND,
}

# Keywords are contextual in protobuf: `map`, `stream` etc. are valid names.
KEYWORD_TYPES = frozenset(_KEYWORDS.values())

_SINGLE_CHAR = {
    "{": ProtoTokenType.LBRACE,
    "}": ProtoTokenType.RBRACE,
    "(": ProtoTokenType.LPAREN,
    ")": ProtoTokenType.RPAREN,
    "[": ProtoTokenType.LBRACKET,
    "]": ProtoTokenType.RBRACKET,
    "<": ProtoTokenType.LANGLE,
    ">": ProtoTokenType.RANGLE,
    ";": ProtoTokenType.SEMICOLON,
    "=": ProtoTokenType.EQUALS,
    ",": ProtoTokenType.COMMA,
    ":": ProtoTokenType.COLON,
}

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "0": "\0",
}


@dataclass
class ProtoToken:
    type: ProtoTokenType
    value: str
    line: int
    col: int
    leading_comment: str = ""
    trailing_comment: str = ""


def _clean_line_comment(raw: str) -> str:
    """Strip the // marker (and doc-style extra slashes) from a line comment."""
    text = raw.lstrip("/")
    return text[1:] if text.startswith(" ") else text


def _clean_block_comment(raw: str) -> List[str]:
    """Split a /* ... */ body into lines with leading '*' gutters removed."""
    lines = []
    for part in raw.split("\n"):
        stripped = part.strip()
        if stripped.startswith("*"):
            stripped = stripped[1:].lstrip()
        lines.append(stripped)
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return lines


def _unescape(raw: str) -> str:
    out = []
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch == "\\" and i + 1 < len(raw):
            nxt = raw[i + 1]
            out.append(_ESCAPES.get(nxt, "\\" + nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


class _CommentTracker:
    """Collects comment lines and hands them to the next emitted token."""

    def __init__(self) -> None:
        self._lines: List[str] = []
        self._end_line = 0

    def add(self, lines: List[str], start_line: int, end_line: int) -> None:
        if self._lines and start_line > self._end_line + 1:
            # A blank line separates this comment from the previous block;
            # the earlier block is detached and belongs to nothing.
            self._lines = []
        self._lines.extend(lines)
        self._end_line = end_line

    def take_for(self, token_line: int) -> str:
        text = ""
        if self._lines and token_line <= self._end_line + 1:
            text = "\n".join(self._lines).strip()
        self._lines = []
        self._end_line = 0
        return text


def tokenize_proto(text: str) -> List[ProtoToken]:
    """Tokenize a protobuf source string into a list of tokens."""
    tokens: List[ProtoToken] = []
    comments = _CommentTracker()
    i = 0
    line = 1
    col = 1
    n = len(text)

    def emit(tok_type: ProtoTokenType, value: str, tok_line: int, tok_col: int) -> None:
        tokens.append(
            ProtoToken(
                tok_type,
                value,
                tok_line,
                tok_col,
                leading_comment=comments.take_for(tok_line),
            )
        )

    def last_token_on(tok_line: int) -> Optional[ProtoToken]:
        if tokens and tokens[-1].line == tok_line:
            return tokens[-1]
        return None

    while i < n:
        ch = text[i]

        # Whitespace
        if ch in (" ", "\t", "\r", "\f", "\v"):
            i += 1
            col += 1
            continue

        if ch == "\n":
            i += 1
            line += 1
            col = 1
            continue

        # Single-line comment
        if ch == "/" and i + 1 < n and text[i + 1] == "/":
            start = i
            while i < n and text[i] != "\n":
                i += 1
            body = _clean_line_comment(text[start:i].rstrip())
            owner = last_token_on(line)
            if owner is not None:
                owner.trailing_comment = (
                    owner.trailing_comment + "\n" + body if owner.trailing_comment else body
                ).strip()
            else:
                comments.add([body], line, line)
            continue

        # Multi-line comment
        if ch == "/" and i + 1 < n and text[i + 1] == "*":
            start_line = line
            owner = last_token_on(line)
            i += 2
            col += 2
            start = i
            end = n
            while i < n:
                if text[i] == "\n":
                    line += 1
                    col = 1
                elif text[i] == "*" and i + 1 < n and text[i + 1] == "/":
                    end = i
                    i += 2
                    col += 2
                    break
                else:
                    col += 1
                i += 1
            body_lines = _clean_block_comment(text[start:end])
            if owner is not None and start_line == line:
                owner.trailing_comment = "\n".join(body_lines).strip()
            else:
                comments.add(body_lines, start_line, line)
            continue

        # Single-character tokens
        if ch in _SINGLE_CHAR:
            emit(_SINGLE_CHAR[ch], ch, line, col)
            i += 1
            col += 1
            continue

        # String literal (single or double quoted)
        if ch in ('"', "'"):
            quote = ch
            start_col = col
            i += 1
            col += 1
            start = i
            while i < n and text[i] != quote and text[i] != "\n":
                if text[i] == "\\":
                    i += 1
                    col += 1
                i += 1
                col += 1
            value = _unescape(text[start:i])
            if i < n and text[i] == quote:
                i += 1  # consume closing quote
                col += 1
            emit(ProtoTokenType.STRING_LIT, value, line, start_col)
            continue

        # Number, optionally signed; covers ints, floats and hex
        if ch.isdigit() or (
            ch in "-+" and i + 1 < n and (text[i + 1].isdigit() or text[i + 1] == ".")
        ):
            start = i
            start_col = col
            i += 1
            col += 1
            while i < n and (text[i].isalnum() or text[i] == "."):
                # exponent sign, e.g. 1e-5
                if text[i] in "eE" and i + 1 < n and text[i + 1] in "+-":
                    i += 1
                    col += 1
                i += 1
                col += 1
            emit(ProtoTokenType.NUMBER, text[start:i], line, start_col)
            continue

        # Identifier / keyword; dotted names (a.b.C, .a.b) form a single token
        if ch.isalpha() or ch == "_" or (ch == "." and i + 1 < n and (text[i + 1].isalpha() or text[i + 1] == "_")):
            start = i
            start_col = col
            while i < n and (text[i].isalnum() or text[i] in "_."):
                i += 1
                col += 1
            word = text[start:i]
            tok_type = _KEYWORDS.get(word, ProtoTokenType.IDENT)
            emit(tok_type, word, line, start_col)
            continue

        # Skip any other character
        i += 1
        col += 1

    tokens.append(ProtoToken(ProtoTokenType.EOF, "", line, col))
    return tokens
