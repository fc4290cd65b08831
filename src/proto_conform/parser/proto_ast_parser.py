"""Recursive descent parser for protobuf (.proto) files.

Consumes a token stream from proto_tokenizer and produces proto AST nodes.
"""

from __future__ import annotations

from typing import Any, Dict, List

from .proto_ast import (
    ProtoEnum,
    ProtoEnumValue,
    ProtoField,
    ProtoFile,
    ProtoMessage,
    ProtoOption,
    ProtoRpc,
    ProtoService,
)
from .proto_tokenizer import KEYWORD_TYPES, ProtoToken, ProtoTokenType

_NAME_TYPES = KEYWORD_TYPES | {ProtoTokenType.IDENT}

_LABELS = {
    ProtoTokenType.REPEATED: "repeated",
    ProtoTokenType.OPTIONAL: "optional",
    ProtoTokenType.REQUIRED: "required",
}


class ProtoParseError(Exception):
    """Raised when the parser encounters unexpected input."""

    def __init__(self, message: str, token: ProtoToken | None = None):
        if token:
            super().__init__(f"Line {token.line}:{token.col}: {message}")
        else:
            super().__init__(message)


def _parse_int(text: str) -> int:
    sign = -1 if text.startswith("-") else 1
    digits = text.lstrip("+-")
    if digits[:2].lower() == "0x":
        return sign * int(digits, 16)
    if len(digits) > 1 and digits.startswith("0"):
        return sign * int(digits, 8)
    return sign * int(digits)


def _parse_number(text: str) -> Any:
    try:
        return _parse_int(text)
    except ValueError:
        return float(text)


def _comment(first: ProtoToken, last: ProtoToken) -> str:
    """Doc-comment for a declaration spanning first..last tokens.

    The leading comment wins; a trailing comment is used when there is none.
    """
    return first.leading_comment or last.trailing_comment


class ProtoParser:
    """Recursive descent parser for .proto files."""

    def __init__(self, tokens: List[ProtoToken]):
        self._tokens = tokens
        self._pos = 0

    # -- public API --

    def parse(self) -> ProtoFile:
        """Parse the full token stream into a ProtoFile AST."""
        result = ProtoFile()

        while not self._at_end():
            tok = self._peek()
            tt = tok.type

            if tt == ProtoTokenType.SYNTAX:
                result.syntax = self._parse_syntax()
            elif tt == ProtoTokenType.IDENT and tok.value == "edition":
                self._parse_syntax()
                result.syntax = "editions"
            elif tt == ProtoTokenType.PACKAGE:
                self._advance()
                result.package = self._expect_name().value
                self._expect(ProtoTokenType.SEMICOLON)
            elif tt == ProtoTokenType.IMPORT:
                result.imports.append(self._parse_import())
            elif tt == ProtoTokenType.OPTION:
                result.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.MESSAGE:
                result.messages.append(self._parse_message())
            elif tt == ProtoTokenType.ENUM:
                result.enums.append(self._parse_enum())
            elif tt == ProtoTokenType.SERVICE:
                result.services.append(self._parse_service())
            elif tt == ProtoTokenType.EXTEND:
                self._skip_block()
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                raise ProtoParseError(
                    f"Unexpected top-level token {tt.name} ({tok.value!r})", tok
                )

        return result

    # -- file-level statements --

    def _parse_syntax(self) -> str:
        """Parse: (SYNTAX | edition) EQUALS STRING_LIT SEMICOLON"""
        self._advance()
        self._expect(ProtoTokenType.EQUALS)
        value = self._expect(ProtoTokenType.STRING_LIT).value
        self._expect(ProtoTokenType.SEMICOLON)
        return value

    def _parse_import(self) -> str:
        """Parse: IMPORT [weak | public] STRING_LIT SEMICOLON"""
        self._expect(ProtoTokenType.IMPORT)
        if self._peek().type == ProtoTokenType.IDENT and self._peek().value in ("weak", "public"):
            self._advance()
        path = self._expect(ProtoTokenType.STRING_LIT).value
        self._expect(ProtoTokenType.SEMICOLON)
        return path

    # -- message parsing --

    def _parse_message(self) -> ProtoMessage:
        """Parse: MESSAGE IDENT LBRACE body RBRACE"""
        start = self._expect(ProtoTokenType.MESSAGE)
        name_tok = self._expect_name()
        brace = self._expect(ProtoTokenType.LBRACE)
        msg = ProtoMessage(
            name=name_tok.value,
            comment=_comment(start, brace),
            line=start.line,
            col=start.col,
        )
        self._parse_message_body(msg)
        self._expect(ProtoTokenType.RBRACE)
        return msg

    def _parse_message_body(self, msg: ProtoMessage, oneof_name: str = "") -> None:
        """Parse the contents between { and } of a message or oneof."""
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tt = self._peek().type

            if tt == ProtoTokenType.MESSAGE and not oneof_name:
                msg.nested_messages.append(self._parse_message())
            elif tt == ProtoTokenType.ENUM and not oneof_name:
                msg.nested_enums.append(self._parse_enum())
            elif tt == ProtoTokenType.ONEOF and not oneof_name:
                self._parse_oneof(msg)
            elif tt == ProtoTokenType.OPTION:
                option = self._parse_option_statement()
                if not oneof_name:
                    msg.options.append(option)
            elif tt in (ProtoTokenType.RESERVED, ProtoTokenType.EXTENSIONS):
                self._skip_statement()
            elif tt == ProtoTokenType.EXTEND:
                self._skip_block()
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            elif tt in _LABELS or tt in _NAME_TYPES:
                msg.fields.append(self._parse_field(oneof_name))
            else:
                tok = self._peek()
                raise ProtoParseError(
                    f"Unexpected token {tt.name} ({tok.value!r}) in message '{msg.name}'",
                    tok,
                )

    def _parse_oneof(self, msg: ProtoMessage) -> None:
        """Parse: ONEOF IDENT LBRACE fields RBRACE"""
        self._expect(ProtoTokenType.ONEOF)
        name = self._expect_name().value
        self._expect(ProtoTokenType.LBRACE)
        msg.oneofs.append(name)
        self._parse_message_body(msg, oneof_name=name)
        self._expect(ProtoTokenType.RBRACE)

    def _parse_field(self, oneof_name: str) -> ProtoField:
        """Parse: label* (IDENT(type) | map<K, V>) IDENT(name) EQUALS NUMBER [options] SEMICOLON

        Labels are collected as written; contradictory combinations such as
        ``optional repeated`` are kept so the checker can report them.
        """
        first = self._peek()
        labels = set()
        while self._peek().type in _LABELS and self._peek(2).type != ProtoTokenType.EQUALS:
            labels.add(_LABELS[self._advance().type])

        map_key_type = ""
        if self._peek().type == ProtoTokenType.MAP and self._peek(1).type == ProtoTokenType.LANGLE:
            self._advance()
            self._expect(ProtoTokenType.LANGLE)
            map_key_type = self._expect_name().value
            self._expect(ProtoTokenType.COMMA)
            type_tok = self._expect_name()
            self._expect(ProtoTokenType.RANGLE)
        else:
            type_tok = self._expect_name()
        name_tok = self._expect_name()
        self._expect(ProtoTokenType.EQUALS)
        num_tok = self._expect(ProtoTokenType.NUMBER)
        options = self._parse_field_options()
        end = self._expect(ProtoTokenType.SEMICOLON)

        return ProtoField(
            type_name=type_tok.value,
            field_name=name_tok.value,
            field_number=_parse_int(num_tok.value),
            is_repeated="repeated" in labels,
            is_optional="optional" in labels,
            is_required="required" in labels,
            map_key_type=map_key_type,
            oneof_name=oneof_name,
            options=options,
            comment=_comment(first, end),
            line=first.line,
            col=first.col,
        )

    # -- enum parsing --

    def _parse_enum(self) -> ProtoEnum:
        """Parse: ENUM IDENT LBRACE values RBRACE"""
        start = self._expect(ProtoTokenType.ENUM)
        name_tok = self._expect_name()
        brace = self._expect(ProtoTokenType.LBRACE)
        enum = ProtoEnum(name=name_tok.value, comment=_comment(start, brace), line=start.line, col=start.col)

        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tt = self._peek().type
            if tt == ProtoTokenType.OPTION:
                enum.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.RESERVED:
                self._skip_statement()
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                value_tok = self._expect_name()
                self._expect(ProtoTokenType.EQUALS)
                num_tok = self._expect(ProtoTokenType.NUMBER)
                options = self._parse_field_options()
                end = self._expect(ProtoTokenType.SEMICOLON)
                enum.values.append(
                    ProtoEnumValue(
                        name=value_tok.value,
                        number=_parse_int(num_tok.value),
                        options=options,
                        comment=_comment(value_tok, end),
                        line=value_tok.line,
                        col=value_tok.col,
                    )
                )

        self._expect(ProtoTokenType.RBRACE)
        return enum

    # -- service parsing --

    def _parse_service(self) -> ProtoService:
        """Parse: SERVICE IDENT LBRACE (rpc | option)* RBRACE"""
        start = self._expect(ProtoTokenType.SERVICE)
        name_tok = self._expect_name()
        brace = self._expect(ProtoTokenType.LBRACE)
        service = ProtoService(
            name=name_tok.value, comment=_comment(start, brace), line=start.line, col=start.col,
        )

        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tt = self._peek().type
            if tt == ProtoTokenType.RPC:
                service.rpcs.append(self._parse_rpc())
            elif tt == ProtoTokenType.OPTION:
                service.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                tok = self._peek()
                raise ProtoParseError(
                    f"Unexpected token {tt.name} ({tok.value!r}) in service '{service.name}'",
                    tok,
                )

        self._expect(ProtoTokenType.RBRACE)
        return service

    def _parse_rpc(self) -> ProtoRpc:
        """Parse: RPC IDENT ( [stream] T ) RETURNS ( [stream] T ) (SEMICOLON | { options })"""
        start = self._expect(ProtoTokenType.RPC)
        name_tok = self._expect_name()
        client_streaming, request_type = self._parse_rpc_type()
        self._expect(ProtoTokenType.RETURNS)
        server_streaming, response_type = self._parse_rpc_type()

        options: List[ProtoOption] = []
        if self._peek().type == ProtoTokenType.LBRACE:
            end = self._advance()
            while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
                if self._peek().type == ProtoTokenType.OPTION:
                    options.append(self._parse_option_statement())
                elif self._peek().type == ProtoTokenType.SEMICOLON:
                    self._advance()
                else:
                    tok = self._peek()
                    raise ProtoParseError(
                        f"Unexpected token {tok.type.name} ({tok.value!r}) in rpc '{name_tok.value}'",
                        tok,
                    )
            self._expect(ProtoTokenType.RBRACE)
            if self._peek().type == ProtoTokenType.SEMICOLON:
                self._advance()
        else:
            end = self._expect(ProtoTokenType.SEMICOLON)

        return ProtoRpc(
            name=name_tok.value,
            request_type=request_type,
            response_type=response_type,
            client_streaming=client_streaming,
            server_streaming=server_streaming,
            options=options,
            comment=_comment(start, end),
            line=start.line,
            col=start.col,
        )

    def _parse_rpc_type(self) -> tuple:
        self._expect(ProtoTokenType.LPAREN)
        streaming = False
        if self._peek().type == ProtoTokenType.STREAM and self._peek(1).type != ProtoTokenType.RPAREN:
            self._advance()
            streaming = True
        type_name = self._expect_name().value
        self._expect(ProtoTokenType.RPAREN)
        return streaming, type_name

    # -- options --

    def _parse_option_statement(self) -> ProtoOption:
        """Parse: OPTION name EQUALS constant SEMICOLON"""
        start = self._expect(ProtoTokenType.OPTION)
        name = self._parse_option_name()
        self._expect(ProtoTokenType.EQUALS)
        value = self._parse_constant()
        self._expect(ProtoTokenType.SEMICOLON)
        return ProtoOption(name=name, value=value, line=start.line)

    def _parse_field_options(self) -> List[ProtoOption]:
        """Parse: [ LBRACKET name = constant (COMMA name = constant)* RBRACKET ]"""
        options: List[ProtoOption] = []
        if self._peek().type != ProtoTokenType.LBRACKET:
            return options
        self._advance()
        while True:
            line = self._peek().line
            name = self._parse_option_name()
            self._expect(ProtoTokenType.EQUALS)
            options.append(ProtoOption(name=name, value=self._parse_constant(), line=line))
            if self._peek().type == ProtoTokenType.COMMA:
                self._advance()
                continue
            break
        self._expect(ProtoTokenType.RBRACKET)
        return options

    def _parse_option_name(self) -> str:
        """Parse: ( '(' fullIdent ')' | ident ) { .ident | '(' ... ')' }"""
        parts: List[str] = []
        while True:
            tok = self._peek()
            if tok.type == ProtoTokenType.LPAREN:
                self._advance()
                inner = self._expect_name().value
                self._expect(ProtoTokenType.RPAREN)
                parts.append(f"({inner.lstrip('.')})")
            elif tok.type in _NAME_TYPES:
                self._advance()
                value = tok.value
                if parts and not value.startswith("."):
                    raise ProtoParseError(f"Malformed option name near {value!r}", tok)
                parts.append(value if parts else value.lstrip("."))
            else:
                break
            if self._peek().type == ProtoTokenType.EQUALS:
                break
        if not parts:
            raise ProtoParseError("Expected option name", self._peek())
        return "".join(parts)

    def _parse_constant(self) -> Any:
        """Parse a scalar constant or an aggregate { ... } value."""
        tok = self._peek()
        if tok.type == ProtoTokenType.LBRACE:
            return self._parse_aggregate(ProtoTokenType.RBRACE)
        if tok.type == ProtoTokenType.STRING_LIT:
            parts = []
            while self._peek().type == ProtoTokenType.STRING_LIT:
                parts.append(self._advance().value)
            return "".join(parts)
        if tok.type == ProtoTokenType.NUMBER:
            return _parse_number(self._advance().value)
        if tok.type in _NAME_TYPES:
            value = self._advance().value
            if value == "true":
                return True
            if value == "false":
                return False
            return value
        raise ProtoParseError(f"Expected constant, got {tok.type.name} ({tok.value!r})", tok)

    def _parse_aggregate(self, closer: ProtoTokenType) -> Dict[str, Any]:
        """Parse a text-format message literal: { key[:] value ... }"""
        self._advance()  # { or <
        result: Dict[str, Any] = {}
        while not self._at_end() and self._peek().type != closer:
            tok = self._peek()
            if tok.type in (ProtoTokenType.COMMA, ProtoTokenType.SEMICOLON):
                self._advance()
                continue
            if tok.type == ProtoTokenType.LBRACKET:
                # [extension.name] key
                self._advance()
                key = f"[{self._expect_name().value}]"
                self._expect(ProtoTokenType.RBRACKET)
            else:
                key = self._expect_name().value
            if self._peek().type == ProtoTokenType.COLON:
                self._advance()
            value = self._parse_aggregate_value()
            if key in result:
                existing = result[key]
                result[key] = (existing if isinstance(existing, list) else [existing]) + (
                    value if isinstance(value, list) else [value]
                )
            else:
                result[key] = value
        self._expect(closer)
        return result

    def _parse_aggregate_value(self) -> Any:
        tok = self._peek()
        if tok.type == ProtoTokenType.LANGLE:
            return self._parse_aggregate(ProtoTokenType.RANGLE)
        if tok.type == ProtoTokenType.LBRACKET:
            self._advance()
            items: List[Any] = []
            while not self._at_end() and self._peek().type != ProtoTokenType.RBRACKET:
                if self._peek().type == ProtoTokenType.COMMA:
                    self._advance()
                    continue
                items.append(self._parse_aggregate_value())
            self._expect(ProtoTokenType.RBRACKET)
            return items
        return self._parse_constant()

    # -- skip helpers --

    def _skip_statement(self) -> None:
        """Skip tokens until (and including) the next semicolon."""
        while not self._at_end():
            tok = self._advance()
            if tok.type == ProtoTokenType.SEMICOLON:
                return

    def _skip_block(self) -> None:
        """Skip a keyword + IDENT + braced block (e.g. extend)."""
        self._advance()  # keyword
        while not self._at_end() and self._peek().type != ProtoTokenType.LBRACE:
            self._advance()
        if not self._at_end():
            self._advance()  # consume LBRACE
        depth = 1
        while not self._at_end() and depth > 0:
            tok = self._advance()
            if tok.type == ProtoTokenType.LBRACE:
                depth += 1
            elif tok.type == ProtoTokenType.RBRACE:
                depth -= 1

    # -- token helpers --

    def _peek(self, offset: int = 0) -> ProtoToken:
        idx = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[idx]

    def _advance(self) -> ProtoToken:
        tok = self._tokens[self._pos]
        if tok.type != ProtoTokenType.EOF:
            self._pos += 1
        return tok

    def _expect(self, expected: ProtoTokenType) -> ProtoToken:
        tok = self._peek()
        if tok.type != expected:
            raise ProtoParseError(
                f"Expected {expected.name}, got {tok.type.name} ({tok.value!r})",
                tok,
            )
        return self._advance()

    def _expect_name(self) -> ProtoToken:
        """Expect an identifier; keywords are accepted since they are contextual."""
        tok = self._peek()
        if tok.type not in _NAME_TYPES:
            raise ProtoParseError(
                f"Expected identifier, got {tok.type.name} ({tok.value!r})",
                tok,
            )
        return self._advance()

    def _at_end(self) -> bool:
        return self._tokens[self._pos].type == ProtoTokenType.EOF
