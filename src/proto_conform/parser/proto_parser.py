from __future__ import annotations

from pathlib import Path

from .proto_ast import ProtoFile
from .proto_ast_parser import ProtoParser
from .proto_tokenizer import tokenize_proto


def parse_proto_text(text: str) -> ProtoFile:
    """Parse protobuf source text into a ProtoFile AST."""
    return ProtoParser(tokenize_proto(text)).parse()


def parse_proto_file(file_path: str) -> ProtoFile:
    """Parse a .proto file into a ProtoFile AST."""
    text = Path(file_path).read_text(encoding="utf-8")
    return parse_proto_text(text)
