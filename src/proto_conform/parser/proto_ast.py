"""AST node definitions for protobuf (.proto) files."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List


@dataclass
class ProtoOption:
    """An option assignment: option name = value; or [name = value].

    Aggregate values ({ key: value ... }) are kept as dicts; repeated keys
    inside an aggregate collapse into a list.
    """

    name: str
    value: Any
    line: int = 0


@dataclass
class ProtoField:
    """A field declaration: [labels] Type name = number [options];

    Map fields carry their key type in ``map_key_type`` and their value type
    in ``type_name``.
    """

    type_name: str
    field_name: str
    field_number: int
    is_repeated: bool = False
    is_optional: bool = False
    is_required: bool = False
    map_key_type: str = ""
    oneof_name: str = ""
    options: List[ProtoOption] = field(default_factory=list)
    comment: str = ""
    line: int = 0
    col: int = 0

    @property
    def is_map(self) -> bool:
        return bool(self.map_key_type)


@dataclass
class ProtoEnumValue:
    name: str
    number: int
    options: List[ProtoOption] = field(default_factory=list)
    comment: str = ""
    line: int = 0
    col: int = 0


@dataclass
class ProtoEnum:
    name: str
    values: List[ProtoEnumValue] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    comment: str = ""
    line: int = 0
    col: int = 0


@dataclass
class ProtoMessage:
    """A message definition, possibly containing nested messages and enums."""

    name: str
    fields: List[ProtoField] = field(default_factory=list)
    nested_messages: List[ProtoMessage] = field(default_factory=list)
    nested_enums: List[ProtoEnum] = field(default_factory=list)
    oneofs: List[str] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    comment: str = ""
    line: int = 0
    col: int = 0


@dataclass
class ProtoRpc:
    name: str
    request_type: str
    response_type: str
    client_streaming: bool = False
    server_streaming: bool = False
    options: List[ProtoOption] = field(default_factory=list)
    comment: str = ""
    line: int = 0
    col: int = 0


@dataclass
class ProtoService:
    name: str
    rpcs: List[ProtoRpc] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    comment: str = ""
    line: int = 0
    col: int = 0


@dataclass
class ProtoFile:
    """Top-level parsed representation of a .proto file.

    protoc treats a file without a syntax statement as proto2.
    """

    syntax: str = "proto2"
    package: str = ""
    imports: List[str] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    messages: List[ProtoMessage] = field(default_factory=list)
    enums: List[ProtoEnum] = field(default_factory=list)
    services: List[ProtoService] = field(default_factory=list)
