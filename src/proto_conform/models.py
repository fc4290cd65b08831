"""Immutable schema model built from parsed .proto files.

Every entity is a frozen dataclass holding tuples, so a built Schema can be
shared between worker threads without copying or locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional, Tuple

# Proto scalar types. Any other field type is a message or enum reference.
PROTO_PRIMITIVES = frozenset({
    "int32", "sint32", "sfixed32", "uint32", "fixed32",
    "int64", "sint64", "sfixed64", "uint64", "fixed64",
    "float", "double", "bool", "string", "bytes",
})

INTEGER_TYPES = frozenset({
    "int32", "sint32", "sfixed32", "uint32", "fixed32",
    "int64", "sint64", "sfixed64", "uint64", "fixed64",
})


class FieldKind(Enum):
    SCALAR = "scalar"
    ENUM = "enum"
    MESSAGE = "message"
    MAP = "map"
    UNRESOLVED = "unresolved"


class PresenceModifier(Enum):
    NONE = "none"
    OPTIONAL = "optional"
    REQUIRED = "required"  # proto2 only


class IgnoreMode(Enum):
    UNSPECIFIED = "UNSPECIFIED"
    IF_ZERO_VALUE = "IF_ZERO_VALUE"
    ALWAYS = "ALWAYS"


@dataclass(frozen=True)
class ValidationRule:
    """A validation annotation attached to a single field.

    ``constraints`` holds (dotted path, value) pairs such as
    ``("string.pattern", "^[a-z]+$")`` in declaration order.
    """

    source: str
    ignore: IgnoreMode = IgnoreMode.UNSPECIFIED
    constraints: Tuple[Tuple[str, Any], ...] = ()

    @property
    def has_constraints(self) -> bool:
        return bool(self.constraints)

    def constraint(self, path: str) -> Optional[Any]:
        for key, value in self.constraints:
            if key == path:
                return value
        return None


@dataclass(frozen=True)
class Field:
    name: str
    number: int
    type_name: str
    kind: FieldKind
    path: str
    repeated: bool = False
    presence: PresenceModifier = PresenceModifier.NONE
    map_key_type: str = ""
    oneof: str = ""
    resolved_type: str = ""
    rules: Tuple[ValidationRule, ...] = ()
    comment: str = ""
    line: int = 0
    order: int = 0

    @property
    def is_map(self) -> bool:
        return self.kind is FieldKind.MAP

    @property
    def is_singular(self) -> bool:
        return not self.repeated and not self.is_map

    @property
    def is_integer(self) -> bool:
        return self.kind is FieldKind.SCALAR and self.type_name in INTEGER_TYPES

    @property
    def is_bool(self) -> bool:
        return self.kind is FieldKind.SCALAR and self.type_name == "bool"


@dataclass(frozen=True)
class EnumValue:
    name: str
    number: int
    path: str
    comment: str = ""
    line: int = 0
    order: int = 0


@dataclass(frozen=True)
class EnumType:
    name: str
    full_name: str
    path: str
    values: Tuple[EnumValue, ...] = ()
    comment: str = ""
    line: int = 0
    order: int = 0


@dataclass(frozen=True)
class Message:
    name: str
    full_name: str
    path: str
    fields: Tuple[Field, ...] = ()
    messages: Tuple[Message, ...] = ()
    enums: Tuple[EnumType, ...] = ()
    comment: str = ""
    line: int = 0
    order: int = 0

    def iter_messages(self) -> Iterator[Message]:
        """Yield this message and all nested messages, depth first."""
        yield self
        for nested in self.messages:
            yield from nested.iter_messages()


@dataclass(frozen=True)
class Rpc:
    name: str
    path: str
    request_type: str
    response_type: str
    resolved_request: str = ""
    resolved_response: str = ""
    client_streaming: bool = False
    server_streaming: bool = False
    comment: str = ""
    line: int = 0
    order: int = 0


@dataclass(frozen=True)
class Service:
    name: str
    full_name: str
    path: str
    rpcs: Tuple[Rpc, ...] = ()
    comment: str = ""
    line: int = 0
    order: int = 0


@dataclass(frozen=True)
class Schema:
    """One modeled .proto file."""

    path: str
    syntax: str = "proto3"
    package: str = ""
    imports: Tuple[str, ...] = ()
    messages: Tuple[Message, ...] = ()
    enums: Tuple[EnumType, ...] = ()
    services: Tuple[Service, ...] = ()

    def iter_messages(self) -> Iterator[Message]:
        for msg in self.messages:
            yield from msg.iter_messages()

    def iter_enums(self) -> Iterator[EnumType]:
        yield from self.enums
        for msg in self.iter_messages():
            yield from msg.enums

    def iter_fields(self) -> Iterator[Tuple[Message, Field]]:
        for msg in self.iter_messages():
            for f in msg.fields:
                yield msg, f

    def iter_rpcs(self) -> Iterator[Tuple[Service, Rpc]]:
        for service in self.services:
            for rpc in service.rpcs:
                yield service, rpc
