"""Build the immutable Schema model from parsed .proto ASTs.

Construction runs in two phases over the whole file set:

1. every message and enum is registered in a qualified-name index, after
   checking each file for duplicate declarations;
2. each file is turned into frozen model objects, resolving field types and
   RPC request/response types against the index with protobuf scoping rules.

A StructuralError in one file removes that file from the set and is turned
into an error Diagnostic; the other files are still built. Unresolved type
references are reported as diagnostics and do not stop the build.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from proto_conform.annotations import extract_validation_rules
from proto_conform.diagnostics import Diagnostic, Severity, ViolationKind
from proto_conform.models import (
    PROTO_PRIMITIVES,
    EnumType,
    EnumValue,
    Field,
    FieldKind,
    Message,
    PresenceModifier,
    Rpc,
    Schema,
    Service,
)
from proto_conform.parser.proto_ast import (
    ProtoEnum,
    ProtoField,
    ProtoFile,
    ProtoMessage,
    ProtoService,
)

log = structlog.get_logger("proto_conform.schema_builder")

# google/protobuf well-known types, always resolvable without their imports.
WELL_KNOWN_TYPES: Dict[str, FieldKind] = {
    "google.protobuf." + name: FieldKind.MESSAGE
    for name in (
        "Any", "Api", "BoolValue", "BytesValue", "DoubleValue", "Duration",
        "Empty", "FieldMask", "FloatValue", "Int32Value", "Int64Value",
        "ListValue", "Method", "Mixin", "Option", "SourceContext",
        "StringValue", "Struct", "Timestamp", "Type", "UInt32Value",
        "UInt64Value", "Value",
    )
}
WELL_KNOWN_TYPES["google.protobuf.NullValue"] = FieldKind.ENUM


class StructuralError(Exception):
    """Raised when a schema file cannot be modeled at all."""

    def __init__(self, file: str, path: str, message: str, line: int = 0):
        super().__init__(f"{file}: {path}: {message}")
        self.file = file
        self.path = path
        self.message = message
        self.line = line

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(
            file=self.file,
            path=self.path,
            severity=Severity.ERROR,
            kind=ViolationKind.STRUCTURAL_ERROR,
            message=self.message,
            line=self.line,
        )


@dataclass(frozen=True)
class BuildResult:
    schemas: Tuple[Schema, ...]
    diagnostics: Tuple[Diagnostic, ...]
    failed_files: Tuple[str, ...]


# -- phase 1: declaration checks and name index --


def _check_unique(file: str, scope: str, kind: str, names: Sequence[Tuple[str, int]], seen: Set[str]) -> None:
    for name, line in names:
        if name in seen:
            where = f"{scope}.{name}" if scope else name
            raise StructuralError(file, where, f"Duplicate {kind} name '{name}' in {scope or 'file scope'}", line)
        seen.add(name)


def _check_enum(file: str, scope: str, node: ProtoEnum) -> None:
    path = f"{scope}.{node.name}" if scope else node.name
    _check_unique(file, path, "enum value", [(v.name, v.line) for v in node.values], set())


def _check_service(file: str, node: ProtoService) -> None:
    _check_unique(file, node.name, "rpc", [(r.name, r.line) for r in node.rpcs], set())


def _check_message(file: str, scope: str, node: ProtoMessage) -> None:
    path = f"{scope}.{node.name}" if scope else node.name

    field_names: Dict[str, int] = {}
    field_numbers: Dict[int, str] = {}
    for f in node.fields:
        if f.field_name in field_names:
            raise StructuralError(
                file, f"{path}.{f.field_name}",
                f"Duplicate field name '{f.field_name}' in message '{path}'", f.line,
            )
        if f.field_number in field_numbers:
            raise StructuralError(
                file, f"{path}.{f.field_name}",
                f"Field number {f.field_number} of '{f.field_name}' is already used by "
                f"'{field_numbers[f.field_number]}' in message '{path}'", f.line,
            )
        field_names[f.field_name] = f.line
        field_numbers[f.field_number] = f.field_name

    nested: Set[str] = set()
    _check_unique(file, path, "message", [(m.name, m.line) for m in node.nested_messages], nested)
    _check_unique(file, path, "enum", [(e.name, e.line) for e in node.nested_enums], nested)
    for enum in node.nested_enums:
        _check_enum(file, path, enum)
    for child in node.nested_messages:
        _check_message(file, path, child)


def check_declarations(file: str, ast: ProtoFile) -> None:
    """Raise StructuralError if ``ast`` declares the same name twice in one scope.

    Scopes are the file, each message, each enum (its values) and each
    service (its rpcs).
    """
    top: Set[str] = set()
    _check_unique(file, "", "message", [(m.name, m.line) for m in ast.messages], top)
    _check_unique(file, "", "enum", [(e.name, e.line) for e in ast.enums], top)
    _check_unique(file, "", "service", [(s.name, s.line) for s in ast.services], top)
    for msg in ast.messages:
        _check_message(file, "", msg)
    for enum in ast.enums:
        _check_enum(file, "", enum)
    for service in ast.services:
        _check_service(file, service)


def _qualify(package: str, path: str) -> str:
    return f"{package}.{path}" if package else path


def _collect_names(ast: ProtoFile) -> List[Tuple[str, FieldKind, int]]:
    names: List[Tuple[str, FieldKind, int]] = []

    def visit(scope: str, node: ProtoMessage) -> None:
        path = f"{scope}.{node.name}" if scope else node.name
        names.append((_qualify(ast.package, path), FieldKind.MESSAGE, node.line))
        for enum in node.nested_enums:
            names.append((_qualify(ast.package, f"{path}.{enum.name}"), FieldKind.ENUM, enum.line))
        for child in node.nested_messages:
            visit(path, child)

    for msg in ast.messages:
        visit("", msg)
    for enum in ast.enums:
        names.append((_qualify(ast.package, enum.name), FieldKind.ENUM, enum.line))
    return names


class TypeIndex:
    """Qualified type name -> kind, shared by every file in the set."""

    def __init__(self) -> None:
        self._kinds: Dict[str, FieldKind] = dict(WELL_KNOWN_TYPES)
        self._owners: Dict[str, str] = {}

    def register_file(self, file: str, ast: ProtoFile) -> None:
        """Add a file's declarations, or raise StructuralError on a clash."""
        names = _collect_names(ast)
        for full_name, _, line in names:
            owner = self._owners.get(full_name)
            if owner is not None or full_name in WELL_KNOWN_TYPES:
                raise StructuralError(
                    file, full_name,
                    f"'{full_name}' is already defined in {owner or 'google/protobuf'}", line,
                )
        for full_name, kind, _ in names:
            self._kinds[full_name] = kind
            self._owners[full_name] = file

    def resolve(self, type_name: str, scope: str) -> Optional[Tuple[str, FieldKind]]:
        """Resolve ``type_name`` from inside ``scope`` (a qualified name).

        Follows protobuf lookup: a leading '.' means fully qualified,
        otherwise the innermost enclosing scope is searched first.
        """
        if type_name.startswith("."):
            name = type_name[1:]
            kind = self._kinds.get(name)
            return (name, kind) if kind is not None else None

        parts = scope.split(".") if scope else []
        while True:
            candidate = ".".join(parts + [type_name])
            kind = self._kinds.get(candidate)
            if kind is not None:
                return candidate, kind
            if not parts:
                return None
            parts.pop()


# -- phase 2: model construction --


class _FileBuilder:
    def __init__(self, file: str, ast: ProtoFile, index: TypeIndex):
        self.file = file
        self.ast = ast
        self.index = index
        self.diagnostics: List[Diagnostic] = []
        self._order = 0

    def _next_order(self) -> int:
        self._order += 1
        return self._order

    def build(self) -> Schema:
        top_level = sorted(
            [("message", m) for m in self.ast.messages]
            + [("enum", e) for e in self.ast.enums]
            + [("service", s) for s in self.ast.services],
            key=lambda item: (item[1].line, item[1].col),
        )
        messages: List[Message] = []
        enums: List[EnumType] = []
        services: List[Service] = []
        for kind, node in top_level:
            if kind == "message":
                messages.append(self._build_message("", node))
            elif kind == "enum":
                enums.append(self._build_enum("", node))
            else:
                services.append(self._build_service(node))

        return Schema(
            path=self.file,
            syntax=self.ast.syntax,
            package=self.ast.package,
            imports=tuple(self.ast.imports),
            messages=tuple(messages),
            enums=tuple(enums),
            services=tuple(services),
        )

    def _unresolved(self, path: str, type_name: str, line: int, order: int) -> None:
        self.diagnostics.append(
            Diagnostic(
                file=self.file,
                path=path,
                severity=Severity.ERROR,
                kind=ViolationKind.UNRESOLVED_REFERENCE,
                message=f"Type '{type_name}' cannot be resolved in the provided files",
                line=line,
                order=order,
            )
        )

    def _build_message(self, scope: str, node: ProtoMessage) -> Message:
        path = f"{scope}.{node.name}" if scope else node.name
        full_name = _qualify(self.ast.package, path)
        order = self._next_order()

        # Fields, nested messages and nested enums are interleaved in the
        # source; number them in source order.
        members = sorted(
            [("field", f) for f in node.fields]
            + [("message", m) for m in node.nested_messages]
            + [("enum", e) for e in node.nested_enums],
            key=lambda item: (item[1].line, item[1].col),
        )
        fields: List[Field] = []
        nested: List[Message] = []
        enums: List[EnumType] = []
        for kind, member in members:
            if kind == "field":
                fields.append(self._build_field(path, full_name, member))
            elif kind == "message":
                nested.append(self._build_message(path, member))
            else:
                enums.append(self._build_enum(path, member))

        return Message(
            name=node.name,
            full_name=full_name,
            path=path,
            fields=tuple(fields),
            messages=tuple(nested),
            enums=tuple(enums),
            comment=node.comment,
            line=node.line,
            order=order,
        )

    def _build_field(self, message_path: str, scope: str, node: ProtoField) -> Field:
        path = f"{message_path}.{node.field_name}"
        order = self._next_order()

        resolved = ""
        if node.is_map:
            kind = FieldKind.MAP
            if node.type_name not in PROTO_PRIMITIVES:
                found = self.index.resolve(node.type_name, scope)
                if found is None:
                    self._unresolved(path, node.type_name, node.line, order)
                else:
                    resolved = found[0]
        elif node.type_name in PROTO_PRIMITIVES:
            kind = FieldKind.SCALAR
        else:
            found = self.index.resolve(node.type_name, scope)
            if found is None:
                kind = FieldKind.UNRESOLVED
                self._unresolved(path, node.type_name, node.line, order)
            else:
                resolved, kind = found

        presence = PresenceModifier.NONE
        if node.is_optional:
            presence = PresenceModifier.OPTIONAL
        elif node.is_required:
            presence = PresenceModifier.REQUIRED

        return Field(
            name=node.field_name,
            number=node.field_number,
            type_name=node.type_name,
            kind=kind,
            path=path,
            repeated=node.is_repeated,
            presence=presence,
            map_key_type=node.map_key_type,
            oneof=node.oneof_name,
            resolved_type=resolved,
            rules=extract_validation_rules(node.options),
            comment=node.comment,
            line=node.line,
            order=order,
        )

    def _build_enum(self, scope: str, node: ProtoEnum) -> EnumType:
        path = f"{scope}.{node.name}" if scope else node.name
        order = self._next_order()
        values = tuple(
            EnumValue(
                name=v.name,
                number=v.number,
                path=f"{path}.{v.name}",
                comment=v.comment,
                line=v.line,
                order=self._next_order(),
            )
            for v in node.values
        )
        return EnumType(
            name=node.name,
            full_name=_qualify(self.ast.package, path),
            path=path,
            values=values,
            comment=node.comment,
            line=node.line,
            order=order,
        )

    def _build_service(self, node: ProtoService) -> Service:
        order = self._next_order()
        scope = self.ast.package
        rpcs: List[Rpc] = []
        for rpc in node.rpcs:
            rpc_path = f"{node.name}.{rpc.name}"
            rpc_order = self._next_order()
            resolved = []
            for type_name in (rpc.request_type, rpc.response_type):
                found = self.index.resolve(type_name, scope)
                if found is None or found[1] is not FieldKind.MESSAGE:
                    self._unresolved(rpc_path, type_name, rpc.line, rpc_order)
                    resolved.append("")
                else:
                    resolved.append(found[0])
            rpcs.append(
                Rpc(
                    name=rpc.name,
                    path=rpc_path,
                    request_type=rpc.request_type,
                    response_type=rpc.response_type,
                    resolved_request=resolved[0],
                    resolved_response=resolved[1],
                    client_streaming=rpc.client_streaming,
                    server_streaming=rpc.server_streaming,
                    comment=rpc.comment,
                    line=rpc.line,
                    order=rpc_order,
                )
            )
        return Service(
            name=node.name,
            full_name=_qualify(self.ast.package, node.name),
            path=node.name,
            rpcs=tuple(rpcs),
            comment=node.comment,
            line=node.line,
            order=order,
        )


def build_schemas(files: Sequence[Tuple[str, ProtoFile]]) -> BuildResult:
    """Model every (path, AST) pair; structural failures are per file."""
    diagnostics: List[Diagnostic] = []
    failed: List[str] = []
    index = TypeIndex()
    accepted: List[Tuple[str, ProtoFile]] = []

    for path, ast in files:
        try:
            check_declarations(path, ast)
            index.register_file(path, ast)
        except StructuralError as e:
            log.warning("structural_error", file=path, path=e.path, error=e.message)
            diagnostics.append(e.to_diagnostic())
            failed.append(path)
            continue
        accepted.append((path, ast))

    schemas: List[Schema] = []
    for path, ast in accepted:
        builder = _FileBuilder(path, ast, index)
        schemas.append(builder.build())
        diagnostics.extend(builder.diagnostics)
        log.debug("schema_built", file=path, unresolved=len(builder.diagnostics))

    return BuildResult(
        schemas=tuple(schemas),
        diagnostics=tuple(diagnostics),
        failed_files=tuple(failed),
    )
