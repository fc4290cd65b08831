"""Build proto AST nodes from a protoc descriptor set instead of raw text.

protoc does the parsing here: it is invoked with --include_source_info so
that doc-comments survive, and --include_imports so that any
``buf/validate/validate.proto`` the schema imports is available to decode
``(buf.validate.field)`` options through a dynamic descriptor pool.
"""

from __future__ import annotations

import os
import subprocess
import tempfile
from typing import Dict, List, Optional, Sequence, Tuple

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
from .proto_ast_parser import ProtoParseError

# FileDescriptorProto / DescriptorProto / EnumDescriptorProto /
# ServiceDescriptorProto field numbers used in SourceCodeInfo paths.
_FILE_MESSAGE_TYPE = 4
_FILE_ENUM_TYPE = 5
_FILE_SERVICE = 6
_MESSAGE_FIELD = 2
_MESSAGE_NESTED_TYPE = 3
_MESSAGE_ENUM_TYPE = 4
_ENUM_VALUE = 2
_SERVICE_METHOD = 2

_VALIDATE_EXTENSION = "buf.validate.field"


def _run_protoc(proto_path: str, include_dirs: Sequence[str]):
    try:
        from google.protobuf import descriptor_pb2 as d2
    except ImportError as e:
        raise RuntimeError("Missing dependency 'protobuf'. Please install protobuf>=4 to use descriptor-based parsing.") from e

    includes = [os.path.dirname(os.path.abspath(proto_path))] + list(include_dirs)

    # de-dup while preserving order
    seen = set()
    inc_args: List[str] = []
    for inc in includes:
        if inc and inc not in seen:
            seen.add(inc)
            inc_args.extend(['-I', inc])

    with tempfile.TemporaryDirectory() as td:
        desc_path = os.path.join(td, 'descriptor_set.pb')
        cmd = [
            'protoc',
            '--include_imports',
            '--include_source_info',
            f'--descriptor_set_out={desc_path}',
        ] + inc_args + [os.path.abspath(proto_path)]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except FileNotFoundError as e:
            raise RuntimeError("'protoc' not found. Please install Protocol Buffers compiler and ensure it is in PATH.") from e
        except subprocess.CalledProcessError as e:
            raise ProtoParseError(f"protoc failed: {e.stderr.decode('utf-8', errors='ignore').strip()}") from e

        fds = d2.FileDescriptorSet()
        with open(desc_path, 'rb') as f:
            fds.ParseFromString(f.read())
    return fds


def _find_target(fds, proto_path: str):
    base = os.path.basename(proto_path)
    for f in fds.file:
        if os.path.basename(f.name) == base:
            return f
    if len(fds.file) == 1:
        return fds.file[0]
    names = ', '.join(ff.name for ff in fds.file)
    raise RuntimeError(f"Could not locate target file '{base}' in descriptor set. Found: {names}")


class _ValidationDecoder:
    """Reads (buf.validate.field) out of FieldOptions using a dynamic pool."""

    def __init__(self, fds):
        self._ext = None
        self._options_cls = None
        if not any(f.name.endswith("buf/validate/validate.proto") for f in fds.file):
            return
        from google.protobuf import descriptor_pool, message_factory

        pool = descriptor_pool.DescriptorPool()
        for f in fds.file:
            pool.Add(f)
        classes = message_factory.GetMessageClassesForFiles([f.name for f in fds.file], pool)
        self._options_cls = classes.get("google.protobuf.FieldOptions")
        self._ext = pool.FindExtensionByName(_VALIDATE_EXTENSION)

    def decode(self, options) -> List[ProtoOption]:
        if self._ext is None or self._options_cls is None:
            return []
        from google.protobuf import json_format

        dynamic = self._options_cls.FromString(options.SerializeToString())
        if not dynamic.HasExtension(self._ext):
            return []
        rules = json_format.MessageToDict(
            dynamic.Extensions[self._ext],
            preserving_proto_field_name=True,
        )
        return [ProtoOption(name=f"({_VALIDATE_EXTENSION})", value=rules)]


class _Comments:
    def __init__(self, source_code_info):
        self._by_path: Dict[Tuple[int, ...], str] = {}
        self._spans: Dict[Tuple[int, ...], Tuple[int, int]] = {}
        for loc in source_code_info.location:
            key = tuple(loc.path)
            text = loc.leading_comments or loc.trailing_comments
            if text:
                self._by_path[key] = "\n".join(line.strip() for line in text.strip().splitlines())
            if loc.span:
                self._spans[key] = (loc.span[0] + 1, loc.span[1] + 1)

    def comment(self, path: Tuple[int, ...]) -> str:
        return self._by_path.get(path, "")

    def line(self, path: Tuple[int, ...]) -> int:
        return self._spans.get(path, (0, 0))[0]

    def col(self, path: Tuple[int, ...]) -> int:
        return self._spans.get(path, (0, 0))[1]


def _relative_type_name(type_name: str) -> str:
    # Descriptor type names are fully qualified; keep the leading '.' so the
    # resolver treats them as absolute.
    return type_name if type_name.startswith(".") else "." + type_name


def parse_proto_via_descriptor(proto_path: str, include_dirs: Sequence[str] = ()) -> ProtoFile:
    """Parse a .proto by invoking protoc and mapping the descriptor set into proto AST nodes."""
    from google.protobuf import descriptor_pb2 as d2

    fds = _run_protoc(proto_path, include_dirs)
    target = _find_target(fds, proto_path)
    comments = _Comments(target.source_code_info)
    validation = _ValidationDecoder(fds)

    scalar_names = {
        d2.FieldDescriptorProto.TYPE_DOUBLE: 'double',
        d2.FieldDescriptorProto.TYPE_FLOAT: 'float',
        d2.FieldDescriptorProto.TYPE_INT64: 'int64',
        d2.FieldDescriptorProto.TYPE_UINT64: 'uint64',
        d2.FieldDescriptorProto.TYPE_INT32: 'int32',
        d2.FieldDescriptorProto.TYPE_FIXED64: 'fixed64',
        d2.FieldDescriptorProto.TYPE_FIXED32: 'fixed32',
        d2.FieldDescriptorProto.TYPE_BOOL: 'bool',
        d2.FieldDescriptorProto.TYPE_STRING: 'string',
        d2.FieldDescriptorProto.TYPE_BYTES: 'bytes',
        d2.FieldDescriptorProto.TYPE_UINT32: 'uint32',
        d2.FieldDescriptorProto.TYPE_SFIXED32: 'sfixed32',
        d2.FieldDescriptorProto.TYPE_SFIXED64: 'sfixed64',
        d2.FieldDescriptorProto.TYPE_SINT32: 'sint32',
        d2.FieldDescriptorProto.TYPE_SINT64: 'sint64',
    }

    def type_name_from_field(fd) -> str:
        if fd.type in (
            d2.FieldDescriptorProto.TYPE_MESSAGE,
            d2.FieldDescriptorProto.TYPE_ENUM,
        ):
            return _relative_type_name(fd.type_name)
        return scalar_names.get(fd.type, 'string')

    def build_enum(desc, path: Tuple[int, ...]) -> ProtoEnum:
        values = [
            ProtoEnumValue(
                name=v.name,
                number=v.number,
                comment=comments.comment(path + (_ENUM_VALUE, i)),
                line=comments.line(path + (_ENUM_VALUE, i)),
                col=comments.col(path + (_ENUM_VALUE, i)),
            )
            for i, v in enumerate(desc.value)
        ]
        return ProtoEnum(
            name=desc.name, values=values, comment=comments.comment(path),
            line=comments.line(path), col=comments.col(path),
        )

    def build_message(desc, path: Tuple[int, ...]) -> ProtoMessage:
        map_entries = {
            n.name: n for n in desc.nested_type if n.options.map_entry
        }
        synthetic_oneofs = {
            f.oneof_index for f in desc.field if f.HasField('oneof_index') and f.proto3_optional
        }

        msg = ProtoMessage(
            name=desc.name, comment=comments.comment(path),
            line=comments.line(path), col=comments.col(path),
        )
        msg.oneofs = [o.name for i, o in enumerate(desc.oneof_decl) if i not in synthetic_oneofs]

        for i, f in enumerate(desc.field):
            field_path = path + (_MESSAGE_FIELD, i)
            is_repeated = f.label == d2.FieldDescriptorProto.LABEL_REPEATED
            node = ProtoField(
                type_name=type_name_from_field(f),
                field_name=f.name,
                field_number=f.number,
                is_repeated=is_repeated,
                is_optional=f.proto3_optional or (
                    target.syntax != 'proto3'
                    and f.label == d2.FieldDescriptorProto.LABEL_OPTIONAL
                    and not f.HasField('oneof_index')
                ),
                is_required=f.label == d2.FieldDescriptorProto.LABEL_REQUIRED,
                options=validation.decode(f.options),
                comment=comments.comment(field_path),
                line=comments.line(field_path),
                col=comments.col(field_path),
            )
            if f.HasField('oneof_index') and f.oneof_index not in synthetic_oneofs:
                node.oneof_name = desc.oneof_decl[f.oneof_index].name
            entry_name = f.type_name.rsplit('.', 1)[-1]
            if is_repeated and f.type == d2.FieldDescriptorProto.TYPE_MESSAGE and entry_name in map_entries:
                entry = map_entries[entry_name]
                key_fd, value_fd = entry.field[0], entry.field[1]
                node.is_repeated = False
                node.map_key_type = type_name_from_field(key_fd)
                node.type_name = type_name_from_field(value_fd)
            msg.fields.append(node)

        for i, n in enumerate(desc.nested_type):
            if n.options.map_entry:
                continue
            msg.nested_messages.append(build_message(n, path + (_MESSAGE_NESTED_TYPE, i)))
        for i, e in enumerate(desc.enum_type):
            msg.nested_enums.append(build_enum(e, path + (_MESSAGE_ENUM_TYPE, i)))
        return msg

    result = ProtoFile(
        syntax=target.syntax or 'proto2',
        package=target.package,
        imports=list(target.dependency),
    )
    for i, m in enumerate(target.message_type):
        result.messages.append(build_message(m, (_FILE_MESSAGE_TYPE, i)))
    for i, e in enumerate(target.enum_type):
        result.enums.append(build_enum(e, (_FILE_ENUM_TYPE, i)))
    for i, svc in enumerate(target.service):
        svc_path = (_FILE_SERVICE, i)
        service = ProtoService(
            name=svc.name, comment=comments.comment(svc_path),
            line=comments.line(svc_path), col=comments.col(svc_path),
        )
        for j, method in enumerate(svc.method):
            method_path = svc_path + (_SERVICE_METHOD, j)
            service.rpcs.append(
                ProtoRpc(
                    name=method.name,
                    request_type=_relative_type_name(method.input_type),
                    response_type=_relative_type_name(method.output_type),
                    client_streaming=method.client_streaming,
                    server_streaming=method.server_streaming,
                    comment=comments.comment(method_path),
                    line=comments.line(method_path),
                    col=comments.col(method_path),
                )
            )
        result.services.append(service)
    return result


def parse_protos_via_descriptor(
    proto_paths: Sequence[str], include_dirs: Sequence[str] = ()
) -> List[Tuple[str, Optional[ProtoFile], Optional[ProtoParseError]]]:
    """Run the descriptor front end over several files, one protoc call each.

    Compile failures are returned per file rather than raised, so one bad
    file does not stop the others.
    """
    results: List[Tuple[str, Optional[ProtoFile], Optional[ProtoParseError]]] = []
    for path in proto_paths:
        try:
            results.append((path, parse_proto_via_descriptor(path, include_dirs), None))
        except ProtoParseError as e:
            results.append((path, None, e))
    return results
