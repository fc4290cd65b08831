import shutil

import pytest

from proto_conform.diagnostics import Outcome, ViolationKind
from proto_conform.engine import check_files
from proto_conform.parser.proto_ast_parser import ProtoParseError

# Check if protobuf and protoc are available
try:
    from google.protobuf import descriptor_pb2  # noqa: F401
    HAS_PROTOBUF = True
except ImportError:
    HAS_PROTOBUF = False

HAS_PROTOC = shutil.which("protoc") is not None

pytestmark = pytest.mark.skipif(
    not (HAS_PROTOBUF and HAS_PROTOC),
    reason="protoc and the protobuf package are required for descriptor parsing",
)

SHOP_PROTO = """\
syntax = "proto3";

package shop;

// An order.
message Order {
    // Order id.
    int64 id = 1;
    // Optional note.
    optional string note = 2;
    // Quantities by sku.
    map<string, int32> quantities = 3;
    oneof payment {
        // Card token.
        string card_token = 4;
        // Bank account.
        string iban = 5;
    }
    // Line items.
    repeated Line lines = 6;

    // A line item.
    message Line {
        // Sku.
        string sku = 1;
    }
}

// Order lookups.
service OrderService {
    // Returns the order. Requires an authenticated caller. Fails with NOT_FOUND.
    rpc GetOrder(Order) returns (Order);
}
"""


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return str(path)


class TestDescriptorLoader:
    def test_maps_descriptor_into_ast(self, tmp_path):
        from proto_conform.parser.descriptor_loader import parse_proto_via_descriptor

        result = parse_proto_via_descriptor(_write(tmp_path, "shop.proto", SHOP_PROTO))
        assert result.syntax == "proto3"
        assert result.package == "shop"

        order = result.messages[0]
        assert order.name == "Order"
        assert order.comment == "An order."
        assert order.oneofs == ["payment"]
        fields = {f.field_name: f for f in order.fields}

        assert fields["id"].type_name == "int64"
        assert fields["id"].comment == "Order id."
        assert fields["note"].is_optional is True
        assert fields["note"].oneof_name == ""
        assert fields["quantities"].is_map is True
        assert fields["quantities"].map_key_type == "string"
        assert fields["quantities"].type_name == "int32"
        assert fields["quantities"].is_repeated is False
        assert fields["card_token"].oneof_name == "payment"
        assert fields["lines"].is_repeated is True
        assert fields["lines"].type_name == ".shop.Order.Line"

        # map entry types are not surfaced as nested messages
        assert [m.name for m in order.nested_messages] == ["Line"]

        rpc = result.services[0].rpcs[0]
        assert rpc.request_type == ".shop.Order"
        assert "authenticated" in rpc.comment

    def test_compile_error_is_parse_error(self, tmp_path):
        from proto_conform.parser.descriptor_loader import parse_proto_via_descriptor

        path = _write(tmp_path, "bad.proto", "syntax = \"proto3\";\nmessage Bad { int32 id = 1 }\n")
        with pytest.raises(ProtoParseError, match="protoc failed"):
            parse_proto_via_descriptor(path)


class TestDescriptorFrontend:
    def test_same_result_as_text_frontend(self, tmp_path):
        path = _write(tmp_path, "shop.proto", SHOP_PROTO)
        text_report = check_files([path], frontend="text")
        protoc_report = check_files([path], frontend="protoc")
        assert protoc_report.outcome is text_report.outcome
        assert [d.kind for d in protoc_report.diagnostics] == [d.kind for d in text_report.diagnostics]

    def test_bad_file_becomes_structural_error(self, tmp_path):
        path = _write(tmp_path, "bad.proto", "syntax = \"proto3\";\nmessage Bad { int32 id = 1 }\n")
        report = check_files([path], frontend="protoc")
        assert report.outcome is Outcome.FAILED
        assert report.diagnostics[0].kind is ViolationKind.STRUCTURAL_ERROR
