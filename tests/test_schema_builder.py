import pytest

from proto_conform.diagnostics import ViolationKind
from proto_conform.models import FieldKind, PresenceModifier
from proto_conform.parser.proto_parser import parse_proto_text
from proto_conform.schema_builder import StructuralError, TypeIndex, build_schemas, check_declarations


def _build(**sources):
    files = [(f"{name}.proto", parse_proto_text(text)) for name, text in sources.items()]
    return build_schemas(files)


class TestModelConstruction:
    def test_fields_and_kinds(self):
        result = _build(order="""\
syntax = "proto3";
package shop;

enum Status {
    STATUS_UNSPECIFIED = 0;
}

message Order {
    int64 id = 1;
    Status status = 2;
    Line first_line = 3;
    repeated Line lines = 4;
    map<string, Line> by_sku = 5;
    optional string note = 6;

    message Line {
        string sku = 1;
    }
}
""")
        assert result.diagnostics == ()
        schema = result.schemas[0]
        assert schema.package == "shop"
        order = schema.messages[0]
        assert order.full_name == "shop.Order"
        fields = {f.name: f for f in order.fields}

        assert fields["id"].kind is FieldKind.SCALAR
        assert fields["status"].kind is FieldKind.ENUM
        assert fields["status"].resolved_type == "shop.Status"
        assert fields["first_line"].kind is FieldKind.MESSAGE
        assert fields["first_line"].resolved_type == "shop.Order.Line"
        assert fields["lines"].repeated is True
        assert fields["by_sku"].kind is FieldKind.MAP
        assert fields["by_sku"].resolved_type == "shop.Order.Line"
        assert fields["note"].presence is PresenceModifier.OPTIONAL
        assert fields["note"].path == "Order.note"

    def test_declaration_order(self):
        result = _build(a="""\
syntax = "proto3";
message First { int32 a = 1; }
enum Middle { MIDDLE_UNSPECIFIED = 0; }
message Last { int32 b = 1; }
""")
        schema = result.schemas[0]
        first, last = schema.messages
        middle = schema.enums[0]
        assert first.order < first.fields[0].order < middle.order < last.order

    def test_declaration_order_within_one_line(self):
        result = _build(a="""\
syntax = "proto3";
message Outer { message Inner { int32 depth = 1; } int32 x = 1; enum Kind { KIND_UNSPECIFIED = 0; } }
""")
        outer = result.schemas[0].messages[0]
        inner, kind, x = outer.messages[0], outer.enums[0], outer.fields[0]
        assert outer.order < inner.order < x.order < kind.order

    def test_validation_rules_attached(self):
        result = _build(key="""\
syntax = "proto3";
message Key {
    string kid = 1 [(buf.validate.field).string.min_len = 1];
}
""")
        field = result.schemas[0].messages[0].fields[0]
        assert len(field.rules) == 1
        assert field.rules[0].constraint("string.min_len") == 1

    def test_proto2_required_presence(self):
        result = _build(legacy="""\
syntax = "proto2";
message Legacy {
    required int32 id = 1;
}
""")
        assert result.schemas[0].messages[0].fields[0].presence is PresenceModifier.REQUIRED


class TestResolution:
    def test_cross_file_reference(self):
        result = _build(
            common="""\
syntax = "proto3";
package common;
message Money { int64 units = 1; }
""",
            order="""\
syntax = "proto3";
package shop;
import "common.proto";
message Order { common.Money total = 1; }
""",
        )
        assert result.diagnostics == ()
        order = next(s for s in result.schemas if s.path == "order.proto")
        assert order.messages[0].fields[0].resolved_type == "common.Money"

    def test_well_known_types(self):
        result = _build(event="""\
syntax = "proto3";
import "google/protobuf/timestamp.proto";
message Event { google.protobuf.Timestamp created_at = 1; }
""")
        assert result.diagnostics == ()
        assert result.schemas[0].messages[0].fields[0].kind is FieldKind.MESSAGE

    def test_unresolved_reference_is_reported_not_fatal(self):
        result = _build(order="""\
syntax = "proto3";
message Order {
    Missing thing = 1;
    int32 count = 2;
}
""")
        assert len(result.schemas) == 1
        assert result.failed_files == ()
        diag = result.diagnostics[0]
        assert diag.kind is ViolationKind.UNRESOLVED_REFERENCE
        assert diag.path == "Order.thing"
        assert result.schemas[0].messages[0].fields[0].kind is FieldKind.UNRESOLVED

    def test_rpc_types_resolve(self):
        result = _build(svc="""\
syntax = "proto3";
package api;
message Req {}
message Resp {}
service Api {
    rpc Call(Req) returns (Resp);
    rpc Broken(Req) returns (Nowhere);
}
""")
        rpcs = result.schemas[0].services[0].rpcs
        assert rpcs[0].resolved_request == "api.Req"
        assert rpcs[0].resolved_response == "api.Resp"
        assert rpcs[1].resolved_response == ""
        assert [d.path for d in result.diagnostics] == ["Api.Broken"]


class TestTypeIndex:
    def test_innermost_scope_wins(self):
        index = TypeIndex()
        index.register_file("a.proto", parse_proto_text("""\
syntax = "proto3";
package pkg;
message Item {}
message Outer {
    message Item {}
}
"""))
        assert index.resolve("Item", "pkg.Outer") == ("pkg.Outer.Item", FieldKind.MESSAGE)
        assert index.resolve("Item", "pkg") == ("pkg.Item", FieldKind.MESSAGE)
        assert index.resolve(".pkg.Item", "pkg.Outer") == ("pkg.Item", FieldKind.MESSAGE)
        assert index.resolve("Nope", "pkg.Outer") is None


class TestStructuralErrors:
    def test_duplicate_message_names(self):
        ast = parse_proto_text("""\
syntax = "proto3";
message Account { string id = 1; }
message Account { string name = 1; }
""")
        with pytest.raises(StructuralError, match="Duplicate message name 'Account'"):
            check_declarations("acct.proto", ast)

    def test_duplicate_field_number(self):
        ast = parse_proto_text("""\
syntax = "proto3";
message Account {
    string id = 1;
    string name = 1;
}
""")
        with pytest.raises(StructuralError, match="Field number 1"):
            check_declarations("acct.proto", ast)

    def test_duplicate_field_name(self):
        ast = parse_proto_text("""\
syntax = "proto3";
message Account {
    string id = 1;
    int64 id = 2;
}
""")
        with pytest.raises(StructuralError, match="Duplicate field name 'id'"):
            check_declarations("acct.proto", ast)

    def test_duplicate_enum_value_name(self):
        ast = parse_proto_text("""\
syntax = "proto3";
message Account {
    enum Status {
        STATUS_UNSPECIFIED = 0;
        STATUS_ACTIVE = 1;
        STATUS_ACTIVE = 2;
    }
}
""")
        with pytest.raises(StructuralError, match="Duplicate enum value name 'STATUS_ACTIVE'"):
            check_declarations("acct.proto", ast)

    def test_duplicate_rpc_name(self):
        ast = parse_proto_text("""\
syntax = "proto3";
message Req {}
service Accounts {
    rpc Get(Req) returns (Req);
    rpc Get(Req) returns (Req);
}
""")
        with pytest.raises(StructuralError, match="Duplicate rpc name 'Get' in Accounts"):
            check_declarations("acct.proto", ast)

    def test_failure_is_isolated_to_one_file(self):
        result = _build(
            bad="""\
syntax = "proto3";
message Account {}
message Account {}
""",
            good="""\
syntax = "proto3";
message Fine {}
""",
        )
        assert result.failed_files == ("bad.proto",)
        assert [s.path for s in result.schemas] == ["good.proto"]
        assert result.diagnostics[0].kind is ViolationKind.STRUCTURAL_ERROR
        assert result.diagnostics[0].file == "bad.proto"

    def test_cross_file_clash(self):
        result = _build(
            one="""\
syntax = "proto3";
package pkg;
message Shared {}
""",
            two="""\
syntax = "proto3";
package pkg;
message Shared {}
""",
        )
        assert result.failed_files == ("two.proto",)
        assert "already defined in one.proto" in result.diagnostics[0].message
