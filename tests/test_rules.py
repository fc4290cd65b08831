from proto_conform.config import CheckerConfig, RuleKind, Strictness
from proto_conform.diagnostics import Severity, ViolationKind
from proto_conform.models import Field, FieldKind
from proto_conform.parser.proto_parser import parse_proto_text
from proto_conform.presence import classify_schema
from proto_conform.rules import (
    DEFAULT_RULES,
    RuleContext,
    check_documentation,
    check_naming,
    check_presence_misuse,
    check_type_mapping,
    check_validation_placement,
    missing_rpc_topics,
    run_rules,
    suggested_type,
)
from proto_conform.schema_builder import build_schemas
from proto_conform.validation import interpret_schema


def _context(text, config=None):
    schema = build_schemas([("test.proto", parse_proto_text(text))]).schemas[0]
    presence = classify_schema(schema)
    return RuleContext(schema, presence, interpret_schema(schema, presence), config or CheckerConfig())


def _kinds(diagnostics):
    return [d.kind for d in diagnostics]


class TestNamingRule:
    def test_conventional_names_pass(self):
        ctx = _context("""\
syntax = "proto3";
message OrderLine { int32 line_no = 1; }
enum OrderState { ORDER_STATE_UNSPECIFIED = 0; }
service OrderService { rpc GetOrder(OrderLine) returns (OrderLine); }
""")
        assert check_naming(ctx) == []

    def test_bad_names_flagged(self):
        ctx = _context("""\
syntax = "proto3";
message order_line { int32 lineNo = 1; }
enum orderState { active = 0; }
service order_service { rpc get_order(order_line) returns (order_line); }
""")
        paths = sorted(d.path for d in check_naming(ctx))
        assert paths == sorted([
            "order_line", "order_line.lineNo", "orderState", "orderState.active",
            "order_service", "order_service.get_order",
        ])
        assert all(d.severity is Severity.ERROR for d in check_naming(ctx))


class TestDocumentationRule:
    def test_missing_docs_are_errors(self):
        ctx = _context("""\
syntax = "proto3";
message Bare { int32 count = 1; }
""")
        diags = check_documentation(ctx)
        assert [d.path for d in diags] == ["Bare", "Bare.count"]
        assert all(d.severity is Severity.ERROR for d in diags)

    def test_rpc_comment_topics(self):
        ctx = _context("""\
syntax = "proto3";
// Req.
message Req {}
service Orders {
    // Returns the order with the given id.
    // Requires an authenticated caller with the orders.read scope.
    // Fails with NOT_FOUND if the order does not exist.
    rpc Get(Req) returns (Req);
    // Deletes an order.
    rpc Delete(Req) returns (Req);
}
""")
        diags = check_documentation(ctx)
        assert all(d.path == "Orders.Delete" for d in diags)
        assert all(d.severity is Severity.WARNING for d in diags)
        assert len(diags) == 2

    def test_strict_mode_requires_sections_and_enum_docs(self):
        text = """\
syntax = "proto3";
// Req.
message Req {}
enum Color { COLOR_UNSPECIFIED = 0; }
// Orders API.
service Orders {
    // Returns the order.
    // Authentication: bearer token.
    // Errors: NOT_FOUND.
    rpc Get(Req) returns (Req);
}
"""
        lenient = check_documentation(_context(text))
        strict = check_documentation(_context(text, CheckerConfig(doc_strictness=Strictness.STRICT)))
        assert lenient == []
        assert [d.path for d in strict] == ["Color"]

    def test_missing_rpc_topics_heuristic(self):
        assert missing_rpc_topics("", Strictness.LENIENT) == ["behavior", "authentication", "errors"]
        assert missing_rpc_topics("Public endpoint. Never fails.", Strictness.LENIENT) == []
        assert missing_rpc_topics("Authentication: none\nErrors: none", Strictness.STRICT) == ["behavior"]


class TestPresenceMisuseRule:
    def test_optional_repeated_exactly_one_error(self):
        ctx = _context("""\
syntax = "proto3";
message Tags {
    optional repeated string tags = 1;
}
""")
        diags = check_presence_misuse(ctx)
        assert _kinds(diags) == [ViolationKind.INVALID_PRESENCE_ON_REPEATED]
        assert diags[0].severity is Severity.ERROR

    def test_optional_map_is_invalid(self):
        ctx = _context("""\
syntax = "proto3";
message Counts {
    optional map<string, int32> by_name = 1;
}
""")
        assert _kinds(check_presence_misuse(ctx)) == [ViolationKind.INVALID_PRESENCE_ON_REPEATED]

    def test_bare_optional_counter_is_suspicious(self):
        ctx = _context("""\
syntax = "proto3";
message RetryPolicy {
    optional int32 retry_count = 1;
}
""")
        diags = check_presence_misuse(ctx)
        assert _kinds(diags) == [ViolationKind.SUSPICIOUS_OPTIONAL_USAGE]
        assert diags[0].severity is Severity.WARNING

    def test_optional_string_is_not_suspicious(self):
        ctx = _context("""\
syntax = "proto3";
message Profile {
    optional string display_name = 1;
}
""")
        assert check_presence_misuse(ctx) == []

    def test_documented_unset_meaning_is_not_suspicious(self):
        ctx = _context("""\
syntax = "proto3";
message RetryPolicy {
    // If not set, the server default is used.
    optional int32 retry_count = 1;
}
""")
        assert check_presence_misuse(ctx) == []

    def test_partial_update_message_is_not_suspicious(self):
        ctx = _context("""\
syntax = "proto3";
message UpdateRetryPolicy {
    optional int32 retry_count = 1;
}
""")
        assert check_presence_misuse(ctx) == []


class TestTypeMappingRule:
    def _field(self, name, type_name="string", kind=FieldKind.SCALAR):
        return Field(name=name, number=1, type_name=type_name, kind=kind, path=f"M.{name}")

    def test_suggestions(self):
        assert suggested_type(self._field("created_at", "int64")) == "google.protobuf.Timestamp"
        assert suggested_type(self._field("expiry_date")) == "google.protobuf.Timestamp"
        assert suggested_type(self._field("request_timeout")) == "google.protobuf.Duration"
        assert suggested_type(self._field("payload_bytes")) == "bytes"

    def test_no_suggestion(self):
        assert suggested_type(self._field("display_name")) == ""
        assert suggested_type(self._field("request_timeout", "int32")) == ""
        assert suggested_type(self._field("created_at", "Timestamp", FieldKind.MESSAGE)) == ""

    def test_rule_emits_warnings(self):
        ctx = _context("""\
syntax = "proto3";
message Event {
    string created_at = 1;
    int64 id = 2;
}
""")
        diags = check_type_mapping(ctx)
        assert [d.path for d in diags] == ["Event.created_at"]
        assert diags[0].severity is Severity.WARNING


class TestValidationPlacementRule:
    def test_ambiguous_and_unreachable(self):
        ctx = _context("""\
syntax = "proto3";
message Key {
    string kid = 1 [(buf.validate.field).string.min_len = 1];
    string alias = 2 [(buf.validate.field) = { string: { max_len: 8 } ignore: IGNORE_ALWAYS }];
    string signed_by_kid = 3 [
        (buf.validate.field).string.pattern = "^[a-z0-9-]+$",
        (buf.validate.field).ignore = IGNORE_IF_ZERO_VALUE
    ];
}
""")
        diags = check_validation_placement(ctx)
        assert [(d.path, d.kind) for d in diags] == [
            ("Key.kid", ViolationKind.AMBIGUOUS_ZERO_VALIDATION),
            ("Key.alias", ViolationKind.UNREACHABLE_VALIDATION),
        ]
        assert all(d.severity is Severity.WARNING for d in diags)


class TestRunRules:
    TEXT = """\
syntax = "proto3";
message bad_name { string created_at = 1; }
"""

    def test_all_rules_by_default(self):
        kinds = set(_kinds(run_rules(_context(self.TEXT))))
        assert kinds == {
            ViolationKind.NAMING_CONVENTION,
            ViolationKind.MISSING_DOCUMENTATION,
            ViolationKind.TYPE_MAPPING,
        }

    def test_rule_set_restricts(self):
        config = CheckerConfig(rule_set=frozenset({RuleKind.NAMING}))
        kinds = set(_kinds(run_rules(_context(self.TEXT, config))))
        assert kinds == {ViolationKind.NAMING_CONVENTION}

    def test_default_rules_cover_every_kind(self):
        assert {rule.kind for rule in DEFAULT_RULES} == set(RuleKind)
