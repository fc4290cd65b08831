import pytest

from proto_conform.diagnostics import ViolationKind
from proto_conform.models import Field, FieldKind, IgnoreMode, PresenceModifier, ValidationRule
from proto_conform.parser.proto_parser import parse_proto_text
from proto_conform.presence import classify_schema
from proto_conform.schema_builder import build_schemas
from proto_conform.validation import ValidationBehavior, interpret_field, interpret_rule, interpret_schema

PATTERN = (("string.pattern", "^[a-z0-9-]+$"),)


def _field(**kwargs):
    defaults = dict(name="f", number=1, type_name="string", kind=FieldKind.SCALAR, path="M.f")
    defaults.update(kwargs)
    return Field(**defaults)


def _rule(ignore=IgnoreMode.UNSPECIFIED, constraints=PATTERN):
    return ValidationRule(source="buf.validate", ignore=ignore, constraints=constraints)


class TestIgnoreModes:
    @pytest.mark.parametrize("presence", [True, False])
    def test_always_is_never_validated(self, presence):
        outcome = interpret_rule(_field(), _rule(IgnoreMode.ALWAYS), presence)
        assert outcome.behavior is ValidationBehavior.NEVER_VALIDATED

    @pytest.mark.parametrize("presence", [True, False])
    def test_if_zero_value_is_validated_unless_zero(self, presence):
        outcome = interpret_rule(_field(), _rule(IgnoreMode.IF_ZERO_VALUE), presence)
        assert outcome.behavior is ValidationBehavior.VALIDATED_UNLESS_ZERO
        assert outcome.findings == ()

    def test_unspecified_with_presence_is_clean(self):
        f = _field(presence=PresenceModifier.OPTIONAL)
        outcome = interpret_rule(f, _rule(), True)
        assert outcome.behavior is ValidationBehavior.ALWAYS_VALIDATED
        assert outcome.findings == ()


class TestAmbiguousZero:
    def test_unspecified_without_presence_warns(self):
        outcome = interpret_rule(_field(), _rule(), False)
        assert outcome.behavior is ValidationBehavior.ALWAYS_VALIDATED
        assert [f.kind for f in outcome.findings] == [ViolationKind.AMBIGUOUS_ZERO_VALIDATION]

    def test_enum_without_presence_warns(self):
        f = _field(type_name="Status", kind=FieldKind.ENUM)
        outcome = interpret_rule(f, _rule(constraints=(("enum.defined_only", True),)), False)
        assert [f.kind for f in outcome.findings] == [ViolationKind.AMBIGUOUS_ZERO_VALIDATION]

    def test_repeated_field_does_not_warn(self):
        f = _field(repeated=True)
        outcome = interpret_rule(f, _rule(constraints=(("repeated.min_items", 1),)), False)
        assert outcome.findings == ()

    def test_message_field_does_not_warn(self):
        f = _field(type_name="Other", kind=FieldKind.MESSAGE)
        outcome = interpret_rule(f, _rule(constraints=(("required", True),)), False)
        assert outcome.findings == ()


class TestUnreachable:
    def test_always_with_constraints_is_unreachable(self):
        outcome = interpret_rule(_field(), _rule(IgnoreMode.ALWAYS), False)
        assert [f.kind for f in outcome.findings] == [ViolationKind.UNREACHABLE_VALIDATION]
        assert "string.pattern" in outcome.findings[0].message

    def test_always_without_constraints_is_silent(self):
        outcome = interpret_rule(_field(), _rule(IgnoreMode.ALWAYS, constraints=()), False)
        assert outcome.findings == ()


class TestInterpretField:
    def test_one_outcome_per_rule(self):
        f = _field(rules=(_rule(), _rule(IgnoreMode.IF_ZERO_VALUE)))
        outcomes = interpret_field(f, False)
        assert [o.behavior for o in outcomes] == [
            ValidationBehavior.ALWAYS_VALIDATED,
            ValidationBehavior.VALIDATED_UNLESS_ZERO,
        ]

    def test_idempotent(self):
        f = _field(rules=(_rule(),))
        assert interpret_field(f, False) == interpret_field(f, False)


class TestInterpretSchema:
    def test_signing_key_pattern(self):
        ast = parse_proto_text("""\
syntax = "proto3";
message SigningKey {
    string signed_by_kid = 1 [
        (buf.validate.field).string.pattern = "^[a-z0-9-]+$",
        (buf.validate.field).ignore = IGNORE_IF_ZERO_VALUE
    ];
    string unvalidated = 2;
}
""")
        schema = build_schemas([("key.proto", ast)]).schemas[0]
        outcomes = interpret_schema(schema, classify_schema(schema))
        assert list(outcomes) == ["SigningKey.signed_by_kid"]
        (outcome,) = outcomes["SigningKey.signed_by_kid"]
        assert outcome.behavior is ValidationBehavior.VALIDATED_UNLESS_ZERO
        assert outcome.findings == ()
