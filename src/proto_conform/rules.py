"""Convention rules run against one modeled schema.

Each rule is a ConventionRule record: a kind (used by the ``rule_set``
configuration to enable or disable it) plus a pure function from a
RuleContext to a list of Diagnostics. Rules never see each other's output,
so they can run in any order or in parallel.

Rules that guess at author intent (RPC documentation keywords, suspicious
``optional`` usage, type-mapping name hints) only ever emit warnings, and
each guess lives in a single helper function.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Mapping, Sequence, Tuple

from proto_conform.config import CheckerConfig, RuleKind, Strictness
from proto_conform.diagnostics import Diagnostic, Severity, ViolationKind
from proto_conform.models import Field, FieldKind, IgnoreMode, Message, PresenceModifier, Schema
from proto_conform.presence import has_invalid_presence
from proto_conform.validation import RuleOutcome

PASCAL_CASE = re.compile(r"^[A-Z][A-Za-z0-9]*$")
SNAKE_CASE = re.compile(r"^[a-z][a-z0-9]*(_[a-z0-9]+)*$")
UPPER_SNAKE_CASE = re.compile(r"^[A-Z][A-Z0-9]*(_[A-Z0-9]+)*$")


@dataclass(frozen=True)
class RuleContext:
    schema: Schema
    presence: Mapping[str, bool]
    validation: Mapping[str, Tuple[RuleOutcome, ...]]
    config: CheckerConfig


@dataclass(frozen=True)
class ConventionRule:
    kind: RuleKind
    name: str
    evaluate: Callable[[RuleContext], List[Diagnostic]]


def _diag(ctx: RuleContext, node, severity: Severity, kind: ViolationKind, message: str) -> Diagnostic:
    return Diagnostic(
        file=ctx.schema.path,
        path=node.path,
        severity=severity,
        kind=kind,
        message=message,
        line=node.line,
        order=node.order,
    )


# -- naming --


def check_naming(ctx: RuleContext) -> List[Diagnostic]:
    out: List[Diagnostic] = []

    def expect(node, pattern: re.Pattern, what: str, style: str) -> None:
        if not pattern.match(node.name):
            out.append(_diag(
                ctx, node, Severity.ERROR, ViolationKind.NAMING_CONVENTION,
                f"{what} name '{node.name}' should be {style}",
            ))

    for msg in ctx.schema.iter_messages():
        expect(msg, PASCAL_CASE, "Message", "PascalCase")
        for f in msg.fields:
            expect(f, SNAKE_CASE, "Field", "snake_case")
    for enum in ctx.schema.iter_enums():
        expect(enum, PASCAL_CASE, "Enum", "PascalCase")
        for value in enum.values:
            expect(value, UPPER_SNAKE_CASE, "Enum value", "UPPER_SNAKE_CASE")
    for service in ctx.schema.services:
        expect(service, PASCAL_CASE, "Service", "PascalCase")
        for rpc in service.rpcs:
            expect(rpc, PASCAL_CASE, "RPC", "PascalCase")
    return out


# -- documentation --

_AUTH_WORDS = re.compile(
    r"\b(auth\w*|permission\w*|credential\w*|token\w*|api[ _-]?keys?|"
    r"unauthenticated|public(ly)?|anonymous|role\w*|scopes?|admin\w*)\b",
    re.IGNORECASE,
)
_ERROR_WORDS = re.compile(
    r"\b(errors?|fails?|failure\w*|throws?|raises?|not[ _]found|invalid[ _]argument|"
    r"permission[ _]denied|already[ _]exists|failed[ _]precondition|unavailable|"
    r"resource[ _]exhausted|unauthenticated)\b",
    re.IGNORECASE,
)
_AUTH_SECTION = re.compile(r"^\s*(authentication|authorization|auth|permissions?)\s*:", re.IGNORECASE | re.MULTILINE)
_ERROR_SECTION = re.compile(r"^\s*(errors?|error conditions|failures?)\s*:", re.IGNORECASE | re.MULTILINE)
_ANY_SECTION = re.compile(r"^\s*[A-Za-z][A-Za-z ]*:")


def missing_rpc_topics(comment: str, strictness: Strictness) -> List[str]:
    """Which of behavior/authentication/errors an RPC comment fails to cover.

    This is a keyword heuristic, not language understanding. Lenient mode
    accepts any mention of the topic; strict mode wants a leading summary
    line plus labelled "Authentication:" and "Errors:" sections.
    """
    missing: List[str] = []
    lines = [line for line in comment.splitlines() if line.strip()]
    if strictness is Strictness.STRICT:
        if not lines or _ANY_SECTION.match(lines[0]):
            missing.append("behavior")
        if not _AUTH_SECTION.search(comment):
            missing.append("authentication")
        if not _ERROR_SECTION.search(comment):
            missing.append("errors")
    else:
        if not lines:
            missing.append("behavior")
        if not _AUTH_WORDS.search(comment):
            missing.append("authentication")
        if not _ERROR_WORDS.search(comment):
            missing.append("errors")
    return missing


def check_documentation(ctx: RuleContext) -> List[Diagnostic]:
    out: List[Diagnostic] = []
    strict = ctx.config.doc_strictness is Strictness.STRICT

    def require(node, what: str) -> bool:
        if node.comment.strip():
            return True
        out.append(_diag(
            ctx, node, Severity.ERROR, ViolationKind.MISSING_DOCUMENTATION,
            f"{what} '{node.name}' has no doc-comment",
        ))
        return False

    for msg in ctx.schema.iter_messages():
        require(msg, "Message")
        for f in msg.fields:
            require(f, "Field")
    if strict:
        for enum in ctx.schema.iter_enums():
            require(enum, "Enum")
    for service in ctx.schema.services:
        if strict:
            require(service, "Service")
        for rpc in service.rpcs:
            if not require(rpc, "RPC"):
                continue
            for topic in missing_rpc_topics(rpc.comment, ctx.config.doc_strictness):
                out.append(_diag(
                    ctx, rpc, Severity.WARNING, ViolationKind.MISSING_DOCUMENTATION,
                    f"RPC '{rpc.name}' doc-comment does not describe {topic}",
                ))
    return out


# -- presence misuse --

_REQUIRED_WORDS = re.compile(r"\b(required|mandatory|must be (set|provided|specified|present))\b", re.IGNORECASE)
_PRESENCE_WORDS = re.compile(
    r"\b(unset|not set|if (set|provided|present|specified)|omit\w*|absent|"
    r"unchanged|leave\w* as is|don'?t change|no change|distinguish\w*|explicitly set|"
    r"defaults? to|when not)\b",
    re.IGNORECASE,
)
_PARTIAL_UPDATE_MESSAGE = re.compile(r"(Update|Patch|Modify|Edit|Upsert|Set)[A-Z]|Mask|Filter|Overrides?$")


def looks_like_required(message: Message, field: Field) -> bool:
    """Guess whether an ``optional`` field is really meant as "required".

    ``optional`` is the right tool when a caller must be able to tell
    "unset" from zero: partial updates, documented defaults, or validation
    that must also run on an explicit zero. Absent all of those, or when
    the comment calls the field required, the modifier is likely misused.
    """
    if _REQUIRED_WORDS.search(field.comment):
        return True
    if _PRESENCE_WORDS.search(field.comment):
        return False
    if any(rule.has_constraints and rule.ignore is not IgnoreMode.ALWAYS for rule in field.rules):
        return False
    if _PARTIAL_UPDATE_MESSAGE.search(message.name):
        return False
    return True


def check_presence_misuse(ctx: RuleContext) -> List[Diagnostic]:
    out: List[Diagnostic] = []
    for msg, f in ctx.schema.iter_fields():
        if has_invalid_presence(f):
            shape = "map" if f.is_map else "repeated"
            out.append(_diag(
                ctx, f, Severity.ERROR, ViolationKind.INVALID_PRESENCE_ON_REPEATED,
                f"'{f.name}' is {shape} and cannot be declared optional; "
                f"{shape} fields never track presence",
            ))
            continue
        counter_like = f.is_integer or f.is_bool or f.kind is FieldKind.ENUM
        tracked = ctx.presence.get(f.path, False)
        if f.presence is PresenceModifier.OPTIONAL and tracked and counter_like and looks_like_required(msg, f):
            out.append(_diag(
                ctx, f, Severity.WARNING, ViolationKind.SUSPICIOUS_OPTIONAL_USAGE,
                f"'{f.name}' is optional {f.type_name} without a presence-dependent use; "
                f"drop 'optional' or document what an unset value means",
            ))
    return out


# -- type mapping --

_TIME_SUFFIXES = ("_at", "_time", "_timestamp", "_date", "_datetime")
_TIME_NAMES = {"timestamp", "time", "date", "datetime"}
_DURATION_SUFFIXES = ("_duration", "_timeout", "_ttl", "_interval")
_DURATION_NAMES = {"duration", "timeout", "ttl", "interval"}
_BINARY_SUFFIXES = ("_bytes", "_blob", "_binary", "_raw")
_TIME_CARRIERS = {
    "string", "int32", "int64", "uint32", "uint64", "sint32", "sint64",
    "fixed32", "fixed64", "sfixed32", "sfixed64", "double", "float",
}


def suggested_type(field: Field) -> str:
    """Structured type a field's name hints at, or "" if the name says nothing."""
    if field.kind is not FieldKind.SCALAR:
        return ""
    name = field.name.lower()
    if field.type_name in _TIME_CARRIERS and (name in _TIME_NAMES or name.endswith(_TIME_SUFFIXES)):
        return "google.protobuf.Timestamp"
    if field.type_name == "string" and (name in _DURATION_NAMES or name.endswith(_DURATION_SUFFIXES)):
        return "google.protobuf.Duration"
    if field.type_name == "string" and name.endswith(_BINARY_SUFFIXES):
        return "bytes"
    return ""


def check_type_mapping(ctx: RuleContext) -> List[Diagnostic]:
    out: List[Diagnostic] = []
    for _, f in ctx.schema.iter_fields():
        suggestion = suggested_type(f)
        if suggestion:
            out.append(_diag(
                ctx, f, Severity.WARNING, ViolationKind.TYPE_MAPPING,
                f"'{f.name}' is a plain {f.type_name} but its name suggests {suggestion}",
            ))
    return out


# -- validation placement --


def check_validation_placement(ctx: RuleContext) -> List[Diagnostic]:
    out: List[Diagnostic] = []
    for _, f in ctx.schema.iter_fields():
        for outcome in ctx.validation.get(f.path, ()):
            for finding in outcome.findings:
                out.append(_diag(ctx, f, Severity.WARNING, finding.kind, finding.message))
    return out


DEFAULT_RULES: Tuple[ConventionRule, ...] = (
    ConventionRule(RuleKind.NAMING, "NamingRule", check_naming),
    ConventionRule(RuleKind.DOCUMENTATION, "DocumentationRule", check_documentation),
    ConventionRule(RuleKind.PRESENCE_MISUSE, "PresenceMisuseRule", check_presence_misuse),
    ConventionRule(RuleKind.TYPE_MAPPING, "TypeMappingRule", check_type_mapping),
    ConventionRule(RuleKind.VALIDATION_PLACEMENT, "ValidationPlacementRule", check_validation_placement),
)


def run_rules(ctx: RuleContext, rules: Sequence[ConventionRule] = DEFAULT_RULES) -> List[Diagnostic]:
    """Evaluate every enabled rule against ``ctx`` and concatenate the results."""
    out: List[Diagnostic] = []
    for rule in rules:
        if ctx.config.is_enabled(rule.kind):
            out.extend(rule.evaluate(ctx))
    return out
