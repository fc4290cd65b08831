"""Effective validation behavior of field annotations.

Each (field, rule) pair is classified by its ignore mode first and by the
field's presence second:

    ignore = ALWAYS         -> NeverValidated
    ignore = IF_ZERO_VALUE  -> ValidatedUnlessZero
    ignore = UNSPECIFIED    -> AlwaysValidated

An UNSPECIFIED rule on a singular scalar or enum field without presence is
still AlwaysValidated, but the zero value cannot be told apart from "not
sent", so the rule may reject a field the client simply omitted. That case
is returned as an AmbiguousZeroValidation finding. An ALWAYS rule that still
carries constraints can never fire and is returned as UnreachableValidation.

Nothing in this module raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Tuple

from proto_conform.diagnostics import ViolationKind
from proto_conform.models import Field, FieldKind, IgnoreMode, Schema, ValidationRule


class ValidationBehavior(Enum):
    ALWAYS_VALIDATED = "AlwaysValidated"
    VALIDATED_UNLESS_ZERO = "ValidatedUnlessZero"
    NEVER_VALIDATED = "NeverValidated"


@dataclass(frozen=True)
class Finding:
    kind: ViolationKind
    message: str


@dataclass(frozen=True)
class RuleOutcome:
    field_path: str
    rule: ValidationRule
    behavior: ValidationBehavior
    findings: Tuple[Finding, ...] = ()


def _zero_is_ambiguous(field: Field, presence: bool) -> bool:
    return (
        not presence
        and field.is_singular
        and field.kind in (FieldKind.SCALAR, FieldKind.ENUM)
    )


def interpret_rule(field: Field, rule: ValidationRule, presence: bool) -> RuleOutcome:
    """Classify one rule attached to ``field``."""
    if rule.ignore is IgnoreMode.ALWAYS:
        findings: Tuple[Finding, ...] = ()
        if rule.has_constraints:
            names = ", ".join(path for path, _ in rule.constraints)
            findings = (
                Finding(
                    ViolationKind.UNREACHABLE_VALIDATION,
                    f"Constraints ({names}) can never run because ignore is ALWAYS",
                ),
            )
        return RuleOutcome(field.path, rule, ValidationBehavior.NEVER_VALIDATED, findings)

    if rule.ignore is IgnoreMode.IF_ZERO_VALUE:
        return RuleOutcome(field.path, rule, ValidationBehavior.VALIDATED_UNLESS_ZERO)

    findings = ()
    if _zero_is_ambiguous(field, presence):
        findings = (
            Finding(
                ViolationKind.AMBIGUOUS_ZERO_VALIDATION,
                f"'{field.name}' has no presence tracking, so a zero {field.type_name} "
                f"is indistinguishable from an omitted field and will be validated; "
                f"set ignore = IGNORE_IF_ZERO_VALUE or declare the field optional",
            ),
        )
    return RuleOutcome(field.path, rule, ValidationBehavior.ALWAYS_VALIDATED, findings)


def interpret_field(field: Field, presence: bool) -> Tuple[RuleOutcome, ...]:
    return tuple(interpret_rule(field, rule, presence) for rule in field.rules)


def interpret_schema(schema: Schema, presence: Mapping[str, bool]) -> Dict[str, Tuple[RuleOutcome, ...]]:
    """Outcomes for every field of ``schema`` that carries validation rules."""
    return {
        field.path: interpret_field(field, presence.get(field.path, False))
        for _, field in schema.iter_fields()
        if field.rules
    }
