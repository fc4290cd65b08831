"""Field presence classification.

EffectivePresence answers: "can a reader tell an unset field from one set to
its zero value?" The classification is total: every field gets an answer
and nothing here raises.
"""

from __future__ import annotations

from typing import Dict

from proto_conform.models import Field, FieldKind, PresenceModifier, Schema


def effective_presence(field: Field) -> bool:
    """Return True when ``field`` tracks presence at runtime.

    - repeated and map fields never do, whatever their modifier;
    - singular message fields always do;
    - a scalar or enum field does only when it is declared ``optional``.
      Oneof membership, proto2 syntax and a ``required`` label do not
      count.
    """
    if field.repeated or field.kind is FieldKind.MAP:
        return False
    if field.kind is FieldKind.MESSAGE:
        return True
    return field.presence is PresenceModifier.OPTIONAL


def has_invalid_presence(field: Field) -> bool:
    """``optional`` on a repeated or map field, which protobuf rejects."""
    return field.presence is PresenceModifier.OPTIONAL and (
        field.repeated or field.kind is FieldKind.MAP
    )


def classify_schema(schema: Schema) -> Dict[str, bool]:
    """Map each field path in ``schema`` to its EffectivePresence."""
    return {field.path: effective_presence(field) for _, field in schema.iter_fields()}
