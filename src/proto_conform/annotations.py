"""Decode third-party validation annotations into ValidationRule values.

Two annotation families are understood:

- protovalidate: ``(buf.validate.field)``, with an ``ignore`` enum
- protoc-gen-validate (legacy): ``(validate.rules)``, where
  ``<type>.ignore_empty = true`` and ``message.skip = true`` play the role
  of the ignore modes

Options may be written piecewise (``(buf.validate.field).string.min_len = 1``)
or as one aggregate (``(buf.validate.field) = { string: { min_len: 1 } }``);
both are merged into the same nested mapping before decoding.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from proto_conform.models import IgnoreMode, ValidationRule
from proto_conform.parser.proto_ast import ProtoOption

log = structlog.get_logger("proto_conform.annotations")

PROTOVALIDATE = "buf.validate"
PGV = "validate"

_SOURCES = {
    "(buf.validate.field)": PROTOVALIDATE,
    "(validate.rules)": PGV,
}

_IGNORE_NAMES = {
    "IGNORE_UNSPECIFIED": IgnoreMode.UNSPECIFIED,
    "IGNORE_IF_ZERO_VALUE": IgnoreMode.IF_ZERO_VALUE,
    # Names used by protovalidate releases before 1.0.
    "IGNORE_IF_UNPOPULATED": IgnoreMode.IF_ZERO_VALUE,
    "IGNORE_IF_DEFAULT_VALUE": IgnoreMode.IF_ZERO_VALUE,
    "IGNORE_EMPTY": IgnoreMode.IF_ZERO_VALUE,
    "IGNORE_ALWAYS": IgnoreMode.ALWAYS,
}

_IGNORE_NUMBERS = {
    0: IgnoreMode.UNSPECIFIED,
    1: IgnoreMode.IF_ZERO_VALUE,
    2: IgnoreMode.IF_ZERO_VALUE,
    3: IgnoreMode.ALWAYS,
}


def _split_option_name(name: str) -> Optional[Tuple[str, List[str]]]:
    for prefix, source in _SOURCES.items():
        if name == prefix:
            return source, []
        if name.startswith(prefix + "."):
            return source, name[len(prefix) + 1:].split(".")
    return None


def _merge(target: Dict[str, Any], path: List[str], value: Any) -> None:
    if not path:
        if isinstance(value, dict):
            for key, sub in value.items():
                _merge(target, [key], sub)
        return
    head, rest = path[0], path[1:]
    if not rest:
        if isinstance(value, dict):
            existing = target.setdefault(head, {})
            if isinstance(existing, dict):
                for key, sub in value.items():
                    _merge(existing, [key], sub)
                return
        target[head] = value
        return
    child = target.setdefault(head, {})
    if not isinstance(child, dict):
        child = target[head] = {}
    _merge(child, rest, value)


def _flatten(prefix: str, value: Any, out: List[Tuple[str, Any]]) -> None:
    if isinstance(value, dict):
        for key, sub in value.items():
            _flatten(f"{prefix}.{key}" if prefix else key, sub, out)
    elif isinstance(value, list):
        out.append((prefix, tuple(value)))
    else:
        out.append((prefix, value))


def parse_ignore(value: Any) -> IgnoreMode:
    """Map an ignore enum name or number to an IgnoreMode."""
    if isinstance(value, bool):
        return IgnoreMode.UNSPECIFIED
    if isinstance(value, int):
        return _IGNORE_NUMBERS.get(value, IgnoreMode.UNSPECIFIED)
    name = str(value).rsplit(".", 1)[-1].upper()
    mode = _IGNORE_NAMES.get(name)
    if mode is None:
        log.warning("unknown_ignore_mode", value=str(value))
        return IgnoreMode.UNSPECIFIED
    return mode


def _decode_protovalidate(tree: Dict[str, Any]) -> ValidationRule:
    ignore = IgnoreMode.UNSPECIFIED
    if "ignore" in tree:
        ignore = parse_ignore(tree.pop("ignore"))
    constraints: List[Tuple[str, Any]] = []
    _flatten("", tree, constraints)
    return ValidationRule(source=PROTOVALIDATE, ignore=ignore, constraints=tuple(constraints))


def _decode_pgv(tree: Dict[str, Any]) -> ValidationRule:
    ignore = IgnoreMode.UNSPECIFIED
    message_rules = tree.get("message")
    if isinstance(message_rules, dict) and message_rules.pop("skip", False) is True:
        ignore = IgnoreMode.ALWAYS
        if not message_rules:
            del tree["message"]
    for type_rules in tree.values():
        if isinstance(type_rules, dict) and type_rules.pop("ignore_empty", False) is True:
            if ignore is IgnoreMode.UNSPECIFIED:
                ignore = IgnoreMode.IF_ZERO_VALUE
    constraints: List[Tuple[str, Any]] = []
    _flatten("", {k: v for k, v in tree.items() if v != {}}, constraints)
    return ValidationRule(source=PGV, ignore=ignore, constraints=tuple(constraints))


def extract_validation_rules(options: Iterable[ProtoOption]) -> Tuple[ValidationRule, ...]:
    """Collect the validation annotations among a field's options.

    All options of one annotation family on the same field form a single
    rule; non-validation options are ignored.
    """
    trees: Dict[str, Dict[str, Any]] = {}
    for option in options:
        split = _split_option_name(option.name)
        if split is None:
            continue
        source, path = split
        _merge(trees.setdefault(source, {}), path, option.value)

    rules = []
    for source, tree in trees.items():
        if source == PROTOVALIDATE:
            rules.append(_decode_protovalidate(tree))
        else:
            rules.append(_decode_pgv(tree))
    return tuple(rules)
