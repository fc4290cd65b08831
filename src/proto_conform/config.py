"""Checker configuration.

Settings come from keyword arguments, a mapping, or a YAML file. Keys are
accepted in camelCase (``failOnWarnings``) or snake_case
(``fail_on_warnings``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, FrozenSet, Iterable, Mapping, Optional

import yaml


class ConfigError(ValueError):
    """Raised when a configuration value cannot be understood."""


class RuleKind(Enum):
    NAMING = "naming"
    DOCUMENTATION = "documentation"
    PRESENCE_MISUSE = "presence-misuse"
    TYPE_MAPPING = "type-mapping"
    VALIDATION_PLACEMENT = "validation-placement"

    @classmethod
    def from_string(cls, s: str) -> "RuleKind":
        key = s.strip().lower().replace("_", "-")
        # Accept the class-style names too, e.g. "NamingRule".
        aliases = {
            "namingrule": cls.NAMING,
            "documentationrule": cls.DOCUMENTATION,
            "presencemisuserule": cls.PRESENCE_MISUSE,
            "typemappingrule": cls.TYPE_MAPPING,
            "validationplacementrule": cls.VALIDATION_PLACEMENT,
        }
        if key.replace("-", "") in aliases:
            return aliases[key.replace("-", "")]
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ConfigError(f"Unknown rule kind {s!r}; expected one of: {valid}") from None


class Strictness(Enum):
    LENIENT = "lenient"
    STRICT = "strict"

    @classmethod
    def from_string(cls, s: str) -> "Strictness":
        try:
            return cls(s.strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown docHeuristicStrictness {s!r}; expected lenient or strict") from None


ALL_RULES: FrozenSet[RuleKind] = frozenset(RuleKind)


@dataclass(frozen=True)
class CheckerConfig:
    fail_on_warnings: bool = False
    rule_set: FrozenSet[RuleKind] = field(default_factory=lambda: ALL_RULES)
    doc_strictness: Strictness = Strictness.LENIENT
    workers: int = 1
    deadline: Optional[float] = None

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ConfigError(f"workers must be >= 1, got {self.workers}")
        if self.deadline is not None and self.deadline <= 0:
            raise ConfigError(f"deadline must be positive, got {self.deadline}")

    def is_enabled(self, kind: RuleKind) -> bool:
        return kind in self.rule_set

    def merged(self, **overrides: Any) -> "CheckerConfig":
        """Return a copy with the given non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_KEY_ALIASES = {
    "failOnWarnings": "fail_on_warnings",
    "fail_on_warnings": "fail_on_warnings",
    "ruleSet": "rule_set",
    "rule_set": "rule_set",
    "rules": "rule_set",
    "docHeuristicStrictness": "doc_strictness",
    "doc_heuristic_strictness": "doc_strictness",
    "doc_strictness": "doc_strictness",
    "workers": "workers",
    "deadline": "deadline",
}


def parse_rule_set(value: Any) -> FrozenSet[RuleKind]:
    """Parse a rule set from a comma separated string or a list of names."""
    if value is None:
        return ALL_RULES
    if isinstance(value, str):
        items: Iterable[Any] = [part for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        raise ConfigError(f"ruleSet must be a list or comma separated string, got {type(value).__name__}")
    kinds = set()
    for item in items:
        if str(item).strip().lower() == "all":
            return ALL_RULES
        kinds.add(item if isinstance(item, RuleKind) else RuleKind.from_string(str(item)))
    return frozenset(kinds)


def config_from_mapping(data: Mapping[str, Any]) -> CheckerConfig:
    """Build a CheckerConfig from a plain mapping (e.g. parsed YAML)."""
    values = {}
    for key, value in data.items():
        target = _KEY_ALIASES.get(key)
        if target is None:
            raise ConfigError(f"Unknown configuration key {key!r}")
        values[target] = value

    kwargs = {}
    if "fail_on_warnings" in values:
        if not isinstance(values["fail_on_warnings"], bool):
            raise ConfigError("failOnWarnings must be true or false")
        kwargs["fail_on_warnings"] = values["fail_on_warnings"]
    if "rule_set" in values:
        kwargs["rule_set"] = parse_rule_set(values["rule_set"])
    if "doc_strictness" in values:
        kwargs["doc_strictness"] = Strictness.from_string(str(values["doc_strictness"]))
    if "workers" in values:
        try:
            kwargs["workers"] = int(values["workers"])
        except (TypeError, ValueError):
            raise ConfigError(f"workers must be an integer, got {values['workers']!r}") from None
    if "deadline" in values and values["deadline"] is not None:
        try:
            kwargs["deadline"] = float(values["deadline"])
        except (TypeError, ValueError):
            raise ConfigError(f"deadline must be a number of seconds, got {values['deadline']!r}") from None
    return CheckerConfig(**kwargs)


def load_config(path: str) -> CheckerConfig:
    """Load a CheckerConfig from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file is not a mapping or holds invalid values
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return CheckerConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return config_from_mapping(data)
