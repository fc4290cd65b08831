"""Diagnostics and the reporter that ranks them.

A Diagnostic is a plain value; producing one never interrupts analysis.
The reporter sorts by (file, declaration order, severity descending) so the
result is identical regardless of which worker produced which entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Tuple


class Severity(Enum):
    ERROR = "Error"
    WARNING = "Warning"

    @property
    def rank(self) -> int:
        return 2 if self is Severity.ERROR else 1


class ViolationKind(Enum):
    STRUCTURAL_ERROR = "StructuralError"
    UNRESOLVED_REFERENCE = "UnresolvedReference"
    NAMING_CONVENTION = "NamingConvention"
    MISSING_DOCUMENTATION = "MissingDocumentation"
    INVALID_PRESENCE_ON_REPEATED = "InvalidPresenceOnRepeated"
    SUSPICIOUS_OPTIONAL_USAGE = "SuspiciousOptionalUsage"
    TYPE_MAPPING = "TypeMapping"
    AMBIGUOUS_ZERO_VALIDATION = "AmbiguousZeroValidation"
    UNREACHABLE_VALIDATION = "UnreachableValidation"


class Outcome(Enum):
    CLEAN = "Clean"
    WARNINGS = "Warnings"
    FAILED = "Failed"


@dataclass(frozen=True)
class Diagnostic:
    file: str
    path: str
    severity: Severity
    kind: ViolationKind
    message: str
    line: int = 0
    order: int = 0

    def sort_key(self) -> Tuple:
        return (
            self.file,
            self.order,
            -self.severity.rank,
            self.kind.value,
            self.path,
            self.message,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "file": self.file,
            "path": self.path,
            "line": self.line,
            "severity": self.severity.value,
            "kind": self.kind.value,
            "message": self.message,
        }

    def __str__(self) -> str:
        location = f"{self.file}:{self.line}" if self.line else self.file
        return f"{location}: {self.severity.value.lower()}: [{self.kind.value}] {self.path}: {self.message}"


@dataclass(frozen=True)
class Report:
    diagnostics: Tuple[Diagnostic, ...]
    outcome: Outcome
    file_outcomes: Dict[str, Outcome] = field(default_factory=dict)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.WARNING]

    def by_kind(self, kind: ViolationKind) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is kind]

    def to_dict(self) -> Dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "files": {path: outcome.value for path, outcome in self.file_outcomes.items()},
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> Tuple[Diagnostic, ...]:
    return tuple(sorted(diagnostics, key=Diagnostic.sort_key))


def compute_outcome(diagnostics: Iterable[Diagnostic], fail_on_warnings: bool = False) -> Outcome:
    """Clean if nothing was found, Failed on any error, Warnings otherwise.

    With ``fail_on_warnings`` a warnings-only result is promoted to Failed.
    """
    outcome = Outcome.CLEAN
    for diag in diagnostics:
        if diag.severity is Severity.ERROR:
            return Outcome.FAILED
        outcome = Outcome.WARNINGS
    if outcome is Outcome.WARNINGS and fail_on_warnings:
        return Outcome.FAILED
    return outcome


def build_report(
    diagnostics: Iterable[Diagnostic],
    files: Iterable[str] = (),
    fail_on_warnings: bool = False,
) -> Report:
    """Sort diagnostics and derive the overall and per-file outcomes.

    Every path in ``files`` gets an outcome even if it produced nothing.
    """
    ordered = sort_diagnostics(diagnostics)

    by_file: Dict[str, List[Diagnostic]] = {path: [] for path in files}
    for diag in ordered:
        by_file.setdefault(diag.file, []).append(diag)

    file_outcomes = {
        path: compute_outcome(diags, fail_on_warnings)
        for path, diags in sorted(by_file.items())
    }
    return Report(
        diagnostics=ordered,
        outcome=compute_outcome(ordered, fail_on_warnings),
        file_outcomes=file_outcomes,
    )
