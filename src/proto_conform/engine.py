"""Run the whole check over a set of schema files.

Pipeline: parse -> build Schema model (all files, cross-file references
resolved) -> per file {presence, validation interpretation, convention
rules} -> report. The per-file stage is independent between files and may
run on a thread pool; the report is sorted, so the worker count never
changes the result.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import structlog

from proto_conform.config import CheckerConfig
from proto_conform.diagnostics import Diagnostic, Report, build_report
from proto_conform.log import configure_logging
from proto_conform.models import Schema
from proto_conform.parser.proto_ast import ProtoFile
from proto_conform.parser.proto_ast_parser import ProtoParseError
from proto_conform.parser.proto_parser import parse_proto_file, parse_proto_text
from proto_conform.presence import classify_schema
from proto_conform.rules import DEFAULT_RULES, ConventionRule, RuleContext, run_rules
from proto_conform.schema_builder import StructuralError, build_schemas
from proto_conform.validation import interpret_schema

log = structlog.get_logger("proto_conform.engine")

FRONTENDS = ("text", "protoc")


class DeadlineExceeded(Exception):
    """Raised when a check runs past the caller's deadline."""


class _Deadline:
    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._expires = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    def check(self) -> None:
        if self._expires is not None and time.monotonic() >= self._expires:
            raise DeadlineExceeded(f"Check did not finish within {self.seconds}s")


def analyze_schema(
    schema: Schema,
    config: CheckerConfig,
    rules: Sequence[ConventionRule] = DEFAULT_RULES,
) -> List[Diagnostic]:
    """Classify presence, interpret validation and run the rules for one file."""
    presence = classify_schema(schema)
    validation = interpret_schema(schema, presence)
    diagnostics = run_rules(RuleContext(schema, presence, validation, config), rules)
    log.debug("schema_analyzed", file=schema.path, diagnostics=len(diagnostics))
    return diagnostics


def _analyze_all(
    schemas: Sequence[Schema],
    config: CheckerConfig,
    rules: Sequence[ConventionRule],
    deadline: _Deadline,
) -> List[Diagnostic]:
    out: List[Diagnostic] = []
    if config.workers <= 1 or len(schemas) <= 1:
        for schema in schemas:
            deadline.check()
            out.extend(analyze_schema(schema, config, rules))
        deadline.check()
        return out

    pool = ThreadPoolExecutor(max_workers=config.workers)
    futures = [pool.submit(analyze_schema, schema, config, rules) for schema in schemas]
    _, pending = wait(futures, timeout=deadline.remaining())
    if pending:
        # running workers are abandoned, not joined
        pool.shutdown(wait=False, cancel_futures=True)
        raise DeadlineExceeded(f"Check did not finish within {deadline.seconds}s")
    pool.shutdown()
    for future in futures:
        out.extend(future.result())
    return out


def _run(
    parsed: Sequence[Tuple[str, ProtoFile]],
    parse_failures: Iterable[Diagnostic],
    all_files: Sequence[str],
    config: CheckerConfig,
    rules: Sequence[ConventionRule],
    deadline: _Deadline,
) -> Report:
    diagnostics = list(parse_failures)
    build = build_schemas(parsed)
    diagnostics.extend(build.diagnostics)
    deadline.check()
    diagnostics.extend(_analyze_all(build.schemas, config, rules, deadline))

    report = build_report(diagnostics, all_files, config.fail_on_warnings)
    log.info(
        "check_complete",
        files=len(all_files),
        errors=len(report.errors),
        warnings=len(report.warnings),
        outcome=report.outcome.value,
    )
    return report


def _parse_failure(path: str, error: Union[ProtoParseError, str]) -> Diagnostic:
    log.warning("parse_failed", file=path, error=str(error))
    return StructuralError(path, path, str(error)).to_diagnostic()


def check(
    files: Sequence[Tuple[str, ProtoFile]],
    config: Optional[CheckerConfig] = None,
    rules: Sequence[ConventionRule] = DEFAULT_RULES,
) -> Report:
    """Check already-parsed files, given as (path, ProtoFile) pairs."""
    configure_logging()
    config = config or CheckerConfig()
    deadline = _Deadline(config.deadline)
    files = list(files)
    return _run(files, (), [path for path, _ in files], config, rules, deadline)


def check_sources(
    sources: Mapping[str, str],
    config: Optional[CheckerConfig] = None,
    rules: Sequence[ConventionRule] = DEFAULT_RULES,
) -> Report:
    """Check .proto text held in memory, keyed by the path to report it under."""
    configure_logging()
    config = config or CheckerConfig()
    deadline = _Deadline(config.deadline)

    parsed: List[Tuple[str, ProtoFile]] = []
    failures: List[Diagnostic] = []
    for path in sorted(sources):
        try:
            parsed.append((path, parse_proto_text(sources[path])))
        except ProtoParseError as e:
            failures.append(_parse_failure(path, e))
    return _run(parsed, failures, sorted(sources), config, rules, deadline)


def check_files(
    paths: Sequence[str],
    config: Optional[CheckerConfig] = None,
    frontend: str = "text",
    include_dirs: Sequence[str] = (),
    rules: Sequence[ConventionRule] = DEFAULT_RULES,
) -> Report:
    """Read and check .proto files from disk.

    Raises:
        ValueError: If ``frontend`` is not one of FRONTENDS
        RuntimeError: If the protoc front end is selected but unavailable
        DeadlineExceeded: If ``config.deadline`` passes before the end
    """
    if frontend not in FRONTENDS:
        raise ValueError(f"Unknown frontend {frontend!r}; expected one of: {', '.join(FRONTENDS)}")
    configure_logging()
    config = config or CheckerConfig()
    deadline = _Deadline(config.deadline)
    ordered = sorted(paths)

    parsed: List[Tuple[str, ProtoFile]] = []
    failures: List[Diagnostic] = []
    if frontend == "protoc":
        from proto_conform.parser.descriptor_loader import parse_protos_via_descriptor

        for path, ast, error in parse_protos_via_descriptor(ordered, include_dirs):
            if error is not None:
                failures.append(_parse_failure(path, error))
            else:
                parsed.append((path, ast))
    else:
        for path in ordered:
            deadline.check()
            try:
                parsed.append((path, parse_proto_file(path)))
            except ProtoParseError as e:
                failures.append(_parse_failure(path, e))
            except UnicodeDecodeError as e:
                failures.append(_parse_failure(path, f"File is not valid UTF-8: {e}"))
            except OSError as e:
                failures.append(_parse_failure(path, f"Cannot read file: {e}"))
    log.debug("files_parsed", frontend=frontend, parsed=len(parsed), failed=len(failures))
    return _run(parsed, failures, ordered, config, rules, deadline)
