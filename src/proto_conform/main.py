from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from proto_conform.config import ConfigError, CheckerConfig, Strictness, load_config, parse_rule_set
from proto_conform.diagnostics import Outcome, Report
from proto_conform.engine import FRONTENDS, DeadlineExceeded, check_files
from proto_conform.log import configure_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _find_files(working_path: str, extensions: List[str]) -> List[str]:
    """Recursively find files with given extensions under working_path."""
    path = Path(working_path)
    if path.is_file():
        return [str(path)]
    results = []
    for ext in extensions:
        results.extend(str(p) for p in path.rglob(f"*{ext}"))
    return sorted(results)


def render_text(report: Report) -> str:
    lines = [str(d) for d in report.diagnostics]
    for path, outcome in report.file_outcomes.items():
        lines.append(f"{path}: {outcome.value}")
    lines.append(
        f"{report.outcome.value}: {len(report.errors)} error(s), {len(report.warnings)} warning(s)"
    )
    return "\n".join(lines)


def render_json(report: Report) -> str:
    return json.dumps(report.to_dict(), indent=2)


def exit_code(report: Report) -> int:
    return EXIT_FAILED if report.outcome is Outcome.FAILED else EXIT_OK


def run(
    working_path: str,
    config: Optional[CheckerConfig] = None,
    output_format: str = "text",
    frontend: str = "text",
    include_dirs: Sequence[str] = (),
) -> int:
    """Main pipeline: find, check, print. Returns the process exit code."""
    proto_files = _find_files(working_path, [".proto"])
    if not proto_files:
        print(f"No .proto files found under {working_path}")
        return EXIT_USAGE

    if output_format == "text":
        print(f"Checking {len(proto_files)} proto file(s)")

    try:
        report = check_files(proto_files, config, frontend=frontend, include_dirs=include_dirs)
    except DeadlineExceeded as e:
        print(f"FATAL: {e}", file=sys.stderr)
        return EXIT_FAILED
    except RuntimeError as e:
        print(f"FATAL: {e}", file=sys.stderr)
        return EXIT_USAGE

    print(render_json(report) if output_format == "json" else render_text(report))
    return exit_code(report)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proto-conform",
        description="Protobuf schema conformance checker",
    )
    parser.add_argument(
        "--working-path",
        required=True,
        help="A .proto file, or a directory to scan for .proto files",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument(
        "--fail-on-warnings",
        action="store_true",
        default=None,
        help="Treat a warnings-only result as failed",
    )
    parser.add_argument(
        "--rules",
        help="Comma separated rule kinds to run (default: all)",
    )
    parser.add_argument(
        "--strictness",
        choices=[s.value for s in Strictness],
        help="Documentation heuristic strictness",
    )
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Report format")
    parser.add_argument(
        "--frontend",
        choices=list(FRONTENDS),
        default="text",
        help="Parse .proto text directly, or go through protoc descriptors",
    )
    parser.add_argument(
        "-I", "--include",
        action="append",
        default=[],
        dest="include_dirs",
        help="Extra import path for the protoc front end (repeatable)",
    )
    parser.add_argument("--workers", type=int, help="Check files on N threads")
    parser.add_argument("--deadline", type=float, help="Give up after this many seconds")
    parser.add_argument("--log-level", help="debug, info, warning, error or silent")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level, force=args.log_level is not None)

    try:
        config = load_config(args.config) if args.config else CheckerConfig()
        config = config.merged(
            fail_on_warnings=args.fail_on_warnings,
            rule_set=parse_rule_set(args.rules) if args.rules else None,
            doc_strictness=Strictness.from_string(args.strictness) if args.strictness else None,
            workers=args.workers,
            deadline=args.deadline,
        )
    except (ConfigError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    return run(
        args.working_path,
        config,
        output_format=args.format,
        frontend=args.frontend,
        include_dirs=args.include_dirs,
    )


if __name__ == "__main__":
    sys.exit(main())
