"""Command-line front-end for WinDoctor.

Maps argv onto the two commands and onto Settings overrides. Options
left unset on the command line are returned as None so that the
configuration file and environment still apply.
"""

import argparse
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

PROG = "windoctor"


@dataclass
class ParsedCommand:
    """Result of parsing argv."""

    command: str
    config_file: str | None
    overrides: dict[str, Any] = field(default_factory=dict)
    target: str | None = None  # binary or directory for the deps command
    pattern: str = "*"
    recursive: bool = False


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", dest="config_file", help="TOML configuration file")
    parser.add_argument(
        "--format", dest="output_format", choices=["text", "ndjson"], help="Output format"
    )
    parser.add_argument("--output", dest="output_path", help="Write output to this file")
    parser.add_argument("--log-level", dest="log_level", help="Log level (default: WARNING)")
    parser.add_argument("--log-format", dest="log_format", choices=["text", "json"])


def _add_resolution(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--search-dir",
        dest="search_dirs",
        action="append",
        metavar="DIR",
        help="Extra directory searched for imported modules (repeatable)",
    )
    parser.add_argument("--max-depth", dest="max_depth", type=int, help="Transitive import depth")
    parser.add_argument(
        "--no-system-dirs",
        dest="include_system_dirs",
        action="store_false",
        default=None,
        help="Do not search %%SystemRoot%% directories",
    )
    parser.add_argument(
        "--no-path-env",
        dest="include_path_env",
        action="store_false",
        default=None,
        help="Do not search PATH entries",
    )
    parser.add_argument(
        "--delay-load",
        dest="include_delay_load",
        action="store_true",
        default=None,
        help="Also follow delay-load imports",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Filter Windows event logs and trace crashes to missing DLLs.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    events = subparsers.add_parser("events", help="Read, filter and correlate event logs")
    _add_common(events)
    window = events.add_argument_group("time window")
    window.add_argument("--since", help="Window start (ISO 8601, inclusive)")
    window.add_argument("--until", help="Window end (ISO 8601, exclusive)")
    window.add_argument("--lookback-minutes", dest="lookback_minutes", type=int)

    filters = events.add_argument_group("filters")
    filters.add_argument("--channel", dest="channels", action="append", metavar="NAME")
    filters.add_argument("--provider", dest="providers", action="append", metavar="NAME")
    filters.add_argument(
        "--exclude-provider", dest="exclude_providers", action="append", metavar="NAME"
    )
    filters.add_argument(
        "--event-id", dest="include_event_ids", action="append", type=int, metavar="ID"
    )
    filters.add_argument(
        "--exclude-event-id", dest="exclude_event_ids", action="append", type=int, metavar="ID"
    )
    filters.add_argument("--severity", dest="severities", action="append", metavar="LEVEL")
    filters.add_argument("--pattern", dest="patterns", action="append", metavar="REGEX")
    filters.add_argument("--only-matched", action="store_true", default=None)
    filters.add_argument("--enrich", action="store_true", default=None)
    filters.add_argument("--retain-payload", action="store_true", default=None)

    sources = events.add_argument_group("sources")
    sources.add_argument("--evtx", dest="evtx_path", metavar="PATH", help="EVTX file or directory")
    sources.add_argument("--glob", dest="evtx_glob", help="File glob inside --evtx directory")
    sources.add_argument("--recursive", dest="evtx_recursive", action="store_true", default=None)
    sources.add_argument("--workers", dest="evtx_workers", type=int)
    sources.add_argument("--ordered", action="store_true", default=None)
    sources.add_argument("--live", action="store_true", default=None)
    sources.add_argument(
        "--live-duration", dest="live_duration_seconds", type=float, metavar="SECONDS"
    )
    sources.add_argument("--backfill", dest="live_backfill", action="store_true", default=None)
    sources.add_argument("--max-records", dest="max_records", type=int)
    sources.add_argument("--verbose", action="store_true", default=None)

    scan = events.add_argument_group("plain-text log scan")
    scan.add_argument("--scan-path", dest="scan_path", metavar="PATH", help="Log file or directory")
    scan.add_argument("--file-glob", dest="file_glob", help="File glob inside --scan-path")
    scan.add_argument(
        "--file-pattern", dest="file_patterns", action="append", metavar="REGEX",
        help="Pattern for the log scan (repeatable; defaults to --pattern)",
    )
    scan.add_argument("--max-file-samples", dest="max_file_samples", type=int)

    correlation = events.add_argument_group("correlation")
    correlation.add_argument("--correlate", action="store_true", default=None)
    correlation.add_argument("--correlator-workers", dest="correlator_workers", type=int)
    _add_resolution(correlation)

    deps = subparsers.add_parser("deps", help="Resolve the import graph of binaries")
    deps.add_argument("target", help="Binary file or directory of binaries")
    deps.add_argument("--glob", dest="deps_glob", default="*", help="File glob for directories")
    deps.add_argument("--recursive", dest="deps_recursive", action="store_true")
    _add_common(deps)
    _add_resolution(deps)

    return parser


_NON_SETTINGS = {"command", "config_file", "target", "deps_glob", "deps_recursive"}


def parse_command(argv: list[str] | None = None) -> ParsedCommand:
    """Parse argv into a command and its Settings overrides.

    Raises:
        SystemExit: On usage errors, as argparse does.
    """
    args = build_parser().parse_args(argv)
    values = vars(args)
    overrides = {k: v for k, v in values.items() if k not in _NON_SETTINGS and v is not None}

    parsed = ParsedCommand(
        command=args.command,
        config_file=args.config_file,
        overrides=overrides,
        target=values.get("target"),
    )
    if args.command == "deps":
        parsed.pattern = args.deps_glob
        parsed.recursive = args.deps_recursive
    logger.debug(f"Parsed command {parsed.command} with overrides {sorted(parsed.overrides)}")
    return parsed
