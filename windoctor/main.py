"""Composition root for the WinDoctor diagnostics engine.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here, creating a clear entry point for the application.

Module Structure:
- Command-line parsing via the cli adapter
- Configuration loading via config module
- Adapter instantiation
- Core service initialization
- Command execution (events, deps)
"""

import asyncio
import logging
import os
import sys
from datetime import datetime, timedelta, timezone

from windoctor.adapters.binaries.pe_imports import PefileImportReader
from windoctor.adapters.cli.commands import ParsedCommand, parse_command
from windoctor.adapters.sinks.ndjson import NdjsonSink
from windoctor.adapters.sinks.stdout import StdoutSink
from windoctor.adapters.sources.evtx_file import EvtxFileSource
from windoctor.adapters.sources.live import LiveEventSource
from windoctor.config import Settings, load_settings
from windoctor.core.correlator import Correlator, CrashRecognizer
from windoctor.core.engine import DiagnosticsEngine
from windoctor.core.exceptions import DiagnosticsError, InvalidConfiguration, SourceNotFound
from windoctor.core.file_scan import TextLogScanner
from windoctor.core.filter_engine import FilterEngine
from windoctor.core.models import (
    CrashRule,
    DependencyGraph,
    FilterCriteria,
    RunSummary,
    SearchScope,
    Severity,
    TimeWindow,
)
from windoctor.core.ports import EventSourcePort, ImportTablePort
from windoctor.core.resolver import DependencyResolver, build_search_scope

logger = logging.getLogger(__name__)

Sink = StdoutSink | NdjsonSink


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Logs go to stderr so that stdout carries only rendered output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.WARNING)

    if log_format == "json":
        format_str = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
        force=True,
    )


def build_time_window(settings: Settings, now: datetime | None = None) -> TimeWindow:
    """Resolve since/until/lookback into a TimeWindow.

    Raises:
        InvalidConfiguration: If since is after until.
    """
    since = settings.since
    if since is None and settings.lookback_minutes is not None:
        since = (now or datetime.now(timezone.utc)) - timedelta(minutes=settings.lookback_minutes)
    try:
        return TimeWindow(since=since, until=settings.until)
    except ValueError as e:
        raise InvalidConfiguration(str(e)) from e


def build_filter_criteria(settings: Settings, now: datetime | None = None) -> FilterCriteria:
    """Translate settings into FilterCriteria.

    Correlation needs the EventData fields, so enrichment is switched on
    whenever correlation is requested.
    """
    return FilterCriteria(
        window=build_time_window(settings, now),
        channels=frozenset(settings.channels),
        severities=frozenset(Severity.from_name(s) for s in settings.severities),
        providers=frozenset(settings.providers),
        exclude_providers=frozenset(settings.exclude_providers),
        include_event_ids=frozenset(settings.include_event_ids),
        exclude_event_ids=frozenset(settings.exclude_event_ids),
        patterns=tuple(settings.patterns),
        only_matched=settings.only_matched,
        enrich=settings.enrich or settings.correlate,
        retain_payload=settings.retain_payload,
    )


def build_scope(settings: Settings) -> SearchScope:
    return build_search_scope(
        directories=settings.search_dirs,
        include_system_dirs=settings.include_system_dirs,
        include_path_env=settings.include_path_env,
        ignored_modules=settings.ignored_modules,
    )


def build_crash_rules(settings: Settings) -> list[CrashRule]:
    return [
        CrashRule(
            provider=rule.provider,
            event_ids=frozenset(rule.event_ids),
            path_fields=tuple(rule.path_fields),
        )
        for rule in settings.crash_rules
    ]


def build_sources(settings: Settings) -> list[EventSourcePort]:
    """Instantiate the event sources selected by settings.

    Raises:
        InvalidConfiguration: If no source is selected.
    """
    sources: list[EventSourcePort] = []

    if settings.evtx_path:
        sources.append(
            EvtxFileSource(
                path=settings.evtx_path,
                pattern=settings.evtx_glob,
                recursive=settings.evtx_recursive,
                workers=settings.evtx_workers,
                ordered=settings.ordered,
            )
        )
        logger.info(f"Event source: EVTX files at {settings.evtx_path}")

    if settings.live:
        # Lazy import for the Windows-only subscription
        from windoctor.adapters.sources.windows_subscription import WindowsEventSubscription

        sources.append(
            LiveEventSource(
                subscription=WindowsEventSubscription(),
                channels=settings.channels,
                duration_seconds=settings.live_duration_seconds,
                backfill=settings.live_backfill,
            )
        )
        logger.info(f"Event source: live subscription to {', '.join(settings.channels)}")

    if not sources:
        raise InvalidConfiguration("no event source selected: set evtx_path or live")
    return sources


def build_sink(settings: Settings) -> Sink:
    if settings.output_format == "ndjson":
        return NdjsonSink(output_path=settings.output_path)
    if settings.output_path:
        raise InvalidConfiguration("output_path is only supported with the ndjson format")
    return StdoutSink(verbose=settings.verbose)


def build_engine(
    settings: Settings,
    sources: list[EventSourcePort],
    import_reader: ImportTablePort | None = None,
) -> DiagnosticsEngine:
    """Wire filter engine, correlator and sources into a DiagnosticsEngine.

    Raises:
        InvalidPattern: If a pattern fails to compile.
        InvalidConfiguration: If the window is inverted.
    """
    filter_engine = FilterEngine(build_filter_criteria(settings))

    correlator = None
    if settings.correlate:
        reader = import_reader or PefileImportReader(
            include_delay_load=settings.include_delay_load
        )
        correlator = Correlator(
            resolver=DependencyResolver(reader),
            recognizer=CrashRecognizer(build_crash_rules(settings)),
            search_scope=build_scope(settings),
            max_depth=settings.max_depth,
            max_workers=settings.correlator_workers,
        )
        logger.info(f"Correlation enabled (max_depth={settings.max_depth})")

    file_scanner = None
    if settings.scan_path:
        patterns = settings.file_patterns
        if patterns is None:
            patterns = settings.patterns
        file_scanner = TextLogScanner(
            root=settings.scan_path,
            patterns=patterns,
            file_glob=settings.file_glob,
            max_samples=settings.max_file_samples,
        )
        logger.info(f"Scanning plain-text logs under {settings.scan_path}")

    return DiagnosticsEngine(
        sources=sources,
        filter_engine=filter_engine,
        correlator=correlator,
        ordered=settings.ordered,
        max_records=settings.max_records,
        file_scanner=file_scanner,
    )


async def run_events(
    settings: Settings,
    sources: list[EventSourcePort] | None = None,
    sink: Sink | None = None,
    import_reader: ImportTablePort | None = None,
) -> RunSummary:
    """Run the events command.

    Every fatal precondition is checked before the first record is written.
    """
    if sources is None:
        sources = build_sources(settings)
    engine = build_engine(settings, sources, import_reader)
    engine.validate()

    output = sink or build_sink(settings)
    try:
        summary = await engine.run(output, output, prevalidated=True)
        await output.write_summary(summary)
    finally:
        await output.close()

    for warning in summary.warnings:
        logger.debug(f"Run warning: {warning}")
    return summary


async def run_deps(
    settings: Settings,
    target: str,
    pattern: str = "*",
    recursive: bool = False,
    import_reader: ImportTablePort | None = None,
    sink: Sink | None = None,
) -> list[DependencyGraph]:
    """Run the deps command against a binary or a directory of binaries.

    Raises:
        SourceNotFound: If ``target`` does not exist.
        BinaryUnreadable: If ``target`` is a file that cannot be read.
    """
    reader = import_reader or PefileImportReader(include_delay_load=settings.include_delay_load)
    resolver = DependencyResolver(reader)
    scope = build_scope(settings)

    if os.path.isdir(target):
        graphs = await asyncio.to_thread(
            resolver.walk, target, scope, settings.max_depth, pattern, recursive
        )
    elif os.path.exists(target):
        graphs = [await asyncio.to_thread(resolver.resolve_graph, target, scope, settings.max_depth)]
    else:
        raise SourceNotFound(target)

    output = sink or build_sink(settings)
    try:
        for graph in graphs:
            await output.write_graph(graph)
    finally:
        await output.close()

    logger.info(f"Resolved {len(graphs)} binar{'y' if len(graphs) == 1 else 'ies'}")
    return graphs


async def bootstrap(command: ParsedCommand) -> None:
    """Load configuration, wire adapters, and run the requested command.

    This is the composition root: the single place where all components
    are instantiated and wired together.

    Steps:
    1. Load configuration (file, environment, command-line overrides)
    2. Configure logging
    3. Instantiate adapters and core services
    4. Run the command

    Raises:
        DiagnosticsError: On fatal configuration, source or binary errors.
    """
    settings = load_settings(command.config_file, **command.overrides)
    configure_logging(settings.log_level, settings.log_format)
    logger.info(f"Running {command.command} command")

    if command.command == "events":
        await run_events(settings)
    elif command.command == "deps":
        await run_deps(settings, command.target, command.pattern, command.recursive)
    else:
        raise InvalidConfiguration(f"Unknown command: {command.command}")


def main(argv: list[str] | None = None) -> None:
    """Application entry point.

    Exit codes:
        0: Success
        1: Fatal configuration, source or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    command = parse_command(argv)
    try:
        asyncio.run(bootstrap(command))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (SIGINT)")
        sys.exit(130)
    except DiagnosticsError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
