"""Stdout sink adapter.

Implements RecordSinkPort and HintSinkPort by printing one line per
record and a short block per diagnostic hint.
"""

import asyncio
import logging

from windoctor.core.models import DependencyGraph, DependencyNode, DiagnosticHint, Record, RunSummary
from windoctor.core.ports import HintSinkPort, RecordSinkPort

logger = logging.getLogger(__name__)


class StdoutSink(RecordSinkPort, HintSinkPort):
    """Prints records and hints to stdout in human-readable form."""

    def __init__(self, verbose: bool = False):
        """Initialize stdout sink.

        Args:
            verbose: If True, print structured fields under each record.
        """
        self.verbose = verbose

    async def write_record(self, record: Record) -> None:
        await asyncio.to_thread(print, self.format_record(record, self.verbose))

    async def write_hint(self, hint: DiagnosticHint) -> None:
        await asyncio.to_thread(print, self.format_hint(hint))

    async def write_summary(self, summary: RunSummary) -> None:
        await asyncio.to_thread(print, self.format_summary(summary))

    async def write_graph(self, graph: DependencyGraph) -> None:
        await asyncio.to_thread(print, self.format_graph(graph))

    @staticmethod
    def format_record(record: Record, verbose: bool = False) -> str:
        """Format one record as a single line (plus fields when verbose)."""
        marker = "*" if record.pattern_matched else " "
        line = (
            f"{marker} {record.timestamp.isoformat()} "
            f"[{record.severity.label}] {record.channel}/{record.provider} "
            f"{record.event_id}: {record.message}"
        )
        if verbose and record.structured_fields:
            fields = [f"    {name}: {value}" for name, value in record.structured_fields.items()]
            line = "\n".join([line, *fields])
        return line

    @staticmethod
    def format_hint(hint: DiagnosticHint) -> str:
        """Format a diagnostic hint block."""
        record = hint.source_record
        lines = [
            "-" * 80,
            "DIAGNOSTIC HINT",
            f"Crash: {record.provider} {record.event_id} at {record.timestamp.isoformat()}",
            f"Faulting module: {hint.faulting_module}",
            "Unresolved imports:",
        ]
        lines.extend(f"  - {name}" for name in hint.unresolved_imports)
        if hint.max_depth_reached:
            lines.append("Note: depth limit reached, more modules may be missing")
        lines.append("-" * 80)
        return "\n".join(lines)

    @staticmethod
    def format_graph(graph: DependencyGraph) -> str:
        """Format a dependency graph as an indented tree."""
        lines: list[str] = []

        def visit(node: DependencyNode) -> None:
            location = node.resolved_path or "UNRESOLVED"
            lines.append(f"{'  ' * node.depth}{node.module_name} -> {location}")
            for child in node.children:
                visit(child)

        visit(graph.root)
        unresolved = graph.unresolved_imports
        if unresolved:
            lines.append(f"Unresolved: {', '.join(unresolved)}")
        if graph.max_depth_reached:
            lines.append(f"Depth limit {graph.max_depth} reached")
        return "\n".join(lines)

    @staticmethod
    def format_summary(summary: RunSummary) -> str:
        """Format a run summary."""
        elapsed = (summary.finished_at - summary.started_at).total_seconds()
        lines = [
            "=" * 80,
            "SUMMARY",
            "=" * 80,
            f"Units read: {summary.units}",
            f"Records scanned: {summary.scanned_records}",
            f"Records parsed: {summary.parsed_records}",
            f"Records emitted: {summary.emitted_records}"
            + (" (truncated)" if summary.truncated else ""),
            f"Diagnostic hints: {summary.hints_emitted}",
            f"Skipped chunks: {summary.skipped_chunks}",
            f"Skipped records: {summary.skipped_records}",
            f"Elapsed: {elapsed:.2f}s",
        ]
        if summary.warnings:
            lines.append(f"Warnings: {len(summary.warnings)}")
        if summary.file_scan is not None:
            scan = summary.file_scan
            lines.append(f"Log files scanned under {scan.root}: {scan.files_scanned}")
            for pattern, count in scan.term_counts:
                lines.append(f"  {pattern}: {count} file(s)")
            for sample in scan.samples:
                lines.append(f"    {sample.path}:{sample.line_number}: {sample.line}")
        return "\n".join(lines)
