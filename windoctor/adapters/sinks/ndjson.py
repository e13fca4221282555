"""NDJSON sink adapter.

Implements RecordSinkPort and HintSinkPort by writing one JSON object
per line, either to stdout or to a file. Every object carries a
``type`` key so records and hints can share one stream.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, TextIO

from windoctor.core.models import (
    DependencyGraph,
    DependencyNode,
    DiagnosticHint,
    FileScanSummary,
    Record,
    RunSummary,
)
from windoctor.core.ports import HintSinkPort, RecordSinkPort

logger = logging.getLogger(__name__)


def record_to_dict(record: Record) -> dict[str, Any]:
    data: dict[str, Any] = {
        "type": "record",
        "timestamp": record.timestamp.isoformat(),
        "channel": record.channel,
        "provider": record.provider,
        "event_id": record.event_id,
        "severity": record.severity.label,
        "message": record.message,
        "record_id": record.record_id,
        "computer": record.computer,
        "pattern_matched": record.pattern_matched,
    }
    if record.structured_fields is not None:
        data["fields"] = dict(record.structured_fields)
    if record.raw_payload is not None:
        data["payload"] = record.raw_payload
    return data


def node_to_dict(node: DependencyNode) -> dict[str, Any]:
    return {
        "module": node.module_name,
        "resolved_path": node.resolved_path,
        "depth": node.depth,
        "children": [node_to_dict(child) for child in node.children],
    }


def graph_to_dict(graph: DependencyGraph) -> dict[str, Any]:
    return {
        "type": "graph",
        "root": node_to_dict(graph.root),
        "max_depth": graph.max_depth,
        "max_depth_reached": graph.max_depth_reached,
        "unresolved_imports": list(graph.unresolved_imports),
        "warnings": list(graph.warnings),
    }


def hint_to_dict(hint: DiagnosticHint) -> dict[str, Any]:
    record = hint.source_record
    return {
        "type": "hint",
        "faulting_module": hint.faulting_module,
        "unresolved_imports": list(hint.unresolved_imports),
        "max_depth_reached": hint.max_depth_reached,
        "record": {
            "timestamp": record.timestamp.isoformat(),
            "provider": record.provider,
            "event_id": record.event_id,
            "record_id": record.record_id,
        },
    }


def file_scan_to_dict(scan: FileScanSummary) -> dict[str, Any]:
    return {
        "root": scan.root,
        "files_scanned": scan.files_scanned,
        "term_counts": [{"pattern": p, "files": n} for p, n in scan.term_counts],
        "samples": [
            {
                "path": s.path,
                "pattern": s.pattern,
                "line_number": s.line_number,
                "line": s.line,
            }
            for s in scan.samples
        ],
    }


def summary_to_dict(summary: RunSummary) -> dict[str, Any]:
    return {
        "type": "summary",
        "started_at": summary.started_at.isoformat(),
        "finished_at": summary.finished_at.isoformat(),
        "units": summary.units,
        "scanned_records": summary.scanned_records,
        "parsed_records": summary.parsed_records,
        "emitted_records": summary.emitted_records,
        "hints_emitted": summary.hints_emitted,
        "skipped_chunks": summary.skipped_chunks,
        "skipped_records": summary.skipped_records,
        "warnings": list(summary.warnings),
        "truncated": summary.truncated,
        "file_scan": file_scan_to_dict(summary.file_scan) if summary.file_scan is not None else None,
    }


class NdjsonSink(RecordSinkPort, HintSinkPort):
    """Writes newline-delimited JSON to a file or stdout."""

    def __init__(self, output_path: str | None = None):
        """Initialize NDJSON sink.

        Args:
            output_path: File to write. None writes to stdout. Parent
                directories are created as needed.

        Raises:
            OSError: If the output file cannot be opened.
        """
        self.output_path = output_path
        self._owns_stream = output_path is not None
        if output_path is not None:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._stream: TextIO = path.open("w", encoding="utf-8")
        else:
            self._stream = sys.stdout
        self._lock = asyncio.Lock()

    async def _write(self, data: dict[str, Any]) -> None:
        line = json.dumps(data, ensure_ascii=False) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._stream.write, line)

    async def write_record(self, record: Record) -> None:
        await self._write(record_to_dict(record))

    async def write_hint(self, hint: DiagnosticHint) -> None:
        await self._write(hint_to_dict(hint))

    async def write_graph(self, graph: DependencyGraph) -> None:
        await self._write(graph_to_dict(graph))

    async def write_summary(self, summary: RunSummary) -> None:
        await self._write(summary_to_dict(summary))

    async def close(self) -> None:
        async with self._lock:
            if self._owns_stream:
                await asyncio.to_thread(self._stream.close)
                logger.debug(f"Wrote NDJSON output to {self.output_path}")
            else:
                await asyncio.to_thread(self._stream.flush)
