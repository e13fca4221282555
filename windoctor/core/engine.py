"""Diagnostics engine: the orchestrator of one run.

Wires sources, the filter engine and (optionally) the correlator into
a single record stream and a parallel hint stream. The engine is
written against EventSourcePort only and never branches on the kind
of source.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone

from .correlator import Correlator
from .exceptions import InvalidConfiguration
from .file_scan import TextLogScanner
from .filter_engine import FilterEngine
from .models import FileScanSummary, RawRecord, Record, RunSummary
from .ports import EventSourcePort, HintSinkPort, RecordSinkPort

logger = logging.getLogger(__name__)


@dataclass
class _SourceFinished:
    """Queue marker: one source is exhausted, possibly with an error."""

    source: str
    error: BaseException | None = None


class DiagnosticsEngine:
    """Produces the filtered record stream and, optionally, diagnostic hints.

    Args:
        sources: Event sources to read. Several sources are read
            concurrently into one stream.
        filter_engine: Filter applied to every raw record.
        correlator: If given, recognized crash records are correlated
            against dependency resolution during run().
        ordered: Emit records in timestamp order. Requires every source
            to be bounded. A single source is trusted to order its own
            output; several sources are buffered and sorted.
        max_records: Stop after this many emitted records.
        file_scanner: If given, plain-text logs are scanned alongside the
            record stream and the result is attached to the summary.
    """

    def __init__(
        self,
        sources: Sequence[EventSourcePort],
        filter_engine: FilterEngine,
        correlator: Correlator | None = None,
        ordered: bool = False,
        max_records: int | None = None,
        file_scanner: TextLogScanner | None = None,
    ):
        self.sources = list(sources)
        self.filter_engine = filter_engine
        self.correlator = correlator
        self.ordered = ordered
        self.max_records = max_records
        self.file_scanner = file_scanner

        self._emitted = 0
        self._truncated = False

    def validate(self) -> None:
        """Check every precondition before any output is produced.

        Raises:
            InvalidConfiguration: On an inconsistent engine setup.
            SourceNotFound: If a source's input does not exist.
        """
        if not self.sources:
            raise InvalidConfiguration("at least one event source is required")
        if self.max_records is not None and self.max_records < 1:
            raise InvalidConfiguration(f"max_records must be >= 1, got {self.max_records}")
        if self.ordered:
            unbounded = [s.name for s in self.sources if not s.bounded]
            if unbounded:
                raise InvalidConfiguration(
                    f"ordered output needs bounded sources; unbounded: {', '.join(unbounded)}"
                )
        for source in self.sources:
            source.validate()
        if self.file_scanner is not None:
            self.file_scanner.validate()

    async def _raw_stream(self) -> AsyncIterator[RawRecord]:
        window = self.filter_engine.criteria.window
        if len(self.sources) == 1:
            async with aclosing(self.sources[0].produce(window)) as stream:
                async for raw in stream:
                    yield raw
            return

        queue: asyncio.Queue = asyncio.Queue(maxsize=1024)

        async def pump(source: EventSourcePort) -> None:
            try:
                async with aclosing(source.produce(window)) as stream:
                    async for raw in stream:
                        await queue.put(raw)
            except Exception as e:
                await queue.put(_SourceFinished(source.name, e))
            else:
                await queue.put(_SourceFinished(source.name))

        tasks = [asyncio.create_task(pump(source)) for source in self.sources]
        remaining = len(tasks)
        try:
            while remaining:
                item = await queue.get()
                if isinstance(item, _SourceFinished):
                    remaining -= 1
                    if item.error is not None:
                        logger.error(f"Source {item.source} failed: {item.error}")
                        raise item.error
                    logger.debug(f"Source {item.source} finished")
                    continue
                yield item
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def records(self) -> AsyncIterator[Record]:
        """Yield the filtered, normalized record stream.

        Raises:
            InvalidConfiguration: From validate().
            SourceNotFound: From validate().
        """
        self.validate()
        async with aclosing(self._stream()) as stream:
            async for record in stream:
                yield record

    async def _stream(self) -> AsyncIterator[Record]:
        """records() without validation; callers validate first."""
        self._emitted = 0
        self._truncated = False

        async with aclosing(self._raw_stream()) as raw_stream:
            filtered = self.filter_engine.filter_stream(raw_stream)
            if self.ordered and len(self.sources) > 1:
                filtered = self._sorted(filtered)

            async with aclosing(filtered) as stream:
                async for record in stream:
                    yield record
                    self._emitted += 1
                    if self.max_records is not None and self._emitted >= self.max_records:
                        self._truncated = True
                        logger.info(f"Reached max_records={self.max_records}, stopping")
                        break

    @staticmethod
    async def _sorted(records: AsyncIterator[Record]) -> AsyncIterator[Record]:
        buffered = [record async for record in records]
        buffered.sort(key=lambda r: r.timestamp)
        for record in buffered:
            yield record

    async def run(
        self,
        record_sink: RecordSinkPort,
        hint_sink: HintSinkPort | None = None,
        prevalidated: bool = False,
    ) -> RunSummary:
        """Drive one full run into the given sinks.

        Hints are produced concurrently with record output; every
        in-flight correlation finishes before the summary is returned.
        The plain-text log scan, if any, runs on a worker thread at the
        same time.

        Args:
            record_sink: Receives every emitted record.
            hint_sink: Receives diagnostic hints; None disables correlation.
            prevalidated: The caller already ran validate() for this run.

        Returns:
            RunSummary with counts and accumulated warnings.
        """
        started_at = datetime.now(timezone.utc)
        hints_emitted = 0
        correlate = self.correlator is not None and hint_sink is not None

        # Fatal configuration errors surface before anything is written.
        if not prevalidated:
            self.validate()

        handoff: asyncio.Queue = asyncio.Queue()
        end_of_stream = object()

        async def correlated_records() -> AsyncIterator[Record]:
            while True:
                item = await handoff.get()
                if item is end_of_stream:
                    return
                yield item

        async def drive_correlator() -> None:
            nonlocal hints_emitted
            async with aclosing(self.correlator.correlate(correlated_records())) as hints:
                async for hint in hints:
                    await hint_sink.write_hint(hint)
                    hints_emitted += 1

        correlator_task = asyncio.create_task(drive_correlator()) if correlate else None
        scan_task = None
        if self.file_scanner is not None:
            scan_task = asyncio.create_task(asyncio.to_thread(self.file_scanner.scan))
        background = [t for t in (correlator_task, scan_task) if t is not None]
        try:
            async with aclosing(self._stream()) as stream:
                async for record in stream:
                    await record_sink.write_record(record)
                    if correlator_task is not None:
                        await handoff.put(record)

            if correlator_task is not None:
                await handoff.put(end_of_stream)
                await correlator_task
            file_scan = await scan_task if scan_task is not None else None
        except BaseException:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
            raise

        return self._summary(started_at, hints_emitted, file_scan)

    def _summary(
        self,
        started_at: datetime,
        hints_emitted: int,
        file_scan: FileScanSummary | None = None,
    ) -> RunSummary:
        reports = [report for source in self.sources for report in source.reports]
        warnings = [w for report in reports for w in report.warnings]
        if self.correlator is not None:
            warnings.extend(self.correlator.warnings)
        if file_scan is not None:
            warnings.extend(file_scan.warnings)

        summary = RunSummary(
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            units=len(reports),
            scanned_records=sum(r.scanned for r in reports),
            parsed_records=sum(r.parsed for r in reports),
            emitted_records=self._emitted,
            hints_emitted=hints_emitted,
            skipped_chunks=sum(r.skipped_chunks for r in reports),
            skipped_records=sum(r.skipped_records for r in reports),
            warnings=tuple(warnings),
            truncated=self._truncated,
            file_scan=file_scan,
        )
        logger.info(
            f"Run complete: {summary.emitted_records} records, "
            f"{summary.hints_emitted} hints, {len(summary.warnings)} warnings"
        )
        return summary
