"""Historical EVTX file source.

Implements EventSourcePort over one .evtx file or a directory of them,
using python-evtx to walk the chunked binary container. Each file is
parsed on a worker thread; a corrupt chunk or record is skipped with a
warning and never aborts the unit.
"""

import asyncio
import fnmatch
import heapq
import logging
import os
import struct
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from Evtx.BinaryParser import ParseException
from Evtx.Evtx import Evtx

from windoctor.core.event_xml import parse_event_xml
from windoctor.core.exceptions import SourceNotFound
from windoctor.core.models import RawRecord, TimeWindow, UnitReport
from windoctor.core.ports import EventSourcePort

logger = logging.getLogger(__name__)

# python-evtx surfaces damaged structures as ParseException, but truncated
# buffers and bad string tables can also leak these.
_RECORD_ERRORS = (ParseException, struct.error, IndexError, KeyError, UnicodeDecodeError, ValueError)

_UNUSED_CHUNK_MAGIC = b"\x00" * 8


def read_evtx_unit(path: str) -> tuple[list[RawRecord], UnitReport]:
    """Parse one EVTX file into raw records. Blocking.

    Records come back in file order. The channel of a record falls back
    to the file stem when the event XML has none.

    Returns:
        Tuple of (records, report). A file that cannot be opened, or whose
        header is not a readable EVTX header, yields no records and a
        report with ``skipped_unit`` set.
    """
    stem = os.path.splitext(os.path.basename(path))[0]
    records: list[RawRecord] = []
    warnings: list[str] = []
    scanned = 0
    skipped_chunks = 0
    skipped_records = 0

    def warn(message: str) -> None:
        logger.warning(message)
        warnings.append(message)

    try:
        with Evtx(path) as log:
            header = log.get_file_header()
            if not header.check_magic():
                warn(f"{path}: bad file header signature, not an EVTX file")
                return [], UnitReport(unit=path, warnings=tuple(warnings), skipped_unit=True)
            declared = header.chunk_count()

            seen = 0
            for index, chunk in enumerate(log.chunks()):
                seen += 1
                if not chunk.check_magic():
                    if chunk.unpack_binary(0, 8) != _UNUSED_CHUNK_MAGIC:
                        skipped_chunks += 1
                        warn(f"{path}: chunk {index} has a bad signature, skipped")
                    continue
                if chunk.calculate_header_checksum() != chunk.header_checksum():
                    skipped_chunks += 1
                    warn(f"{path}: chunk {index} header checksum mismatch, skipped")
                    continue

                try:
                    for record in chunk.records():
                        scanned += 1
                        try:
                            xml = record.xml()
                        except _RECORD_ERRORS as e:
                            skipped_records += 1
                            logger.debug(f"{path}: chunk {index}: unreadable record: {e}")
                            continue

                        raw = parse_event_xml(xml, default_channel=stem, unit=path)
                        if raw is None:
                            skipped_records += 1
                            continue
                        records.append(raw)
                except _RECORD_ERRORS as e:
                    skipped_chunks += 1
                    warn(f"{path}: chunk {index} is truncated or corrupt ({e}), skipped")

            # Chunks shorter than a full chunk are never yielded by the parser.
            if seen < declared:
                skipped_chunks += declared - seen
                warn(f"{path}: {declared - seen} of {declared} chunk(s) truncated or missing, skipped")
    except (OSError, *_RECORD_ERRORS) as e:
        warn(f"{path}: cannot read EVTX file: {e}")
        return [], UnitReport(unit=path, warnings=tuple(warnings), skipped_unit=True)

    if skipped_records:
        warn(f"{path}: {skipped_records} record(s) could not be decoded")

    report = UnitReport(
        unit=path,
        scanned=scanned,
        parsed=len(records),
        skipped_chunks=skipped_chunks,
        skipped_records=skipped_records,
        warnings=tuple(warnings),
    )
    return records, report


class EvtxFileSource(EventSourcePort):
    """EVTX files on disk.

    Args:
        path: An .evtx file or a directory containing them.
        pattern: Case-insensitive glob applied to file names in a directory.
        recursive: Descend into subdirectories.
        workers: Maximum number of files parsed concurrently.
        ordered: Merge files by timestamp instead of yielding each file's
            records as soon as it has been parsed.
    """

    def __init__(
        self,
        path: str,
        pattern: str = "*.evtx",
        recursive: bool = False,
        workers: int = 4,
        ordered: bool = False,
    ):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.path = path
        self.pattern = pattern
        self.recursive = recursive
        self.workers = workers
        self.ordered = ordered
        self._reports: list[UnitReport] = []

    @property
    def name(self) -> str:
        return f"evtx:{self.path}"

    @property
    def reports(self) -> list[UnitReport]:
        return list(self._reports)

    def validate(self) -> None:
        if not os.path.exists(self.path):
            raise SourceNotFound(self.path)

    def units(self) -> list[str]:
        """List the files this source reads, sorted for stable output."""
        if os.path.isfile(self.path):
            return [self.path]

        lowered = self.pattern.lower()
        found = []
        for current, dirs, files in os.walk(self.path):
            dirs.sort()
            for filename in sorted(files):
                if fnmatch.fnmatchcase(filename.lower(), lowered):
                    found.append(os.path.join(current, filename))
            if not self.recursive:
                break
        return found

    def _may_overlap(self, unit: str, window: TimeWindow) -> bool:
        """False only when the file was last written before the window opens."""
        if window.since is None:
            return True
        try:
            modified = datetime.fromtimestamp(os.path.getmtime(unit), tz=timezone.utc)
        except OSError:
            return True
        return modified >= window.since

    async def produce(self, window: TimeWindow) -> AsyncIterator[RawRecord]:
        self.validate()
        self._reports = []

        units = []
        for unit in await asyncio.to_thread(self.units):
            if self._may_overlap(unit, window):
                units.append(unit)
            else:
                logger.debug(f"Skipping {unit}: last modified before {window.since.isoformat()}")
                self._reports.append(UnitReport(unit=unit, skipped_unit=True))

        if not units:
            logger.info(f"No EVTX files to read under {self.path}")
            return

        semaphore = asyncio.Semaphore(self.workers)

        async def parse(unit: str) -> list[RawRecord]:
            async with semaphore:
                logger.debug(f"Parsing {unit}")
                records, report = await asyncio.to_thread(read_evtx_unit, unit)
            self._reports.append(report)
            return records

        tasks = [asyncio.create_task(parse(unit)) for unit in units]
        try:
            if self.ordered:
                per_unit = await asyncio.gather(*tasks)
                for records in per_unit:
                    records.sort(key=lambda r: r.timestamp)
                for raw in heapq.merge(*per_unit, key=lambda r: r.timestamp):
                    yield raw
            else:
                for next_done in asyncio.as_completed(tasks):
                    for raw in await next_done:
                        yield raw
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
