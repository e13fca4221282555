"""Correlator: fuses the record stream with dependency resolution.

A CrashRecognizer decides whether a Record is a process-failure event
and extracts the faulting binary path from it. For every recognized
record the Correlator resolves that binary's imports and emits a
DiagnosticHint when anything is left unresolved. Silence is the
success case.
"""

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Mapping

from .event_xml import event_data_pairs
from .exceptions import BinaryUnreadable
from .models import CrashRule, DependencyGraph, DiagnosticHint, Record, SearchScope
from .ports import DependencyResolverPort

logger = logging.getLogger(__name__)

DEFAULT_CRASH_RULES: tuple[CrashRule, ...] = (
    CrashRule(
        provider="Application Error",
        event_ids=frozenset({1000}),
        # param10 and param11 carry the same paths in unnamed legacy payloads.
        path_fields=("AppPath", "ModulePath", "param10", "param11"),
    ),
)


class CrashRecognizer:
    """Recognizes process-failure records using configurable rules."""

    def __init__(self, rules: Iterable[CrashRule] = DEFAULT_CRASH_RULES):
        self.rules = tuple(rules)

    def _fields(self, record: Record) -> Mapping[str, str]:
        if record.structured_fields is not None:
            return record.structured_fields
        if record.raw_payload:
            return event_data_pairs(record.raw_payload)
        return {}

    def extract(self, record: Record) -> str | None:
        """Return the faulting binary path, or None if the record is not a crash.

        A record matched by a rule but lacking a usable path is logged as
        a warning and treated as non-matching.
        """
        rule = next((r for r in self.rules if r.matches(record)), None)
        if rule is None:
            return None

        fields = self._fields(record)
        for name in rule.path_fields:
            value = fields.get(name)
            if value is None:
                continue
            path = value.strip().strip('"')
            if path and "\x00" not in path and ("\\" in path or "/" in path):
                return path

        logger.warning(
            f"Crash record {record.provider}/{record.event_id} at "
            f"{record.timestamp.isoformat()} has no usable path in "
            f"{', '.join(rule.path_fields)}"
        )
        return None


class Correlator:
    """Turns a Record stream into DiagnosticHints.

    Resolution is blocking filesystem work, so it is run on worker
    threads. With one worker, hints follow record order; with more, they
    are emitted in completion order.
    """

    def __init__(
        self,
        resolver: DependencyResolverPort,
        recognizer: CrashRecognizer,
        search_scope: SearchScope,
        max_depth: int,
        max_workers: int = 1,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.resolver = resolver
        self.recognizer = recognizer
        self.search_scope = search_scope
        self.max_depth = max_depth
        self.max_workers = max_workers
        self.warnings: list[str] = []

    def _resolve(self, path: str) -> DependencyGraph | None:
        try:
            return self.resolver.resolve_graph(path, self.search_scope, self.max_depth)
        except BinaryUnreadable as e:
            message = f"Cannot resolve faulting module {path}: {e}"
            logger.warning(message)
            self.warnings.append(message)
            return None

    def hint_for(self, record: Record, path: str) -> DiagnosticHint | None:
        """Resolve ``path`` and build a hint if any import is unresolved."""
        graph = self._resolve(path)
        if graph is None:
            return None
        self.warnings.extend(graph.warnings)

        unresolved = graph.unresolved_imports
        if not unresolved:
            logger.debug(f"No unresolved imports for {path}")
            return None

        logger.info(f"{path}: {len(unresolved)} unresolved import(s): {', '.join(unresolved)}")
        return DiagnosticHint(
            source_record=record,
            faulting_module=path,
            unresolved_imports=unresolved,
            max_depth_reached=graph.max_depth_reached,
            graph=graph,
        )

    async def correlate(self, records: AsyncIterable[Record]) -> AsyncIterator[DiagnosticHint]:
        """Consume ``records`` and yield hints for recognized crash records."""
        if self.max_workers == 1:
            async for record in records:
                path = self.recognizer.extract(record)
                if path is None:
                    continue
                hint = await asyncio.to_thread(self.hint_for, record, path)
                if hint is not None:
                    yield hint
            return

        semaphore = asyncio.Semaphore(self.max_workers)
        out: asyncio.Queue = asyncio.Queue()
        pending: set[asyncio.Task] = set()
        finished = object()

        async def worker(record: Record, path: str) -> None:
            try:
                hint = await asyncio.to_thread(self.hint_for, record, path)
                if hint is not None:
                    await out.put(hint)
            finally:
                semaphore.release()

        async def feed() -> None:
            try:
                async for record in records:
                    path = self.recognizer.extract(record)
                    if path is None:
                        continue
                    await semaphore.acquire()
                    task = asyncio.create_task(worker(record, path))
                    pending.add(task)
                    task.add_done_callback(pending.discard)
                if pending:
                    await asyncio.gather(*list(pending))
            finally:
                await out.put(finished)

        feeder = asyncio.create_task(feed())
        try:
            while True:
                item = await out.get()
                if item is finished:
                    break
                yield item
            await feeder
        finally:
            if not feeder.done():
                feeder.cancel()
            # Let cancelled workers unwind before returning.
            await asyncio.gather(feeder, *list(pending), return_exceptions=True)
