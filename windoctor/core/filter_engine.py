"""Filter engine: turns raw records into the normalized Record stream.

Checks run in a fixed order, cheapest first:

1. Time window membership (half-open)
2. Channel allow-list
3. Severity allow-list
4. Provider allow/deny (deny wins)
5. Event-id include/exclude (exclude wins)
6. Pattern set over the rendered message (OR semantics)

The engine keeps no state across records.
"""

import logging
import re
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator

from .decoder import render_message
from .exceptions import InvalidPattern
from .models import FilterCriteria, RawRecord, Record, Severity

logger = logging.getLogger(__name__)


class FilterEngine:
    """Applies FilterCriteria to raw records.

    Patterns are compiled once at construction; a compilation failure
    aborts configuration with InvalidPattern.
    """

    def __init__(self, criteria: FilterCriteria):
        self.criteria = criteria
        self._channels = frozenset(c.lower() for c in criteria.channels)
        self._providers = frozenset(p.lower() for p in criteria.providers)
        self._exclude_providers = frozenset(p.lower() for p in criteria.exclude_providers)
        self._patterns = self.compile_patterns(criteria.patterns)

    @staticmethod
    def compile_patterns(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
        """Compile every pattern as authored.

        Raises:
            InvalidPattern: On the first pattern that fails to compile.
        """
        compiled = []
        for pattern in patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error as e:
                raise InvalidPattern(pattern, str(e)) from e
        return tuple(compiled)

    def passes_header(self, raw: RawRecord) -> bool:
        """Run checks 1 to 5, which need only the decoded System header."""
        criteria = self.criteria

        if not criteria.window.contains(raw.timestamp):
            return False

        if self._channels and raw.channel.lower() not in self._channels:
            return False

        if criteria.severities and Severity.from_level(raw.level) not in criteria.severities:
            return False

        provider = raw.provider.lower()
        if provider in self._exclude_providers:
            return False
        if self._providers and provider not in self._providers:
            return False

        if raw.event_id in criteria.exclude_event_ids:
            return False
        if criteria.include_event_ids and raw.event_id not in criteria.include_event_ids:
            return False

        return True

    def matches_patterns(self, message: str) -> bool:
        """True if ``message`` matches any configured pattern."""
        return any(pattern.search(message) for pattern in self._patterns)

    def apply(self, raw: RawRecord) -> Record | None:
        """Filter and normalize a single record.

        Returns:
            The normalized Record, or None if the record is dropped.
        """
        if not self.passes_header(raw):
            return None

        message = render_message(
            raw.provider, raw.event_id, raw.event_data, raw.rendered_message
        )
        matched = self.matches_patterns(message)
        if self.criteria.only_matched and not matched:
            return None

        return Record(
            timestamp=raw.timestamp,
            channel=raw.channel,
            provider=raw.provider,
            event_id=raw.event_id,
            severity=Severity.from_level(raw.level),
            message=message,
            structured_fields=dict(raw.event_data) if self.criteria.enrich else None,
            raw_payload=raw.payload if self.criteria.retain_payload else None,
            record_id=raw.record_id,
            computer=raw.computer,
            unit=raw.unit,
            pattern_matched=matched,
        )

    def filter(self, records: Iterable[RawRecord]) -> Iterator[Record]:
        """Filter a synchronous record sequence."""
        for raw in records:
            record = self.apply(raw)
            if record is not None:
                yield record

    async def filter_stream(self, records: AsyncIterable[RawRecord]) -> AsyncIterator[Record]:
        """Filter an asynchronous record sequence."""
        async for raw in records:
            record = self.apply(raw)
            if record is not None:
                yield record
