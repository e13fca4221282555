"""Live event source.

Implements EventSourcePort over a LiveSubscriptionPort. The operating
system delivers events on its own threads; they are handed to the
event loop through a queue so that intake never blocks on parsing or
correlation. An optional drain duration turns the otherwise endless
stream into a bounded one that ends normally once the time is up.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator

from windoctor.core.event_xml import parse_event_xml
from windoctor.core.exceptions import InvalidConfiguration
from windoctor.core.models import RawRecord, TimeWindow, UnitReport
from windoctor.core.ports import EventSourcePort, LiveSubscriptionPort

logger = logging.getLogger(__name__)


class LiveEventSource(EventSourcePort):
    """Records delivered by a live OS subscription.

    Args:
        subscription: The OS notification mechanism.
        channels: Channels to subscribe to.
        duration_seconds: Stop after this many seconds. None streams until
            the consumer stops iterating.
        backfill: Replay events from the window's ``since`` before live
            events.
    """

    def __init__(
        self,
        subscription: LiveSubscriptionPort,
        channels: list[str],
        duration_seconds: float | None = None,
        backfill: bool = False,
    ):
        self.subscription = subscription
        self.channels = list(channels)
        self.duration_seconds = duration_seconds
        self.backfill = backfill
        self._reports: list[UnitReport] = []

    @property
    def name(self) -> str:
        return f"live:{','.join(self.channels)}"

    @property
    def bounded(self) -> bool:
        return self.duration_seconds is not None

    @property
    def reports(self) -> list[UnitReport]:
        return list(self._reports)

    def validate(self) -> None:
        if not self.channels:
            raise InvalidConfiguration("live mode needs at least one channel")
        if self.duration_seconds is not None and self.duration_seconds < 0:
            raise InvalidConfiguration(
                f"live duration must be >= 0, got {self.duration_seconds}"
            )

    async def produce(self, window: TimeWindow) -> AsyncIterator[RawRecord]:
        self.validate()
        self._reports = []

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[str, str, str | None]] = asyncio.Queue()
        closed = False
        delivered: Counter[str] = Counter()
        parsed: Counter[str] = Counter()

        def enqueue(item: tuple[str, str, str | None]) -> None:
            if not closed:
                queue.put_nowait(item)

        def deliver(channel: str, xml: str, message: str | None) -> None:
            # Runs on an OS thread.
            if closed:
                return
            try:
                loop.call_soon_threadsafe(enqueue, (channel, xml, message))
            except RuntimeError:
                logger.debug(f"Event loop closed, dropping late event from {channel}")

        since = window.since if self.backfill else None
        try:
            await asyncio.to_thread(self.subscription.open, self.channels, deliver, since)
            logger.info(
                f"Subscribed to {', '.join(self.channels)}"
                + (f" for {self.duration_seconds}s" if self.bounded else "")
            )

            deadline = loop.time() + self.duration_seconds if self.bounded else None
            while True:
                timeout = None
                if deadline is not None:
                    timeout = deadline - loop.time()
                    if timeout <= 0:
                        break
                try:
                    channel, xml, message = await asyncio.wait_for(queue.get(), timeout)
                except TimeoutError:
                    break

                delivered[channel] += 1
                raw = parse_event_xml(
                    xml, default_channel=channel, unit=channel, rendered_message=message
                )
                if raw is None:
                    logger.warning(f"Dropping undecodable live event from {channel}")
                    continue
                parsed[channel] += 1
                yield raw
        finally:
            closed = True
            await asyncio.to_thread(self.subscription.close)
            self._reports = [
                UnitReport(
                    unit=channel,
                    scanned=delivered[channel],
                    parsed=parsed[channel],
                    skipped_records=delivered[channel] - parsed[channel],
                )
                for channel in self.channels
            ]
            logger.info(f"Live subscription closed after {sum(delivered.values())} events")
