"""Windows Event Log subscription via pywin32.

Implements LiveSubscriptionPort with EvtSubscribe push callbacks. Each
delivered event is rendered to XML and, when the publisher metadata is
available, formatted into its localized message. pywin32 is imported
lazily so the rest of the package works on any platform.
"""

import logging
import threading
from datetime import datetime

from windoctor.core.event_xml import parse_event_xml
from windoctor.core.exceptions import InvalidConfiguration, SourceNotFound
from windoctor.core.ports import DeliverCallback, LiveSubscriptionPort

logger = logging.getLogger(__name__)


def build_query(since: datetime | None) -> str:
    """XPath query selecting events at or after ``since`` (all events if None)."""
    if since is None:
        return "*"
    stamp = since.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return f"*[System[TimeCreated[@SystemTime>='{stamp}']]]"


class WindowsEventSubscription(LiveSubscriptionPort):
    """Push subscription to one or more Windows event channels."""

    def __init__(self, format_messages: bool = True):
        """Initialize the subscription.

        Raises:
            InvalidConfiguration: If pywin32 is not available.
        """
        self._modules()
        self.format_messages = format_messages
        self._handles: list = []
        self._publishers: dict[str, object] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _modules():
        try:
            import pywintypes
            import win32evtlog
        except ImportError as e:
            raise InvalidConfiguration(
                "live mode requires Windows with pywin32 installed"
            ) from e
        return win32evtlog, pywintypes

    def open(
        self,
        channels: list[str],
        deliver: DeliverCallback,
        since: datetime | None = None,
    ) -> None:
        win32evtlog, pywintypes = self._modules()

        if since is None:
            flags = win32evtlog.EvtSubscribeToFutureEvents
        else:
            flags = win32evtlog.EvtSubscribeStartAtOldestRecord
        query = build_query(since)

        for channel in channels:

            def callback(action, context, event, channel=channel):
                if action != win32evtlog.EvtSubscribeActionDeliver:
                    logger.warning(f"Subscription error on {channel}: action={action}")
                    return
                try:
                    xml = win32evtlog.EvtRender(event, win32evtlog.EvtRenderEventXml)
                except pywintypes.error as e:
                    logger.warning(f"Cannot render event from {channel}: {e}")
                    return
                deliver(channel, xml, self._format_message(event, xml))

            try:
                handle = win32evtlog.EvtSubscribe(
                    channel,
                    flags,
                    Query=query,
                    Callback=callback,
                )
            except pywintypes.error as e:
                logger.warning(f"Cannot subscribe to channel {channel}: {e}")
                continue
            with self._lock:
                self._handles.append(handle)
            logger.debug(f"Subscribed to channel {channel}")

        if not self._handles:
            raise SourceNotFound(", ".join(channels))

    def _format_message(self, event, xml: str) -> str | None:
        """Localized message for ``event``, or None if the publisher is unknown."""
        if not self.format_messages:
            return None
        win32evtlog, pywintypes = self._modules()

        raw = parse_event_xml(xml)
        if raw is None or not raw.provider:
            return None

        with self._lock:
            metadata = self._publishers.get(raw.provider)
            if metadata is None and raw.provider not in self._publishers:
                try:
                    metadata = win32evtlog.EvtOpenPublisherMetadata(raw.provider)
                except pywintypes.error:
                    metadata = None
                self._publishers[raw.provider] = metadata
        if metadata is None:
            return None

        try:
            return win32evtlog.EvtFormatMessage(
                metadata, event, win32evtlog.EvtFormatMessageEvent
            )
        except pywintypes.error as e:
            logger.debug(f"No formatted message for {raw.provider}/{raw.event_id}: {e}")
            return None

    def close(self) -> None:
        with self._lock:
            handles, self._handles = self._handles, []
            self._publishers.clear()
        for handle in handles:
            handle.Close()
        if handles:
            logger.debug(f"Closed {len(handles)} subscription(s)")
