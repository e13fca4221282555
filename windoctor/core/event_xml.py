"""Normalization of rendered Windows event XML.

Both the EVTX file reader and the live subscription hand over events
as rendered XML. This module turns that XML into RawRecord values and
extracts the EventData name/value pairs used for message templates
and crash correlation.
"""

import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from .models import RawRecord

_FRACTION_RE = re.compile(r"(\.\d{1,6})\d*")
_DATA_FALLBACK_RE = re.compile(
    r"<Data\s+Name=\"([^\"]*)\"\s*>(.*?)</Data>", re.DOTALL
)


def _local(tag: str) -> str:
    """Strip an ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def parse_system_time(value: str) -> datetime | None:
    """Parse an event SystemTime into an aware UTC datetime.

    Accepts RFC 3339 (``2024-01-01T12:00:00.1234567Z``) as well as the
    space-separated form some renderers emit. Fractions beyond
    microseconds are truncated. Naive values are read as UTC.
    """
    text = value.strip()
    if not text:
        return None
    text = text.replace(" ", "T", 1)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _collect_event_data(root: ET.Element) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for child in root:
        section = _local(child.tag)
        if section == "EventData":
            unnamed = 0
            for data in child:
                if _local(data.tag) != "Data":
                    continue
                name = data.get("Name")
                if not name:
                    unnamed += 1
                    name = f"param{unnamed}"
                value = (data.text or "").strip()
                if value:
                    pairs[name] = value
        elif section == "UserData":
            for element in child.iter():
                if len(element) == 0 and element is not child:
                    value = (element.text or "").strip()
                    if value:
                        pairs[_local(element.tag)] = value
    return pairs


def event_data_pairs(xml: str) -> dict[str, str]:
    """Return the EventData/UserData pairs of an event, in document order.

    Falls back to a tolerant scan of ``<Data Name="...">`` elements when
    the XML cannot be parsed or has no EventData section.
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError:
        return _event_data_fallback(xml)
    pairs = _collect_event_data(root)
    return pairs or _event_data_fallback(xml)


def _event_data_fallback(xml: str) -> dict[str, str]:
    return {
        name: value.strip()
        for name, value in _DATA_FALLBACK_RE.findall(xml)
        if name and value.strip()
    }


def _to_int(text: str | None) -> int | None:
    if text is None:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


def parse_event_xml(
    xml: str,
    default_channel: str = "",
    unit: str = "",
    rendered_message: str | None = None,
) -> RawRecord | None:
    """Decode one rendered event into a RawRecord.

    Returns None when the event has no usable timestamp or is not
    well-formed; callers count that as a skipped record.
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError:
        return _parse_event_xml_fallback(xml, default_channel, unit, rendered_message)

    system = next((c for c in root if _local(c.tag) == "System"), None)
    if system is None:
        return None

    timestamp = None
    provider = ""
    event_id = None
    level = None
    channel = ""
    record_id = None
    computer = None

    for element in system:
        tag = _local(element.tag)
        if tag == "TimeCreated":
            timestamp = parse_system_time(element.get("SystemTime", ""))
        elif tag == "Provider":
            provider = element.get("Name") or element.get("EventSourceName") or ""
        elif tag == "EventID":
            event_id = _to_int(element.text)
        elif tag == "Level":
            level = _to_int(element.text)
        elif tag == "Channel":
            channel = (element.text or "").strip()
        elif tag == "EventRecordID":
            record_id = _to_int(element.text)
        elif tag == "Computer":
            computer = (element.text or "").strip() or None

    if timestamp is None:
        return None
    if event_id is None or event_id < 0:
        event_id = 0

    return RawRecord(
        timestamp=timestamp,
        channel=channel or default_channel,
        provider=provider,
        event_id=event_id,
        level=level or 0,
        event_data=_collect_event_data(root) or _event_data_fallback(xml),
        payload=xml,
        unit=unit,
        record_id=record_id,
        computer=computer,
        rendered_message=rendered_message,
    )


def _extract_between(text: str, start: str, end: str) -> str | None:
    begin = text.find(start)
    if begin < 0:
        return None
    begin += len(start)
    finish = text.find(end, begin)
    if finish < 0:
        return None
    return text[begin:finish]


def _extract_attr(text: str, tag: str, attr: str) -> str | None:
    match = re.search(rf"<{tag}\s[^>]*?\b{attr}=\"([^\"]*)\"", text)
    return match.group(1) if match else None


def _parse_event_xml_fallback(
    xml: str, default_channel: str, unit: str, rendered_message: str | None
) -> RawRecord | None:
    """Best-effort decoding of XML that is not well-formed."""
    system_time = _extract_attr(xml, "TimeCreated", "SystemTime")
    timestamp = parse_system_time(system_time) if system_time else None
    if timestamp is None:
        return None

    event_id_text = _extract_between(xml, "<EventID", "</EventID>")
    event_id = None
    if event_id_text is not None:
        event_id = _to_int(event_id_text.rsplit(">", 1)[-1])

    return RawRecord(
        timestamp=timestamp,
        channel=(_extract_between(xml, "<Channel>", "</Channel>") or default_channel).strip(),
        provider=_extract_attr(xml, "Provider", "Name") or "",
        event_id=event_id if event_id is not None and event_id >= 0 else 0,
        level=_to_int(_extract_between(xml, "<Level>", "</Level>")) or 0,
        event_data=_event_data_fallback(xml),
        payload=xml,
        unit=unit,
        record_id=_to_int(_extract_between(xml, "<EventRecordID>", "</EventRecordID>")),
        rendered_message=rendered_message,
    )
