"""Message template expansion for well-known event providers.

EVTX files carry only the event's insertion strings; the human-readable
message lives in provider resource DLLs that may not exist on the
analysing machine. The templates below cover the providers that matter
most for diagnosis. Anything else, or a template whose fields are
missing, degrades to a raw field dump.
"""

from collections.abc import Mapping

# (provider, event_id) -> (template, field alternatives per placeholder).
# An event_id of None is the provider-wide fallback.
_TEMPLATES: dict[tuple[str, int | None], tuple[str, tuple[tuple[str, ...], ...]]] = {
    ("service control manager", 7000): ("Service failed to start: {0}", (("ServiceName", "param1"),)),
    ("service control manager", 7001): ("Service dependent failed to start: {0}", (("ServiceName", "param1"),)),
    ("service control manager", 7009): ("Service start timed out: {0}", (("ServiceName", "param1"),)),
    ("service control manager", 7011): ("Service hung or timeout occurred: {0}", (("ServiceName", "param1"),)),
    ("service control manager", 7023): ("Service terminated with error: {0}", (("ServiceName", "param1"),)),
    ("service control manager", 7031): ("Service terminated unexpectedly: {0}", (("ServiceName", "param1"),)),
    ("service control manager", 7034): ("Service terminated unexpectedly: {0}", (("ServiceName", "param1"),)),
    ("disk", 7): ("Bad block detected on {0}", (("DeviceName", "param1"),)),
    ("disk", 11): ("Disk or controller error on {0}", (("DeviceName", "param1"),)),
    ("disk", 51): ("Paging I/O error indicates unstable storage path", ()),
    ("disk", 157): ("Disk was surprise removed: {0}", (("DeviceName", "param1"),)),
    ("disk", None): ("Disk {0}", (("DeviceName", "param1"),)),
    ("microsoft-windows-ntfs", 55): ("File system corruption detected (NTFS)", ()),
    ("microsoft-windows-ntfs", 57): ("Delayed write failed (NTFS)", ()),
    ("microsoft-windows-ntfs", 140): ("Failed to flush data to transaction log (NTFS)", ()),
    ("microsoft-windows-kernel-power", 41): ("Unexpected shutdown or power loss detected", ()),
    ("eventlog", 6008): ("Previous system shutdown was unexpected", ()),
    ("microsoft-windows-eventlog", 6008): ("Previous system shutdown was unexpected", ()),
    ("microsoft-windows-whea-logger", 17): ("Corrected hardware error ({0})", (("Component", "DeviceId"),)),
    ("microsoft-windows-whea-logger", 18): ("Uncorrected hardware error ({0})", (("ErrorSource",),)),
    ("microsoft-windows-whea-logger", 19): ("Hardware error reported by WHEA ({0})", (("ErrorSource",),)),
    ("microsoft-windows-whea-logger", 20): ("Hardware error reported by WHEA ({0})", (("ErrorSource",),)),
    ("display", 4101): ("Display driver stopped responding and recovered", ()),
    ("microsoft-windows-dns-client", 1014): ("DNS name resolution failure: {0}", (("QueryName",),)),
    ("distributedcom", None): ("DCOM CLSID={0} APPID={1}", (("CLSID", "param4"), ("APPID", "param5"))),
    ("schannel", None): ("Schannel ErrorCode={0}", (("ErrorCode",),)),
    ("microsoft-windows-wer-systemerrorreporting", None): ("BugCheck {0}", (("BugcheckCode", "param1"),)),
    ("application error", 1000): (
        "Faulting application {0}, faulting module {1}, exception code {2}",
        (
            ("AppName", "param1"),
            ("ModuleName", "param4"),
            ("ExceptionCode", "param7"),
        ),
    ),
    ("application hang", 1002): ("Application stopped responding: {0}", (("AppName", "param1"),)),
}


def field_dump(fields: Mapping[str, str]) -> str:
    """Render fields as ``Name=Value; ...`` in their original order."""
    return "; ".join(f"{name}={value}" for name, value in fields.items())


def _first(fields: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = fields.get(name)
        if value:
            return value
    return None


def expand_template(provider: str, event_id: int, fields: Mapping[str, str]) -> str | None:
    """Expand the template registered for this provider/event, if any.

    Returns None when no template exists or a placeholder has no value.
    """
    key = provider.lower()
    entry = _TEMPLATES.get((key, event_id)) or _TEMPLATES.get((key, None))
    if entry is None:
        return None

    template, placeholders = entry
    values = []
    for alternatives in placeholders:
        value = _first(fields, alternatives)
        if value is None:
            return None
        values.append(value)
    return template.format(*values)


def render_message(
    provider: str,
    event_id: int,
    fields: Mapping[str, str],
    rendered: str | None = None,
) -> str:
    """Produce the human-readable message for an event.

    Precedence: OS-formatted message, provider template, field dump.
    Never fails: an event with no fields at all yields ``provider event_id``.
    """
    if rendered and rendered.strip():
        return " ".join(rendered.split())

    expanded = expand_template(provider, event_id, fields)
    if expanded is not None:
        return expanded

    if fields:
        return field_dump(fields)
    return f"{provider} {event_id}".strip()
