"""Domain models for the WinDoctor diagnostics engine.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from types import MappingProxyType
from typing import Any


def _freeze(mapping: Mapping[str, Any] | None) -> MappingProxyType[str, Any] | None:
    """Wrap a mapping in a read-only proxy, preserving insertion order."""
    if mapping is None or isinstance(mapping, MappingProxyType):
        return mapping
    return MappingProxyType(dict(mapping))


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime. Naive values are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Severity(IntEnum):
    """Event severity, ordered from most to least severe.

    Values follow the Windows event ``Level`` field so that a raw level
    maps directly onto the enumeration.
    """

    CRITICAL = 1
    ERROR = 2
    WARNING = 3
    INFORMATION = 4
    VERBOSE = 5

    @classmethod
    def from_level(cls, level: int) -> "Severity":
        """Map a raw Windows level onto a severity.

        Level 0 (LogAlways) is displayed by Windows as Information.
        Anything beyond Verbose is a provider-defined level and is
        treated as Verbose.
        """
        if level == 0:
            return cls.INFORMATION
        if 1 <= level <= 5:
            return cls(level)
        return cls.VERBOSE

    @classmethod
    def from_name(cls, name: str) -> "Severity":
        """Parse a severity name case-insensitively."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown severity: {name!r}") from None

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval ``[since, until)``. A missing bound is unbounded."""

    since: datetime | None = None
    until: datetime | None = None

    def __post_init__(self) -> None:
        """Normalize bounds to UTC and validate their order."""
        if self.since is not None:
            object.__setattr__(self, "since", ensure_utc(self.since))
        if self.until is not None:
            object.__setattr__(self, "until", ensure_utc(self.until))
        if self.since is not None and self.until is not None and self.since > self.until:
            raise ValueError(
                f"since ({self.since.isoformat()}) cannot be after "
                f"until ({self.until.isoformat()})"
            )

    def contains(self, timestamp: datetime) -> bool:
        if self.since is not None and timestamp < self.since:
            return False
        if self.until is not None and timestamp >= self.until:
            return False
        return True


@dataclass(frozen=True)
class RawRecord:
    """One event as decoded by a source reader, before filtering.

    Only the System header and the EventData pairs have been parsed;
    message rendering happens in the filter engine once the cheap
    checks have passed.
    """

    timestamp: datetime
    channel: str
    provider: str
    event_id: int
    level: int
    event_data: Mapping[str, str]  # converted to proxy in __post_init__
    payload: str  # rendered event XML
    unit: str  # file path or live channel the record came from
    record_id: int | None = None
    computer: str | None = None
    rendered_message: str | None = None  # message already formatted by the OS

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        object.__setattr__(self, "event_data", _freeze(self.event_data))
        if self.event_id < 0:
            raise ValueError(f"event_id must be unsigned, got {self.event_id}")


@dataclass(frozen=True)
class Record:
    """One normalized log event, independent of its source.

    Created by the filter engine and never mutated afterwards.
    """

    timestamp: datetime  # always UTC
    channel: str
    provider: str
    event_id: int
    severity: Severity
    message: str
    structured_fields: Mapping[str, str] | None = None  # only when enrichment is requested
    raw_payload: str | None = None  # only when payload retention is requested
    record_id: int | None = None
    computer: str | None = None
    unit: str = ""
    pattern_matched: bool = False

    def __post_init__(self) -> None:
        """Normalize the timestamp and freeze structured fields."""
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        object.__setattr__(self, "structured_fields", _freeze(self.structured_fields))


@dataclass(frozen=True)
class FilterCriteria:
    """Everything the filter engine needs to decide on a record.

    Empty collections mean "no restriction", so a default instance is
    the identity filter.
    """

    window: TimeWindow = field(default_factory=TimeWindow)
    channels: frozenset[str] = frozenset()
    severities: frozenset[Severity] = frozenset()
    providers: frozenset[str] = frozenset()
    exclude_providers: frozenset[str] = frozenset()
    include_event_ids: frozenset[int] = frozenset()
    exclude_event_ids: frozenset[int] = frozenset()
    patterns: tuple[str, ...] = ()
    only_matched: bool = False
    enrich: bool = False
    retain_payload: bool = False


@dataclass(frozen=True)
class SearchScope:
    """Where imported modules are looked up, in precedence order.

    The importing binary's own directory comes first (when enabled),
    followed by ``directories``, ``system_dirs`` and ``path_dirs``.
    """

    directories: tuple[str, ...] = ()
    system_dirs: tuple[str, ...] = ()
    path_dirs: tuple[str, ...] = ()
    include_binary_dir: bool = True
    ignored_modules: tuple[str, ...] = ("api-ms-win-*", "ext-ms-win-*")

    def candidates(self, importer_dir: str | None) -> list[str]:
        """Return the ordered, de-duplicated list of directories to search."""
        ordered: list[str] = []
        if self.include_binary_dir and importer_dir:
            ordered.append(importer_dir)
        ordered.extend(self.directories)
        ordered.extend(self.system_dirs)
        ordered.extend(self.path_dirs)

        seen: set[str] = set()
        unique = []
        for directory in ordered:
            key = directory.lower()
            if key not in seen:
                seen.add(key)
                unique.append(directory)
        return unique


@dataclass
class Resolution:
    """Outcome of locating one module, shared by every node naming it.

    Mutable only while the resolver owns it: ``imports`` is filled in
    the first time the binary's import table is read.
    """

    module_name: str
    resolved_path: str | None
    imports: tuple[str, ...] | None = None  # None until parsed
    parse_count: int = 0

    @property
    def resolved(self) -> bool:
        return self.resolved_path is not None


@dataclass(frozen=True, eq=False)
class DependencyNode:
    """One binary module in a resolution graph.

    Nodes compare by identity: the same arena entry may be referenced
    from several parents.
    """

    module_name: str
    resolved_path: str | None
    depth: int
    children: tuple["DependencyNode", ...] = ()
    resolution: Resolution | None = None

    @property
    def resolved(self) -> bool:
        return self.resolved_path is not None

    def walk(self) -> list["DependencyNode"]:
        """Return every distinct node reachable from this one, pre-order."""
        seen: set[int] = set()
        ordered: list[DependencyNode] = []
        stack: list[DependencyNode] = [self]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            ordered.append(node)
            stack.extend(reversed(node.children))
        return ordered


@dataclass(frozen=True)
class DependencyGraph:
    """Result of one resolver invocation."""

    root: DependencyNode
    max_depth: int
    max_depth_reached: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def unresolved_imports(self) -> tuple[str, ...]:
        """Unresolved module names anywhere in the graph, first-seen order."""
        seen: set[str] = set()
        names: list[str] = []
        for node in self.root.walk():
            if node is self.root or node.resolved:
                continue
            key = node.module_name.lower()
            if key not in seen:
                seen.add(key)
                names.append(node.module_name)
        return tuple(names)


@dataclass(frozen=True)
class DiagnosticHint:
    """A likely root cause linking a failure record to missing modules."""

    source_record: Record
    faulting_module: str
    unresolved_imports: tuple[str, ...]
    max_depth_reached: bool
    graph: DependencyGraph | None = None

    def __post_init__(self) -> None:
        if not self.unresolved_imports:
            raise ValueError("a diagnostic hint needs at least one unresolved import")


@dataclass(frozen=True)
class CrashRule:
    """Recognizes a process-failure record and names the path fields to read."""

    provider: str
    event_ids: frozenset[int] = frozenset()  # empty matches every id
    path_fields: tuple[str, ...] = ("AppPath",)

    def matches(self, record: Record) -> bool:
        if record.provider.lower() != self.provider.lower():
            return False
        return not self.event_ids or record.event_id in self.event_ids


@dataclass(frozen=True)
class UnitReport:
    """Per-unit result of a source reader, used by the orchestrator."""

    unit: str
    scanned: int = 0
    parsed: int = 0
    skipped_chunks: int = 0
    skipped_records: int = 0
    warnings: tuple[str, ...] = ()
    skipped_unit: bool = False


@dataclass(frozen=True)
class FileSample:
    """One line of a plain-text log that matched a pattern."""

    path: str
    pattern: str
    line_number: int  # 1-based
    line: str


@dataclass(frozen=True)
class FileScanSummary:
    """Pattern hits across the plain-text logs under one root.

    ``term_counts`` pairs each pattern with the number of files it matched
    at least once, most matched first; patterns with no hit are omitted.
    """

    root: str
    files_scanned: int
    term_counts: tuple[tuple[str, int], ...] = ()
    samples: tuple[FileSample, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunSummary:
    """Summary of one engine run."""

    started_at: datetime
    finished_at: datetime
    units: int
    scanned_records: int
    parsed_records: int
    emitted_records: int
    hints_emitted: int
    skipped_chunks: int
    skipped_records: int
    warnings: tuple[str, ...] = ()
    truncated: bool = False  # stopped early at max_records
    file_scan: FileScanSummary | None = None
