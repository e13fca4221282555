"""Port interfaces for the WinDoctor diagnostics engine.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - EventSourcePort: Produce raw records from a historical or live source
   - LiveSubscriptionPort: Operating-system event notification mechanism
   - ImportTablePort: Read a binary's declared imports
   - RecordSinkPort / HintSinkPort: Consume the engine's output streams

2. **Service Ports** (core services other core services depend on)
   - DependencyResolverPort: Resolve a binary's transitive imports
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from datetime import datetime

from .models import (
    DependencyGraph,
    DiagnosticHint,
    RawRecord,
    Record,
    SearchScope,
    TimeWindow,
    UnitReport,
)

# Called by a live subscription for every delivered event:
# (channel, rendered event XML, OS-formatted message or None).
DeliverCallback = Callable[[str, str, str | None], None]


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class EventSourcePort(ABC):
    """Port for producing raw records from one kind of event source.

    Implementations must:
    - Produce records lazily, in discovery order within each unit
    - Skip corrupt or truncated input with a recorded warning
    - Release any underlying resource when iteration stops early
    """

    @property
    def name(self) -> str:
        """Human-readable label used in logs and summaries."""
        return type(self).__name__

    @property
    def bounded(self) -> bool:
        """Whether the produced sequence is guaranteed to end."""
        return True

    def validate(self) -> None:
        """Check preconditions before any record is produced.

        Raises:
            SourceNotFound: If the source's input does not exist.
        """

    @property
    def reports(self) -> list[UnitReport]:
        """Per-unit results accumulated by the last produce() call."""
        return []

    @abstractmethod
    def produce(self, window: TimeWindow) -> AsyncIterator[RawRecord]:
        """Produce raw records possibly overlapping ``window``.

        Args:
            window: Half-open interval of interest. Readers may use it to
                skip whole units; exact membership is checked downstream.

        Returns:
            Async iterator of RawRecord objects. Cross-unit ordering is
            not guaranteed.

        Raises:
            SourceNotFound: If the input path does not exist.
        """


class LiveSubscriptionPort(ABC):
    """Port for the operating system's event notification mechanism.

    Delivery may happen on any thread; the caller is responsible for
    handing events back to its own event loop.
    """

    @abstractmethod
    def open(
        self,
        channels: list[str],
        deliver: DeliverCallback,
        since: datetime | None = None,
    ) -> None:
        """Start delivering events for ``channels``.

        Args:
            channels: Channel names to subscribe to.
            deliver: Callback invoked once per delivered event.
            since: If given, events from ``since`` onwards are
                replayed before future events; otherwise only future
                events are delivered.

        Raises:
            SourceNotFound: If no channel could be subscribed.
        """

    @abstractmethod
    def close(self) -> None:
        """Cancel every subscription. Idempotent."""


class ImportTablePort(ABC):
    """Port for static import-table analysis of a binary."""

    @abstractmethod
    def read_imports(self, path: str) -> list[str]:
        """Return the module names declared in the binary's import table.

        Args:
            path: Filesystem path of the binary.

        Returns:
            Imported module names in declaration order. May contain
            duplicates; the resolver collapses them.

        Raises:
            BinaryUnreadable: If the file cannot be opened.
            MalformedImportTable: If the file is not a parseable binary.
        """


class RecordSinkPort(ABC):
    """Port for consuming the filtered record stream."""

    @abstractmethod
    async def write_record(self, record: Record) -> None:
        """Consume one record."""

    async def close(self) -> None:
        """Flush and release resources."""


class HintSinkPort(ABC):
    """Port for consuming diagnostic hints."""

    @abstractmethod
    async def write_hint(self, hint: DiagnosticHint) -> None:
        """Consume one hint."""

    async def close(self) -> None:
        """Flush and release resources."""


# ============================================================================
# SERVICE PORTS
# ============================================================================


class DependencyResolverPort(ABC):
    """Port for resolving a binary's transitive imports."""

    @abstractmethod
    def resolve_graph(
        self, root_path: str, search_scope: SearchScope, max_depth: int
    ) -> DependencyGraph:
        """Statically walk ``root_path``'s imports up to ``max_depth``.

        Blocking: performs filesystem reads.

        Raises:
            BinaryUnreadable: If the root binary cannot be opened.
        """
