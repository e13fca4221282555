"""Fake implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeEventSource: Canned raw records, optionally unbounded
- FakeLiveSubscription: Manually triggered live deliveries
- FakeImportTableReader: Import tables keyed by binary path
- FakeDependencyResolver: Canned dependency graphs
- FakeRecordSink / FakeHintSink / FakeSink: Captured output for assertion
"""

from .binaries import FakeDependencyResolver, FakeImportTableReader
from .sinks import FakeHintSink, FakeRecordSink, FakeSink
from .sources import FakeEventSource, FakeLiveSubscription

__all__ = [
    "FakeDependencyResolver",
    "FakeEventSource",
    "FakeHintSink",
    "FakeImportTableReader",
    "FakeLiveSubscription",
    "FakeRecordSink",
    "FakeSink",
]
