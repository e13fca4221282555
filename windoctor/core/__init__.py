"""Core domain logic for the WinDoctor diagnostics engine.

This package contains zero external dependencies and represents
the pure business logic of the application. All adapters and
external integrations are handled by the adapters package.
"""

from .models import (
    CrashRule,
    DependencyGraph,
    DependencyNode,
    DiagnosticHint,
    FilterCriteria,
    RawRecord,
    Record,
    RunSummary,
    SearchScope,
    Severity,
    TimeWindow,
    UnitReport,
)

__all__ = [
    "CrashRule",
    "DependencyGraph",
    "DependencyNode",
    "DiagnosticHint",
    "FilterCriteria",
    "RawRecord",
    "Record",
    "RunSummary",
    "SearchScope",
    "Severity",
    "TimeWindow",
    "UnitReport",
]
