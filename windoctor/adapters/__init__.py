"""External adapters for the WinDoctor diagnostics engine.

This package contains all external dependencies (python-evtx, pefile,
pywin32) and provides implementations of the core port interfaces.

Adapter Organization:

- sources/: Event sources (EVTX files, live Windows subscriptions)
- binaries/: Import-table readers for dependency resolution
- sinks/: Record and hint output (terminal text, NDJSON)
- cli/: Command-line interface
"""
