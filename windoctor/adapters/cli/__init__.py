"""Command-line interface adapters.

Provides the argument parser for the WinDoctor commands:
- events: Filter historical or live event logs and correlate crashes
- deps: Resolve the import graph of a binary or a directory of binaries
"""
