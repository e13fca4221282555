"""Output adapters for records and diagnostic hints.

Implementations:
- Stdout (terminal text)
- NDJSON (one JSON object per line, to stdout or a file)
"""
