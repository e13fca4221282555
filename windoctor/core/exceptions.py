"""Error taxonomy for the diagnostics engine.

Fatal errors derive from DiagnosticsError and abort a run before any
output is written. Recoverable conditions are logged and carried in
the run summary instead of being raised.
"""


class DiagnosticsError(Exception):
    """Base class for all fatal diagnostics errors."""


class InvalidConfiguration(DiagnosticsError):
    """Configuration violates a precondition (bad window, bad option value)."""


class InvalidPattern(InvalidConfiguration):
    """A configured regular expression failed to compile."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")


class SourceNotFound(DiagnosticsError):
    """An input path for a source reader does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Event source not found: {path}")


class BinaryUnreadable(DiagnosticsError):
    """A binary could not be opened for import-table analysis."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"Cannot read binary: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class MalformedImportTable(DiagnosticsError):
    """A binary was opened but its import table could not be parsed.

    Never escapes the resolver: the binary is treated as childless.
    """

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Malformed import table in {path}: {reason}")


__all__ = [
    "BinaryUnreadable",
    "DiagnosticsError",
    "InvalidConfiguration",
    "InvalidPattern",
    "MalformedImportTable",
    "SourceNotFound",
]
