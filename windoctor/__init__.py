"""WinDoctor: Windows event-log diagnostics with crash-to-dependency correlation."""

__version__ = "0.1.0"
