"""Event source adapters.

Implementations:
- EVTX files on disk (python-evtx)
- Live Windows Event Log subscription (pywin32, Windows only)
"""
