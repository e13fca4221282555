"""Test suite for the WinDoctor diagnostics engine.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - Minimal dependencies, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Tests for adapter implementations
   - Third-party parsers (python-evtx, pefile) are patched
   - Validates translation into core domain models and error handling

3. fakes/: Port implementations for testing
   - In-memory implementations of EventSourcePort, ImportTablePort, etc.
   - Used by core unit tests
"""
