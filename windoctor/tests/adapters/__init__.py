"""Tests for adapter implementations.

These tests exercise adapters against patched third-party parsers and
temporary files to validate correct translation between core domain
models and external formats.
"""
