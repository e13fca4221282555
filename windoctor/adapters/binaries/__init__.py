"""Import-table readers for binary dependency resolution.

Implementations:
- PE import directory (pefile)
"""
