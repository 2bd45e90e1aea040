"""
CLI tools for docshape.

This module provides command-line tools for:
- schema: Compile descriptors, list tokens and inspect templates

Invariants:
    - Tools work offline against the in-memory runtime
"""

from .schema_cli import SchemaCLI

__all__ = ["SchemaCLI"]
