"""
docshape Test Suite.

This package contains:
- unit/: Unit tests (no external services; the in-memory runtime stands in
  for the document store)
"""
