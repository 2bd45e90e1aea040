"""
Shared test fixtures for docshape.
"""

import os
from typing import Generator

import pytest

from docshape.config import reset_settings


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch) -> Generator[None, None, None]:
    """Run every test against default settings."""
    for key in list(os.environ):
        if key.startswith("DOCSHAPE_"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()
