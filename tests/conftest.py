"""Pytest configuration — adds src/ to sys.path and provides an in-memory drive."""

import os
import sys

import pytest

# Add src/ and tests/ to Python path so tests can import drive_merge and the fakes
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from fakes import InMemoryDrive  # noqa: E402


@pytest.fixture
def drive() -> InMemoryDrive:
    """Return an empty in-memory drive."""
    return InMemoryDrive()
