"""Shared pytest fixtures for unit tests."""

import pytest

from .builders import MockStatus


@pytest.fixture
def status():
    """Create a mock status object."""
    return MockStatus()
