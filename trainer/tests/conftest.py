"""Pytest configuration."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from helpers import FakeExplorer


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "network: mark test as calling the live Lichess explorer (set RUN_NETWORK_TESTS=1)"
    )


@pytest.fixture
def fake_explorer():
    return FakeExplorer()
