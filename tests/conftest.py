"""Shared fixtures: every test starts on a fresh clock with default engine settings."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import tempo_foundation  # noqa: E402
from tempo_scheduler import scheduler  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_engine():
    scheduler.reset()
    tempo_foundation.configure()
    yield
    scheduler.reset()
    tempo_foundation.configure()
