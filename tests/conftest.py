"""Pytest configuration and shared fixtures."""
from array import array
import datetime

import pytest

from spiralstate import MemoryStorage, StateManager, StoreConfig


@pytest.fixture
def storage():
    """Shared in-memory storage; two managers on it simulate a reload."""
    return MemoryStorage()


@pytest.fixture
def state(storage):
    """Fresh state manager with default tree."""
    return StateManager(storage=storage)


@pytest.fixture
def small_config():
    """Config with a short history for overflow tests."""
    return StoreConfig(history_limit=3)


@pytest.fixture
def recorder():
    """Callable that records every call it receives."""
    class Recorder:
        def __init__(self):
            self.calls = []

        def __call__(self, *args):
            self.calls.append(args)

        @property
        def count(self):
            return len(self.calls)

    return Recorder()


@pytest.fixture
def waveform():
    return array('f', [0.0, 0.25, -0.5, 1.0])


@pytest.fixture
def opened_at():
    return datetime.datetime(2024, 5, 17, 13, 45, 12, 123456, tzinfo=datetime.timezone.utc)
