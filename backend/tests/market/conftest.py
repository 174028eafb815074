"""Fixtures for market data tests."""

import pytest

from .fakes import FakeClock, RecordingFeed


@pytest.fixture
def clock():
    return FakeClock(start=1_000_000)


@pytest.fixture
def feed():
    return RecordingFeed()
