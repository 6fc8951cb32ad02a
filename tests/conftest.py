"""Shared fixtures for overskill tests."""

import pytest

from fakes import FakeClock
from overskill.change_tracker import ChangeTracker
from overskill.file_store import InMemoryFileStore
from overskill.tools import ToolContext


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryFileStore()


@pytest.fixture
def tracker(clock):
    return ChangeTracker(clock=clock)


@pytest.fixture
def tctx(store, tracker):
    return ToolContext(store, tracker, app_id="app-test")
