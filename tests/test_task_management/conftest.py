"""Shared fixtures for task management tests."""

import itertools

import pytest
from fakes import FakeClock, FakeRemoteStore

from corp_todo.task_management.task_store import ReconcilingTaskStore


@pytest.fixture
def remote() -> FakeRemoteStore:
    """Create a fake remote document store."""
    return FakeRemoteStore()


@pytest.fixture
def clock() -> FakeClock:
    """Create a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def store(remote: FakeRemoteStore, clock: FakeClock) -> ReconcilingTaskStore:
    """Create a task store with deterministic ids and time."""
    counter = itertools.count(1)
    return ReconcilingTaskStore(remote, clock=clock, id_factory=lambda: f"id-{next(counter)}")
