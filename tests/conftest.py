"""Shared fixtures for the renote test suite."""

from __future__ import annotations

import pytest

from fakes import FakeClock
from renote.ingestion.workspace.state import EntityStateStore
from renote.orchestrator.queue import JobQueue


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(tmp_path):
    job_queue = JobQueue(tmp_path / "queue.db")
    yield job_queue
    job_queue.close()


@pytest.fixture
def state_store(tmp_path):
    store = EntityStateStore(tmp_path / "state.db")
    yield store
    store.close()
