"""Shared fixtures for bomtrail tests."""

from datetime import datetime, timezone

import pytest

from bomtrail.errors import StoreWriteError
from bomtrail.store.memory import MemoryItemStore


class FlakyStore(MemoryItemStore):
    """
    MemoryItemStore that rejects selected commits.

    ``fail_when`` is called with each batch before it is applied; when it
    returns True the commit raises StoreWriteError and nothing is written.
    """

    def __init__(self, max_batch_size: int = 500):
        super().__init__(max_batch_size=max_batch_size)
        self.attempts = 0
        self.fail_when = None

    def commit(self, batch):
        self.attempts += 1
        if self.fail_when is not None and self.fail_when(batch):
            raise StoreWriteError(f"Injected failure on commit attempt {self.attempts}")
        super().commit(batch)


@pytest.fixture
def store():
    return MemoryItemStore()


@pytest.fixture
def small_batch_store():
    """Store with a tiny per-commit cap so snapshots span several commits."""
    return MemoryItemStore(max_batch_size=5)


@pytest.fixture
def flaky_store():
    return FlakyStore(max_batch_size=5)


@pytest.fixture
def now():
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def project_id():
    return "proj-1"
