"""Shared fixtures."""

from __future__ import annotations

import pytest

from app.repos.base import StoreUnavailableError
from app.repos.memory import InMemoryEventStore


class FlakyEventStore(InMemoryEventStore):
    """In-memory store whose reads and writes can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False

    def _check(self, failing: bool) -> None:
        if failing:
            raise StoreUnavailableError("store offline")

    def fetch_all(self):
        self._check(self.fail_reads)
        return super().fetch_all()

    def get(self, event_id):
        self._check(self.fail_reads)
        return super().get(event_id)

    def update(self, event):
        self._check(self.fail_writes)
        return super().update(event)

    def delete_by_ids(self, event_ids):
        self._check(self.fail_writes)
        return super().delete_by_ids(event_ids)


@pytest.fixture()
def flaky_store() -> FlakyEventStore:
    return FlakyEventStore()
