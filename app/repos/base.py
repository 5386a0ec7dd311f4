"""Store interface the evaluation passes depend on."""

from __future__ import annotations

from typing import Iterable, Protocol

from app.domain.models import Event


class StoreUnavailableError(RuntimeError):
    """The event store could not be reached; nothing was read or written."""


class EventStore(Protocol):
    def fetch_all(self) -> list[Event]: ...

    def get(self, event_id: str) -> Event | None: ...

    def insert(self, event: Event) -> None: ...

    def update(self, event: Event) -> bool:
        """Replace the stored record with the same id; ``False`` if it is gone."""
        ...

    def delete_by_ids(self, event_ids: Iterable[str]) -> int: ...
