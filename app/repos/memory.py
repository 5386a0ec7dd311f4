"""In-memory repositories for events, subscriptions and delivery bookkeeping."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from cachetools import TLRUCache

from app.domain.clock import Clock
from app.domain.models import DeliveryLogEntry, Event, Subscription

NotifiedKey = tuple[str, int, datetime]


class InMemoryEventStore:
    """Dict-backed EventStore, keyed by id.

    Records go in and come out as copies, so a driver holding an event can
    never change the stored one except through :meth:`update`.
    """

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}

    def fetch_all(self) -> list[Event]:
        return [e.model_copy() for e in self._store.values()]

    def get(self, event_id: str) -> Event | None:
        event = self._store.get(event_id)
        return event.model_copy() if event is not None else None

    def insert(self, event: Event) -> None:
        if event.id in self._store:
            raise ValueError(f"Event {event.id} already exists")
        self._store[event.id] = event.model_copy()

    def update(self, event: Event) -> bool:
        # A deleted id stays deleted; updates never re-create records.
        if event.id not in self._store:
            return False
        self._store[event.id] = event.model_copy()
        return True

    def delete_by_ids(self, event_ids: Iterable[str]) -> int:
        removed = 0
        for event_id in event_ids:
            if self._store.pop(event_id, None) is not None:
                removed += 1
        return removed


class SubscriptionRepository:
    """Dict-backed store for delivery targets, keyed by subscription id."""

    def __init__(self) -> None:
        self._store: dict[str, Subscription] = {}

    def add(self, subscription: Subscription) -> None:
        self._store[subscription.id] = subscription

    def replace_for_recipient(self, subscription: Subscription) -> None:
        """Drop any existing targets of the recipient, then add this one."""
        for sub in self.list_for_recipient(subscription.recipient_id):
            self.remove(sub.id)
        self.add(subscription)

    def get(self, subscription_id: str) -> Subscription | None:
        return self._store.get(subscription_id)

    def list_for_recipient(self, recipient_id: str) -> list[Subscription]:
        return [s for s in self._store.values() if s.recipient_id == recipient_id]

    def remove(self, subscription_id: str) -> bool:
        return self._store.pop(subscription_id, None) is not None


class DeliveryLogRepository:
    """List-backed history of delivery attempts."""

    def __init__(self) -> None:
        self._entries: list[DeliveryLogEntry] = []

    def add(self, entry: DeliveryLogEntry) -> None:
        self._entries.append(entry)

    def list_for_recipient(self, recipient_id: str) -> list[DeliveryLogEntry]:
        return sorted(
            [e for e in self._entries if e.recipient_id == recipient_id],
            key=lambda e: e.timestamp,
        )


class NotifiedLog:
    """Bounded record of reminders a driver has already surfaced.

    Keys are ``(event_id, offset_minutes, occurrence_at)``.  An entry expires
    once its occurrence is more than *retention* in the past on *clock*, and
    the least recently used entries are dropped beyond *max_size*.
    """

    def __init__(
        self,
        clock: Clock,
        max_size: int = 1024,
        retention: timedelta = timedelta(minutes=5),
    ) -> None:
        self.retention = retention
        self._cache: TLRUCache = TLRUCache(
            maxsize=max_size,
            ttu=lambda key, _value, _now: key[2] + retention,
            timer=clock.now,
        )

    def __contains__(self, key: NotifiedKey) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def add(self, key: NotifiedKey) -> bool:
        """Record *key*; ``False`` if it was already present."""
        if key in self._cache:
            self._cache[key]  # refresh recency
            return False
        self._cache[key] = True
        return True

    def evict_elapsed(self) -> None:
        self._cache.expire()
