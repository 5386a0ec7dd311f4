"""Service for finding one-off events that have elapsed."""

from __future__ import annotations

from datetime import datetime, timedelta

from app.domain.models import Event


def reap_expired(
    events: list[Event],
    reference: datetime,
    grace_minutes: int,
) -> set[str]:
    """Return ids of non-recurring events more than *grace_minutes* past.

    Recurring events are never returned, however stale: they are rolled over
    instead.  Callers should drop the ids from their own view right away and
    may delete them from the store asynchronously.
    """
    grace = timedelta(minutes=grace_minutes)
    return {
        event.id
        for event in events
        if not event.is_recurring and event.next_alert_at + grace < reference
    }
