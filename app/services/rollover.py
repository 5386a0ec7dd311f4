"""Service for advancing recurring events past elapsed occurrences."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from app.config import settings
from app.domain.models import Event
from app.services.recurrence import resolve_occurrence

logger = logging.getLogger(__name__)


def maybe_advance(
    event: Event,
    reference: datetime,
    grace_minutes: int | None = None,
) -> datetime | None:
    """Return the event's replacement anchor, or ``None`` if it should not move.

    Only recurring events whose ``next_alert_at`` is more than *grace_minutes*
    in the past are advanced.  The result is always later than the current
    anchor, so calling this again before the new anchor itself elapses yields
    ``None``.
    """
    if not event.is_recurring:
        return None

    grace = timedelta(
        minutes=settings.ROLLOVER_GRACE_MINUTES if grace_minutes is None else grace_minutes
    )
    if event.next_alert_at + grace >= reference:
        return None

    resolution = resolve_occurrence(
        event.next_alert_at, event.recurrence_rule, reference, event.timezone
    )
    if resolution.capped:
        logger.warning(
            "Event %s advanced only partway to %s (iteration cap)",
            event.id,
            reference.isoformat(),
        )

    candidate = resolution.instant
    if candidate <= event.next_alert_at:
        # Unchanged (malformed rule, no lunar year found): freeze, don't write.
        return None
    return candidate


def apply_advance(event: Event, new_anchor: datetime, now: datetime) -> Event:
    """Full replacement record carrying the advanced anchor."""
    return event.model_copy(update={"next_alert_at": new_anchor, "updated_at": now})
