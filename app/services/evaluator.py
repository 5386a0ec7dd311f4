"""Evaluation passes: rollover, expiry and reminder matching over the event set.

The server passes here are stateless: each fetches the full event set, emits
store changes as domain events, and hands the due reminders to a delivery
gateway.  Running two passes over the same instant at once is safe because
the advance handler only ever moves an anchor forward.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from app.config import settings
from app.domain.bus import EventBus
from app.domain.clock import Clock
from app.domain.events import EventAdvanced, EventsExpired
from app.domain.models import DueReminder, EvaluationWindow, Event, PassReport
from app.repos.base import EventStore
from app.repos.memory import SubscriptionRepository
from app.services.delivery import DeliveryGateway, deliver_digests
from app.services.digest import aggregate
from app.services.expiry import reap_expired
from app.services.reminders import digest_window, instant_window, match_reminders
from app.services.rollover import maybe_advance

logger = logging.getLogger(__name__)


class Evaluation(BaseModel):
    """Outcome of evaluating one snapshot of events against one window."""

    due: list[DueReminder] = Field(default_factory=list)
    advanced: dict[str, tuple[datetime, datetime]] = Field(default_factory=dict)
    expired: set[str] = Field(default_factory=set)
    skipped: list[str] = Field(default_factory=list)


def evaluate_events(
    events: list[Event],
    now: datetime,
    window: EvaluationWindow,
    *,
    rollover_grace_minutes: int,
    expiry_grace_minutes: int,
) -> Evaluation:
    """Compute advances, expiries and due reminders without touching any store.

    A recurring event is matched against both its stored anchor and, when it
    advances this pass, the new anchor; so an occurrence that elapsed since the
    previous pass is still reported if it falls in *window*.
    """
    result = Evaluation(expired=reap_expired(events, now, expiry_grace_minutes))

    for event in events:
        if event.id in result.expired:
            continue
        try:
            new_anchor = maybe_advance(event, now, rollover_grace_minutes)
            occurrences = [event.next_alert_at]
            if new_anchor is not None:
                result.advanced[event.id] = (event.next_alert_at, new_anchor)
                occurrences.append(new_anchor)

            seen: set[tuple[int, datetime]] = set()
            for occurrence in occurrences:
                for match in match_reminders(occurrence, event.reminders, window):
                    key = (match.offset_minutes, match.alert_at)
                    if key in seen:
                        continue
                    seen.add(key)
                    result.due.append(DueReminder(event=event, match=match))
        except Exception:
            logger.exception("Skipping event %s for this pass", event.id)
            result.skipped.append(event.id)
            result.advanced.pop(event.id, None)

    return result


def publish_changes(evaluation: Evaluation, now: datetime, bus: EventBus) -> None:
    for event_id, (previous, new_anchor) in evaluation.advanced.items():
        bus.publish(
            EventAdvanced(
                event_id=event_id,
                previous_alert_at=previous,
                next_alert_at=new_anchor,
                advanced_at=now,
            )
        )
    if evaluation.expired:
        bus.publish(EventsExpired(event_ids=sorted(evaluation.expired), detected_at=now))


# ---------------------------------------------------------------------------
# Server passes
# ---------------------------------------------------------------------------


def run_instant_check(
    store: EventStore,
    subscriptions: SubscriptionRepository,
    gateway: DeliveryGateway,
    bus: EventBus,
    clock: Clock,
) -> PassReport:
    """Deliver reminders due in ``[now - lookback, now + lookahead)``."""
    now = clock.now()
    window = instant_window(
        now,
        lookahead=timedelta(minutes=settings.INSTANT_LOOKAHEAD_MINUTES),
        lookback=timedelta(minutes=settings.INSTANT_LOOKBACK_MINUTES),
    )
    return _run_pass("instant", now, window, "Reminder", store, subscriptions, gateway, bus)


def run_daily_digest(
    store: EventStore,
    subscriptions: SubscriptionRepository,
    gateway: DeliveryGateway,
    bus: EventBus,
    clock: Clock,
) -> PassReport:
    """Deliver one digest per recipient covering tomorrow in the reference zone."""
    now = clock.now()
    window = digest_window(now, settings.REFERENCE_TIMEZONE)
    return _run_pass("digest", now, window, "Daily Digest", store, subscriptions, gateway, bus)


def _run_pass(
    mode: str,
    now: datetime,
    window: EvaluationWindow,
    heading: str,
    store: EventStore,
    subscriptions: SubscriptionRepository,
    gateway: DeliveryGateway,
    bus: EventBus,
) -> PassReport:
    # StoreUnavailableError propagates: with no snapshot there is nothing to do.
    events = store.fetch_all()
    logger.info(
        "Running %s pass over %d event(s), window %s to %s",
        mode,
        len(events),
        window.start.isoformat(),
        window.end.isoformat(),
    )

    evaluation = evaluate_events(
        events,
        now,
        window,
        rollover_grace_minutes=settings.ROLLOVER_GRACE_MINUTES,
        expiry_grace_minutes=settings.SERVER_EXPIRY_GRACE_MINUTES,
    )
    publish_changes(evaluation, now, bus)

    payloads = aggregate(evaluation.due, settings.DIGEST_PREVIEW_COUNT, heading=heading)
    notified, failures = deliver_digests(payloads, subscriptions, gateway, bus)

    return PassReport(
        mode=mode,
        evaluated_at=now,
        window=window,
        events_seen=len(events),
        advanced={event_id: new for event_id, (_, new) in evaluation.advanced.items()},
        expired=sorted(evaluation.expired),
        matched=len(evaluation.due),
        skipped=evaluation.skipped,
        recipients_notified=notified,
        deliveries_failed=failures,
    )
