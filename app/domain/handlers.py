"""Domain event handlers — wired up at application startup."""

from __future__ import annotations

import logging

from app.domain.bus import EventBus
from app.domain.events import DeliveryEvent, EventAdvanced, EventsExpired
from app.domain.models import DeliveryLogEntry
from app.repos.base import EventStore, StoreUnavailableError
from app.repos.memory import DeliveryLogRepository

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the store and logs.

    Store writes here are best effort: a failure is logged and dropped, and
    the next evaluation pass recomputes the same change.
    """

    def __init__(
        self,
        bus: EventBus,
        event_store: EventStore,
        delivery_log: DeliveryLogRepository,
    ) -> None:
        self.bus = bus
        self.event_store = event_store
        self.delivery_log = delivery_log
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(EventAdvanced, self.on_event_advanced)
        self.bus.subscribe(EventsExpired, self.on_events_expired)
        self.bus.subscribe(DeliveryEvent, self.on_delivery_event)

    # ------------------------------------------------------------------
    # Store writes
    # ------------------------------------------------------------------

    def on_event_advanced(self, event: EventAdvanced) -> None:
        # Re-read and rewrite the whole record so a stale view can neither
        # resurrect a deleted event nor move an anchor backwards.
        try:
            stored = self.event_store.get(event.event_id)
            if stored is None:
                logger.info("Event %s was deleted; not advancing", event.event_id)
                return
            if stored.next_alert_at >= event.next_alert_at:
                logger.debug(
                    "Event %s already at %s; skipping advance to %s",
                    event.event_id,
                    stored.next_alert_at.isoformat(),
                    event.next_alert_at.isoformat(),
                )
                return
            updated = stored.model_copy(
                update={
                    "next_alert_at": event.next_alert_at,
                    "updated_at": event.advanced_at,
                }
            )
            self.event_store.update(updated)
        except StoreUnavailableError as exc:
            logger.error("Could not advance event %s: %s", event.event_id, exc)
            return
        logger.info(
            "Advanced event %s from %s to %s",
            event.event_id,
            event.previous_alert_at.isoformat(),
            event.next_alert_at.isoformat(),
        )

    def on_events_expired(self, event: EventsExpired) -> None:
        try:
            removed = self.event_store.delete_by_ids(event.event_ids)
        except StoreUnavailableError as exc:
            logger.error("Could not delete %d expired event(s): %s", len(event.event_ids), exc)
            return
        logger.info("Removed %d expired event(s)", removed)

    # ------------------------------------------------------------------
    # Delivery bookkeeping
    # ------------------------------------------------------------------

    def on_delivery_event(self, event: DeliveryEvent) -> None:
        self.delivery_log.add(
            DeliveryLogEntry(
                recipient_id=event.recipient_id,
                subscription_id=event.subscription_id,
                tag=event.tag,
                outcome=event.outcome,
                detail=event.detail,
            )
        )
