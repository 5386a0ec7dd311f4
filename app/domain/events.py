"""Domain events emitted by the evaluation passes."""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel

from app.domain.models import DeliveryOutcome


class EventAdvanced(BaseModel):
    """A recurring event's occurrence elapsed and its anchor moved forward."""

    event_id: str
    previous_alert_at: datetime
    next_alert_at: datetime
    advanced_at: datetime


class EventsExpired(BaseModel):
    """One-off events elapsed past their grace window and should be removed."""

    event_ids: list[str]
    detected_at: datetime


class DeliveryEvent(BaseModel):
    """Outcome of sending one payload to one delivery target."""

    outcome: ClassVar[DeliveryOutcome]

    recipient_id: str
    subscription_id: str
    tag: str
    detail: str | None = None


class ReminderDelivered(DeliveryEvent):
    outcome: ClassVar[DeliveryOutcome] = DeliveryOutcome.DELIVERED


class DeliveryFailed(DeliveryEvent):
    """A send failed but the target may work later."""

    outcome: ClassVar[DeliveryOutcome] = DeliveryOutcome.FAILED


class SubscriptionInvalidated(DeliveryEvent):
    """A target failed terminally (gone, expired, key mismatch) and was removed."""

    outcome: ClassVar[DeliveryOutcome] = DeliveryOutcome.INVALIDATED
