"""FastAPI application — entry point for the reminder service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException

from app.config import settings
from app.domain.bus import EventBus
from app.domain.clock import Clock, FixedClock, SystemClock
from app.domain.handlers import HandlerRegistry
from app.domain.models import (
    DigestPayload,
    Event,
    EventWrite,
    PassReport,
    PushTestRequest,
    Subscription,
    SubscriptionCreate,
)
from app.logging_config import configure_logging
from app.repos.base import StoreUnavailableError
from app.repos.memory import DeliveryLogRepository, InMemoryEventStore, SubscriptionRepository
from app.services.delivery import DeliveryGateway, LoggingGateway, WebhookGateway, deliver_digests
from app.services.evaluator import run_daily_digest, run_instant_check
from app.services.recurrence import initial_alert_at

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="LunaRemind")

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
event_store = InMemoryEventStore()
subscription_repo = SubscriptionRepository()
delivery_log = DeliveryLogRepository()
clock: Clock = SystemClock()

handler_registry = HandlerRegistry(
    bus=event_bus,
    event_store=event_store,
    delivery_log=delivery_log,
)


def _build_gateway() -> DeliveryGateway:
    if settings.DELIVERY_MODE == "webhook":
        return WebhookGateway(subscription_repo, timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    return LoggingGateway(subscription_repo)


gateway = _build_gateway()


def _clock_for(now: datetime | None) -> Clock:
    """Pin the pass to *now* when given; naive values are read as UTC."""
    if now is None:
        return clock
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return FixedClock(now)


def _event_from(body: EventWrite, **extra) -> Event:
    next_alert_at = initial_alert_at(
        body.start_at, body.recurrence_rule, body.timezone, clock.now()
    )
    return Event(
        title=body.title,
        description=body.description,
        next_alert_at=next_alert_at,
        timezone=body.timezone,
        recurrence_rule=body.recurrence_rule,
        reminders=body.reminders,
        recipient_id=body.recipient_id,
        **extra,
    )


# ── Events ────────────────────────────────────────────────────────────


@app.get("/events", response_model=list[Event])
def list_events() -> list[Event]:
    """Return all stored events."""
    return event_store.fetch_all()


@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str) -> Event:
    """Return a single event by id."""
    event = event_store.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.post("/events", response_model=Event, status_code=201)
def create_event(body: EventWrite) -> Event:
    """Store a new event, resolving its first alert from ``start_at``."""
    event = _event_from(body)
    event_store.insert(event)
    logger.info("Created event %s (%s) next at %s", event.id, event.title, event.next_alert_at.isoformat())
    return event


@app.put("/events/{event_id}", response_model=Event)
def replace_event(event_id: str, body: EventWrite) -> Event:
    """Replace an event wholesale; the schedule is resolved again from ``start_at``."""
    existing = event_store.get(event_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Event not found")
    event = _event_from(body, id=event_id, created_at=existing.created_at)
    if not event_store.update(event):
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.delete("/events/{event_id}", status_code=200)
def delete_event(event_id: str) -> dict:
    if event_store.delete_by_ids([event_id]) == 0:
        raise HTTPException(status_code=404, detail="Event not found")
    return {"status": "deleted"}


# ── Delivery targets ──────────────────────────────────────────────────


@app.post("/subscriptions", response_model=Subscription, status_code=201)
def register_subscription(body: SubscriptionCreate) -> Subscription:
    """Register a delivery target, replacing the recipient's previous one."""
    subscription = Subscription(
        recipient_id=body.recipient_id, endpoint=body.endpoint, keys=body.keys
    )
    subscription_repo.replace_for_recipient(subscription)
    return subscription


@app.post("/test-push")
def test_push(body: PushTestRequest) -> dict:
    """Send a one-off notification to every target of a recipient."""
    targets = subscription_repo.list_for_recipient(body.recipient_id)
    if not targets:
        raise HTTPException(status_code=404, detail="No subscription found for recipient")

    payload = DigestPayload(
        recipient_id=body.recipient_id,
        title="Test Notification",
        body="Push notifications are working.",
        tag=f"{body.recipient_id}:test",
        labels=["Push notifications are working."],
    )
    notified, failures = deliver_digests(
        {body.recipient_id: payload}, subscription_repo, gateway, event_bus
    )
    if not notified:
        raise HTTPException(
            status_code=403,
            detail={
                "error": "All delivery targets failed",
                "should_resubscribe": True,
            },
        )
    return {"success": True, "sent": len(targets) - failures, "failed": failures}


# ── Evaluation triggers ───────────────────────────────────────────────


@app.post("/check", response_model=PassReport)
def check(now: datetime | None = None) -> PassReport:
    """Run the instant check around *now* (defaults to the current time)."""
    try:
        return run_instant_check(
            event_store, subscription_repo, gateway, event_bus, _clock_for(now)
        )
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.post("/digest", response_model=PassReport)
def digest(now: datetime | None = None) -> PassReport:
    """Send tomorrow's digest, as seen from *now* (defaults to the current time)."""
    try:
        return run_daily_digest(
            event_store, subscription_repo, gateway, event_bus, _clock_for(now)
        )
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
