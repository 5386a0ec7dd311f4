"""Client-side reminder loop.

Re-reads the whole event set every few seconds, surfaces reminders whose
alert time is within a few seconds of now, and advances or drops elapsed
events in its own view straight away.  Store writes go out through the event
bus and are best effort; a failed write is simply recomputed on a later tick.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import timedelta
from typing import Callable

from app.config import settings
from app.domain.bus import EventBus
from app.domain.clock import Clock
from app.domain.models import DueReminder, EvaluationWindow, Event
from app.repos.base import EventStore, StoreUnavailableError
from app.repos.memory import NotifiedLog
from app.services.evaluator import evaluate_events, publish_changes
from app.services.reminders import MINUTES_PER_DAY
from app.services.rollover import apply_advance

logger = logging.getLogger(__name__)

Notifier = Callable[[DueReminder], None]


def reminder_text(offset_minutes: int) -> str:
    if offset_minutes == 0:
        return "Happening now!"
    if offset_minutes >= MINUTES_PER_DAY:
        days = math.ceil(offset_minutes / MINUTES_PER_DAY)
        return f"in {days} day{'s' if days != 1 else ''}"
    if offset_minutes >= 60:
        hours = math.ceil(offset_minutes / 60)
        return f"in {hours} hour{'s' if hours != 1 else ''}"
    return f"in {offset_minutes} minute{'s' if offset_minutes != 1 else ''}"


def log_notifier(due: DueReminder) -> None:
    body = reminder_text(due.match.offset_minutes)
    if due.event.description:
        body = f"{body} - {due.event.description}"
    logger.info("Reminder: %s (%s)", due.event.title, body)


class ClientLoop:
    def __init__(
        self,
        store: EventStore,
        bus: EventBus,
        clock: Clock,
        notify: Notifier = log_notifier,
        notified_log: NotifiedLog | None = None,
        tick_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.clock = clock
        self.notify = notify
        if notified_log is None:
            notified_log = NotifiedLog(clock, max_size=settings.NOTIFIED_LOG_SIZE)
        self.notified = notified_log
        self.tick_seconds = tick_seconds or settings.CLIENT_TICK_SECONDS
        self._events: list[Event] = []
        self._stop = asyncio.Event()

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def refresh(self) -> bool:
        """Reload the event set; on failure keep the previous one."""
        try:
            self._events = self.store.fetch_all()
        except StoreUnavailableError as exc:
            logger.warning("Event store unavailable, keeping %d cached event(s): %s", len(self._events), exc)
            return False
        return True

    def tick(self) -> list[DueReminder]:
        """Run one evaluation; returns the reminders surfaced for the first time."""
        if not self.refresh():
            return []

        now = self.clock.now()
        tolerance = timedelta(seconds=settings.CLIENT_MATCH_TOLERANCE_SECONDS)
        window = EvaluationWindow(start=now - tolerance, end=now + tolerance)

        evaluation = evaluate_events(
            self._events,
            now,
            window,
            rollover_grace_minutes=settings.ROLLOVER_GRACE_MINUTES,
            expiry_grace_minutes=settings.CLIENT_EXPIRY_GRACE_MINUTES,
        )

        # Local view first, so the next tick sees the change even if the
        # store write below is lost.
        kept: list[Event] = []
        for event in self._events:
            if event.id in evaluation.expired:
                continue
            if event.id in evaluation.advanced:
                _, new_anchor = evaluation.advanced[event.id]
                event = apply_advance(event, new_anchor, now)
            kept.append(event)
        self._events = kept
        publish_changes(evaluation, now, self.bus)

        self.notified.evict_elapsed()
        surfaced: list[DueReminder] = []
        for due in evaluation.due:
            key = (due.event.id, due.match.offset_minutes, due.match.occurrence_at)
            if not self.notified.add(key):
                continue
            self.notify(due)
            surfaced.append(due)
        return surfaced

    async def run(self) -> None:
        """Tick until :meth:`stop` is called; a tick in progress always finishes.

        A failing tick is logged and the loop carries on with the next one.
        """
        self._stop.clear()
        logger.info("Client loop started (every %.1fs)", self.tick_seconds)
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Client tick failed; retrying in %.1fs", self.tick_seconds)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Client loop stopped")

    def stop(self) -> None:
        self._stop.set()
