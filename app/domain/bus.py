"""Simple synchronous in-process event bus."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class EventBus:
    """Publish/subscribe bus for domain events.

    A handler subscribed to a class also receives its subclasses, so one
    handler can cover a family of events.  Handlers run synchronously on the
    publisher's thread, most specific class first, then in registration order.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._subscribers[event_type].append(handler)

    def handlers_for(self, event_type: type) -> list[Handler]:
        handlers: list[Handler] = []
        for cls in event_type.__mro__:
            handlers.extend(self._subscribers.get(cls, ()))
        return handlers

    def publish(self, event: Any) -> None:
        handlers = self.handlers_for(type(event))
        logger.debug("Publishing %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s failed on %s",
                    getattr(handler, "__qualname__", handler),
                    type(event).__name__,
                )
                raise
