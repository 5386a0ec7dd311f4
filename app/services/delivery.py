"""Delivery gateways and the per-recipient fan-out of digest payloads."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from app.domain.bus import EventBus
from app.domain.events import DeliveryFailed, ReminderDelivered, SubscriptionInvalidated
from app.domain.models import DeliveryResult, DigestPayload, Subscription
from app.repos.memory import SubscriptionRepository

logger = logging.getLogger(__name__)

# Target is gone, expired, or no longer accepts our keys.
TERMINAL_STATUS_CODES = frozenset({403, 404, 410})


def is_terminal_status(status_code: int) -> bool:
    return status_code in TERMINAL_STATUS_CODES


class DeliveryGateway(Protocol):
    def send(self, target: Subscription, payload: DigestPayload) -> DeliveryResult:
        """Attempt one delivery; never raises for delivery failures."""
        ...

    def invalidate(self, target: Subscription) -> None: ...


class LoggingGateway:
    """Writes notifications to the log instead of sending them anywhere."""

    def __init__(self, subscriptions: SubscriptionRepository) -> None:
        self.subscriptions = subscriptions

    def send(self, target: Subscription, payload: DigestPayload) -> DeliveryResult:
        logger.info(
            "Notify %s via %s: %s | %s",
            target.recipient_id,
            target.endpoint,
            payload.title,
            payload.body.replace("\n", " "),
        )
        return DeliveryResult.ok()

    def invalidate(self, target: Subscription) -> None:
        self.subscriptions.remove(target.id)


class WebhookGateway:
    """POSTs each payload as JSON to the subscription's endpoint."""

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.subscriptions = subscriptions
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, target: Subscription, payload: DigestPayload) -> DeliveryResult:
        body = {"title": payload.title, "body": payload.body, "tag": payload.tag}
        try:
            response = self.client.post(target.endpoint, json=body)
        except httpx.HTTPError as exc:
            return DeliveryResult.failed(terminal=False, detail=f"{type(exc).__name__}: {exc}")

        if response.is_success:
            return DeliveryResult.ok(status_code=response.status_code)
        return DeliveryResult.failed(
            terminal=is_terminal_status(response.status_code),
            status_code=response.status_code,
            detail=response.text[:200] or None,
        )

    def invalidate(self, target: Subscription) -> None:
        self.subscriptions.remove(target.id)


def deliver_digests(
    payloads: dict[str, DigestPayload],
    subscriptions: SubscriptionRepository,
    gateway: DeliveryGateway,
    bus: EventBus,
) -> tuple[list[str], int]:
    """Send every payload to all of its recipient's targets.

    Returns the recipients reached at least once and the number of failed
    sends.  Terminal failures invalidate the target; transient ones are left
    for the next pass.
    """
    notified: list[str] = []
    failures = 0

    for recipient_id, payload in payloads.items():
        targets = subscriptions.list_for_recipient(recipient_id)
        if not targets:
            logger.info("No delivery target for %s; %d alert(s) not sent", recipient_id, payload.count)
            continue

        for target in targets:
            result = gateway.send(target, payload)
            if result.delivered:
                bus.publish(
                    ReminderDelivered(
                        recipient_id=recipient_id, subscription_id=target.id, tag=payload.tag
                    )
                )
                if recipient_id not in notified:
                    notified.append(recipient_id)
                continue

            failures += 1
            if result.terminal:
                logger.warning(
                    "Target %s for %s rejected delivery (%s); removing it",
                    target.id,
                    recipient_id,
                    result.status_code,
                )
                gateway.invalidate(target)
                bus.publish(
                    SubscriptionInvalidated(
                        recipient_id=recipient_id,
                        subscription_id=target.id,
                        tag=payload.tag,
                        detail=result.detail,
                    )
                )
            else:
                logger.warning(
                    "Delivery to %s failed (%s); will retry on a later pass",
                    target.id,
                    result.detail or result.status_code,
                )
                bus.publish(
                    DeliveryFailed(
                        recipient_id=recipient_id,
                        subscription_id=target.id,
                        tag=payload.tag,
                        detail=result.detail,
                    )
                )

    return notified, failures
