"""Service for batching due reminders into one notification per recipient."""

from __future__ import annotations

import hashlib
import logging
import math
from collections import defaultdict
from datetime import timezone
from zoneinfo import ZoneInfo

from app.domain.models import DigestPayload, DueReminder, LabelPurpose
from app.services.reminders import MINUTES_PER_DAY

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_COUNT = 4


def format_label(due: DueReminder) -> str:
    """Human-readable line for one due reminder.

    * offset 0: ``"Dentist at 14:30"`` (occurrence time in the event's zone)
    * a day or more ahead: ``"Dentist in 2 days"``
    * otherwise: ``"Dentist in 30 minutes"`` / ``"Dentist in 2 hours"``
    """
    title = due.event.title
    offset = due.match.offset_minutes

    if due.match.purpose == LabelPurpose.AT_TIME:
        local = due.match.occurrence_at.astimezone(ZoneInfo(due.event.timezone))
        return f"{title} at {local:%H:%M}"

    if due.match.purpose == LabelPurpose.DAYS_BEFORE:
        days = int(offset / MINUTES_PER_DAY + 0.5)
        return f"{title} in {days} day{'s' if days != 1 else ''}"

    if offset < 60:
        return f"{title} in {offset} minute{'s' if offset != 1 else ''}"
    hours = math.ceil(offset / 60)
    return f"{title} in {hours} hour{'s' if hours != 1 else ''}"


def aggregate(
    reminders: list[DueReminder],
    preview_count: int = DEFAULT_PREVIEW_COUNT,
    heading: str = "Daily Digest",
) -> dict[str, DigestPayload]:
    """Group due reminders by recipient into one payload each.

    Identical labels within a recipient collapse into one item.  Reminders
    without a recipient cannot be delivered and are dropped.
    """
    grouped: dict[str, list[DueReminder]] = defaultdict(list)
    for due in reminders:
        if due.recipient_id is None:
            logger.debug("Event %s has no recipient; not delivering", due.event.id)
            continue
        grouped[due.recipient_id].append(due)

    payloads: dict[str, DigestPayload] = {}
    for recipient_id, items in grouped.items():
        items.sort(key=lambda d: (d.match.alert_at, d.event.title, d.match.offset_minutes))

        labels: list[str] = []
        for due in items:
            label = format_label(due)
            if label not in labels:
                labels.append(label)

        payloads[recipient_id] = DigestPayload(
            recipient_id=recipient_id,
            title=_title(heading, len(labels)),
            body=_body(labels, preview_count),
            tag=_tag(recipient_id, items),
            labels=labels,
        )
    return payloads


def _title(heading: str, count: int) -> str:
    return f"{heading}: {count} Alert{'s' if count != 1 else ''}"


def _body(labels: list[str], preview_count: int) -> str:
    lines = [f"• {label}" for label in labels[:preview_count]]
    overflow = len(labels) - preview_count
    if overflow > 0:
        lines.append(f"...and {overflow} more")
    return "\n".join(lines)


def _tag(recipient_id: str, items: list[DueReminder]) -> str:
    # Same due set -> same tag, so a client can collapse repeat deliveries.
    digest = hashlib.sha1()
    for due in items:
        alert_utc = due.match.alert_at.astimezone(timezone.utc).isoformat()
        digest.update(f"{due.event.id}|{due.match.offset_minutes}|{alert_utc}".encode())
    return f"{recipient_id}:{digest.hexdigest()[:16]}"
