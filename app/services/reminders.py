"""Service for matching reminder offsets against an evaluation window."""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from app.domain.models import EvaluationWindow, LabelPurpose, ReminderMatch

MINUTES_PER_DAY = 1440


def label_purpose(offset_minutes: int) -> LabelPurpose:
    if offset_minutes == 0:
        return LabelPurpose.AT_TIME
    if offset_minutes >= MINUTES_PER_DAY:
        return LabelPurpose.DAYS_BEFORE
    return LabelPurpose.BEFORE


def match_reminders(
    occurrence_at: datetime,
    offsets_minutes: list[int],
    window: EvaluationWindow,
) -> list[ReminderMatch]:
    """Return the reminders of one occurrence whose alert time falls in *window*.

    ``alert_at = occurrence_at - offset``; an offset matches when
    ``window.start <= alert_at < window.end``.  Repeated offsets are reported
    once, in first-seen order.
    """
    matches: list[ReminderMatch] = []
    seen: set[int] = set()
    for offset in offsets_minutes:
        if offset in seen:
            continue
        seen.add(offset)

        alert_at = occurrence_at - timedelta(minutes=offset)
        if window.contains(alert_at):
            matches.append(
                ReminderMatch(
                    offset_minutes=offset,
                    purpose=label_purpose(offset),
                    alert_at=alert_at,
                    occurrence_at=occurrence_at,
                )
            )
    return matches


# ---------------------------------------------------------------------------
# Window builders
# ---------------------------------------------------------------------------


def instant_window(
    now: datetime, lookahead: timedelta, lookback: timedelta
) -> EvaluationWindow:
    """``[now - lookback, now + lookahead)`` for frequent checks."""
    return EvaluationWindow(start=now - lookback, end=now + lookahead)


def digest_window(now: datetime, reference_tz: str) -> EvaluationWindow:
    """The whole of tomorrow, as a calendar day in *reference_tz*."""
    tz = ZoneInfo(reference_tz)
    tomorrow = now.astimezone(tz).date() + timedelta(days=1)
    start = datetime.combine(tomorrow, datetime.min.time(), tzinfo=tz)
    end = datetime.combine(tomorrow + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    return EvaluationWindow(start=start, end=end)
