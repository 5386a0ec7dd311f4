"""Tests for reminder matching and evaluation windows."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from app.domain.models import EvaluationWindow, LabelPurpose
from app.services.reminders import (
    digest_window,
    instant_window,
    label_purpose,
    match_reminders,
)

TOR = ZoneInfo("America/Toronto")
_OCCURRENCE = datetime(2024, 5, 10, 14, 0, tzinfo=timezone.utc)


def _window(start: datetime, end: datetime) -> EvaluationWindow:
    return EvaluationWindow(start=start, end=end)


# ---------------------------------------------------------------------------
# match_reminders
# ---------------------------------------------------------------------------


def test_offset_matches_when_alert_inside_window():
    window = _window(_OCCURRENCE - timedelta(minutes=35), _OCCURRENCE - timedelta(minutes=25))
    matches = match_reminders(_OCCURRENCE, [0, 30, 1440], window)

    assert len(matches) == 1
    match = matches[0]
    assert match.offset_minutes == 30
    assert match.alert_at == _OCCURRENCE - timedelta(minutes=30)
    assert match.occurrence_at == _OCCURRENCE
    assert match.purpose == LabelPurpose.BEFORE


def test_window_is_half_open():
    alert = _OCCURRENCE
    assert match_reminders(_OCCURRENCE, [0], _window(alert, alert + timedelta(minutes=1)))
    assert not match_reminders(_OCCURRENCE, [0], _window(alert - timedelta(minutes=1), alert))


def test_alert_time_round_trips_through_window():
    # For any offset, a window starting exactly at occurrence - offset matches it.
    for offset in (0, 5, 60, 1440, 10080):
        alert = _OCCURRENCE - timedelta(minutes=offset)
        matches = match_reminders(_OCCURRENCE, [offset], _window(alert, alert + timedelta(seconds=1)))
        assert [m.offset_minutes for m in matches] == [offset]


def test_duplicate_offsets_reported_once():
    window = _window(_OCCURRENCE - timedelta(days=2), _OCCURRENCE + timedelta(minutes=1))
    matches = match_reminders(_OCCURRENCE, [0, 60, 0, 60], window)
    assert [m.offset_minutes for m in matches] == [0, 60]


def test_no_offsets_no_matches():
    window = _window(_OCCURRENCE - timedelta(days=1), _OCCURRENCE + timedelta(days=1))
    assert match_reminders(_OCCURRENCE, [], window) == []


def test_label_purpose():
    assert label_purpose(0) == LabelPurpose.AT_TIME
    assert label_purpose(30) == LabelPurpose.BEFORE
    assert label_purpose(1439) == LabelPurpose.BEFORE
    assert label_purpose(1440) == LabelPurpose.DAYS_BEFORE
    assert label_purpose(4320) == LabelPurpose.DAYS_BEFORE


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


def test_window_rejects_inverted_bounds():
    with pytest.raises(ValidationError):
        _window(_OCCURRENCE, _OCCURRENCE - timedelta(minutes=1))


def test_window_rejects_naive_bounds():
    with pytest.raises(ValidationError):
        EvaluationWindow(start=datetime(2024, 1, 1), end=datetime(2024, 1, 2))


def test_instant_window_bounds():
    window = instant_window(_OCCURRENCE, lookahead=timedelta(minutes=15), lookback=timedelta(minutes=5))
    assert window.start == _OCCURRENCE - timedelta(minutes=5)
    assert window.end == _OCCURRENCE + timedelta(minutes=15)


def test_digest_window_covers_tomorrow_in_reference_zone():
    # 23:30 Toronto on May 10 is already May 11 in UTC; "tomorrow" is still May 11 locally.
    now = datetime(2024, 5, 10, 23, 30, tzinfo=TOR)
    window = digest_window(now, "America/Toronto")
    assert window.start == datetime(2024, 5, 11, 0, 0, tzinfo=TOR)
    assert window.end == datetime(2024, 5, 12, 0, 0, tzinfo=TOR)


def test_digest_window_on_short_dst_day():
    now = datetime(2024, 3, 9, 12, 0, tzinfo=TOR)
    window = digest_window(now, "America/Toronto")
    elapsed = window.end.astimezone(timezone.utc) - window.start.astimezone(timezone.utc)
    assert elapsed == timedelta(hours=23)
