"""Tests for the recurrence resolution service."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

from app.domain.models import (
    CustomRecurrence,
    DailyRecurrence,
    MonthlyRecurrence,
    NoRecurrence,
    WeeklyRecurrence,
    YearlyLunarRecurrence,
    YearlySolarRecurrence,
)
from app.services.recurrence import initial_alert_at, resolve, resolve_occurrence

TZ_NAME = "America/Toronto"
TOR = ZoneInfo(TZ_NAME)


def _tor(*args) -> datetime:
    return datetime(*args, tzinfo=TOR)


# ---------------------------------------------------------------------------
# Solar rules
# ---------------------------------------------------------------------------


def test_daily_resolves_to_next_day_at_same_time():
    result = resolve(_tor(2024, 3, 1, 9, 0), DailyRecurrence(), _tor(2024, 3, 5, 10, 0), TZ_NAME)
    assert result == _tor(2024, 3, 6, 9, 0)


def test_daily_keeps_wall_clock_time_across_dst():
    # 2024-03-10 is the spring-forward date in Toronto.
    result = resolve(_tor(2024, 3, 9, 9, 0), DailyRecurrence(), _tor(2024, 3, 10, 12, 0), TZ_NAME)
    local = result.astimezone(TOR)
    assert (local.year, local.month, local.day, local.hour, local.minute) == (2024, 3, 11, 9, 0)
    assert local.utcoffset() == timedelta(hours=-4)


def test_anchor_already_in_future_is_returned_unchanged():
    anchor = _tor(2024, 6, 1, 9, 0)
    assert resolve(anchor, DailyRecurrence(), _tor(2024, 5, 1), TZ_NAME) == anchor


def test_reference_equal_to_occurrence_counts_as_at_or_after():
    anchor = _tor(2024, 1, 1, 9, 0)
    assert resolve(anchor, WeeklyRecurrence(), _tor(2024, 1, 8, 9, 0), TZ_NAME) == _tor(2024, 1, 8, 9, 0)


def test_weekly_lands_on_same_weekday():
    result = resolve(_tor(2024, 1, 1, 8, 0), WeeklyRecurrence(), _tor(2024, 1, 20), TZ_NAME)
    assert result == _tor(2024, 1, 22, 8, 0)
    assert result.weekday() == 0


def test_monthly_from_month_end_does_not_drift():
    # Jan 31 -> Feb 29 (clamped) -> Mar 31, not Mar 29.
    result = resolve(_tor(2024, 1, 31, 10, 0), MonthlyRecurrence(), _tor(2024, 3, 1), TZ_NAME)
    assert result == _tor(2024, 3, 31, 10, 0)


def test_yearly_solar_from_leap_day_clamps_to_feb_28():
    result = resolve(_tor(2020, 2, 29, 12, 0), YearlySolarRecurrence(), _tor(2021, 1, 1), TZ_NAME)
    assert result == _tor(2021, 2, 28, 12, 0)


def test_none_rule_returns_anchor():
    anchor = _tor(2020, 1, 1, 9, 0)
    assert resolve(anchor, NoRecurrence(), _tor(2024, 1, 1), TZ_NAME) == anchor


def test_resolution_is_deterministic():
    anchor = _tor(2023, 11, 30, 7, 45)
    reference = _tor(2024, 4, 2, 3, 0)
    first = resolve(anchor, MonthlyRecurrence(), reference, TZ_NAME)
    second = resolve(anchor, MonthlyRecurrence(), reference, TZ_NAME)
    assert first == second
    assert first >= reference


# ---------------------------------------------------------------------------
# Custom rules
# ---------------------------------------------------------------------------


def test_custom_every_three_days():
    rule = CustomRecurrence(interval=3, unit="day")
    assert resolve(_tor(2024, 1, 1), rule, _tor(2024, 1, 10), TZ_NAME) == _tor(2024, 1, 10)


def test_custom_hours_step_in_elapsed_time():
    rule = CustomRecurrence(interval=6, unit="hour")
    # 00:00 EST = 05:00 UTC; six elapsed hours later is 11:00 UTC (07:00 EDT).
    result = resolve(_tor(2024, 3, 10, 0, 0), rule, _tor(2024, 3, 10, 5, 0), TZ_NAME)
    assert result == datetime(2024, 3, 10, 11, 0, tzinfo=timezone.utc)


def test_custom_weeks_and_months():
    assert resolve(
        _tor(2024, 1, 1, 9), CustomRecurrence(interval=2, unit="week"), _tor(2024, 1, 10), TZ_NAME
    ) == _tor(2024, 1, 15, 9)
    assert resolve(
        _tor(2024, 1, 15, 9), CustomRecurrence(interval=3, unit="month"), _tor(2024, 2, 1), TZ_NAME
    ) == _tor(2024, 4, 15, 9)


def test_custom_without_interval_or_unit_is_treated_as_none():
    anchor = _tor(2024, 1, 1, 9)
    reference = _tor(2024, 6, 1)
    for rule in (
        CustomRecurrence(unit="day"),
        CustomRecurrence(interval=2),
        CustomRecurrence(interval=0, unit="day"),
        CustomRecurrence(interval=-1, unit="week"),
    ):
        assert resolve(anchor, rule, reference, TZ_NAME) == anchor


# ---------------------------------------------------------------------------
# Iteration cap
# ---------------------------------------------------------------------------


def test_iteration_cap_returns_last_candidate_and_warns(caplog):
    anchor = _tor(2010, 1, 1, 9, 0)
    with caplog.at_level(logging.WARNING, logger="app.services.recurrence"):
        resolution = resolve_occurrence(anchor, DailyRecurrence(), _tor(2024, 1, 1), TZ_NAME)

    assert resolution.capped is True
    expected = (datetime(2010, 1, 1, 9, 0) + timedelta(days=2000)).replace(tzinfo=TOR)
    assert resolution.instant == expected
    assert "cap" in caplog.text


def test_iteration_cap_is_configurable_per_call():
    resolution = resolve_occurrence(
        _tor(2020, 1, 1), DailyRecurrence(), _tor(2024, 1, 1), TZ_NAME, max_iterations=1000
    )
    assert resolution.capped is True
    assert resolution.instant < _tor(2024, 1, 1)


# ---------------------------------------------------------------------------
# Lunar rules
# ---------------------------------------------------------------------------


def test_lunar_mid_autumn_converts_to_gregorian():
    rule = YearlyLunarRecurrence(month=8, day=15)
    # Lunar 8/15 fell on 2023-09-29 and falls on 2024-09-17.
    result = resolve(_tor(2023, 9, 29, 20, 0), rule, _tor(2024, 1, 1), TZ_NAME)
    assert result == _tor(2024, 9, 17, 20, 0)


def test_lunar_tries_previous_lunar_year_first():
    rule = YearlyLunarRecurrence(month=12, day=20)

    def late_lunar_month(year, month, day, leap):
        return date(year + 1, 1, 15)

    with patch("app.services.recurrence._lunar_to_solar", side_effect=late_lunar_month):
        result = resolve(_tor(2024, 1, 10, 8, 0), rule, _tor(2025, 1, 1), TZ_NAME)
    assert result == _tor(2025, 1, 15, 8, 0)


def test_lunar_skips_years_where_date_does_not_exist():
    rule = YearlyLunarRecurrence(month=3, day=30)

    def missing_in_2024(year, month, day, leap):
        if year == 2024:
            raise ValueError("day out of range")
        return date(year, 3, 1)

    with patch("app.services.recurrence._lunar_to_solar", side_effect=missing_in_2024):
        result = resolve(_tor(2023, 3, 1, 9, 0), rule, _tor(2024, 1, 1), TZ_NAME)
    assert result == _tor(2025, 3, 1, 9, 0)


def test_lunar_reaches_last_year_of_lookahead():
    # Leap 6th month exists in 2025 but not in 2022, 2023 or 2024.
    rule = YearlyLunarRecurrence(month=6, day=1, leap=True)
    result = resolve(_tor(2017, 7, 23, 7, 30), rule, _tor(2023, 7, 1), TZ_NAME)
    assert result == _tor(2025, 7, 25, 7, 30)


def test_lunar_search_covers_previous_year_through_lookahead():
    rule = YearlyLunarRecurrence(month=5, day=5)
    with patch("app.services.recurrence._lunar_to_solar", side_effect=ValueError("missing")) as convert:
        resolve(_tor(2023, 6, 22, 9, 0), rule, _tor(2024, 6, 1), TZ_NAME)
    assert [c.args[0] for c in convert.call_args_list] == [2023, 2024, 2025, 2026]


def test_future_lunar_anchor_is_kept():
    rule = YearlyLunarRecurrence(month=8, day=15)
    anchor = _tor(2026, 9, 25, 20, 0)
    with patch("app.services.recurrence._lunar_to_solar") as convert:
        assert resolve(anchor, rule, _tor(2025, 1, 1), TZ_NAME) == anchor
    convert.assert_not_called()


def test_lunar_with_no_valid_year_returns_anchor(caplog):
    rule = YearlyLunarRecurrence(month=2, day=30, leap=True)
    anchor = _tor(2023, 4, 1, 9, 0)
    with patch("app.services.recurrence._lunar_to_solar", side_effect=ValueError("no such date")):
        with caplog.at_level(logging.WARNING, logger="app.services.recurrence"):
            result = resolve(anchor, rule, _tor(2024, 1, 1), TZ_NAME)
    assert result == anchor
    assert "No lunar" in caplog.text


# ---------------------------------------------------------------------------
# initial_alert_at
# ---------------------------------------------------------------------------


def test_initial_alert_for_one_off_keeps_past_start():
    start = datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)
    result = initial_alert_at(start, NoRecurrence(), TZ_NAME, _tor(2024, 2, 1))
    assert result == start
    assert result.tzinfo == TOR


def test_initial_alert_for_recurring_moves_to_first_future_occurrence():
    result = initial_alert_at(_tor(2024, 1, 1, 9, 0), DailyRecurrence(), TZ_NAME, _tor(2024, 1, 4, 12, 0))
    assert result == _tor(2024, 1, 5, 9, 0)


def test_initial_alert_for_future_lunar_start_is_not_moved_earlier():
    start = _tor(2026, 9, 25, 20, 0)
    result = initial_alert_at(start, YearlyLunarRecurrence(month=8, day=15), TZ_NAME, _tor(2025, 1, 1))
    assert result == start
