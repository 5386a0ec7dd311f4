"""Service for resolving the next occurrence of a recurring event.

Every recurrence kind is resolved relative to an *anchor* (the event's current
``next_alert_at``) and a *reference* instant: the result is the earliest
occurrence at or after the reference.  Solar periods are stepped in the
event's own civil calendar so a 09:00 event stays at 09:00 across daylight
saving changes.  Lunar rules are converted to Gregorian dates year by year.

Resolution never raises for malformed rules and never loops unboundedly; two
independent callers given the same inputs always get the same answer.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import NamedTuple
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta
from lunardate import LunarDate

from app.config import settings
from app.domain.models import (
    CustomRecurrence,
    RecurrenceRule,
    RecurrenceType,
    RecurrenceUnit,
    YearlyLunarRecurrence,
)

logger = logging.getLogger(__name__)

# relativedelta keyword and amount for one period of each fixed solar rule
_SOLAR_PERIODS: dict[str, tuple[str, int]] = {
    RecurrenceType.DAILY: ("days", 1),
    RecurrenceType.WEEKLY: ("weeks", 1),
    RecurrenceType.MONTHLY: ("months", 1),
    RecurrenceType.YEARLY_SOLAR: ("years", 1),
}

_UNIT_FIELDS: dict[str, str] = {
    RecurrenceUnit.DAY: "days",
    RecurrenceUnit.WEEK: "weeks",
    RecurrenceUnit.MONTH: "months",
    RecurrenceUnit.YEAR: "years",
}


class Resolution(NamedTuple):
    """Resolved occurrence; ``capped`` is set when the iteration cap was hit."""

    instant: datetime
    capped: bool = False


def resolve(
    anchor: datetime,
    rule: RecurrenceRule,
    reference: datetime,
    tz_name: str,
) -> datetime:
    """Return the earliest occurrence of *rule* at or after *reference*."""
    return resolve_occurrence(anchor, rule, reference, tz_name).instant


def resolve_occurrence(
    anchor: datetime,
    rule: RecurrenceRule,
    reference: datetime,
    tz_name: str,
    *,
    max_iterations: int | None = None,
    lunar_lookahead_years: int | None = None,
) -> Resolution:
    """Like :func:`resolve`, but also reports whether the result is a soft-fail."""
    tz = ZoneInfo(tz_name)
    max_iterations = max_iterations or settings.MAX_RECURRENCE_ITERATIONS
    lookahead = lunar_lookahead_years or settings.LUNAR_LOOKAHEAD_YEARS

    if rule.type == RecurrenceType.NONE:
        return Resolution(anchor)

    if rule.type in _SOLAR_PERIODS:
        field, amount = _SOLAR_PERIODS[rule.type]
        return _step_civil(anchor, reference, tz, field, amount, max_iterations)

    if rule.type == RecurrenceType.CUSTOM:
        return _resolve_custom(anchor, rule, reference, tz, max_iterations)

    if rule.type == RecurrenceType.YEARLY_LUNAR:
        return Resolution(_next_lunar(anchor, rule, reference, tz, lookahead))

    logger.warning("Unknown recurrence type %r; keeping anchor", rule.type)
    return Resolution(anchor)


def initial_alert_at(
    start_at: datetime, rule: RecurrenceRule, tz_name: str, now: datetime
) -> datetime:
    """Compute ``next_alert_at`` for a newly written event.

    One-off events keep the requested start even when it is in the past (the
    expiry reaper deals with those).  Recurring events are moved to their first
    occurrence at or after *now*.
    """
    if rule.type == RecurrenceType.NONE:
        return start_at.astimezone(ZoneInfo(tz_name))
    return resolve(start_at, rule, now, tz_name)


# ---------------------------------------------------------------------------
# Solar stepping
# ---------------------------------------------------------------------------


def _localize(wall_clock: datetime, tz: ZoneInfo) -> datetime:
    """Attach *tz* to a naive wall-clock time, normalising DST gaps."""
    return wall_clock.replace(tzinfo=tz).astimezone(timezone.utc).astimezone(tz)


def _step_civil(
    anchor: datetime,
    reference: datetime,
    tz: ZoneInfo,
    field: str,
    amount: int,
    max_iterations: int,
) -> Resolution:
    # Step k is anchor + k periods, not the previous candidate + 1 period, so
    # a 31st-of-month anchor does not decay to the 28th after February.
    wall_clock = anchor.astimezone(tz).replace(tzinfo=None)
    candidate = anchor
    for k in range(1, max_iterations + 1):
        if candidate >= reference:
            return Resolution(candidate)
        candidate = _localize(wall_clock + relativedelta(**{field: amount * k}), tz)
    return _finish_capped(anchor, candidate, reference, max_iterations)


def _step_elapsed(
    anchor: datetime,
    reference: datetime,
    tz: ZoneInfo,
    step: timedelta,
    max_iterations: int,
) -> Resolution:
    candidate = anchor
    for k in range(1, max_iterations + 1):
        if candidate >= reference:
            return Resolution(candidate)
        candidate = (anchor + step * k).astimezone(tz)
    return _finish_capped(anchor, candidate, reference, max_iterations)


def _finish_capped(
    anchor: datetime, candidate: datetime, reference: datetime, max_iterations: int
) -> Resolution:
    if candidate >= reference:
        return Resolution(candidate)
    logger.warning(
        "Recurrence from %s hit the %d-step cap at %s (reference %s); "
        "returning best candidate",
        anchor.isoformat(),
        max_iterations,
        candidate.isoformat(),
        reference.isoformat(),
    )
    return Resolution(candidate, capped=True)


def _resolve_custom(
    anchor: datetime,
    rule: CustomRecurrence,
    reference: datetime,
    tz: ZoneInfo,
    max_iterations: int,
) -> Resolution:
    if not rule.interval or rule.interval <= 0 or rule.unit is None:
        logger.debug(
            "Custom rule without a usable interval/unit (%s, %s); treating as none",
            rule.interval,
            rule.unit,
        )
        return Resolution(anchor)

    if rule.unit == RecurrenceUnit.HOUR:
        # Hours are elapsed time, not wall-clock time.
        return _step_elapsed(
            anchor, reference, tz, timedelta(hours=rule.interval), max_iterations
        )
    return _step_civil(
        anchor, reference, tz, _UNIT_FIELDS[rule.unit], rule.interval, max_iterations
    )


# ---------------------------------------------------------------------------
# Lunar
# ---------------------------------------------------------------------------


def _lunar_to_solar(year: int, month: int, day: int, leap: bool) -> date:
    """Gregorian date of a lunar date; ``ValueError`` if it does not exist."""
    return LunarDate(year, month, day, leap).to_solar_date()


def _next_lunar(
    anchor: datetime,
    rule: YearlyLunarRecurrence,
    reference: datetime,
    tz: ZoneInfo,
    lookahead_years: int,
) -> datetime:
    if anchor >= reference:
        return anchor

    local_anchor = anchor.astimezone(tz)
    time_of_day = time(local_anchor.hour, local_anchor.minute)
    first_year = reference.astimezone(tz).year

    # Lunar year Y - 1 is tried too: its last months fall in January/February
    # of Gregorian year Y.
    for year in range(first_year - 1, first_year + lookahead_years):
        try:
            solar = _lunar_to_solar(year, rule.month, rule.day, rule.leap)
        except ValueError:
            logger.debug(
                "Lunar %s%d/%d does not exist in %d; skipping",
                "leap " if rule.leap else "",
                rule.month,
                rule.day,
                year,
            )
            continue
        candidate = _localize(datetime.combine(solar, time_of_day), tz)
        if candidate >= reference:
            return candidate

    logger.warning(
        "No lunar %d/%d occurrence found within %d years of %s; keeping anchor",
        rule.month,
        rule.day,
        lookahead_years,
        reference.isoformat(),
    )
    return anchor
