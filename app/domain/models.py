"""Domain models for the recurring reminder system."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_TIMEZONE = "America/Toronto"


class RecurrenceType(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY_SOLAR = "yearly_solar"
    YEARLY_LUNAR = "yearly_lunar"
    CUSTOM = "custom"


class RecurrenceUnit(StrEnum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class LabelPurpose(StrEnum):
    AT_TIME = "at_time"
    DAYS_BEFORE = "days_before"
    BEFORE = "before"


class DeliveryOutcome(StrEnum):
    DELIVERED = "delivered"
    FAILED = "failed"
    INVALIDATED = "invalidated"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must be timezone-aware")
    return value


def _require_zone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown time zone: {value}") from exc
    return value


# ---------------------------------------------------------------------------
# Recurrence rules
# ---------------------------------------------------------------------------


class NoRecurrence(BaseModel):
    type: Literal["none"] = "none"


class DailyRecurrence(BaseModel):
    type: Literal["daily"] = "daily"


class WeeklyRecurrence(BaseModel):
    type: Literal["weekly"] = "weekly"


class MonthlyRecurrence(BaseModel):
    type: Literal["monthly"] = "monthly"


class YearlySolarRecurrence(BaseModel):
    type: Literal["yearly_solar"] = "yearly_solar"


class YearlyLunarRecurrence(BaseModel):
    """Same lunar month/day every lunar year (e.g. 8/15 for Mid-Autumn)."""

    type: Literal["yearly_lunar"] = "yearly_lunar"
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=30)
    leap: bool = False


class CustomRecurrence(BaseModel):
    """Every *interval* *unit*s.

    Interval and unit are deliberately unconstrained: stored rules may be
    incomplete, and the resolver treats those as non-recurring.
    """

    type: Literal["custom"] = "custom"
    interval: int | None = None
    unit: RecurrenceUnit | None = None


RecurrenceRule = Annotated[
    Union[
        NoRecurrence,
        DailyRecurrence,
        WeeklyRecurrence,
        MonthlyRecurrence,
        YearlySolarRecurrence,
        YearlyLunarRecurrence,
        CustomRecurrence,
    ],
    Field(discriminator="type"),
]


def _normalize_rule(value):
    if value is None:
        return NoRecurrence()
    return value


def _normalize_reminders(value: list[int]) -> list[int]:
    seen: list[int] = []
    for offset in value:
        if offset < 0:
            raise ValueError("reminder offsets must be non-negative")
        if offset not in seen:
            seen.append(offset)
    return seen


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Event(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str | None = None
    next_alert_at: datetime
    timezone: str = DEFAULT_TIMEZONE
    recurrence_rule: RecurrenceRule = Field(default_factory=NoRecurrence)
    reminders: list[int] = Field(default_factory=lambda: [0])
    recipient_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("next_alert_at")
    @classmethod
    def _aware_alert(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        return _require_zone(value)

    @field_validator("reminders")
    @classmethod
    def _unique_offsets(cls, value: list[int]) -> list[int]:
        return _normalize_reminders(value)

    @field_validator("recurrence_rule", mode="before")
    @classmethod
    def _missing_rule(cls, value):
        return _normalize_rule(value)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_rule.type != RecurrenceType.NONE


class Subscription(BaseModel):
    """A delivery target registered for a recipient (e.g. a push endpoint)."""

    id: str = Field(default_factory=_new_id)
    recipient_id: str
    endpoint: str
    keys: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class EvaluationWindow(BaseModel):
    """Half-open interval ``[start, end)`` that alert instants are tested against."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _aware_bounds(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> EvaluationWindow:
        if self.end <= self.start:
            raise ValueError("window end must be after start")
        return self

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


class ReminderMatch(BaseModel):
    offset_minutes: int
    purpose: LabelPurpose
    alert_at: datetime
    occurrence_at: datetime


class DueReminder(BaseModel):
    """A matched reminder together with the event it belongs to."""

    event: Event
    match: ReminderMatch

    @property
    def recipient_id(self) -> str | None:
        return self.event.recipient_id


class DigestPayload(BaseModel):
    recipient_id: str
    title: str
    body: str
    tag: str
    labels: list[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.labels)


class DeliveryResult(BaseModel):
    delivered: bool
    terminal: bool = False
    status_code: int | None = None
    detail: str | None = None

    @classmethod
    def ok(cls, status_code: int | None = None) -> DeliveryResult:
        return cls(delivered=True, status_code=status_code)

    @classmethod
    def failed(
        cls, terminal: bool, status_code: int | None = None, detail: str | None = None
    ) -> DeliveryResult:
        return cls(
            delivered=False, terminal=terminal, status_code=status_code, detail=detail
        )


class DeliveryLogEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    recipient_id: str
    subscription_id: str
    tag: str
    outcome: DeliveryOutcome
    detail: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class PassReport(BaseModel):
    """Summary of one evaluation pass, returned to whichever driver ran it."""

    mode: str
    evaluated_at: datetime
    window: EvaluationWindow
    events_seen: int = 0
    advanced: dict[str, datetime] = Field(default_factory=dict)
    expired: list[str] = Field(default_factory=list)
    matched: int = 0
    skipped: list[str] = Field(default_factory=list)
    recipients_notified: list[str] = Field(default_factory=list)
    deliveries_failed: int = 0


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class EventWrite(BaseModel):
    """Client input for creating or replacing an event.

    ``start_at`` is the first requested occurrence; the stored
    ``next_alert_at`` is resolved from it once, at write time.
    """

    title: str
    description: str | None = None
    start_at: datetime
    timezone: str = DEFAULT_TIMEZONE
    recurrence_rule: RecurrenceRule = Field(default_factory=NoRecurrence)
    reminders: list[int] = Field(default_factory=lambda: [0])
    recipient_id: str | None = None

    @field_validator("start_at")
    @classmethod
    def _aware_start(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        return _require_zone(value)

    @field_validator("reminders")
    @classmethod
    def _unique_offsets(cls, value: list[int]) -> list[int]:
        return _normalize_reminders(value)

    @field_validator("recurrence_rule", mode="before")
    @classmethod
    def _missing_rule(cls, value):
        return _normalize_rule(value)


class SubscriptionCreate(BaseModel):
    recipient_id: str
    endpoint: str
    keys: dict[str, str] = Field(default_factory=dict)


class PushTestRequest(BaseModel):
    recipient_id: str
