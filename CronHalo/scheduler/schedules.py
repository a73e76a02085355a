"""
Recurrence rules for scheduled tasks.

Each rule is a small frozen dataclass with a pure `matches(now)` method.
`parse_schedule` turns the textual form used in task configuration into one
of these variants and raises SchedulingError for anything it does not
understand, so bad rules fail the process at startup rather than mid-run.

All matching is done in UTC at minute granularity. The orchestrator is
polled by an external trigger; a rule is "due" whenever the trigger fires
inside a matching minute.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from croniter import croniter

from CronHalo.errors import SchedulingError

WEEKDAYS = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}
WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def to_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _check_range(name: str, value: int, low: int, high: int):
    if not low <= value <= high:
        raise SchedulingError(f"{name} must be between {low} and {high}, got {value}")


@dataclass(frozen=True)
class Hourly:
    minute: int = 0

    def __post_init__(self):
        _check_range("minute", self.minute, 0, 59)

    def matches(self, now: datetime) -> bool:
        return to_utc(now).minute == self.minute

    def __str__(self) -> str:
        return "hourly" if self.minute == 0 else f"hourly at :{self.minute:02d}"


@dataclass(frozen=True)
class DailyAt:
    hour: int
    minute: int = 0

    def __post_init__(self):
        _check_range("hour", self.hour, 0, 23)
        _check_range("minute", self.minute, 0, 59)

    def matches(self, now: datetime) -> bool:
        now = to_utc(now)
        return now.hour == self.hour and now.minute == self.minute

    def __str__(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class EveryNMinutes:
    """Every n minutes, anchored to the top of the hour."""

    n: int

    def __post_init__(self):
        _check_range("interval", self.n, 1, 60)

    def matches(self, now: datetime) -> bool:
        return to_utc(now).minute % self.n == 0

    def __str__(self) -> str:
        return f"every {self.n} minutes"


@dataclass(frozen=True)
class WeeklyAt:
    weekday: int  # 0 = Monday
    hour: int
    minute: int = 0

    def __post_init__(self):
        _check_range("weekday", self.weekday, 0, 6)
        _check_range("hour", self.hour, 0, 23)
        _check_range("minute", self.minute, 0, 59)

    def matches(self, now: datetime) -> bool:
        now = to_utc(now)
        return (
            now.weekday() == self.weekday
            and now.hour == self.hour
            and now.minute == self.minute
        )

    def __str__(self) -> str:
        return f"weekly on {WEEKDAY_NAMES[self.weekday]} at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class CronExpression:
    """Five-field cron expression: minute hour day month weekday (0 or 7 = Sunday)."""

    expression: str

    def __post_init__(self):
        # Fail at construction, not on first match
        if len(self.expression.split()) != 5 or not croniter.is_valid(self.expression):
            raise SchedulingError(
                f"Invalid cron expression: {self.expression!r}. Expected 5 valid components."
            )

    def matches(self, now: datetime) -> bool:
        minute = to_utc(now).replace(second=0, microsecond=0)
        return bool(croniter.match(self.expression, minute))

    def __str__(self) -> str:
        return self.expression


Schedule = Union[Hourly, DailyAt, EveryNMinutes, WeeklyAt, CronExpression]

_TIME = r"(\d{1,2})(?::(\d{2}))?"
_HOURLY_RE = re.compile(r"^hourly(?:\s+at\s+:?(\d{1,2}))?$")
_DAILY_RE = re.compile(rf"^daily\s+at\s+{_TIME}$")
_EVERY_RE = re.compile(r"^every\s+(\d+)\s+minutes?$")
_WEEKLY_RE = re.compile(rf"^weekly\s+on\s+([a-z]+)\s+at\s+{_TIME}$")


def parse_schedule(value: str | Schedule) -> Schedule:
    """
    Parse a textual recurrence rule.

    Accepted forms:
        "hourly", "hourly at :15"
        "daily at 2", "daily at 02:30"
        "every 15 minutes"
        "weekly on monday at 08:00"
        "0 2 * * *"  (five-field cron)
    """
    if isinstance(value, (Hourly, DailyAt, EveryNMinutes, WeeklyAt, CronExpression)):
        return value
    if not isinstance(value, str):
        raise SchedulingError(f"Schedule must be a string, got {type(value).__name__}")

    text = " ".join(value.strip().lower().split())
    if not text:
        raise SchedulingError("Schedule is empty")

    match = _HOURLY_RE.match(text)
    if match:
        return Hourly(minute=int(match.group(1) or 0))

    match = _DAILY_RE.match(text)
    if match:
        return DailyAt(hour=int(match.group(1)), minute=int(match.group(2) or 0))

    match = _EVERY_RE.match(text)
    if match:
        return EveryNMinutes(n=int(match.group(1)))

    match = _WEEKLY_RE.match(text)
    if match:
        day = WEEKDAYS.get(match.group(1))
        if day is None:
            raise SchedulingError(f"Unknown weekday in schedule: {value!r}")
        return WeeklyAt(weekday=day, hour=int(match.group(2)), minute=int(match.group(3) or 0))

    if len(text.split()) == 5:
        return CronExpression(text)

    raise SchedulingError(f"Unrecognised schedule: {value!r}")
