"""
Narrative Time Contracts
========================

In-story calendar time and signed deltas.

INVARIANTS:
- NarrativeDateTime is always a real calendar instant (weekday derived)
- TimeDelta is signed; days may be negative, hours/minutes are normalized
  so that days*1440 + hours*60 + minutes == total_minutes
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional


DAYS_OF_WEEK = (
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"
)

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December"
)


@dataclass(frozen=True)
class NarrativeDateTime:
    """Absolute in-story time, second resolution."""
    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0
    day_of_week: str = ""

    def __post_init__(self):
        if not self.day_of_week:
            object.__setattr__(self, "day_of_week", DAYS_OF_WEEK[self.to_datetime().weekday()])

    def to_datetime(self) -> datetime:
        return datetime(self.year, self.month, self.day, self.hour, self.minute, self.second)

    @staticmethod
    def from_datetime(value: datetime) -> NarrativeDateTime:
        return NarrativeDateTime(
            year=value.year,
            month=value.month,
            day=value.day,
            hour=value.hour,
            minute=value.minute,
            second=value.second,
            day_of_week=DAYS_OF_WEEK[value.weekday()],
        )

    def plus(self, delta: TimeDelta) -> NarrativeDateTime:
        return NarrativeDateTime.from_datetime(
            self.to_datetime() + timedelta(minutes=delta.total_minutes)
        )

    def same_instant(self, other: Optional[NarrativeDateTime]) -> bool:
        """Calendar equality, ignoring the weekday label."""
        if other is None:
            return False
        return self.to_datetime() == other.to_datetime()

    def to_dict(self) -> Dict[str, object]:
        return {
            "year": self.year,
            "month": self.month,
            "day": self.day,
            "hour": self.hour,
            "minute": self.minute,
            "second": self.second,
            "dayOfWeek": self.day_of_week,
        }

    @staticmethod
    def from_dict(data: Dict[str, object]) -> NarrativeDateTime:
        return NarrativeDateTime(
            year=int(data["year"]),
            month=int(data["month"]),
            day=int(data["day"]),
            hour=int(data.get("hour", 0)),
            minute=int(data.get("minute", 0)),
            second=int(data.get("second", 0)),
            day_of_week=str(data.get("dayOfWeek") or ""),
        )

    @staticmethod
    def from_iso(value: str) -> NarrativeDateTime:
        return NarrativeDateTime.from_datetime(datetime.fromisoformat(value))

    def to_iso(self) -> str:
        return self.to_datetime().isoformat()


# Fallback base for a delta folded before any absolute time exists.
BASE_TIME = NarrativeDateTime(2024, 1, 1, 0, 0, 0, "Monday")


@dataclass(frozen=True)
class TimeDelta:
    """Signed day/hour/minute offset from the preceding folded time."""
    days: int = 0
    hours: int = 0
    minutes: int = 0

    @property
    def total_minutes(self) -> int:
        return self.days * 1440 + self.hours * 60 + self.minutes

    @staticmethod
    def from_minutes(total: int) -> TimeDelta:
        days, rest = divmod(total, 1440)
        hours, minutes = divmod(rest, 60)
        return TimeDelta(days=days, hours=hours, minutes=minutes)

    @staticmethod
    def between(start: NarrativeDateTime, end: NarrativeDateTime) -> TimeDelta:
        elapsed = end.to_datetime() - start.to_datetime()
        return TimeDelta.from_minutes(int(elapsed.total_seconds() // 60))

    def to_dict(self) -> Dict[str, int]:
        return {"days": self.days, "hours": self.hours, "minutes": self.minutes}

    @staticmethod
    def from_dict(data: Dict[str, object]) -> TimeDelta:
        return TimeDelta(
            days=int(data.get("days", 0)),
            hours=int(data.get("hours", 0)),
            minutes=int(data.get("minutes", 0)),
        )


# =============================================================================
# FORMATTING
# =============================================================================

def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_time_elapsed(minutes: int) -> str:
    """Human-readable span: '45 minutes', '2 hours, 5 minutes', '1 week, 3 days'."""
    minutes = abs(minutes)
    if minutes < 60:
        return _plural(minutes, "minute")

    hours, rem_minutes = divmod(minutes, 60)
    if hours < 24:
        if rem_minutes == 0:
            return _plural(hours, "hour")
        return f"{_plural(hours, 'hour')}, {_plural(rem_minutes, 'minute')}"

    days, rem_hours = divmod(hours, 24)
    if days < 7:
        if rem_hours == 0:
            return _plural(days, "day")
        return f"{_plural(days, 'day')}, {_plural(rem_hours, 'hour')}"

    weeks, rem_days = divmod(days, 7)
    if rem_days == 0:
        return _plural(weeks, "week")
    return f"{_plural(weeks, 'week')}, {_plural(rem_days, 'day')}"


def format_date_time(value: NarrativeDateTime) -> str:
    """'Saturday, June 15, 2024 at 10:05 AM'"""
    hour12 = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return (
        f"{value.day_of_week}, {MONTH_NAMES[value.month - 1]} {value.day}, "
        f"{value.year} at {hour12}:{value.minute:02d} {meridiem}"
    )
