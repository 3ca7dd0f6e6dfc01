from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from tutordesk.config import settings


WEEKDAY_LABELS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')
MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class TimeInterval:
    """Half-open `[start_at, end_at)` booking interval."""

    start_at: datetime
    end_at: datetime

    def __post_init__(self) -> None:
        for value in (self.start_at, self.end_at):
            if value.second or value.microsecond:
                raise ValueError(f'{value.isoformat()} is not on a whole minute')
        if self.end_at <= self.start_at:
            raise ValueError('end_at must be after start_at')

    @property
    def day(self) -> date:
        return self.start_at.date()

    @property
    def start_min(self) -> int:
        return minute_of_day(self.start_at)

    @property
    def end_min(self) -> int:
        # An interval ending exactly at midnight still belongs to its start day.
        if self.end_at.date() > self.start_at.date() and self.end_at.time() == time(0, 0):
            return MINUTES_PER_DAY
        return minute_of_day(self.end_at)

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)

    def spans_multiple_days(self) -> bool:
        if self.end_at.date() == self.start_at.date():
            return False
        return self.end_min != MINUTES_PER_DAY or self.end_at.date() > self.start_at.date() + timedelta(days=1)

    def overlaps(self, other: 'TimeInterval') -> bool:
        return overlaps(self.start_at, self.end_at, other.start_at, other.end_at)

    def label(self) -> str:
        return format_range(self.start_at, self.end_at)

    @classmethod
    def on_day(cls, day: date, start_min: int, end_min: int) -> 'TimeInterval':
        return cls(at_minute(day, start_min), at_minute(day, end_min))


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError('date range end must not be before its start')

    def days(self):
        return iter_days(self.start, self.end)

    @classmethod
    def weeks_from(cls, start: date, weeks: int) -> 'DateRange':
        if weeks < 1 or weeks > settings.batch_max_weeks:
            raise ValueError(f'weeks must be between 1 and {settings.batch_max_weeks}')
        return cls(start, start + timedelta(days=7 * weeks - 1))

    @classmethod
    def bounded(cls, start: date, end: date) -> 'DateRange':
        date_range = cls(start, end)
        if (end - start).days >= 7 * settings.batch_max_weeks:
            raise ValueError(f'date range must not exceed {settings.batch_max_weeks} weeks')
        return date_range


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def minute_of_day(value: datetime) -> int:
    return value.hour * 60 + value.minute


def at_minute(day: date, minutes: int) -> datetime:
    return datetime.combine(day, time(0, 0)) + timedelta(minutes=int(minutes))


def hhmm(minutes: int) -> str:
    hours, mins = divmod(int(minutes), 60)
    return f'{hours:02d}:{mins:02d}'


def parse_hhmm(value: str) -> int:
    hh, mm = value.strip().split(':', 1)
    hour = int(hh)
    minute = int(mm)
    if hour < 0 or hour > 24 or minute < 0 or minute > 59 or (hour == 24 and minute):
        raise ValueError('Invalid HH:MM time')
    return hour * 60 + minute


def format_range(start_at: datetime, end_at: datetime) -> str:
    return f"{start_at:%Y-%m-%d} {start_at:%H:%M}-{end_at:%H:%M}"


def weekday_label(day: date) -> str:
    return WEEKDAY_LABELS[day.weekday()]


def iter_days(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
