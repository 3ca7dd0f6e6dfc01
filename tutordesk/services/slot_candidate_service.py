from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy.orm import Session

from tutordesk.cache import SCHEDULING_CACHE_PREFIX, cache, cache_key, clear_scheduling_cache
from tutordesk.config import settings
from tutordesk.core.time_provider import TimeProvider, default_time_provider
from tutordesk.metrics import timed_service
from tutordesk.models import BookingSlotVisibility, Teacher
from tutordesk.services.availability_service import resolve_availability
from tutordesk.services.overlap_service import list_teacher_bookings
from tutordesk.utils.time_utils import MINUTES_PER_DAY, DateRange, TimeInterval, at_minute, hhmm, overlaps


SLOT_CANDIDATES_TTL_SECONDS = 30
MIN_STEP_MINUTES = 5
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingSlotCandidate:
    teacher_id: int
    date: date
    start_min: int
    end_min: int
    booked: bool
    visible_to_student: bool

    @property
    def start_at(self) -> datetime:
        return at_minute(self.date, self.start_min)

    @property
    def end_at(self) -> datetime:
        return at_minute(self.date, self.end_min)

    def as_dict(self) -> dict[str, Any]:
        return {
            'teacher_id': self.teacher_id,
            'date': self.date.isoformat(),
            'start': hhmm(self.start_min),
            'end': hhmm(self.end_min),
            'booked': self.booked,
            'visible_to_student': self.visible_to_student,
        }


def _visibility_map(db: Session, teacher_ids: list[int], date_range: DateRange) -> dict[tuple[int, datetime, datetime], bool]:
    rows = (
        db.query(BookingSlotVisibility)
        .filter(
            BookingSlotVisibility.teacher_id.in_(teacher_ids),
            BookingSlotVisibility.start_at >= at_minute(date_range.start, 0),
            BookingSlotVisibility.start_at < at_minute(date_range.end, MINUTES_PER_DAY),
        )
        .all()
    )
    return {(row.teacher_id, row.start_at, row.end_at): bool(row.visible) for row in rows}


@timed_service('slot_candidates')
def build_slot_candidates(
    db: Session,
    teacher_ids: Iterable[int],
    date_range: DateRange,
    duration_min: int,
    step_min: int | None = None,
    *,
    include_past: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> list[BookingSlotCandidate]:
    """Enumerate bookable slots from each teacher's resolved availability.

    Display only: booking approval still goes through the full validator.
    """
    step = int(step_min or settings.slot_default_step_minutes)
    if duration_min < settings.booking_min_duration_minutes:
        raise ValueError(f'duration must be at least {settings.booking_min_duration_minutes} minutes')
    if step < MIN_STEP_MINUTES:
        raise ValueError(f'step must be at least {MIN_STEP_MINUTES} minutes')

    ids = sorted({int(value) for value in teacher_ids})
    if not ids:
        return []
    visibility = _visibility_map(db, ids, date_range)
    now = None if include_past else time_provider.now_naive()
    range_start = at_minute(date_range.start, 0)
    range_end = at_minute(date_range.end, MINUTES_PER_DAY)

    candidates: list[BookingSlotCandidate] = []
    for teacher_id in ids:
        bookings = list_teacher_bookings(db, teacher_id, range_start, range_end)
        for day in date_range.days():
            for slot in resolve_availability(db, teacher_id, day):
                start_min = slot.start_min
                while start_min + duration_min <= slot.end_min:
                    interval = TimeInterval.on_day(day, start_min, start_min + duration_min)
                    if now is None or interval.start_at >= now:
                        booked = any(overlaps(row.start_at, row.end_at, interval.start_at, interval.end_at) for row in bookings)
                        candidates.append(
                            BookingSlotCandidate(
                                teacher_id=teacher_id,
                                date=day,
                                start_min=start_min,
                                end_min=start_min + duration_min,
                                booked=booked,
                                visible_to_student=visibility.get((teacher_id, interval.start_at, interval.end_at), False),
                            )
                        )
                    start_min += step
    candidates.sort(key=lambda row: (row.date, row.start_min, row.teacher_id))
    return candidates


def get_slot_candidates_payload(
    db: Session,
    teacher_ids: Iterable[int],
    date_range: DateRange,
    duration_min: int,
    step_min: int | None = None,
    *,
    only_visible: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> list[dict[str, Any]]:
    ids = sorted({int(value) for value in teacher_ids})
    key = cache_key(
        SCHEDULING_CACHE_PREFIX,
        'slots',
        ','.join(str(value) for value in ids),
        date_range.start.isoformat(),
        date_range.end.isoformat(),
        duration_min,
        step_min or settings.slot_default_step_minutes,
        int(only_visible),
        time_provider.now_naive().strftime('%Y%m%d%H%M'),
    )
    cached = cache.get_cached(key)
    if cached is not None:
        return cached
    rows = build_slot_candidates(db, ids, date_range, duration_min, step_min, time_provider=time_provider)
    payload = [row.as_dict() for row in rows if not only_visible or (row.visible_to_student and not row.booked)]
    cache.set_cached(key, payload, SLOT_CANDIDATES_TTL_SECONDS)
    return payload


def set_slot_visibility(db: Session, teacher_id: int, interval: TimeInterval, visible: bool) -> BookingSlotVisibility:
    if db.get(Teacher, teacher_id) is None:
        raise ValueError('Teacher not found')
    row = (
        db.query(BookingSlotVisibility)
        .filter(
            BookingSlotVisibility.teacher_id == teacher_id,
            BookingSlotVisibility.start_at == interval.start_at,
            BookingSlotVisibility.end_at == interval.end_at,
        )
        .first()
    )
    if row is None:
        row = BookingSlotVisibility(teacher_id=teacher_id, start_at=interval.start_at, end_at=interval.end_at)
        db.add(row)
    row.visible = bool(visible)
    db.commit()
    db.refresh(row)
    clear_scheduling_cache()
    logger.info('slot_visibility_set teacher_id=%s range=%s visible=%s', teacher_id, interval.label(), row.visible)
    return row
