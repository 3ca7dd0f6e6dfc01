from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from sqlalchemy.orm import Session

from tutordesk.cache import SCHEDULING_CACHE_PREFIX, cache, cache_key, clear_scheduling_cache
from tutordesk.models import AvailabilityOverride, AvailabilityRule, Teacher
from tutordesk.services.overlap_service import list_teacher_bookings
from tutordesk.utils.time_utils import MINUTES_PER_DAY, TimeInterval, at_minute, hhmm, iter_days, weekday_label


DAY_AVAILABILITY_TTL_SECONDS = 30
GENERATE_MODES = ('sync', 'merge')
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilitySlot:
    start_min: int
    end_min: int

    def contains(self, start_min: int, end_min: int) -> bool:
        return self.start_min <= start_min and end_min <= self.end_min

    def label(self) -> str:
        return f'{hhmm(self.start_min)}-{hhmm(self.end_min)}'


@dataclass(frozen=True)
class AvailabilityCheck:
    ok: bool
    weekday: str
    slots: tuple[AvailabilitySlot, ...]
    covering_slot: AvailabilitySlot | None = None
    message: str = ''

    def detail(self) -> dict[str, Any]:
        return {
            'weekday': self.weekday,
            'available': [slot.label() for slot in self.slots],
        }


def format_slots(slots: Iterable[AvailabilitySlot]) -> str:
    return ', '.join(slot.label() for slot in slots)


def _validate_window(start_min: int, end_min: int) -> None:
    if start_min < 0 or end_min > MINUTES_PER_DAY:
        raise ValueError('Availability window must lie within the day')
    if end_min <= start_min:
        raise ValueError('Availability window must end after it starts')


def _validate_weekday(weekday: int) -> None:
    if weekday < 0 or weekday > 6:
        raise ValueError('weekday must be between 0 (Mon) and 6 (Sun)')


def _require_teacher(db: Session, teacher_id: int) -> Teacher:
    teacher = db.query(Teacher).filter(Teacher.id == teacher_id).first()
    if not teacher:
        raise ValueError('Teacher not found')
    return teacher


def resolve_availability_with_source(db: Session, teacher_id: int, day: date) -> tuple[list[AvailabilitySlot], str]:
    overrides = (
        db.query(AvailabilityOverride)
        .filter(AvailabilityOverride.teacher_id == teacher_id, AvailabilityOverride.date == day)
        .all()
    )
    if overrides:
        # Overrides replace the weekly rules outright; a day-off marker leaves nothing.
        slots = [
            AvailabilitySlot(int(row.start_min), int(row.end_min))
            for row in overrides
            if not row.is_day_off and row.start_min is not None and row.end_min is not None
        ]
        return sorted(slots, key=lambda slot: (slot.start_min, slot.end_min)), 'override'

    rules = (
        db.query(AvailabilityRule)
        .filter(AvailabilityRule.teacher_id == teacher_id, AvailabilityRule.weekday == day.weekday())
        .all()
    )
    if rules:
        slots = [AvailabilitySlot(int(row.start_min), int(row.end_min)) for row in rules]
        return sorted(slots, key=lambda slot: (slot.start_min, slot.end_min)), 'rules'
    return [], 'none'


def resolve_availability(db: Session, teacher_id: int, day: date) -> list[AvailabilitySlot]:
    slots, _ = resolve_availability_with_source(db, teacher_id, day)
    return slots


def check_within_availability(db: Session, teacher_id: int, interval: TimeInterval) -> AvailabilityCheck:
    day = interval.day
    weekday = weekday_label(day)
    slots = tuple(resolve_availability(db, teacher_id, day))
    if not slots:
        return AvailabilityCheck(ok=False, weekday=weekday, slots=slots, message=f'No availability on {weekday} (no slots)')

    start_min, end_min = interval.start_min, interval.end_min
    for slot in slots:
        if slot.contains(start_min, end_min):
            return AvailabilityCheck(ok=True, weekday=weekday, slots=slots, covering_slot=slot)
    return AvailabilityCheck(
        ok=False,
        weekday=weekday,
        slots=slots,
        message=f'Outside availability {weekday} {hhmm(start_min)}-{hhmm(end_min)}. Available: {format_slots(slots)}',
    )


def add_availability_rule(db: Session, teacher_id: int, *, weekday: int, start_min: int, end_min: int) -> AvailabilityRule:
    _require_teacher(db, teacher_id)
    _validate_weekday(weekday)
    _validate_window(start_min, end_min)
    row = AvailabilityRule(teacher_id=teacher_id, weekday=weekday, start_min=start_min, end_min=end_min)
    db.add(row)
    db.commit()
    db.refresh(row)
    clear_scheduling_cache()
    logger.info('availability_rule_added teacher_id=%s weekday=%s window=%s-%s', teacher_id, weekday, start_min, end_min)
    return row


def delete_availability_rule(db: Session, rule_id: int) -> None:
    row = db.query(AvailabilityRule).filter(AvailabilityRule.id == rule_id).first()
    if not row:
        raise ValueError('Availability rule not found')
    db.delete(row)
    db.commit()
    clear_scheduling_cache()


def _replace_override_rows(db: Session, teacher_id: int, day: date, slots: list[tuple[int, int]]) -> None:
    db.query(AvailabilityOverride).filter(
        AvailabilityOverride.teacher_id == teacher_id,
        AvailabilityOverride.date == day,
    ).delete(synchronize_session=False)
    if not slots:
        db.add(AvailabilityOverride(teacher_id=teacher_id, date=day, is_day_off=True))
        return
    for start_min, end_min in slots:
        db.add(AvailabilityOverride(teacher_id=teacher_id, date=day, start_min=start_min, end_min=end_min))


def set_availability_override(db: Session, teacher_id: int, day: date, slots: list[tuple[int, int]]) -> list[AvailabilitySlot]:
    """Replace the availability of one date. An empty list marks the day off."""
    _require_teacher(db, teacher_id)
    normalized = sorted((int(start), int(end)) for start, end in slots)
    for start_min, end_min in normalized:
        _validate_window(start_min, end_min)
    _replace_override_rows(db, teacher_id, day, normalized)
    db.commit()
    clear_scheduling_cache()
    logger.info('availability_override_set teacher_id=%s date=%s slots=%s', teacher_id, day.isoformat(), len(normalized))
    return [AvailabilitySlot(start_min, end_min) for start_min, end_min in normalized]


def clear_availability_override(db: Session, teacher_id: int, day: date) -> int:
    bookings = list_teacher_bookings(db, teacher_id, at_minute(day, 0), at_minute(day, MINUTES_PER_DAY))
    if bookings:
        raise ValueError(f'Cannot clear availability for {day.isoformat()}: {len(bookings)} booking(s) exist that day')
    deleted = (
        db.query(AvailabilityOverride)
        .filter(AvailabilityOverride.teacher_id == teacher_id, AvailabilityOverride.date == day)
        .delete(synchronize_session=False)
    )
    db.commit()
    clear_scheduling_cache()
    return int(deleted or 0)


def generate_month_overrides(db: Session, teacher_id: int, *, year: int, month: int, mode: str = 'merge') -> dict[str, int]:
    """Copy the weekly rules into date overrides for every day of a month.

    `sync` rewrites days that already have overrides, `merge` leaves them alone.
    """
    if mode not in GENERATE_MODES:
        raise ValueError(f'mode must be one of {", ".join(GENERATE_MODES)}')
    _require_teacher(db, teacher_id)
    rules = db.query(AvailabilityRule).filter(AvailabilityRule.teacher_id == teacher_id).all()
    rules_by_weekday: dict[int, list[tuple[int, int]]] = {}
    for rule in rules:
        rules_by_weekday.setdefault(int(rule.weekday), []).append((int(rule.start_min), int(rule.end_min)))

    first_day = date(year, month, 1)
    last_day = date(year, month, calendar.monthrange(year, month)[1])
    existing_days = {
        row[0]
        for row in db.query(AvailabilityOverride.date)
        .filter(
            AvailabilityOverride.teacher_id == teacher_id,
            AvailabilityOverride.date >= first_day,
            AvailabilityOverride.date <= last_day,
        )
        .distinct()
        .all()
    }

    written = 0
    skipped = 0
    for day in iter_days(first_day, last_day):
        day_rules = sorted(rules_by_weekday.get(day.weekday(), []))
        if day in existing_days and mode == 'merge':
            skipped += 1
            continue
        if not day_rules:
            if day in existing_days:
                db.query(AvailabilityOverride).filter(
                    AvailabilityOverride.teacher_id == teacher_id,
                    AvailabilityOverride.date == day,
                ).delete(synchronize_session=False)
            skipped += 1
            continue
        _replace_override_rows(db, teacher_id, day, day_rules)
        written += 1
    db.commit()
    clear_scheduling_cache()
    logger.info(
        'availability_month_generated teacher_id=%s month=%04d-%02d mode=%s written=%s skipped=%s',
        teacher_id,
        year,
        month,
        mode,
        written,
        skipped,
    )
    return {'written': written, 'skipped': skipped}


def get_day_availability(db: Session, teacher_id: int, day: date) -> dict[str, Any]:
    key = cache_key(SCHEDULING_CACHE_PREFIX, 'availability', teacher_id, day.isoformat())
    cached = cache.get_cached(key)
    if cached is not None:
        return cached

    slots, source = resolve_availability_with_source(db, teacher_id, day)
    bookings = list_teacher_bookings(db, teacher_id, at_minute(day, 0), at_minute(day, MINUTES_PER_DAY))
    payload = {
        'teacher_id': teacher_id,
        'date': day.isoformat(),
        'weekday': weekday_label(day),
        'source': source,
        'slots': [{'start': hhmm(slot.start_min), 'end': hhmm(slot.end_min)} for slot in slots],
        'booked': [
            {
                'kind': booking.kind,
                'id': booking.id,
                'start': booking.start_at.strftime('%H:%M'),
                'end': booking.end_at.strftime('%H:%M'),
                'label': booking.label,
            }
            for booking in bookings
        ],
    }
    cache.set_cached(key, payload, DAY_AVAILABILITY_TTL_SECONDS)
    return payload
