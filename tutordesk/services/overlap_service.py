from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Hashable, Iterable

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, contains_eager

from tutordesk.models import Appointment, ClassGroup, ClassSession, Teacher
from tutordesk.utils.time_utils import TimeInterval, format_range


class Dimension(str, Enum):
    TEACHER = 'TEACHER'
    ROOM = 'ROOM'


@dataclass(frozen=True)
class Booking:
    kind: str  # session | appointment
    id: int
    start_at: datetime
    end_at: datetime
    teacher_id: int | None
    teacher_name: str
    label: str
    campus_name: str = ''
    room_name: str = ''

    def describe(self) -> str:
        place = '/'.join(part for part in (self.campus_name, self.room_name) if part)
        where = f', {place}' if place else ''
        return f'{self.label} ({self.teacher_name}{where}) {format_range(self.start_at, self.end_at)}'

    def as_dict(self) -> dict:
        return {
            'kind': self.kind,
            'id': self.id,
            'label': self.label,
            'teacher_id': self.teacher_id,
            'teacher': self.teacher_name,
            'campus': self.campus_name,
            'room': self.room_name,
            'range': format_range(self.start_at, self.end_at),
        }


@dataclass(frozen=True)
class TimedEvent:
    id: Hashable
    start_at: datetime
    end_at: datetime
    room_id: int | None = None


def effective_teacher_filter(teacher_id: int):
    return or_(
        ClassSession.teacher_id == teacher_id,
        and_(ClassSession.teacher_id.is_(None), ClassGroup.teacher_id == teacher_id),
    )


def _sessions_query(db: Session):
    return (
        db.query(ClassSession)
        .join(ClassGroup, ClassSession.class_id == ClassGroup.id)
        .options(contains_eager(ClassSession.class_group))
    )


def _teacher_name(db: Session, teacher_id: int | None) -> str:
    if teacher_id is None:
        return ''
    teacher = db.get(Teacher, teacher_id)
    return teacher.name if teacher else f'teacher {teacher_id}'


def session_booking(db: Session, row: ClassSession) -> Booking:
    group = row.class_group
    teacher_id = row.effective_teacher_id
    return Booking(
        kind='session',
        id=row.id,
        start_at=row.start_at,
        end_at=row.end_at,
        teacher_id=teacher_id,
        teacher_name=_teacher_name(db, teacher_id),
        label=group.label,
        campus_name=group.campus.name if group.campus else '',
        room_name=group.room.name if group.room else '',
    )


def appointment_booking(db: Session, row: Appointment) -> Booking:
    return Booking(
        kind='appointment',
        id=row.id,
        start_at=row.start_at,
        end_at=row.end_at,
        teacher_id=row.teacher_id,
        teacher_name=_teacher_name(db, row.teacher_id),
        label='Appointment',
    )


def find_overlap(
    db: Session,
    dimension: Dimension,
    dimension_id: int,
    interval: TimeInterval,
    *,
    exclude_session_ids: Iterable[int] = (),
    exclude_appointment_ids: Iterable[int] = (),
) -> Booking | None:
    """Return the earliest booking on a teacher or room that overlaps `interval`.

    Overlap is strict: a booking ending exactly at `interval.start_at` is not a conflict.
    """
    session_excludes = [int(value) for value in exclude_session_ids]
    query = _sessions_query(db).filter(
        ClassSession.start_at < interval.end_at,
        ClassSession.end_at > interval.start_at,
    )
    if dimension == Dimension.TEACHER:
        query = query.filter(effective_teacher_filter(dimension_id))
    else:
        query = query.filter(ClassGroup.room_id == dimension_id)
    if session_excludes:
        query = query.filter(ClassSession.id.notin_(session_excludes))
    session_hit = query.order_by(ClassSession.start_at.asc(), ClassSession.id.asc()).first()

    appointment_hit = None
    if dimension == Dimension.TEACHER:
        appointment_excludes = [int(value) for value in exclude_appointment_ids]
        appt_query = db.query(Appointment).filter(
            Appointment.teacher_id == dimension_id,
            Appointment.start_at < interval.end_at,
            Appointment.end_at > interval.start_at,
        )
        if appointment_excludes:
            appt_query = appt_query.filter(Appointment.id.notin_(appointment_excludes))
        appointment_hit = appt_query.order_by(Appointment.start_at.asc(), Appointment.id.asc()).first()

    if session_hit is not None and (appointment_hit is None or session_hit.start_at <= appointment_hit.start_at):
        return session_booking(db, session_hit)
    if appointment_hit is not None:
        return appointment_booking(db, appointment_hit)
    return None


def list_teacher_bookings(db: Session, teacher_id: int, start_at: datetime, end_at: datetime) -> list[Booking]:
    sessions = (
        _sessions_query(db)
        .filter(
            effective_teacher_filter(teacher_id),
            ClassSession.start_at < end_at,
            ClassSession.end_at > start_at,
        )
        .all()
    )
    appointments = (
        db.query(Appointment)
        .filter(
            Appointment.teacher_id == teacher_id,
            Appointment.start_at < end_at,
            Appointment.end_at > start_at,
        )
        .all()
    )
    bookings = [session_booking(db, row) for row in sessions]
    bookings.extend(appointment_booking(db, row) for row in appointments)
    bookings.sort(key=lambda row: (row.start_at, row.end_at, row.kind, row.id))
    return bookings


def find_all_overlaps(events: Iterable[TimedEvent]) -> dict[Hashable, set[Hashable]]:
    """Sweep one track of events and map every conflicting id to the ids it overlaps."""
    ordered = sorted(events, key=lambda event: (event.start_at, event.end_at))
    conflicts: dict[Hashable, set[Hashable]] = {}
    for index, current in enumerate(ordered):
        # Stop at the first later event that starts at or after current ends.
        cursor = index + 1
        while cursor < len(ordered) and ordered[cursor].start_at < current.end_at:
            other = ordered[cursor]
            if other.end_at > current.start_at:
                conflicts.setdefault(current.id, set()).add(other.id)
                conflicts.setdefault(other.id, set()).add(current.id)
            cursor += 1
    return conflicts


def find_room_overlaps(events: Iterable[TimedEvent]) -> dict[int, dict[Hashable, set[Hashable]]]:
    by_room: dict[int, list[TimedEvent]] = {}
    for event in events:
        if event.room_id is None:
            continue
        by_room.setdefault(int(event.room_id), []).append(event)
    result: dict[int, dict[Hashable, set[Hashable]]] = {}
    for room_id, room_events in by_room.items():
        conflicts = find_all_overlaps(room_events)
        if conflicts:
            result[room_id] = conflicts
    return result


def conflict_pairs(conflicts: dict[Hashable, set[Hashable]]) -> list[tuple[Hashable, Hashable]]:
    pairs = set()
    for left, others in conflicts.items():
        for right in others:
            pairs.add(tuple(sorted((left, right), key=repr)))
    return sorted(pairs, key=repr)
