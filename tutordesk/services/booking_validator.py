from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from tutordesk.core.booking_result import ACCEPT, Decision, Reject, RejectCode, not_found
from tutordesk.metrics import record_booking_outcome, timed_service
from tutordesk.models import Campus, ClassGroup, ClassSession, Room, Subject, Teacher
from tutordesk.services.availability_service import check_within_availability
from tutordesk.services.enrollment_service import is_enrolled
from tutordesk.services.overlap_service import Dimension, find_overlap
from tutordesk.utils.time_utils import TimeInterval, format_range


logger = logging.getLogger(__name__)

CHECK_ORDER = (
    'span',
    'student',
    'qualification',
    'availability',
    'duplicate',
    'teacher_conflict',
    'room_conflict',
    'capacity',
    'room_required',
)
ALL_CHECKS = frozenset(CHECK_ORDER)
# Re-run against a new teacher when sessions are reassigned.
REASSIGNMENT_CHECKS = frozenset({'qualification', 'availability', 'duplicate', 'teacher_conflict', 'room_conflict'})
# Appointments have no class or room.
APPOINTMENT_CHECKS = frozenset({'span', 'availability', 'teacher_conflict'})


@dataclass(frozen=True)
class BookingCandidate:
    """Either an existing class or an ad-hoc teacher/room/campus booking.

    `teacher_id` on a class candidate is a teacher override for that occurrence.
    """

    class_id: int | None = None
    teacher_id: int | None = None
    room_id: int | None = None
    campus_id: int | None = None
    subject_id: int | None = None
    course_id: int | None = None
    capacity: int | None = None


@dataclass
class _BookingContext:
    db: Session
    interval: TimeInterval
    student_id: int | None
    teacher: Teacher
    class_group: ClassGroup | None = None
    room: Room | None = None
    campus: Campus | None = None
    subject_id: int | None = None
    course_id: int | None = None
    capacity: int = 1
    exclude_session_ids: tuple[int, ...] = field(default_factory=tuple)
    exclude_appointment_ids: tuple[int, ...] = field(default_factory=tuple)


def teacher_qualified_for(teacher: Teacher, subject_id: int | None, *, course_id: int | None = None) -> bool:
    """Primary subject or subject list; falls back to course membership without a subject."""
    if subject_id is not None:
        if teacher.primary_subject_id is not None and int(teacher.primary_subject_id) == int(subject_id):
            return True
        return any(int(subject.id) == int(subject_id) for subject in teacher.subjects)
    if course_id is not None:
        candidates = [teacher.primary_subject, *teacher.subjects]
        return any(subject is not None and int(subject.course_id) == int(course_id) for subject in candidates)
    return True


def _check_span(interval: TimeInterval) -> Reject | None:
    if not interval.spans_multiple_days():
        return None
    return Reject(
        RejectCode.MULTI_DAY_SPAN,
        'Booking must start and end on the same day',
        {'range': format_range(interval.start_at, interval.end_at)},
    )


def _check_student(ctx: _BookingContext) -> Reject | None:
    if ctx.capacity != 1:
        return None
    if ctx.student_id is None:
        return Reject(RejectCode.STUDENT_REQUIRED, 'A student is required for one-on-one bookings')
    if ctx.class_group is not None and not is_enrolled(ctx.db, ctx.student_id, ctx.class_group.id):
        return Reject(
            RejectCode.NOT_ENROLLED,
            'Student is not enrolled in this class',
            {'student_id': ctx.student_id, 'class_id': ctx.class_group.id},
        )
    return None


def _check_qualification(ctx: _BookingContext) -> Reject | None:
    if teacher_qualified_for(ctx.teacher, ctx.subject_id, course_id=ctx.course_id):
        return None
    subject = ctx.db.get(Subject, ctx.subject_id) if ctx.subject_id is not None else None
    what = subject.name if subject else f'course {ctx.course_id}'
    return Reject(
        RejectCode.TEACHER_UNQUALIFIED,
        f'Teacher {ctx.teacher.name} cannot teach {what}',
        {'teacher_id': ctx.teacher.id, 'subject_id': ctx.subject_id, 'course_id': ctx.course_id},
    )


def _check_availability(ctx: _BookingContext) -> Reject | None:
    result = check_within_availability(ctx.db, ctx.teacher.id, ctx.interval)
    if result.ok:
        return None
    return Reject(RejectCode.OUTSIDE_AVAILABILITY, result.message, {'teacher_id': ctx.teacher.id, **result.detail()})


def _check_duplicate(ctx: _BookingContext) -> Reject | None:
    if ctx.class_group is None:
        return None
    query = ctx.db.query(ClassSession).filter(
        ClassSession.class_id == ctx.class_group.id,
        ClassSession.start_at == ctx.interval.start_at,
        ClassSession.end_at == ctx.interval.end_at,
    )
    if ctx.exclude_session_ids:
        query = query.filter(ClassSession.id.notin_(ctx.exclude_session_ids))
    existing = query.first()
    if existing is None:
        return None
    return Reject(
        RejectCode.DUPLICATE,
        f'Session already exists for {ctx.class_group.label} at {ctx.interval.label()}',
        {'session_id': existing.id, 'class_id': ctx.class_group.id},
    )


def _check_teacher_conflict(ctx: _BookingContext) -> Reject | None:
    booking = find_overlap(
        ctx.db,
        Dimension.TEACHER,
        ctx.teacher.id,
        ctx.interval,
        exclude_session_ids=ctx.exclude_session_ids,
        exclude_appointment_ids=ctx.exclude_appointment_ids,
    )
    if booking is None:
        return None
    return Reject(RejectCode.TEACHER_CONFLICT, f'Teacher conflict with {booking.describe()}', booking.as_dict())


def _check_room_conflict(ctx: _BookingContext) -> Reject | None:
    if ctx.room is None:
        return None
    booking = find_overlap(
        ctx.db,
        Dimension.ROOM,
        ctx.room.id,
        ctx.interval,
        exclude_session_ids=ctx.exclude_session_ids,
    )
    if booking is None:
        return None
    return Reject(RejectCode.ROOM_CONFLICT, f'Room {ctx.room.name} conflict with {booking.describe()}', booking.as_dict())


def _check_capacity(ctx: _BookingContext) -> Reject | None:
    if ctx.room is None or ctx.capacity <= int(ctx.room.capacity):
        return None
    return Reject(
        RejectCode.CAPACITY_EXCEEDED,
        f'Capacity {ctx.capacity} exceeds room {ctx.room.name} capacity {ctx.room.capacity}',
        {'room_id': ctx.room.id, 'room_capacity': ctx.room.capacity, 'capacity': ctx.capacity},
    )


def _check_room_required(ctx: _BookingContext) -> Reject | None:
    if ctx.room is not None or (ctx.campus is not None and ctx.campus.is_online):
        return None
    return Reject(RejectCode.ROOM_REQUIRED, 'A room is required for bookings at this campus', {'campus_id': getattr(ctx.campus, 'id', None)})


_CHECKS: dict[str, Callable[[_BookingContext], Reject | None]] = {
    'student': _check_student,
    'qualification': _check_qualification,
    'availability': _check_availability,
    'duplicate': _check_duplicate,
    'teacher_conflict': _check_teacher_conflict,
    'room_conflict': _check_room_conflict,
    'capacity': _check_capacity,
    'room_required': _check_room_required,
}


def _build_context(
    db: Session,
    candidate: BookingCandidate,
    interval: TimeInterval,
    student_id: int | None,
    exclude_session_ids: tuple[int, ...],
    exclude_appointment_ids: tuple[int, ...],
) -> _BookingContext | Reject:
    group = None
    if candidate.class_id is not None:
        group = db.get(ClassGroup, candidate.class_id)
        if group is None:
            return not_found('Class', candidate.class_id)

    teacher_id = candidate.teacher_id if candidate.teacher_id is not None else (group.teacher_id if group else None)
    teacher = db.get(Teacher, teacher_id) if teacher_id is not None else None
    if teacher is None:
        return not_found('Teacher', teacher_id)

    room_id = group.room_id if group else candidate.room_id
    room = None
    if room_id is not None:
        room = db.get(Room, room_id)
        if room is None:
            return not_found('Room', room_id)

    campus_id = group.campus_id if group else candidate.campus_id
    campus = None
    if campus_id is not None:
        campus = db.get(Campus, campus_id)
        if campus is None:
            return not_found('Campus', campus_id)
    if room is not None and campus is not None and int(room.campus_id) != int(campus.id):
        return Reject(
            RejectCode.NOT_FOUND,
            f'Room {room.name} not found at campus {campus.name}',
            {'entity': 'room', 'id': room.id, 'campus_id': campus.id},
        )

    if group is not None:
        subject_id, course_id, capacity = group.subject_id, group.course_id, int(group.capacity)
    else:
        subject_id, course_id = candidate.subject_id, candidate.course_id
        capacity = int(candidate.capacity if candidate.capacity is not None else 1)

    return _BookingContext(
        db=db,
        interval=interval,
        student_id=student_id,
        teacher=teacher,
        class_group=group,
        room=room,
        campus=campus,
        subject_id=subject_id,
        course_id=course_id,
        capacity=capacity,
        exclude_session_ids=exclude_session_ids,
        exclude_appointment_ids=exclude_appointment_ids,
    )


@timed_service('booking_validator')
def validate_booking(
    db: Session,
    candidate: BookingCandidate,
    interval: TimeInterval,
    student_id: int | None = None,
    *,
    exclude_session_ids: Iterable[int] = (),
    exclude_appointment_ids: Iterable[int] = (),
    checks: frozenset[str] = ALL_CHECKS,
) -> Decision:
    """Run the booking checks in order and return the first rejection, or ACCEPT.

    Read-only: nothing is written, so callers may re-run it inside their own transaction.
    """
    if 'span' in checks:
        rejected = _check_span(interval)
        if rejected is not None:
            return _log_reject(rejected, candidate, interval)

    ctx = _build_context(
        db,
        candidate,
        interval,
        student_id,
        tuple(int(value) for value in exclude_session_ids),
        tuple(int(value) for value in exclude_appointment_ids),
    )
    if isinstance(ctx, Reject):
        return _log_reject(ctx, candidate, interval)

    for name in CHECK_ORDER:
        if name == 'span' or name not in checks:
            continue
        rejected = _CHECKS[name](ctx)
        if rejected is not None:
            return _log_reject(rejected, candidate, interval)
    record_booking_outcome(None)
    return ACCEPT


def _log_reject(rejected: Reject, candidate: BookingCandidate, interval: TimeInterval) -> Reject:
    record_booking_outcome(rejected.code.value)
    logger.info(
        'booking_rejected code=%s class_id=%s teacher_id=%s range=%s',
        rejected.code.value,
        candidate.class_id,
        candidate.teacher_id,
        interval.label(),
    )
    return rejected
