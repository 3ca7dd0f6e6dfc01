from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tutordesk.cache import clear_scheduling_cache
from tutordesk.core.booking_result import BookingRejected, Decision, Reject, RejectCode, not_found
from tutordesk.core.time_provider import TimeProvider, default_time_provider
from tutordesk.db import run_in_transaction
from tutordesk.models import (
    Appointment,
    AvailabilityOverride,
    AvailabilityRule,
    BookingSlotVisibility,
    Campus,
    ClassGroup,
    ClassSession,
    OneOnOneBucket,
    RecurrenceTemplate,
    Room,
    SessionTeacherChange,
    Student,
    Teacher,
)
from tutordesk.services.booking_validator import (
    APPOINTMENT_CHECKS,
    REASSIGNMENT_CHECKS,
    BookingCandidate,
    validate_booking,
)
from tutordesk.services.one_on_one_service import OneOnOneBucketKey, get_or_create_one_on_one_class
from tutordesk.services.overlap_service import Dimension, effective_teacher_filter, find_overlap
from tutordesk.services.package_ledger import NoActivePackageError, PackageLedger, default_package_ledger
from tutordesk.utils.time_utils import MINUTES_PER_DAY, DateRange, TimeInterval, at_minute, format_range


REPLACE_SCOPES = ('single', 'future')
DELETE_MODES = ('detach', 'block')
logger = logging.getLogger(__name__)


def _raise_if_rejected(decision: Decision) -> None:
    if isinstance(decision, Reject):
        raise BookingRejected(decision)


def lock_teacher(db: Session, teacher_id: int) -> Teacher | None:
    # Serializes check-then-write for everything booked against this teacher.
    return db.query(Teacher).filter(Teacher.id == teacher_id).with_for_update().first()


def lock_room(db: Session, room_id: int) -> Room | None:
    return db.query(Room).filter(Room.id == room_id).with_for_update().first()


def _duplicate_guard(class_id: int, interval: TimeInterval):
    def to_rejection(exc: IntegrityError) -> BookingRejected:
        logger.warning('session_duplicate_race class_id=%s range=%s', class_id, interval.label())
        return BookingRejected(
            Reject(
                RejectCode.DUPLICATE,
                f'Session already exists at {interval.label()}',
                {'class_id': class_id},
            )
        )

    return to_rejection


def insert_session(
    db: Session,
    class_id: int,
    interval: TimeInterval,
    *,
    student_id: int | None = None,
    teacher_id: int | None = None,
) -> ClassSession:
    """Validate and add one session inside the caller's transaction."""
    group = db.get(ClassGroup, class_id)
    if group is None:
        raise BookingRejected(not_found('Class', class_id))
    effective_teacher_id = teacher_id if teacher_id is not None else group.teacher_id
    lock_teacher(db, effective_teacher_id)
    if group.room_id is not None:
        lock_room(db, group.room_id)

    decision = validate_booking(
        db,
        BookingCandidate(class_id=class_id, teacher_id=teacher_id),
        interval,
        student_id,
    )
    _raise_if_rejected(decision)

    row = ClassSession(
        class_id=class_id,
        start_at=interval.start_at,
        end_at=interval.end_at,
        teacher_id=None if effective_teacher_id == group.teacher_id else effective_teacher_id,
        student_id=student_id if group.is_one_on_one else None,
    )
    db.add(row)
    db.flush()
    return row


def create_session(
    db: Session,
    class_id: int,
    interval: TimeInterval,
    student_id: int | None = None,
    *,
    teacher_id: int | None = None,
) -> ClassSession:
    row = run_in_transaction(
        db,
        lambda tx: insert_session(tx, class_id, interval, student_id=student_id, teacher_id=teacher_id),
        label='create_session',
        on_integrity_error=_duplicate_guard(class_id, interval),
    )
    db.refresh(row)
    clear_scheduling_cache()
    logger.info('session_created session_id=%s class_id=%s range=%s', row.id, class_id, interval.label())
    return row


def _occurrence_rejection(target: ClassSession, rejected: Reject) -> BookingRejected:
    occurrence = format_range(target.start_at, target.end_at)
    return BookingRejected(
        Reject(
            rejected.code,
            f'{occurrence}: {rejected.message}',
            {**rejected.detail, 'session_id': target.id, 'occurrence': occurrence},
        )
    )


def _record_teacher_change(
    db: Session,
    target: ClassSession,
    new_teacher_id: int,
    reason: str | None,
    now,
) -> bool:
    previous_teacher_id = target.effective_teacher_id
    target.teacher_id = None if new_teacher_id == target.class_group.teacher_id else new_teacher_id
    if previous_teacher_id == new_teacher_id:
        return False
    db.add(
        SessionTeacherChange(
            session_id=target.id,
            from_teacher_id=previous_teacher_id,
            to_teacher_id=new_teacher_id,
            reason=reason,
            created_at=now,
        )
    )
    return True


def replace_session_teacher(
    db: Session,
    session_id: int,
    new_teacher_id: int,
    *,
    scope: str = 'single',
    reason: str | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    """Reassign one session, or it and every later session of its class.

    All targets are validated against the new teacher before anything is written;
    one failing occurrence rejects the whole operation.
    """
    if scope not in REPLACE_SCOPES:
        raise ValueError(f'scope must be one of {", ".join(REPLACE_SCOPES)}')

    def work(tx: Session) -> dict[str, Any]:
        anchor = tx.get(ClassSession, session_id)
        if anchor is None:
            raise BookingRejected(not_found('Session', session_id))
        if lock_teacher(tx, new_teacher_id) is None:
            raise BookingRejected(not_found('Teacher', new_teacher_id))

        if scope == 'future':
            targets = (
                tx.query(ClassSession)
                .filter(ClassSession.class_id == anchor.class_id, ClassSession.start_at >= anchor.start_at)
                .order_by(ClassSession.start_at.asc(), ClassSession.id.asc())
                .all()
            )
        else:
            targets = [anchor]
        target_ids = [target.id for target in targets]

        for target in targets:
            decision = validate_booking(
                tx,
                BookingCandidate(class_id=target.class_id, teacher_id=new_teacher_id),
                TimeInterval(target.start_at, target.end_at),
                target.student_id,
                exclude_session_ids=target_ids,
                checks=REASSIGNMENT_CHECKS,
            )
            if isinstance(decision, Reject):
                raise _occurrence_rejection(target, decision)

        now = time_provider.now_naive()
        changed_ids = [
            target.id
            for target in targets
            if _record_teacher_change(tx, target, new_teacher_id, reason, now)
        ]
        tx.flush()
        return {'session_ids': target_ids, 'changed_session_ids': changed_ids}

    result = run_in_transaction(db, work, label='replace_session_teacher')
    clear_scheduling_cache()
    logger.info(
        'session_teacher_replaced session_id=%s scope=%s teacher_id=%s targets=%s changed=%s',
        session_id,
        scope,
        new_teacher_id,
        len(result['session_ids']),
        len(result['changed_session_ids']),
    )
    return result


def _mirrored_sessions(db: Session, appointment: Appointment) -> list[ClassSession]:
    return (
        db.query(ClassSession)
        .join(ClassGroup, ClassSession.class_id == ClassGroup.id)
        .filter(
            ClassSession.student_id == appointment.student_id,
            ClassSession.start_at == appointment.start_at,
            ClassSession.end_at == appointment.end_at,
            effective_teacher_filter(appointment.teacher_id),
        )
        .all()
    )


def replace_appointment_teacher(
    db: Session,
    appointment_id: int,
    new_teacher_id: int,
    *,
    reason: str | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    def work(tx: Session) -> dict[str, Any]:
        appointment = tx.get(Appointment, appointment_id)
        if appointment is None:
            raise BookingRejected(not_found('Appointment', appointment_id))
        if lock_teacher(tx, new_teacher_id) is None:
            raise BookingRejected(not_found('Teacher', new_teacher_id))

        interval = TimeInterval(appointment.start_at, appointment.end_at)
        mirrored = _mirrored_sessions(tx, appointment)
        session_ids = [row.id for row in mirrored]
        _raise_if_rejected(
            validate_booking(
                tx,
                BookingCandidate(teacher_id=new_teacher_id),
                interval,
                appointment.student_id,
                exclude_session_ids=session_ids,
                exclude_appointment_ids=[appointment.id],
                checks=APPOINTMENT_CHECKS,
            )
        )
        for row in mirrored:
            _raise_if_rejected(
                validate_booking(
                    tx,
                    BookingCandidate(class_id=row.class_id, teacher_id=new_teacher_id),
                    interval,
                    row.student_id,
                    exclude_session_ids=session_ids,
                    exclude_appointment_ids=[appointment.id],
                    checks=REASSIGNMENT_CHECKS,
                )
            )

        appointment.teacher_id = new_teacher_id
        now = time_provider.now_naive()
        changed_ids = [row.id for row in mirrored if _record_teacher_change(tx, row, new_teacher_id, reason, now)]
        tx.flush()
        return {'appointment_id': appointment.id, 'changed_session_ids': changed_ids}

    result = run_in_transaction(db, work, label='replace_appointment_teacher')
    clear_scheduling_cache()
    logger.info('appointment_teacher_replaced appointment_id=%s teacher_id=%s', appointment_id, new_teacher_id)
    return result


def create_appointment(db: Session, teacher_id: int, student_id: int, interval: TimeInterval) -> Appointment:
    def work(tx: Session) -> Appointment:
        if tx.get(Student, student_id) is None:
            raise BookingRejected(not_found('Student', student_id))
        if lock_teacher(tx, teacher_id) is None:
            raise BookingRejected(not_found('Teacher', teacher_id))
        _raise_if_rejected(
            validate_booking(tx, BookingCandidate(teacher_id=teacher_id), interval, student_id, checks=APPOINTMENT_CHECKS)
        )
        row = Appointment(teacher_id=teacher_id, student_id=student_id, start_at=interval.start_at, end_at=interval.end_at)
        tx.add(row)
        tx.flush()
        return row

    row = run_in_transaction(db, work, label='create_appointment')
    db.refresh(row)
    clear_scheduling_cache()
    logger.info('appointment_created appointment_id=%s teacher_id=%s range=%s', row.id, teacher_id, interval.label())
    return row


def cancel_session(db: Session, session_id: int, *, ledger: PackageLedger = default_package_ledger) -> dict[str, int]:
    def work(tx: Session) -> dict[str, int]:
        row = tx.get(ClassSession, session_id)
        if row is None:
            raise BookingRejected(not_found('Session', session_id))
        restored = ledger.reverse_deduction(tx, row.id)
        tx.delete(row)
        return {'session_id': session_id, 'restored_minutes': restored}

    result = run_in_transaction(db, work, label='cancel_session')
    clear_scheduling_cache()
    logger.info('session_cancelled session_id=%s restored_minutes=%s', session_id, result['restored_minutes'])
    return result


def cancel_appointment(db: Session, appointment_id: int) -> None:
    def work(tx: Session) -> None:
        row = tx.get(Appointment, appointment_id)
        if row is None:
            raise BookingRejected(not_found('Appointment', appointment_id))
        tx.delete(row)

    run_in_transaction(db, work, label='cancel_appointment')
    clear_scheduling_cache()
    logger.info('appointment_cancelled appointment_id=%s', appointment_id)


def schedule_one_on_one(
    db: Session,
    key: OneOnOneBucketKey,
    student_id: int,
    interval: TimeInterval,
    *,
    ledger: PackageLedger = default_package_ledger,
    time_provider: TimeProvider = default_time_provider,
) -> ClassSession:
    """Book a single one-on-one session, provisioning the bucket class and enrollment."""

    def work(tx: Session) -> ClassSession:
        campus = tx.get(Campus, key.campus_id)
        if campus is None:
            raise BookingRejected(not_found('Campus', key.campus_id))
        if key.room_id is None and not campus.is_online:
            raise BookingRejected(Reject(RejectCode.ROOM_REQUIRED, 'A room is required for bookings at this campus', {'campus_id': campus.id}))
        if key.room_id is not None:
            room = tx.get(Room, key.room_id)
            if room is None or int(room.campus_id) != int(campus.id):
                raise BookingRejected(not_found('Room', key.room_id))
        if tx.get(Student, student_id) is None:
            raise BookingRejected(not_found('Student', student_id))
        # Taken before the bucket lookup so concurrent first bookings share one bucket.
        if lock_teacher(tx, key.teacher_id) is None:
            raise BookingRejected(not_found('Teacher', key.teacher_id))
        check_at = max(time_provider.now_naive(), interval.start_at)
        if not ledger.has_active_package(tx, student_id, key.course_id, check_at, minutes=interval.duration_minutes):
            raise NoActivePackageError('Student has no active package for this course')

        group = get_or_create_one_on_one_class(tx, key, student_id)
        return insert_session(tx, group.id, interval, student_id=student_id)

    row = run_in_transaction(db, work, label='schedule_one_on_one')
    db.refresh(row)
    clear_scheduling_cache()
    logger.info('one_on_one_scheduled session_id=%s student_id=%s range=%s', row.id, student_id, interval.label())
    return row


def change_class_room(
    db: Session,
    class_id: int,
    room_id: int | None,
    date_range: DateRange | None = None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    """Move a class to another room of its campus, or clear its room.

    The class's sessions in `date_range` (or all upcoming ones) must not collide
    with other bookings of the new room.
    """

    def work(tx: Session) -> dict[str, Any]:
        group = tx.get(ClassGroup, class_id)
        if group is None:
            raise BookingRejected(not_found('Class', class_id))
        previous_room_id = group.room_id
        if room_id is None:
            group.room_id = None
            return {'class_id': class_id, 'room_id': None, 'previous_room_id': previous_room_id, 'checked_sessions': 0}

        room = lock_room(tx, room_id)
        if room is None or int(room.campus_id) != int(group.campus_id):
            raise BookingRejected(not_found('Room', room_id))
        if int(group.capacity) > int(room.capacity):
            raise BookingRejected(
                Reject(
                    RejectCode.CAPACITY_EXCEEDED,
                    f'Class capacity {group.capacity} exceeds room {room.name} capacity {room.capacity}',
                    {'class_id': class_id, 'room_id': room.id, 'capacity': group.capacity, 'room_capacity': room.capacity},
                )
            )

        query = tx.query(ClassSession).filter(ClassSession.class_id == class_id)
        if date_range is not None:
            query = query.filter(
                ClassSession.start_at < at_minute(date_range.end, MINUTES_PER_DAY),
                ClassSession.end_at > at_minute(date_range.start, 0),
            )
        else:
            query = query.filter(ClassSession.end_at > time_provider.now_naive())
        sessions = query.order_by(ClassSession.start_at.asc(), ClassSession.id.asc()).all()
        own_ids = [row.id for row in sessions]
        for row in sessions:
            booking = find_overlap(
                tx,
                Dimension.ROOM,
                room.id,
                TimeInterval(row.start_at, row.end_at),
                exclude_session_ids=own_ids,
            )
            if booking is not None:
                raise _occurrence_rejection(
                    row,
                    Reject(RejectCode.ROOM_CONFLICT, f'Room {room.name} conflict with {booking.describe()}', booking.as_dict()),
                )

        group.room_id = room.id
        return {'class_id': class_id, 'room_id': room.id, 'previous_room_id': previous_room_id, 'checked_sessions': len(sessions)}

    result = run_in_transaction(db, work, label='change_class_room')
    clear_scheduling_cache()
    logger.info(
        'class_room_changed class_id=%s room_id=%s previous_room_id=%s checked_sessions=%s',
        class_id,
        result['room_id'],
        result['previous_room_id'],
        result['checked_sessions'],
    )
    return result


def _upcoming_room_sessions(db: Session, room_ids: list[int], now) -> int:
    if not room_ids:
        return 0
    return int(
        db.query(func.count(ClassSession.id))
        .join(ClassGroup, ClassSession.class_id == ClassGroup.id)
        .filter(ClassGroup.room_id.in_(room_ids), ClassSession.end_at > now)
        .scalar()
        or 0
    )


def _detach_rooms(db: Session, room_ids: list[int]) -> int:
    if not room_ids:
        return 0
    detached = (
        db.query(ClassGroup)
        .filter(ClassGroup.room_id.in_(room_ids))
        .update({ClassGroup.room_id: None}, synchronize_session=False)
    )
    db.query(OneOnOneBucket).filter(OneOnOneBucket.room_id.in_(room_ids)).update(
        {OneOnOneBucket.room_id: None},
        synchronize_session=False,
    )
    return int(detached or 0)


def delete_room(
    db: Session,
    room_id: int,
    *,
    mode: str = 'block',
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, int]:
    """Delete a room without orphaning sessions.

    `block` refuses while upcoming sessions use the room; `detach` clears the room
    from its classes first. Either way no class keeps pointing at the deleted room.
    """
    if mode not in DELETE_MODES:
        raise ValueError(f'mode must be one of {", ".join(DELETE_MODES)}')

    def work(tx: Session) -> dict[str, int]:
        room = lock_room(tx, room_id)
        if room is None:
            raise ValueError('Room not found')
        upcoming = _upcoming_room_sessions(tx, [room.id], time_provider.now_naive())
        if mode == 'block' and upcoming:
            raise ValueError(f'Room {room.name} has {upcoming} upcoming session(s)')
        detached = _detach_rooms(tx, [room.id])
        tx.delete(room)
        return {'room_id': room_id, 'detached_classes': detached, 'upcoming_sessions': upcoming}

    result = run_in_transaction(db, work, label='delete_room')
    clear_scheduling_cache()
    logger.info('room_deleted room_id=%s mode=%s detached_classes=%s', room_id, mode, result['detached_classes'])
    return result


def delete_campus(
    db: Session,
    campus_id: int,
    *,
    mode: str = 'block',
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, int]:
    if mode not in DELETE_MODES:
        raise ValueError(f'mode must be one of {", ".join(DELETE_MODES)}')

    def work(tx: Session) -> dict[str, int]:
        campus = tx.get(Campus, campus_id)
        if campus is None:
            raise ValueError('Campus not found')
        classes = int(tx.query(func.count(ClassGroup.id)).filter(ClassGroup.campus_id == campus_id).scalar() or 0)
        if classes:
            raise ValueError(f'Campus {campus.name} still has {classes} class(es)')
        room_ids = [row.id for row in tx.query(Room).filter(Room.campus_id == campus_id).all()]
        upcoming = _upcoming_room_sessions(tx, room_ids, time_provider.now_naive())
        if mode == 'block' and upcoming:
            raise ValueError(f'Campus {campus.name} has {upcoming} upcoming session(s)')
        detached = _detach_rooms(tx, room_ids)
        if room_ids:
            tx.query(Room).filter(Room.id.in_(room_ids)).delete(synchronize_session=False)
        tx.delete(campus)
        return {'campus_id': campus_id, 'deleted_rooms': len(room_ids), 'detached_classes': detached}

    result = run_in_transaction(db, work, label='delete_campus')
    clear_scheduling_cache()
    logger.info('campus_deleted campus_id=%s rooms=%s', campus_id, result['deleted_rooms'])
    return result


def delete_teacher(db: Session, teacher_id: int) -> None:
    def work(tx: Session) -> None:
        teacher = lock_teacher(tx, teacher_id)
        if teacher is None:
            raise ValueError('Teacher not found')
        in_use = (
            tx.query(ClassGroup.id).filter(ClassGroup.teacher_id == teacher_id).first()
            or tx.query(ClassSession.id).filter(ClassSession.teacher_id == teacher_id).first()
            or tx.query(Appointment.id).filter(Appointment.teacher_id == teacher_id).first()
            or tx.query(RecurrenceTemplate.id).filter(RecurrenceTemplate.teacher_id == teacher_id).first()
            or tx.query(OneOnOneBucket.id).filter(OneOnOneBucket.teacher_id == teacher_id).first()
        )
        if in_use:
            raise ValueError(f'Teacher {teacher.name} still has classes or bookings')
        for model in (AvailabilityRule, AvailabilityOverride, BookingSlotVisibility):
            tx.query(model).filter(model.teacher_id == teacher_id).delete(synchronize_session=False)
        tx.delete(teacher)

    run_in_transaction(db, work, label='delete_teacher')
    clear_scheduling_cache()
    logger.info('teacher_deleted teacher_id=%s', teacher_id)
