from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tutordesk.core.booking_result import BookingRejected, InfraError, Reject, RejectCode
from tutordesk.core.time_provider import to_local_naive
from tutordesk.db import get_db
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.schemas import (
    AppointmentCreateRequest,
    BookingValidateRequest,
    ClassRoomChangeRequest,
    OneOnOneScheduleRequest,
    ReplaceTeacherRequest,
    SessionCreateRequest,
    SlotVisibilityRequest,
    TemplateGenerateRequest,
    WeeklyGenerateRequest,
)
from tutordesk.services.batch_generation_service import (
    ConflictPolicy,
    WeeklyPattern,
    generate_template_sessions,
    generate_weekly_sessions,
)
from tutordesk.services.booking_validator import BookingCandidate, validate_booking
from tutordesk.services.conflict_audit_service import build_conflict_report
from tutordesk.services.one_on_one_service import OneOnOneBucketKey
from tutordesk.services.session_mutation_service import (
    cancel_appointment,
    cancel_session,
    change_class_room,
    create_appointment,
    create_session,
    delete_campus,
    delete_room,
    delete_teacher,
    replace_appointment_teacher,
    replace_session_teacher,
    schedule_one_on_one,
)
from tutordesk.services.slot_candidate_service import get_slot_candidates_payload, set_slot_visibility
from tutordesk.utils.time_utils import DateRange, TimeInterval, parse_hhmm


router = APIRouter(prefix='/api/scheduling', tags=['Scheduling'], route_class=EndpointNameRoute)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, BookingRejected):
        status_code = 404 if exc.code == RejectCode.NOT_FOUND else 409
        return HTTPException(status_code=status_code, detail=exc.reject.as_dict())
    if isinstance(exc, InfraError):
        return HTTPException(status_code=503, detail='Scheduling is temporarily unavailable, please retry')
    message = str(exc)
    return HTTPException(status_code=404 if message.endswith('not found') else 400, detail=message)


def _interval(start_at, end_at) -> TimeInterval:
    try:
        return TimeInterval(to_local_naive(start_at), to_local_naive(end_at))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _session_payload(row) -> dict:
    return {
        'id': row.id,
        'class_id': row.class_id,
        'start_at': row.start_at.isoformat(),
        'end_at': row.end_at.isoformat(),
        'teacher_id': row.effective_teacher_id,
        'student_id': row.student_id,
    }


@router.post('/validate')
def api_validate_booking(payload: BookingValidateRequest, db: Session = Depends(get_db)):
    candidate = BookingCandidate(
        class_id=payload.class_id,
        teacher_id=payload.teacher_id,
        room_id=payload.room_id,
        campus_id=payload.campus_id,
        subject_id=payload.subject_id,
        course_id=payload.course_id,
        capacity=payload.capacity,
    )
    decision = validate_booking(db, candidate, _interval(payload.start_at, payload.end_at), payload.student_id)
    if isinstance(decision, Reject):
        return {'data': {'accepted': False, **decision.as_dict()}}
    return {'data': {'accepted': True}}


@router.post('/sessions')
def api_create_session(payload: SessionCreateRequest, db: Session = Depends(get_db)):
    try:
        row = create_session(
            db,
            payload.class_id,
            _interval(payload.start_at, payload.end_at),
            payload.student_id,
            teacher_id=payload.teacher_id,
        )
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': _session_payload(row)}


@router.delete('/sessions/{session_id}')
def api_cancel_session(session_id: int, db: Session = Depends(get_db)):
    try:
        result = cancel_session(db, session_id)
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': result}


@router.post('/replace-teacher')
def api_replace_teacher(payload: ReplaceTeacherRequest, db: Session = Depends(get_db)):
    if (payload.session_id is None) == (payload.appointment_id is None):
        raise HTTPException(status_code=400, detail='Provide exactly one of session_id or appointment_id')
    try:
        if payload.session_id is not None:
            result = replace_session_teacher(
                db,
                payload.session_id,
                payload.new_teacher_id,
                scope=payload.scope,
                reason=payload.reason,
            )
        else:
            result = replace_appointment_teacher(db, payload.appointment_id, payload.new_teacher_id, reason=payload.reason)
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': result}


@router.post('/appointments')
def api_create_appointment(payload: AppointmentCreateRequest, db: Session = Depends(get_db)):
    try:
        row = create_appointment(db, payload.teacher_id, payload.student_id, _interval(payload.start_at, payload.end_at))
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': {'id': row.id, 'teacher_id': row.teacher_id, 'student_id': row.student_id}}


@router.delete('/appointments/{appointment_id}')
def api_cancel_appointment(appointment_id: int, db: Session = Depends(get_db)):
    try:
        cancel_appointment(db, appointment_id)
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': {'id': appointment_id, 'cancelled': True}}


@router.post('/one-on-one')
def api_schedule_one_on_one(payload: OneOnOneScheduleRequest, db: Session = Depends(get_db)):
    key = OneOnOneBucketKey(
        teacher_id=payload.teacher_id,
        course_id=payload.course_id,
        subject_id=payload.subject_id,
        level_id=payload.level_id,
        campus_id=payload.campus_id,
        room_id=payload.room_id,
    )
    try:
        row = schedule_one_on_one(db, key, payload.student_id, _interval(payload.start_at, payload.end_at))
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': _session_payload(row)}


@router.post('/generate/weekly')
def api_generate_weekly(payload: WeeklyGenerateRequest, db: Session = Depends(get_db)):
    try:
        if payload.end_date is not None:
            date_range = DateRange.bounded(payload.start_date, payload.end_date)
        else:
            date_range = DateRange.weeks_from(payload.start_date, payload.weeks or 1)
        pattern = WeeklyPattern(payload.weekday, parse_hhmm(payload.start_time), payload.duration_min)
        report = generate_weekly_sessions(
            db,
            payload.class_id,
            pattern,
            date_range,
            policy=ConflictPolicy(payload.on_conflict),
            student_id=payload.student_id,
        )
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': report.as_dict()}


@router.post('/generate/templates')
def api_generate_templates(payload: TemplateGenerateRequest, db: Session = Depends(get_db)):
    try:
        report = generate_template_sessions(
            db,
            payload.teacher_id,
            DateRange.bounded(payload.start_date, payload.end_date),
            policy=ConflictPolicy(payload.on_conflict),
            template_ids=payload.template_ids,
        )
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': report.as_dict()}


@router.get('/slots')
def api_slot_candidates(
    teacher_ids: list[int] = Query(...),
    start: date = Query(...),
    end: date = Query(...),
    duration: int = Query(default=60, ge=15),
    step: int | None = Query(default=None, ge=5),
    only_visible: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    try:
        payload = get_slot_candidates_payload(db, teacher_ids, DateRange.bounded(start, end), duration, step, only_visible=only_visible)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {'data': payload}


@router.post('/slots/visibility')
def api_slot_visibility(payload: SlotVisibilityRequest, db: Session = Depends(get_db)):
    try:
        row = set_slot_visibility(db, payload.teacher_id, _interval(payload.start_at, payload.end_at), payload.visible)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {'data': {'id': row.id, 'visible': row.visible}}


@router.get('/conflicts')
def api_conflicts(start: date = Query(...), end: date = Query(...), db: Session = Depends(get_db)):
    try:
        payload = build_conflict_report(db, DateRange(start, end))
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {'data': payload}


@router.delete('/rooms/{room_id}')
def api_delete_room(room_id: int, mode: str = Query(default='block'), db: Session = Depends(get_db)):
    try:
        result = delete_room(db, room_id, mode=mode)
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': result}


@router.delete('/campuses/{campus_id}')
def api_delete_campus(campus_id: int, mode: str = Query(default='block'), db: Session = Depends(get_db)):
    try:
        result = delete_campus(db, campus_id, mode=mode)
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': result}


@router.delete('/teachers/{teacher_id}')
def api_delete_teacher(teacher_id: int, db: Session = Depends(get_db)):
    try:
        delete_teacher(db, teacher_id)
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': {'id': teacher_id, 'deleted': True}}


@router.post('/classes/{class_id}/room')
def api_change_class_room(class_id: int, payload: ClassRoomChangeRequest, db: Session = Depends(get_db)):
    if (payload.range_from is None) != (payload.range_to is None):
        raise HTTPException(status_code=400, detail='Provide both range_from and range_to, or neither')
    try:
        date_range = None
        if payload.range_from is not None:
            date_range = DateRange.bounded(payload.range_from, payload.range_to)
        result = change_class_room(db, class_id, payload.room_id, date_range)
    except (ValueError, InfraError) as exc:
        raise _http_error(exc) from exc
    return {'data': result}
