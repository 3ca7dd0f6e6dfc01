from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tutordesk.db import get_db
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.schemas import AvailabilityOverrideRequest, AvailabilityRuleRequest, GenerateMonthRequest
from tutordesk.services.availability_service import (
    add_availability_rule,
    clear_availability_override,
    delete_availability_rule,
    generate_month_overrides,
    get_day_availability,
    set_availability_override,
)
from tutordesk.utils.time_utils import parse_hhmm


router = APIRouter(prefix='/api/availability', tags=['Availability'], route_class=EndpointNameRoute)


def _status_for(exc: ValueError) -> int:
    return 404 if str(exc).endswith('not found') else 400


@router.get('/day')
def api_day_availability(
    teacher_id: int = Query(...),
    date_value: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    return {'data': get_day_availability(db, teacher_id, date_value)}


@router.post('/rules')
def api_add_rule(payload: AvailabilityRuleRequest, db: Session = Depends(get_db)):
    try:
        row = add_availability_rule(
            db,
            payload.teacher_id,
            weekday=payload.weekday,
            start_min=parse_hhmm(payload.start_time),
            end_min=parse_hhmm(payload.end_time),
        )
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return {'data': {'id': row.id, 'weekday': row.weekday, 'start_min': row.start_min, 'end_min': row.end_min}}


@router.delete('/rules/{rule_id}')
def api_delete_rule(rule_id: int, db: Session = Depends(get_db)):
    try:
        delete_availability_rule(db, rule_id)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return {'data': {'id': rule_id, 'deleted': True}}


@router.put('/overrides')
def api_set_override(payload: AvailabilityOverrideRequest, db: Session = Depends(get_db)):
    try:
        slots = set_availability_override(
            db,
            payload.teacher_id,
            payload.date,
            [(parse_hhmm(slot.start_time), parse_hhmm(slot.end_time)) for slot in payload.slots],
        )
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return {'data': {'date': payload.date.isoformat(), 'slots': [slot.label() for slot in slots]}}


@router.delete('/overrides')
def api_clear_override(
    teacher_id: int = Query(...),
    date_value: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    try:
        deleted = clear_availability_override(db, teacher_id, date_value)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {'data': {'deleted': deleted}}


@router.post('/generate-month')
def api_generate_month(payload: GenerateMonthRequest, db: Session = Depends(get_db)):
    try:
        result = generate_month_overrides(db, payload.teacher_id, year=payload.year, month=payload.month, mode=payload.mode)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return {'data': result}
