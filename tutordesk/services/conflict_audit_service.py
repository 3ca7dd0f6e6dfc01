from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Hashable

from sqlalchemy.orm import Session, contains_eager

from tutordesk.config import settings
from tutordesk.core.time_provider import TimeProvider, default_time_provider
from tutordesk.metrics import timed_service
from tutordesk.models import Appointment, ClassGroup, ClassSession, ConflictAuditSnapshot, Room
from tutordesk.services.overlap_service import TimedEvent, conflict_pairs, find_all_overlaps, find_room_overlaps
from tutordesk.utils.time_utils import MINUTES_PER_DAY, DateRange, at_minute, format_range


AUDIT_SAMPLE_LIMIT = 10
logger = logging.getLogger(__name__)


def _describe(event_id: Hashable, ranges: dict[Hashable, str]) -> dict[str, Any]:
    kind, row_id = event_id
    return {'kind': kind, 'id': row_id, 'range': ranges.get(event_id, '')}


@timed_service('conflict_audit_report')
def build_conflict_report(db: Session, date_range: DateRange) -> dict[str, Any]:
    """Advisory conflict listing for dashboards. Never consulted when writing."""
    range_start = at_minute(date_range.start, 0)
    range_end = at_minute(date_range.end, MINUTES_PER_DAY)
    sessions = (
        db.query(ClassSession)
        .join(ClassGroup, ClassSession.class_id == ClassGroup.id)
        .options(contains_eager(ClassSession.class_group))
        .filter(ClassSession.start_at >= range_start, ClassSession.start_at < range_end)
        .all()
    )
    appointments = (
        db.query(Appointment)
        .filter(Appointment.start_at >= range_start, Appointment.start_at < range_end)
        .all()
    )

    ranges: dict[Hashable, str] = {}
    teacher_tracks: dict[int, list[TimedEvent]] = {}
    room_events: list[TimedEvent] = []
    invalid_ranges: list[dict[str, Any]] = []
    duplicates: dict[tuple, list[int]] = {}

    for row in sessions:
        event_id = ('session', row.id)
        ranges[event_id] = format_range(row.start_at, row.end_at)
        if row.end_at <= row.start_at:
            invalid_ranges.append(_describe(event_id, ranges))
            continue
        event = TimedEvent(event_id, row.start_at, row.end_at, row.class_group.room_id)
        teacher_tracks.setdefault(row.effective_teacher_id, []).append(event)
        room_events.append(event)
        duplicates.setdefault((row.class_id, row.start_at, row.end_at), []).append(row.id)

    for row in appointments:
        event_id = ('appointment', row.id)
        ranges[event_id] = format_range(row.start_at, row.end_at)
        if row.end_at <= row.start_at:
            invalid_ranges.append(_describe(event_id, ranges))
            continue
        teacher_tracks.setdefault(int(row.teacher_id), []).append(TimedEvent(event_id, row.start_at, row.end_at))

    teacher_pairs = []
    for teacher_id in sorted(teacher_tracks):
        for left, right in conflict_pairs(find_all_overlaps(teacher_tracks[teacher_id])):
            teacher_pairs.append({'teacher_id': teacher_id, 'left': _describe(left, ranges), 'right': _describe(right, ranges)})

    room_pairs = []
    for room_id, conflicts in sorted(find_room_overlaps(room_events).items()):
        for left, right in conflict_pairs(conflicts):
            room_pairs.append({'room_id': room_id, 'left': _describe(left, ranges), 'right': _describe(right, ranges)})

    duplicate_groups = [
        {'class_id': class_id, 'range': format_range(start_at, end_at), 'session_ids': sorted(ids)}
        for (class_id, start_at, end_at), ids in duplicates.items()
        if len(ids) > 1
    ]

    capacity_issues = [
        {'class_id': group.id, 'room_id': room.id, 'capacity': group.capacity, 'room_capacity': room.capacity}
        for group, room in (
            db.query(ClassGroup, Room)
            .join(Room, ClassGroup.room_id == Room.id)
            .filter(ClassGroup.capacity > Room.capacity)
            .order_by(ClassGroup.id.asc())
            .all()
        )
    ]

    return {
        'start': date_range.start.isoformat(),
        'end': date_range.end.isoformat(),
        'counts': {
            'teacher_conflicts': len(teacher_pairs),
            'room_conflicts': len(room_pairs),
            'duplicates': len(duplicate_groups),
            'capacity_issues': len(capacity_issues),
            'invalid_ranges': len(invalid_ranges),
        },
        'teacher_conflicts': teacher_pairs,
        'room_conflicts': room_pairs,
        'duplicates': duplicate_groups,
        'capacity_issues': capacity_issues,
        'invalid_ranges': invalid_ranges,
    }


def run_daily_conflict_audit(
    db: Session,
    *,
    force: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    today = time_provider.today()
    snapshot = db.query(ConflictAuditSnapshot).filter(ConflictAuditSnapshot.audit_date == today).first()
    if snapshot and not force:
        return json.loads(snapshot.summary_json)

    horizon = max(1, int(settings.conflict_audit_horizon_days))
    report = build_conflict_report(db, DateRange(today, today + timedelta(days=horizon - 1)))
    summary = {
        'audit_date': today.isoformat(),
        'start': report['start'],
        'end': report['end'],
        'counts': report['counts'],
        'teacher_conflicts': report['teacher_conflicts'][:AUDIT_SAMPLE_LIMIT],
        'room_conflicts': report['room_conflicts'][:AUDIT_SAMPLE_LIMIT],
    }
    if snapshot is None:
        snapshot = ConflictAuditSnapshot(audit_date=today)
        db.add(snapshot)
    snapshot.summary_json = json.dumps(summary)
    db.commit()
    logger.info(
        'conflict_audit_stored date=%s teacher_conflicts=%s room_conflicts=%s',
        today.isoformat(),
        report['counts']['teacher_conflicts'],
        report['counts']['room_conflicts'],
    )
    return summary
