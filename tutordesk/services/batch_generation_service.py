from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable

from sqlalchemy.orm import Session

from tutordesk.cache import clear_scheduling_cache
from tutordesk.config import settings
from tutordesk.core.booking_result import BookingRejected, Reject, not_found
from tutordesk.db import run_in_transaction
from tutordesk.metrics import timed_service
from tutordesk.models import ClassGroup, ClassSession, RecurrenceTemplate, Teacher
from tutordesk.services.enrollment_service import is_enrolled
from tutordesk.services.one_on_one_service import OneOnOneBucketKey, get_or_create_one_on_one_class
from tutordesk.services.session_mutation_service import insert_session, lock_teacher
from tutordesk.utils.time_utils import MINUTES_PER_DAY, DateRange, TimeInterval, hhmm


logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    REJECT = 'REJECT'
    SKIP = 'SKIP'


@dataclass(frozen=True)
class WeeklyPattern:
    weekday: int  # Monday=0 ... Sunday=6
    start_min: int
    duration_min: int

    def validate(self) -> None:
        if self.weekday < 0 or self.weekday > 6:
            raise ValueError('weekday must be between 0 (Mon) and 6 (Sun)')
        if self.duration_min < settings.booking_min_duration_minutes:
            raise ValueError(f'duration must be at least {settings.booking_min_duration_minutes} minutes')
        if self.start_min < 0 or self.start_min + self.duration_min > MINUTES_PER_DAY:
            raise ValueError(f'{hhmm(self.start_min)} + {self.duration_min} min does not fit in one day')


@dataclass(frozen=True)
class Occurrence:
    class_id: int
    interval: TimeInterval
    student_id: int | None = None
    teacher_id: int | None = None
    template_id: int | None = None

    def label(self) -> str:
        return self.interval.label()

    def as_dict(self) -> dict[str, Any]:
        return {
            'class_id': self.class_id,
            'date': self.interval.day.isoformat(),
            'start': hhmm(self.interval.start_min),
            'end': hhmm(self.interval.end_min),
            'student_id': self.student_id,
            'template_id': self.template_id,
        }


@dataclass
class BatchReport:
    created: list[ClassSession] = field(default_factory=list)
    skipped: list[tuple[Occurrence, Reject]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.skipped)

    def samples(self, limit: int | None = None) -> list[str]:
        count = settings.batch_skip_sample_limit if limit is None else limit
        return [f'{occurrence.label()} {reject.code.value}: {reject.message}' for occurrence, reject in self.skipped[:count]]

    def summary(self) -> str:
        message = f'Generated done: created={len(self.created)}, skipped={len(self.skipped)}.'
        samples = self.samples()
        if samples:
            message += ' Samples: ' + '; '.join(samples)
        return message

    def as_dict(self) -> dict[str, Any]:
        return {
            'created': [row.id for row in self.created],
            'skipped_count': len(self.skipped),
            'skipped_sample': [
                {**occurrence.as_dict(), **reject.as_dict()}
                for occurrence, reject in self.skipped[: settings.batch_skip_sample_limit]
            ],
            'total': self.total,
            'message': self.summary(),
        }


def expand_weekly(pattern: WeeklyPattern, date_range: DateRange) -> list[TimeInterval]:
    pattern.validate()
    day = date_range.start + timedelta(days=(pattern.weekday - date_range.start.weekday()) % 7)
    intervals = []
    while day <= date_range.end:
        intervals.append(TimeInterval.on_day(day, pattern.start_min, pattern.start_min + pattern.duration_min))
        day += timedelta(days=7)
    return intervals


def _run_batch(
    db: Session,
    build_occurrences: Callable[[Session], list[Occurrence]],
    policy: ConflictPolicy,
    *,
    label: str,
) -> BatchReport:
    policy = ConflictPolicy(policy)

    def work(tx: Session) -> BatchReport:
        report = BatchReport()
        occurrences = sorted(build_occurrences(tx), key=lambda row: (row.interval.start_at, row.class_id))
        for occurrence in occurrences:
            try:
                row = insert_session(
                    tx,
                    occurrence.class_id,
                    occurrence.interval,
                    student_id=occurrence.student_id,
                    teacher_id=occurrence.teacher_id,
                )
            except BookingRejected as exc:
                if policy == ConflictPolicy.REJECT:
                    raise BookingRejected(
                        Reject(
                            exc.reject.code,
                            f'{occurrence.label()}: {exc.reject.message}',
                            {**exc.reject.detail, 'occurrence': occurrence.as_dict()},
                        )
                    ) from exc
                report.skipped.append((occurrence, exc.reject))
                continue
            report.created.append(row)
        return report

    report = run_in_transaction(db, work, label=label)
    clear_scheduling_cache()
    logger.info(
        'batch_generated label=%s policy=%s created=%s skipped=%s',
        label,
        policy.value,
        len(report.created),
        len(report.skipped),
    )
    return report


@timed_service('batch_generate_weekly')
def generate_weekly_sessions(
    db: Session,
    class_id: int,
    pattern: WeeklyPattern,
    date_range: DateRange,
    *,
    policy: ConflictPolicy = ConflictPolicy.REJECT,
    student_id: int | None = None,
    teacher_id: int | None = None,
) -> BatchReport:
    intervals = expand_weekly(pattern, date_range)

    def build(tx: Session) -> list[Occurrence]:
        if tx.get(ClassGroup, class_id) is None:
            raise BookingRejected(not_found('Class', class_id))
        return [
            Occurrence(class_id=class_id, interval=interval, student_id=student_id, teacher_id=teacher_id)
            for interval in intervals
        ]

    return _run_batch(db, build, policy, label='generate_weekly_sessions')


@timed_service('batch_generate_templates')
def generate_template_sessions(
    db: Session,
    teacher_id: int,
    date_range: DateRange,
    *,
    policy: ConflictPolicy = ConflictPolicy.SKIP,
    template_ids: list[int] | None = None,
) -> BatchReport:
    """Expand a teacher's active one-on-one templates over a date range."""

    def build(tx: Session) -> list[Occurrence]:
        if tx.get(Teacher, teacher_id) is None:
            raise BookingRejected(not_found('Teacher', teacher_id))
        query = tx.query(RecurrenceTemplate).filter(
            RecurrenceTemplate.teacher_id == teacher_id,
            RecurrenceTemplate.active.is_(True),
        )
        if template_ids:
            query = query.filter(RecurrenceTemplate.id.in_(template_ids))
        occurrences = []
        for template in query.order_by(RecurrenceTemplate.id.asc()).all():
            pattern = WeeklyPattern(int(template.weekday), int(template.start_min), int(template.duration_min))
            for interval in expand_weekly(pattern, date_range):
                occurrences.append(
                    Occurrence(
                        class_id=template.class_id,
                        interval=interval,
                        student_id=template.student_id,
                        teacher_id=template.teacher_id,
                        template_id=template.id,
                    )
                )
        return occurrences

    return _run_batch(db, build, policy, label='generate_template_sessions')


@timed_service('batch_generate_one_on_one')
def generate_one_on_one_series(
    db: Session,
    key: OneOnOneBucketKey,
    student_id: int,
    pattern: WeeklyPattern,
    date_range: DateRange,
    *,
    policy: ConflictPolicy = ConflictPolicy.REJECT,
) -> BatchReport:
    intervals = expand_weekly(pattern, date_range)

    def build(tx: Session) -> list[Occurrence]:
        if lock_teacher(tx, key.teacher_id) is None:
            raise BookingRejected(not_found('Teacher', key.teacher_id))
        group = get_or_create_one_on_one_class(tx, key, student_id)
        return [Occurrence(class_id=group.id, interval=interval, student_id=student_id) for interval in intervals]

    return _run_batch(db, build, policy, label='generate_one_on_one_series')


def create_recurrence_template(
    db: Session,
    *,
    teacher_id: int,
    student_id: int,
    class_id: int,
    pattern: WeeklyPattern,
) -> RecurrenceTemplate:
    pattern.validate()
    group = db.get(ClassGroup, class_id)
    if group is None:
        raise ValueError('Class not found')
    if not group.is_one_on_one:
        raise ValueError('Templates are only supported for one-on-one classes')
    if db.get(Teacher, teacher_id) is None:
        raise ValueError('Teacher not found')
    if not is_enrolled(db, student_id, class_id):
        raise ValueError('Student is not enrolled in this class')
    row = RecurrenceTemplate(
        teacher_id=teacher_id,
        student_id=student_id,
        class_id=class_id,
        weekday=pattern.weekday,
        start_min=pattern.start_min,
        duration_min=pattern.duration_min,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info('recurrence_template_created template_id=%s teacher_id=%s class_id=%s', row.id, teacher_id, class_id)
    return row
