from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session

from tutordesk.models import Campus, ClassGroup, Course, OneOnOneBucket, Room, Teacher
from tutordesk.services.enrollment_service import ensure_enrollment, list_course_enrollments


logger = logging.getLogger(__name__)


class CourseEnrollmentConflict(ValueError):
    code = 'COURSE_ENROLLMENT_CONFLICT'


@dataclass(frozen=True)
class OneOnOneBucketKey:
    teacher_id: int
    course_id: int
    subject_id: int | None
    level_id: int | None
    campus_id: int
    room_id: int | None


def _matches(column, value):
    return column.is_(None) if value is None else column == value


def find_bucket(db: Session, key: OneOnOneBucketKey) -> OneOnOneBucket | None:
    return (
        db.query(OneOnOneBucket)
        .filter(*(_matches(getattr(OneOnOneBucket, name), value) for name, value in asdict(key).items()))
        .order_by(OneOnOneBucket.id.asc())
        .first()
    )


def _check_references(db: Session, key: OneOnOneBucketKey) -> None:
    if not db.get(Teacher, key.teacher_id):
        raise ValueError('Teacher not found')
    if not db.get(Course, key.course_id):
        raise ValueError('Course not found')
    if not db.get(Campus, key.campus_id):
        raise ValueError('Campus not found')
    if key.room_id is not None and not db.get(Room, key.room_id):
        raise ValueError('Room not found')


def get_or_create_bucket(db: Session, key: OneOnOneBucketKey) -> OneOnOneBucket:
    bucket = find_bucket(db, key)
    if bucket:
        return bucket
    _check_references(db, key)
    bucket = OneOnOneBucket(**asdict(key))
    db.add(bucket)
    db.flush()
    logger.info('one_on_one_bucket_created bucket_id=%s teacher_id=%s course_id=%s', bucket.id, key.teacher_id, key.course_id)
    return bucket


def get_or_create_one_on_one_class(db: Session, key: OneOnOneBucketKey, student_id: int) -> ClassGroup:
    """Return the bucket's capacity-1 class with the student enrolled. Does not commit."""
    for enrollment in list_course_enrollments(db, student_id, key.course_id):
        group = enrollment.class_group
        if not group.is_one_on_one:
            raise CourseEnrollmentConflict('Student is already enrolled in a group class for this course')
        if group.subject_id != key.subject_id:
            raise CourseEnrollmentConflict('Student is already enrolled one-on-one for another subject of this course')

    bucket = get_or_create_bucket(db, key)
    group = (
        db.query(ClassGroup)
        .filter(ClassGroup.one_on_one_bucket_id == bucket.id)
        .order_by(ClassGroup.id.asc())
        .first()
    )
    if not group:
        course = db.get(Course, key.course_id)
        group = ClassGroup(
            name=f'1:1 {course.name}' if course else '1:1',
            course_id=key.course_id,
            subject_id=key.subject_id,
            level_id=key.level_id,
            teacher_id=key.teacher_id,
            campus_id=key.campus_id,
            room_id=key.room_id,
            capacity=1,
            one_on_one_bucket_id=bucket.id,
        )
        db.add(group)
        db.flush()
    ensure_enrollment(db, student_id, group.id)
    return group
