from __future__ import annotations

from sqlalchemy.orm import Session

from tutordesk.models import ClassGroup, Enrollment


def is_enrolled(db: Session, student_id: int, class_id: int) -> bool:
    return (
        db.query(Enrollment.id)
        .filter(Enrollment.student_id == student_id, Enrollment.class_id == class_id)
        .first()
        is not None
    )


def list_course_enrollments(db: Session, student_id: int, course_id: int) -> list[Enrollment]:
    return (
        db.query(Enrollment)
        .join(ClassGroup, Enrollment.class_id == ClassGroup.id)
        .filter(Enrollment.student_id == student_id, ClassGroup.course_id == course_id)
        .order_by(Enrollment.id.asc())
        .all()
    )


def ensure_enrollment(db: Session, student_id: int, class_id: int) -> Enrollment:
    row = (
        db.query(Enrollment)
        .filter(Enrollment.student_id == student_id, Enrollment.class_id == class_id)
        .first()
    )
    if row:
        return row
    row = Enrollment(student_id=student_id, class_id=class_id)
    db.add(row)
    db.flush()
    return row
