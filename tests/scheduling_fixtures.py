import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tutordesk.cache import clear_scheduling_cache
from tutordesk.core.time_provider import TimeProvider
from tutordesk.db import Base
from tutordesk.models import (
    AvailabilityOverride,
    AvailabilityRule,
    Campus,
    ClassGroup,
    Course,
    Enrollment,
    Room,
    Student,
    Subject,
    Teacher,
)
from tutordesk.utils.time_utils import TimeInterval, parse_hhmm


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


def at(day: str, hhmm: str) -> datetime:
    return datetime.fromisoformat(f'{day}T{hhmm}')


def span(day: str, start: str, end: str) -> TimeInterval:
    return TimeInterval(at(day, start), at(day, end))


class SchedulingDbTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / f'{cls.__name__}.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_scheduling_cache()
        db = self._session_factory()
        try:
            for table in reversed(Base.metadata.sorted_tables):
                db.execute(table.delete())
            db.commit()
        finally:
            db.close()

    # Seed helpers commit so every service call starts from persisted state.

    def _add(self, db, row):
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    def seed_campus(self, db, *, name='Main', is_online=False) -> Campus:
        return self._add(db, Campus(name=name, is_online=is_online))

    def seed_room(self, db, campus: Campus, *, name='R1', capacity=10) -> Room:
        return self._add(db, Room(campus_id=campus.id, name=name, capacity=capacity))

    def seed_subject(self, db, *, course_name='Math', subject_name='Algebra') -> Subject:
        course = self._add(db, Course(name=course_name))
        return self._add(db, Subject(course_id=course.id, name=subject_name))

    def seed_teacher(self, db, *, name='Asha', primary_subject: Subject | None = None, subjects=()) -> Teacher:
        teacher = Teacher(name=name, primary_subject_id=primary_subject.id if primary_subject else None)
        teacher.subjects = list(subjects)
        return self._add(db, teacher)

    def seed_student(self, db, *, name='Ravi') -> Student:
        return self._add(db, Student(name=name))

    def seed_class(
        self,
        db,
        *,
        teacher: Teacher,
        campus: Campus,
        subject: Subject,
        room: Room | None = None,
        capacity=6,
        name='',
    ) -> ClassGroup:
        return self._add(
            db,
            ClassGroup(
                name=name,
                course_id=subject.course_id,
                subject_id=subject.id,
                teacher_id=teacher.id,
                campus_id=campus.id,
                room_id=room.id if room else None,
                capacity=capacity,
            ),
        )

    def add_rule(self, db, teacher: Teacher, weekday: int, start: str, end: str) -> AvailabilityRule:
        return self._add(
            db,
            AvailabilityRule(teacher_id=teacher.id, weekday=weekday, start_min=parse_hhmm(start), end_min=parse_hhmm(end)),
        )

    def add_override(self, db, teacher: Teacher, day: str, start: str | None = None, end: str | None = None) -> AvailabilityOverride:
        row = AvailabilityOverride(teacher_id=teacher.id, date=datetime.fromisoformat(day).date())
        if start is None:
            row.is_day_off = True
        else:
            row.start_min = parse_hhmm(start)
            row.end_min = parse_hhmm(end)
        return self._add(db, row)

    def enroll(self, db, student: Student, group: ClassGroup) -> Enrollment:
        return self._add(db, Enrollment(student_id=student.id, class_id=group.id))

    def seed_world(self, db, *, room_capacity=10, class_capacity=6):
        """Campus with one room, a qualified teacher free all week 08:00-20:00 and a group class."""
        campus = self.seed_campus(db)
        room = self.seed_room(db, campus, capacity=room_capacity)
        subject = self.seed_subject(db)
        teacher = self.seed_teacher(db, primary_subject=subject)
        for weekday in range(7):
            self.add_rule(db, teacher, weekday, '08:00', '20:00')
        group = self.seed_class(db, teacher=teacher, campus=campus, subject=subject, room=room, capacity=class_capacity, name='Algebra A')
        return campus, room, subject, teacher, group
