from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Table, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tutordesk.db import Base


class PackageKind(str, Enum):
    MONTHLY = 'MONTHLY'
    HOURS = 'HOURS'


class PackageStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    PAUSED = 'PAUSED'
    EXPIRED = 'EXPIRED'


teacher_subjects = Table(
    'teacher_subjects',
    Base.metadata,
    Column('teacher_id', ForeignKey('teachers.id', ondelete='CASCADE'), primary_key=True),
    Column('subject_id', ForeignKey('subjects.id', ondelete='CASCADE'), primary_key=True),
)


class Campus(Base):
    __tablename__ = 'campuses'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    is_online: Mapped[bool] = mapped_column(Boolean, default=False)

    rooms: Mapped[list['Room']] = relationship('Room', back_populates='campus')


class Room(Base):
    __tablename__ = 'rooms'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    campus_id: Mapped[int] = mapped_column(ForeignKey('campuses.id'), index=True)
    name: Mapped[str] = mapped_column(String(120))
    capacity: Mapped[int] = mapped_column(Integer, default=1)

    campus: Mapped['Campus'] = relationship('Campus', back_populates='rooms')


class Course(Base):
    __tablename__ = 'courses'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))


class Subject(Base):
    __tablename__ = 'subjects'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    name: Mapped[str] = mapped_column(String(120))


class Level(Base):
    __tablename__ = 'levels'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    subject_id: Mapped[int] = mapped_column(ForeignKey('subjects.id'), index=True)
    name: Mapped[str] = mapped_column(String(120))


class Teacher(Base):
    __tablename__ = 'teachers'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    primary_subject_id: Mapped[int | None] = mapped_column(ForeignKey('subjects.id'), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    primary_subject: Mapped[Optional['Subject']] = relationship('Subject', foreign_keys=[primary_subject_id])
    subjects: Mapped[list['Subject']] = relationship('Subject', secondary=teacher_subjects)


class Student(Base):
    __tablename__ = 'students'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class OneOnOneBucket(Base):
    __tablename__ = 'one_on_one_buckets'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    subject_id: Mapped[int | None] = mapped_column(ForeignKey('subjects.id'), nullable=True)
    level_id: Mapped[int | None] = mapped_column(ForeignKey('levels.id'), nullable=True)
    campus_id: Mapped[int] = mapped_column(ForeignKey('campuses.id'), index=True)
    room_id: Mapped[int | None] = mapped_column(ForeignKey('rooms.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# Unique bucket key. COALESCE makes NULL members compare equal.
Index(
    'uq_one_on_one_buckets_key',
    OneOnOneBucket.teacher_id,
    OneOnOneBucket.course_id,
    func.coalesce(OneOnOneBucket.subject_id, 0),
    func.coalesce(OneOnOneBucket.level_id, 0),
    OneOnOneBucket.campus_id,
    func.coalesce(OneOnOneBucket.room_id, 0),
    unique=True,
)


class ClassGroup(Base):
    __tablename__ = 'classes'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(160), default='')
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    subject_id: Mapped[int | None] = mapped_column(ForeignKey('subjects.id'), nullable=True, index=True)
    level_id: Mapped[int | None] = mapped_column(ForeignKey('levels.id'), nullable=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    campus_id: Mapped[int] = mapped_column(ForeignKey('campuses.id'), index=True)
    room_id: Mapped[int | None] = mapped_column(ForeignKey('rooms.id'), nullable=True, index=True)
    capacity: Mapped[int] = mapped_column(Integer, default=1)
    one_on_one_bucket_id: Mapped[int | None] = mapped_column(ForeignKey('one_on_one_buckets.id'), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    teacher: Mapped['Teacher'] = relationship('Teacher')
    campus: Mapped['Campus'] = relationship('Campus')
    room: Mapped[Optional['Room']] = relationship('Room')
    course: Mapped['Course'] = relationship('Course')
    subject: Mapped[Optional['Subject']] = relationship('Subject')
    sessions: Mapped[list['ClassSession']] = relationship('ClassSession', back_populates='class_group')

    @property
    def is_one_on_one(self) -> bool:
        return int(self.capacity or 0) == 1

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        course_name = self.course.name if self.course else f'course {self.course_id}'
        subject_name = self.subject.name if self.subject else ''
        return f'{course_name} {subject_name}'.strip()


class Enrollment(Base):
    __tablename__ = 'enrollments'
    __table_args__ = (
        UniqueConstraint('class_id', 'student_id', name='uq_enrollments_class_student'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('classes.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    class_group: Mapped['ClassGroup'] = relationship('ClassGroup')


class ClassSession(Base):
    __tablename__ = 'class_sessions'
    __table_args__ = (
        UniqueConstraint('class_id', 'start_at', 'end_at', name='uq_class_sessions_class_start_end'),
        Index('ix_class_sessions_teacher_start', 'teacher_id', 'start_at'),
        Index('ix_class_sessions_start_end', 'start_at', 'end_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('classes.id'), index=True)
    start_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime)
    teacher_id: Mapped[int | None] = mapped_column(ForeignKey('teachers.id'), nullable=True)  # override, null = class teacher
    student_id: Mapped[int | None] = mapped_column(ForeignKey('students.id'), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    class_group: Mapped['ClassGroup'] = relationship('ClassGroup', back_populates='sessions')

    @property
    def effective_teacher_id(self) -> int:
        if self.teacher_id is not None:
            return int(self.teacher_id)
        return int(self.class_group.teacher_id)


class Appointment(Base):
    __tablename__ = 'appointments'
    __table_args__ = (
        Index('ix_appointments_teacher_start', 'teacher_id', 'start_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    start_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    teacher: Mapped['Teacher'] = relationship('Teacher')


class SessionTeacherChange(Base):
    __tablename__ = 'session_teacher_changes'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # No FK: audit rows outlive cancelled sessions.
    session_id: Mapped[int] = mapped_column(Integer, index=True)
    from_teacher_id: Mapped[int] = mapped_column(Integer, index=True)
    to_teacher_id: Mapped[int] = mapped_column(Integer, index=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)


class AvailabilityRule(Base):
    __tablename__ = 'availability_rules'
    __table_args__ = (
        Index('ix_availability_rules_teacher_weekday', 'teacher_id', 'weekday'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    weekday: Mapped[int] = mapped_column(Integer)  # Monday=0 ... Sunday=6
    start_min: Mapped[int] = mapped_column(Integer)
    end_min: Mapped[int] = mapped_column(Integer)


class AvailabilityOverride(Base):
    __tablename__ = 'availability_overrides'
    __table_args__ = (
        Index('ix_availability_overrides_teacher_date', 'teacher_id', 'date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    date: Mapped[date] = mapped_column(Date)
    # A day-off marker row carries no slot and means "no availability".
    is_day_off: Mapped[bool] = mapped_column(Boolean, default=False)
    start_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_min: Mapped[int | None] = mapped_column(Integer, nullable=True)


class RecurrenceTemplate(Base):
    __tablename__ = 'recurrence_templates'
    __table_args__ = (
        Index('ix_recurrence_templates_teacher_active', 'teacher_id', 'active'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('classes.id'), index=True)
    weekday: Mapped[int] = mapped_column(Integer)  # Monday=0 ... Sunday=6
    start_min: Mapped[int] = mapped_column(Integer)
    duration_min: Mapped[int] = mapped_column(Integer, default=60)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class BookingSlotVisibility(Base):
    __tablename__ = 'booking_slot_visibility'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'start_at', 'end_at', name='uq_booking_slot_visibility_teacher_slot'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id'), index=True)
    start_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime)
    visible: Mapped[bool] = mapped_column(Boolean, default=True)


class StudentPackage(Base):
    __tablename__ = 'student_packages'
    __table_args__ = (
        Index('ix_student_packages_student_course', 'student_id', 'course_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    kind: Mapped[str] = mapped_column(String(20), default=PackageKind.HOURS.value)
    status: Mapped[str] = mapped_column(String(20), default=PackageStatus.ACTIVE.value, index=True)
    valid_from: Mapped[datetime] = mapped_column(DateTime)
    valid_to: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    remaining_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)


class PackageDeduction(Base):
    __tablename__ = 'package_deductions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    package_id: Mapped[int] = mapped_column(ForeignKey('student_packages.id'), index=True)
    session_id: Mapped[int] = mapped_column(Integer, index=True)
    minutes: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ConflictAuditSnapshot(Base):
    __tablename__ = 'conflict_audit_snapshots'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    audit_date: Mapped[date] = mapped_column(Date, unique=True, index=True)
    summary_json: Mapped[str] = mapped_column(Text, default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
