"""scheduling core schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    if not _table_exists(inspector, table_name):
        return False
    return any(idx['name'] == index_name for idx in inspector.get_indexes(table_name))


def _create_index(table_name: str, index_name: str, columns: list, *, unique: bool = False) -> None:
    inspector = sa.inspect(op.get_bind())
    if not _index_exists(inspector, table_name, index_name):
        op.create_index(index_name, table_name, columns, unique=unique)


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)'))


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())

    if not _table_exists(inspector, 'campuses'):
        op.create_table(
            'campuses',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'rooms'):
        op.create_table(
            'rooms',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('campus_id', sa.Integer(), sa.ForeignKey('campuses.id'), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('capacity', sa.Integer(), nullable=False, server_default='1'),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'courses'):
        op.create_table(
            'courses',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'subjects'):
        op.create_table(
            'subjects',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'levels'):
        op.create_table(
            'levels',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id'), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'teachers'):
        op.create_table(
            'teachers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('primary_subject_id', sa.Integer(), sa.ForeignKey('subjects.id'), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'teacher_subjects'):
        op.create_table(
            'teacher_subjects',
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id', ondelete='CASCADE'), nullable=False),
            sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id', ondelete='CASCADE'), nullable=False),
            sa.PrimaryKeyConstraint('teacher_id', 'subject_id'),
        )

    if not _table_exists(inspector, 'students'):
        op.create_table(
            'students',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'one_on_one_buckets'):
        op.create_table(
            'one_on_one_buckets',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
            sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
            sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id'), nullable=True),
            sa.Column('level_id', sa.Integer(), sa.ForeignKey('levels.id'), nullable=True),
            sa.Column('campus_id', sa.Integer(), sa.ForeignKey('campuses.id'), nullable=False),
            sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'classes'):
        op.create_table(
            'classes',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
            sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id'), nullable=True),
            sa.Column('level_id', sa.Integer(), sa.ForeignKey('levels.id'), nullable=True),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
            sa.Column('campus_id', sa.Integer(), sa.ForeignKey('campuses.id'), nullable=False),
            sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=True),
            sa.Column('capacity', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('one_on_one_bucket_id', sa.Integer(), sa.ForeignKey('one_on_one_buckets.id'), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'enrollments'):
        op.create_table(
            'enrollments',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('class_id', sa.Integer(), sa.ForeignKey('classes.id'), nullable=False),
            sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('class_id', 'student_id', name='uq_enrollments_class_student'),
        )

    if not _table_exists(inspector, 'class_sessions'):
        op.create_table(
            'class_sessions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('class_id', sa.Integer(), sa.ForeignKey('classes.id'), nullable=False),
            sa.Column('start_at', sa.DateTime(), nullable=False),
            sa.Column('end_at', sa.DateTime(), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=True),
            sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('class_id', 'start_at', 'end_at', name='uq_class_sessions_class_start_end'),
        )

    if not _table_exists(inspector, 'appointments'):
        op.create_table(
            'appointments',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
            sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
            sa.Column('start_at', sa.DateTime(), nullable=False),
            sa.Column('end_at', sa.DateTime(), nullable=False),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'session_teacher_changes'):
        op.create_table(
            'session_teacher_changes',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('session_id', sa.Integer(), nullable=False),
            sa.Column('from_teacher_id', sa.Integer(), nullable=False),
            sa.Column('to_teacher_id', sa.Integer(), nullable=False),
            sa.Column('reason', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'availability_rules'):
        op.create_table(
            'availability_rules',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
            sa.Column('weekday', sa.Integer(), nullable=False),
            sa.Column('start_min', sa.Integer(), nullable=False),
            sa.Column('end_min', sa.Integer(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'availability_overrides'):
        op.create_table(
            'availability_overrides',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
            sa.Column('date', sa.Date(), nullable=False),
            sa.Column('is_day_off', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('start_min', sa.Integer(), nullable=True),
            sa.Column('end_min', sa.Integer(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'recurrence_templates'):
        op.create_table(
            'recurrence_templates',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
            sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
            sa.Column('class_id', sa.Integer(), sa.ForeignKey('classes.id'), nullable=False),
            sa.Column('weekday', sa.Integer(), nullable=False),
            sa.Column('start_min', sa.Integer(), nullable=False),
            sa.Column('duration_min', sa.Integer(), nullable=False, server_default='60'),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'booking_slot_visibility'):
        op.create_table(
            'booking_slot_visibility',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teachers.id'), nullable=False),
            sa.Column('start_at', sa.DateTime(), nullable=False),
            sa.Column('end_at', sa.DateTime(), nullable=False),
            sa.Column('visible', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('teacher_id', 'start_at', 'end_at', name='uq_booking_slot_visibility_teacher_slot'),
        )

    if not _table_exists(inspector, 'student_packages'):
        op.create_table(
            'student_packages',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
            sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
            sa.Column('kind', sa.String(length=20), nullable=False, server_default='HOURS'),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='ACTIVE'),
            sa.Column('valid_from', sa.DateTime(), nullable=False),
            sa.Column('valid_to', sa.DateTime(), nullable=True),
            sa.Column('remaining_minutes', sa.Integer(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'package_deductions'):
        op.create_table(
            'package_deductions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('package_id', sa.Integer(), sa.ForeignKey('student_packages.id'), nullable=False),
            sa.Column('session_id', sa.Integer(), nullable=False),
            sa.Column('minutes', sa.Integer(), nullable=False),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    if not _table_exists(inspector, 'conflict_audit_snapshots'):
        op.create_table(
            'conflict_audit_snapshots',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('audit_date', sa.Date(), nullable=False),
            sa.Column('summary_json', sa.Text(), nullable=False, server_default='{}'),
            _created_at(),
            sa.PrimaryKeyConstraint('id'),
        )

    _create_index('rooms', 'ix_rooms_campus_id', ['campus_id'])
    _create_index('subjects', 'ix_subjects_course_id', ['course_id'])
    _create_index(
        'one_on_one_buckets',
        'uq_one_on_one_buckets_key',
        [
            'teacher_id',
            'course_id',
            sa.text('coalesce(subject_id, 0)'),
            sa.text('coalesce(level_id, 0)'),
            'campus_id',
            sa.text('coalesce(room_id, 0)'),
        ],
        unique=True,
    )
    _create_index('classes', 'ix_classes_teacher_id', ['teacher_id'])
    _create_index('classes', 'ix_classes_room_id', ['room_id'])
    _create_index('classes', 'ix_classes_campus_id', ['campus_id'])
    _create_index('classes', 'ix_classes_one_on_one_bucket_id', ['one_on_one_bucket_id'])
    _create_index('enrollments', 'ix_enrollments_student_id', ['student_id'])
    _create_index('class_sessions', 'ix_class_sessions_class_id', ['class_id'])
    _create_index('class_sessions', 'ix_class_sessions_start_at', ['start_at'])
    _create_index('class_sessions', 'ix_class_sessions_teacher_start', ['teacher_id', 'start_at'])
    _create_index('class_sessions', 'ix_class_sessions_start_end', ['start_at', 'end_at'])
    _create_index('class_sessions', 'ix_class_sessions_student_id', ['student_id'])
    _create_index('appointments', 'ix_appointments_teacher_start', ['teacher_id', 'start_at'])
    _create_index('appointments', 'ix_appointments_student_id', ['student_id'])
    _create_index('session_teacher_changes', 'ix_session_teacher_changes_session_id', ['session_id'])
    _create_index('session_teacher_changes', 'ix_session_teacher_changes_created_at', ['created_at'])
    _create_index('availability_rules', 'ix_availability_rules_teacher_weekday', ['teacher_id', 'weekday'])
    _create_index('availability_overrides', 'ix_availability_overrides_teacher_date', ['teacher_id', 'date'])
    _create_index('recurrence_templates', 'ix_recurrence_templates_teacher_active', ['teacher_id', 'active'])
    _create_index('booking_slot_visibility', 'ix_booking_slot_visibility_start_at', ['start_at'])
    _create_index('student_packages', 'ix_student_packages_student_course', ['student_id', 'course_id'])
    _create_index('package_deductions', 'ix_package_deductions_session_id', ['session_id'])
    _create_index('conflict_audit_snapshots', 'ix_conflict_audit_snapshots_audit_date', ['audit_date'], unique=True)


def downgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    for table_name in (
        'conflict_audit_snapshots',
        'package_deductions',
        'student_packages',
        'booking_slot_visibility',
        'recurrence_templates',
        'availability_overrides',
        'availability_rules',
        'session_teacher_changes',
        'appointments',
        'class_sessions',
        'enrollments',
        'classes',
        'one_on_one_buckets',
        'students',
        'teacher_subjects',
        'teachers',
        'levels',
        'subjects',
        'courses',
        'rooms',
        'campuses',
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
