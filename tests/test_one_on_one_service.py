from sqlalchemy.exc import IntegrityError

from tutordesk.models import ClassGroup, Enrollment, OneOnOneBucket
from tutordesk.services.one_on_one_service import (
    CourseEnrollmentConflict,
    OneOnOneBucketKey,
    find_bucket,
    get_or_create_bucket,
    get_or_create_one_on_one_class,
)

from scheduling_fixtures import SchedulingDbTestCase


class OneOnOneBucketTests(SchedulingDbTestCase):
    def test_bucket_lookup_treats_missing_fields_as_part_of_the_key(self):
        db = self._session_factory()
        try:
            campus, room, subject, teacher, _ = self.seed_world(db)
            roomless = OneOnOneBucketKey(teacher.id, subject.course_id, None, None, campus.id, None)
            with_room = OneOnOneBucketKey(teacher.id, subject.course_id, None, None, campus.id, room.id)

            first = get_or_create_bucket(db, roomless)
            db.commit()
            self.assertEqual(get_or_create_bucket(db, roomless).id, first.id)
            self.assertIsNone(find_bucket(db, with_room))
            self.assertNotEqual(get_or_create_bucket(db, with_room).id, first.id)
            db.commit()
            self.assertEqual(db.query(OneOnOneBucket).count(), 2)
        finally:
            db.close()

    def test_storage_rejects_a_second_bucket_with_the_same_null_members(self):
        db = self._session_factory()
        try:
            campus, _, subject, teacher, _ = self.seed_world(db)
            values = {'teacher_id': teacher.id, 'course_id': subject.course_id, 'campus_id': campus.id}
            db.add(OneOnOneBucket(**values))
            db.commit()

            db.add(OneOnOneBucket(**values))
            with self.assertRaises(IntegrityError):
                db.commit()
            db.rollback()

            db.add(OneOnOneBucket(subject_id=subject.id, **values))
            db.commit()
            self.assertEqual(db.query(OneOnOneBucket).count(), 2)
        finally:
            db.close()

    def test_unknown_references_are_rejected(self):
        db = self._session_factory()
        try:
            campus, _, subject, _, _ = self.seed_world(db)
            with self.assertRaises(ValueError):
                get_or_create_bucket(db, OneOnOneBucketKey(999, subject.course_id, None, None, campus.id, None))
        finally:
            db.close()

    def test_class_is_created_once_and_student_enrolled(self):
        db = self._session_factory()
        try:
            campus, room, subject, teacher, _ = self.seed_world(db)
            student = self.seed_student(db)
            key = OneOnOneBucketKey(teacher.id, subject.course_id, subject.id, None, campus.id, room.id)

            group = get_or_create_one_on_one_class(db, key, student.id)
            db.commit()
            self.assertTrue(group.is_one_on_one)
            self.assertEqual(group.name, '1:1 Math')
            self.assertEqual(get_or_create_one_on_one_class(db, key, student.id).id, group.id)
            db.commit()
            self.assertEqual(db.query(ClassGroup).filter(ClassGroup.one_on_one_bucket_id.isnot(None)).count(), 1)
            self.assertEqual(db.query(Enrollment).filter(Enrollment.student_id == student.id).count(), 1)
        finally:
            db.close()

    def test_group_enrollment_or_other_subject_conflicts(self):
        db = self._session_factory()
        try:
            campus, room, subject, teacher, group = self.seed_world(db)
            grouped = self.seed_student(db, name='Grouped')
            self.enroll(db, grouped, group)
            key = OneOnOneBucketKey(teacher.id, subject.course_id, subject.id, None, campus.id, room.id)

            with self.assertRaises(CourseEnrollmentConflict) as ctx:
                get_or_create_one_on_one_class(db, key, grouped.id)
            self.assertEqual(ctx.exception.code, 'COURSE_ENROLLMENT_CONFLICT')

            solo = self.seed_student(db, name='Solo')
            get_or_create_one_on_one_class(db, key, solo.id)
            db.commit()
            other_subject = OneOnOneBucketKey(teacher.id, subject.course_id, None, None, campus.id, room.id)
            with self.assertRaises(CourseEnrollmentConflict):
                get_or_create_one_on_one_class(db, other_subject, solo.id)
        finally:
            db.close()
