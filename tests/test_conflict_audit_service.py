from datetime import date

from freezegun import freeze_time

from tutordesk.models import Appointment, ClassSession, ConflictAuditSnapshot
from tutordesk.services.conflict_audit_service import build_conflict_report, run_daily_conflict_audit
from tutordesk.utils.time_utils import DateRange

from scheduling_fixtures import SchedulingDbTestCase, at


class ConflictAuditTests(SchedulingDbTestCase):
    def _seed_legacy_rows(self, db):
        # Rows written before the validator existed; inserted directly on purpose.
        campus, room, subject, teacher, group = self.seed_world(db, class_capacity=12)
        other = self.seed_class(db, teacher=teacher, campus=campus, subject=subject, room=room, name='Algebra B')
        student = self.seed_student(db)
        db.add_all([
            ClassSession(class_id=group.id, start_at=at('2024-06-03', '10:00'), end_at=at('2024-06-03', '11:00')),
            ClassSession(class_id=other.id, start_at=at('2024-06-03', '10:30'), end_at=at('2024-06-03', '11:30')),
            ClassSession(class_id=other.id, start_at=at('2024-06-04', '12:00'), end_at=at('2024-06-04', '12:00')),
            Appointment(teacher_id=teacher.id, student_id=student.id, start_at=at('2024-06-03', '11:15'), end_at=at('2024-06-03', '11:45')),
        ])
        db.commit()
        return room, teacher, group

    def test_report_counts_each_kind_of_issue(self):
        db = self._session_factory()
        try:
            room, teacher, group = self._seed_legacy_rows(db)
            report = build_conflict_report(db, DateRange(date(2024, 6, 3), date(2024, 6, 9)))

            self.assertEqual(report['counts'], {
                'teacher_conflicts': 2,
                'room_conflicts': 1,
                'duplicates': 0,
                'capacity_issues': 1,
                'invalid_ranges': 1,
            })
            self.assertTrue(all(pair['teacher_id'] == teacher.id for pair in report['teacher_conflicts']))
            kinds = sorted((pair['left']['kind'], pair['right']['kind']) for pair in report['teacher_conflicts'])
            self.assertEqual(kinds, [('appointment', 'session'), ('session', 'session')])
            self.assertEqual(report['room_conflicts'][0]['room_id'], room.id)
            self.assertEqual(report['capacity_issues'][0]['class_id'], group.id)
            self.assertEqual(report['invalid_ranges'][0]['range'], '2024-06-04 12:00-12:00')
        finally:
            db.close()

    def test_report_only_covers_requested_days(self):
        db = self._session_factory()
        try:
            self._seed_legacy_rows(db)
            report = build_conflict_report(db, DateRange(date(2024, 6, 4), date(2024, 6, 9)))
            self.assertEqual(report['counts']['teacher_conflicts'], 0)
            self.assertEqual(report['counts']['invalid_ranges'], 1)
        finally:
            db.close()

    @freeze_time('2024-06-03 03:00:00')
    def test_daily_audit_stores_one_snapshot_per_day(self):
        db = self._session_factory()
        try:
            self._seed_legacy_rows(db)
            first = run_daily_conflict_audit(db)
            self.assertEqual(first['audit_date'], '2024-06-03')
            self.assertEqual(first['counts']['teacher_conflicts'], 2)

            db.query(Appointment).delete()
            db.commit()
            self.assertEqual(run_daily_conflict_audit(db), first)

            refreshed = run_daily_conflict_audit(db, force=True)
            self.assertEqual(refreshed['counts']['teacher_conflicts'], 1)
            self.assertEqual(db.query(ConflictAuditSnapshot).count(), 1)
        finally:
            db.close()
