from datetime import date, datetime

from tutordesk.services.session_mutation_service import create_appointment
from tutordesk.services.slot_candidate_service import (
    build_slot_candidates,
    get_slot_candidates_payload,
    set_slot_visibility,
)
from tutordesk.utils.time_utils import DateRange

from scheduling_fixtures import FixedTimeProvider, SchedulingDbTestCase, span


MONDAY = DateRange(date(2024, 6, 3), date(2024, 6, 3))
EARLY = FixedTimeProvider(datetime(2024, 6, 1, 8, 0))


class SlotCandidateTests(SchedulingDbTestCase):
    def _seed_teacher(self, db):
        teacher = self.seed_teacher(db, name='Meera')
        self.add_rule(db, teacher, 0, '09:00', '11:00')
        return teacher

    def test_steps_through_availability_and_flags_booked_slots(self):
        db = self._session_factory()
        try:
            teacher = self._seed_teacher(db)
            student = self.seed_student(db)
            create_appointment(db, teacher.id, student.id, span('2024-06-03', '10:00', '10:30'))

            rows = build_slot_candidates(db, [teacher.id], MONDAY, 60, 30, time_provider=EARLY)
            self.assertEqual(
                [(row.as_dict()['start'], row.booked) for row in rows],
                [('09:00', False), ('09:30', True), ('10:00', True)],
            )
            self.assertFalse(any(row.visible_to_student for row in rows))
        finally:
            db.close()

    def test_past_slots_are_dropped_unless_requested(self):
        db = self._session_factory()
        try:
            teacher = self._seed_teacher(db)
            clock = FixedTimeProvider(datetime(2024, 6, 3, 9, 15))

            rows = build_slot_candidates(db, [teacher.id], MONDAY, 60, 30, time_provider=clock)
            self.assertEqual([row.start_min for row in rows], [570, 600])
            everything = build_slot_candidates(db, [teacher.id], MONDAY, 60, 30, include_past=True, time_provider=clock)
            self.assertEqual(len(everything), 3)
        finally:
            db.close()

    def test_day_off_override_yields_no_slots(self):
        db = self._session_factory()
        try:
            teacher = self._seed_teacher(db)
            self.add_override(db, teacher, '2024-06-03')
            self.assertEqual(build_slot_candidates(db, [teacher.id], MONDAY, 30, time_provider=EARLY), [])
        finally:
            db.close()

    def test_visibility_is_curated_per_slot(self):
        db = self._session_factory()
        try:
            teacher = self._seed_teacher(db)
            set_slot_visibility(db, teacher.id, span('2024-06-03', '09:00', '10:00'), True)
            set_slot_visibility(db, teacher.id, span('2024-06-03', '10:00', '11:00'), True)
            set_slot_visibility(db, teacher.id, span('2024-06-03', '10:00', '11:00'), False)

            payload = get_slot_candidates_payload(db, [teacher.id], MONDAY, 60, 30, only_visible=True, time_provider=EARLY)
            self.assertEqual(payload, [
                {
                    'teacher_id': teacher.id,
                    'date': '2024-06-03',
                    'start': '09:00',
                    'end': '10:00',
                    'booked': False,
                    'visible_to_student': True,
                }
            ])
        finally:
            db.close()

    def test_invalid_duration_and_step(self):
        db = self._session_factory()
        try:
            teacher = self._seed_teacher(db)
            with self.assertRaises(ValueError):
                build_slot_candidates(db, [teacher.id], MONDAY, 5, time_provider=EARLY)
            with self.assertRaises(ValueError):
                build_slot_candidates(db, [teacher.id], MONDAY, 60, 1, time_provider=EARLY)
        finally:
            db.close()
