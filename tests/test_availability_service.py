from datetime import date

from tutordesk.models import AvailabilityOverride, ClassSession
from tutordesk.services.availability_service import (
    AvailabilitySlot,
    check_within_availability,
    clear_availability_override,
    generate_month_overrides,
    get_day_availability,
    resolve_availability,
    resolve_availability_with_source,
    set_availability_override,
)

from scheduling_fixtures import SchedulingDbTestCase, at, span


class AvailabilityServiceTests(SchedulingDbTestCase):
    def test_weekly_rules_resolve_sorted_for_matching_weekday(self):
        db = self._session_factory()
        try:
            teacher = self.seed_teacher(db)
            self.add_rule(db, teacher, 0, '18:00', '20:00')
            self.add_rule(db, teacher, 0, '09:00', '10:00')
            self.add_rule(db, teacher, 1, '07:00', '08:00')

            slots = resolve_availability(db, teacher.id, date(2024, 6, 3))
            self.assertEqual(slots, [AvailabilitySlot(540, 600), AvailabilitySlot(1080, 1200)])
            self.assertEqual(resolve_availability(db, teacher.id, date(2024, 6, 5)), [])
        finally:
            db.close()

    def test_overrides_replace_rules_instead_of_merging(self):
        db = self._session_factory()
        try:
            teacher = self.seed_teacher(db)
            self.add_rule(db, teacher, 0, '18:00', '20:00')
            self.add_override(db, teacher, '2024-06-10', '10:00', '11:00')

            slots, source = resolve_availability_with_source(db, teacher.id, date(2024, 6, 10))
            self.assertEqual(source, 'override')
            self.assertEqual(slots, [AvailabilitySlot(600, 660)])
        finally:
            db.close()

    def test_explicit_empty_override_means_no_availability(self):
        db = self._session_factory()
        try:
            teacher = self.seed_teacher(db)
            self.add_rule(db, teacher, 0, '18:00', '20:00')
            set_availability_override(db, teacher.id, date(2024, 6, 10), [])

            self.assertEqual(resolve_availability(db, teacher.id, date(2024, 6, 10)), [])
            result = check_within_availability(db, teacher.id, span('2024-06-10', '19:00', '19:30'))
            self.assertFalse(result.ok)
            self.assertEqual(result.message, 'No availability on Mon (no slots)')

            # The following Monday has no override rows and falls back to the rule.
            self.assertTrue(check_within_availability(db, teacher.id, span('2024-06-17', '19:00', '19:30')).ok)
        finally:
            db.close()

    def test_interval_must_fit_inside_a_single_slot(self):
        db = self._session_factory()
        try:
            teacher = self.seed_teacher(db)
            self.add_rule(db, teacher, 0, '18:00', '19:00')
            self.add_rule(db, teacher, 0, '19:00', '20:00')

            inside = check_within_availability(db, teacher.id, span('2024-06-03', '18:00', '19:00'))
            self.assertTrue(inside.ok)
            self.assertEqual(inside.covering_slot, AvailabilitySlot(1080, 1140))

            straddling = check_within_availability(db, teacher.id, span('2024-06-03', '18:30', '19:30'))
            self.assertFalse(straddling.ok)
            self.assertEqual(
                straddling.message,
                'Outside availability Mon 18:30-19:30. Available: 18:00-19:00, 19:00-20:00',
            )
            self.assertEqual(straddling.detail()['available'], ['18:00-19:00', '19:00-20:00'])
        finally:
            db.close()

    def test_set_override_rejects_bad_windows(self):
        db = self._session_factory()
        try:
            teacher = self.seed_teacher(db)
            with self.assertRaises(ValueError):
                set_availability_override(db, teacher.id, date(2024, 6, 10), [(600, 600)])
            with self.assertRaises(ValueError):
                set_availability_override(db, 999, date(2024, 6, 10), [(600, 660)])
        finally:
            db.close()

    def test_clear_override_is_blocked_while_bookings_exist(self):
        db = self._session_factory()
        try:
            _, _, _, teacher, group = self.seed_world(db)
            self.add_override(db, teacher, '2024-06-10', '10:00', '12:00')
            db.add(ClassSession(class_id=group.id, start_at=at('2024-06-10', '10:00'), end_at=at('2024-06-10', '11:00')))
            db.commit()

            with self.assertRaises(ValueError):
                clear_availability_override(db, teacher.id, date(2024, 6, 10))

            db.query(ClassSession).delete()
            db.commit()
            self.assertEqual(clear_availability_override(db, teacher.id, date(2024, 6, 10)), 1)
            _, source = resolve_availability_with_source(db, teacher.id, date(2024, 6, 10))
            self.assertEqual(source, 'rules')
        finally:
            db.close()

    def test_generate_month_merge_keeps_existing_days_and_sync_rewrites_them(self):
        db = self._session_factory()
        try:
            teacher = self.seed_teacher(db)
            self.add_rule(db, teacher, 0, '18:00', '20:00')
            self.add_override(db, teacher, '2024-06-10', '10:00', '11:00')

            merged = generate_month_overrides(db, teacher.id, year=2024, month=6, mode='merge')
            # June 2024 has four Mondays; one already carries an override.
            self.assertEqual(merged['written'], 3)
            self.assertEqual(resolve_availability(db, teacher.id, date(2024, 6, 10)), [AvailabilitySlot(600, 660)])
            self.assertEqual(resolve_availability(db, teacher.id, date(2024, 6, 17)), [AvailabilitySlot(1080, 1200)])

            synced = generate_month_overrides(db, teacher.id, year=2024, month=6, mode='sync')
            self.assertEqual(synced['written'], 4)
            self.assertEqual(resolve_availability(db, teacher.id, date(2024, 6, 10)), [AvailabilitySlot(1080, 1200)])
            self.assertEqual(db.query(AvailabilityOverride).count(), 4)

            with self.assertRaises(ValueError):
                generate_month_overrides(db, teacher.id, year=2024, month=6, mode='replace')
        finally:
            db.close()

    def test_day_availability_payload_lists_slots_and_bookings(self):
        db = self._session_factory()
        try:
            _, _, _, teacher, group = self.seed_world(db)
            db.add(ClassSession(class_id=group.id, start_at=at('2024-06-03', '10:00'), end_at=at('2024-06-03', '11:00')))
            db.commit()

            payload = get_day_availability(db, teacher.id, date(2024, 6, 3))
            self.assertEqual(payload['source'], 'rules')
            self.assertEqual(payload['slots'], [{'start': '08:00', 'end': '20:00'}])
            self.assertEqual(payload['booked'][0]['label'], 'Algebra A')
            self.assertEqual(payload['booked'][0]['start'], '10:00')
        finally:
            db.close()
