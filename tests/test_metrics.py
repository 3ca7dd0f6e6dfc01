import unittest
from unittest import mock

from tutordesk import metrics
from tutordesk.core.booking_result import RejectCode
from tutordesk.metrics import MetricsExporter, MinuteCounter, set_metrics_exporter
from tutordesk.services.booking_validator import BookingCandidate, validate_booking

from scheduling_fixtures import SchedulingDbTestCase, span


class CapturingExporter(MetricsExporter):
    def __init__(self):
        self.exported = []

    def export_minute(self, family, *, minute_start, counts):
        self.exported.append((family, minute_start, counts))


class MinuteCounterTests(unittest.TestCase):
    def setUp(self):
        self.exporter = CapturingExporter()
        self.previous = set_metrics_exporter(self.exporter)

    def tearDown(self):
        set_metrics_exporter(self.previous)

    def test_finished_minute_is_exported_when_the_next_one_starts(self):
        now = [120.0]
        counter = MinuteCounter('cache', clock=lambda: now[0])
        counter.record('cache_hit')
        counter.record('cache_hit')
        now[0] = 150.0
        counter.record('cache_miss')
        self.assertEqual(self.exporter.exported, [])

        now[0] = 185.0
        counter.record('cache_hit')
        self.assertEqual(len(self.exporter.exported), 1)
        family, minute_start, counts = self.exporter.exported[0]
        self.assertEqual(family, 'cache')
        self.assertEqual(minute_start.timestamp(), 120.0)
        self.assertEqual(counts, {'cache_hit': 2, 'cache_miss': 1})

        counter.flush()
        self.assertEqual(self.exporter.exported[-1][2], {'cache_hit': 1})
        counter.flush()
        self.assertEqual(len(self.exporter.exported), 2)

    def test_failing_exporter_does_not_break_recording(self):
        class BrokenExporter(MetricsExporter):
            def export_minute(self, family, *, minute_start, counts):
                raise RuntimeError('sink down')

        set_metrics_exporter(BrokenExporter())
        counter = MinuteCounter('job', clock=lambda: 60.0)
        counter.record('nightly_audit:ok')
        with self.assertLogs('tutordesk.metrics', level='ERROR'):
            counter.flush()
        self.assertEqual(counter.snapshot(), {})


class BookingOutcomeMetricsTests(SchedulingDbTestCase):
    def setUp(self):
        super().setUp()
        self.exporter = CapturingExporter()
        self.previous = set_metrics_exporter(self.exporter)
        counter_patch = mock.patch.object(metrics, '_booking_counter', MinuteCounter('booking', clock=lambda: 600.0))
        counter_patch.start()
        self.addCleanup(counter_patch.stop)

    def tearDown(self):
        set_metrics_exporter(self.previous)
        super().tearDown()

    def test_validation_outcomes_are_counted_by_reject_code(self):
        db = self._session_factory()
        try:
            _, _, _, _, group = self.seed_world(db)
            validate_booking(db, BookingCandidate(class_id=group.id), span('2024-06-03', '10:00', '11:00'))
            validate_booking(db, BookingCandidate(class_id=group.id), span('2024-06-03', '06:00', '07:00'))
            validate_booking(db, BookingCandidate(class_id=999), span('2024-06-03', '10:00', '11:00'))
        finally:
            db.close()

        counts = metrics.booking_outcome_counts()
        self.assertEqual(counts.get(metrics.BOOKING_ACCEPTED), 1)
        self.assertEqual(counts.get(RejectCode.OUTSIDE_AVAILABILITY.value), 1)
        self.assertEqual(counts.get(RejectCode.NOT_FOUND.value), 1)

        metrics.flush_metrics()
        families = {family: counts for family, _, counts in self.exporter.exported}
        self.assertIn('booking', families)
        self.assertEqual(families['booking'][RejectCode.OUTSIDE_AVAILABILITY.value], 1)
        self.assertEqual(metrics.booking_outcome_counts(), {})
