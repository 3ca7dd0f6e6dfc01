from datetime import datetime

from fastapi import FastAPI
from fastapi.testclient import TestClient

from tutordesk.db import get_db
from tutordesk.models import Campus, ClassSession, Subject
from tutordesk.routers import availability as availability_router
from tutordesk.routers import scheduling as scheduling_router

from scheduling_fixtures import SchedulingDbTestCase


class SchedulingApiTests(SchedulingDbTestCase):
    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        app = FastAPI()
        app.include_router(scheduling_router.router)
        app.include_router(availability_router.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        super().tearDownClass()

    def setUp(self):
        super().setUp()
        db = self._session_factory()
        try:
            campus, room, subject, teacher, group = self.seed_world(db)
            self.ids = {'campus': campus.id, 'room': room.id, 'teacher': teacher.id, 'class': group.id}
        finally:
            db.close()

    def _create(self, start='2024-06-03T10:00:00', end='2024-06-03T11:00:00'):
        return self.client.post(
            '/api/scheduling/sessions',
            json={'class_id': self.ids['class'], 'start_at': start, 'end_at': end},
        )

    def test_create_session_then_duplicate_is_conflict(self):
        created = self._create()
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()['data']['teacher_id'], self.ids['teacher'])

        duplicate = self._create()
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()['detail']['code'], 'DUPLICATE')

    def test_outside_availability_and_unknown_class(self):
        outside = self._create('2024-06-03T06:00:00', '2024-06-03T07:00:00')
        self.assertEqual(outside.status_code, 409)
        self.assertEqual(outside.json()['detail']['code'], 'OUTSIDE_AVAILABILITY')

        missing = self.client.post(
            '/api/scheduling/sessions',
            json={'class_id': 999, 'start_at': '2024-06-03T10:00:00', 'end_at': '2024-06-03T11:00:00'},
        )
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['detail']['code'], 'NOT_FOUND')

        reversed_range = self._create('2024-06-03T11:00:00', '2024-06-03T10:00:00')
        self.assertEqual(reversed_range.status_code, 400)

    def test_validate_endpoint_reports_without_writing(self):
        response = self.client.post(
            '/api/scheduling/validate',
            json={'class_id': self.ids['class'], 'start_at': '2024-06-03T10:00:00', 'end_at': '2024-06-03T11:00:00'},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data'], {'accepted': True})
        db = self._session_factory()
        try:
            self.assertEqual(db.query(ClassSession).count(), 0)
        finally:
            db.close()

    def test_weekly_generation_skip_reports_counts(self):
        self._create('2024-06-10T10:00:00', '2024-06-10T11:00:00')
        response = self.client.post(
            '/api/scheduling/generate/weekly',
            json={
                'class_id': self.ids['class'],
                'weekday': 0,
                'start_time': '10:00',
                'duration_min': 60,
                'start_date': '2024-06-03',
                'weeks': 3,
                'on_conflict': 'SKIP',
            },
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(len(data['created']), 2)
        self.assertEqual(data['skipped_count'], 1)
        self.assertTrue(data['message'].startswith('Generated done: created=2, skipped=1.'))

    def test_room_delete_blocked_then_detached(self):
        self._create('2099-06-01T10:00:00', '2099-06-01T11:00:00')
        blocked = self.client.delete(f"/api/scheduling/rooms/{self.ids['room']}")
        self.assertEqual(blocked.status_code, 400)

        detached = self.client.delete(f"/api/scheduling/rooms/{self.ids['room']}", params={'mode': 'detach'})
        self.assertEqual(detached.status_code, 200)
        self.assertEqual(detached.json()['data']['detached_classes'], 1)

        missing = self.client.delete(f"/api/scheduling/rooms/{self.ids['room']}")
        self.assertEqual(missing.status_code, 404)

    def test_override_replaces_rules_for_the_day(self):
        response = self.client.put(
            '/api/availability/overrides',
            json={'teacher_id': self.ids['teacher'], 'date': '2024-06-03', 'slots': [{'start_time': '18:00', 'end_time': '19:00'}]},
        )
        self.assertEqual(response.status_code, 200)

        day = self.client.get('/api/availability/day', params={'teacher_id': self.ids['teacher'], 'date': '2024-06-03'})
        self.assertEqual(day.status_code, 200)
        self.assertEqual(day.json()['data']['source'], 'override')

        outside = self._create()
        self.assertEqual(outside.status_code, 409)
        self.assertEqual(outside.json()['detail']['code'], 'OUTSIDE_AVAILABILITY')

    def test_offset_timestamps_are_read_as_app_local_time(self):
        created = self._create('2024-06-03T04:30:00+00:00', '2024-06-03T11:00:00')
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()['data']['start_at'], '2024-06-03T10:00:00')
        self.assertEqual(created.json()['data']['end_at'], '2024-06-03T11:00:00')

        ends_before_start = self._create('2024-06-03T10:00:00+00:00', '2024-06-03T11:00:00')
        self.assertEqual(ends_before_start.status_code, 400)

    def test_seconds_in_a_timestamp_are_a_bad_request(self):
        response = self._create('2024-06-03T19:59:30', '2024-06-03T20:00:30')
        self.assertEqual(response.status_code, 400)
        self.assertIn('whole minute', response.json()['detail'])

    def test_explicit_end_dates_are_capped_like_week_counts(self):
        too_long = self.client.post(
            '/api/scheduling/generate/weekly',
            json={
                'class_id': self.ids['class'],
                'weekday': 0,
                'start_time': '10:00',
                'duration_min': 60,
                'start_date': '2024-06-03',
                'end_date': '2099-06-03',
            },
        )
        self.assertEqual(too_long.status_code, 400)
        db = self._session_factory()
        try:
            self.assertEqual(db.query(ClassSession).count(), 0)
        finally:
            db.close()

        templates = self.client.post(
            '/api/scheduling/generate/templates',
            json={'teacher_id': self.ids['teacher'], 'start_date': '2024-06-03', 'end_date': '2099-06-03'},
        )
        self.assertEqual(templates.status_code, 400)

        slots = self.client.get(
            '/api/scheduling/slots',
            params={'teacher_ids': [self.ids['teacher']], 'start': '2024-06-03', 'end': '2099-06-03'},
        )
        self.assertEqual(slots.status_code, 400)

    def test_class_room_change_checks_the_target_room(self):
        self._create('2024-06-10T10:00:00', '2024-06-10T11:00:00')
        db = self._session_factory()
        try:
            campus = db.get(Campus, self.ids['campus'])
            subject = db.query(Subject).one()
            other_room = self.seed_room(db, campus, name='R2')
            other_teacher = self.seed_teacher(db, name='Kiran', primary_subject=subject)
            other_group = self.seed_class(db, teacher=other_teacher, campus=campus, subject=subject, room=other_room, name='Algebra B')
            db.add(ClassSession(class_id=other_group.id, start_at=datetime(2024, 6, 10, 10, 30), end_at=datetime(2024, 6, 10, 11, 30)))
            db.commit()
            other_room_id = other_room.id
        finally:
            db.close()
        url = f"/api/scheduling/classes/{self.ids['class']}/room"

        conflict = self.client.post(url, json={'room_id': other_room_id, 'range_from': '2024-06-10', 'range_to': '2024-06-16'})
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()['detail']['code'], 'ROOM_CONFLICT')

        half_range = self.client.post(url, json={'room_id': other_room_id, 'range_from': '2024-06-10'})
        self.assertEqual(half_range.status_code, 400)

        moved = self.client.post(url, json={'room_id': other_room_id, 'range_from': '2024-06-17', 'range_to': '2024-06-23'})
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(moved.json()['data']['previous_room_id'], self.ids['room'])

        missing = self.client.post('/api/scheduling/classes/999/room', json={'room_id': other_room_id})
        self.assertEqual(missing.status_code, 404)
