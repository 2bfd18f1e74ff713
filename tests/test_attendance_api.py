import tempfile
import unittest
from datetime import date
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from academy.core import router_guard
from academy.core.errors import install_error_handlers
from academy.db import Base, get_db
from academy.models import Attendance, Batch, BatchStudent, User
from academy.routers import attendance as attendance_router
from academy.routers import batches as batches_router
from academy.services import attendance_service


ADMIN, TEACHER, OTHER_TEACHER, STUDENT_A, STUDENT_B, OUTSIDER = 1, 2, 3, 4, 5, 6


def _token(user_id: int) -> dict:
    return {'Authorization': f'Bearer token-{user_id}'}


class AttendancePercentageTests(unittest.TestCase):
    def test_halves_round_up(self):
        for present, total, expected in ((1, 8, 13), (5, 8, 63), (3, 8, 38), (1, 3, 33), (2, 3, 67), (3, 4, 75), (0, 0, 0)):
            with self.subTest(present=present, total=total):
                self.assertEqual(attendance_service.attendance_percentage(present, total), expected)


class AttendanceApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_attendance_api.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        cls._orig_validate_session_token = router_guard.validate_session_token

        def fake_validate_session_token(token: str | None):
            if token and token.startswith('token-'):
                return {'user_id': int(token.split('-', 1)[1]), 'role': 'unused'}
            return None

        router_guard.validate_session_token = fake_validate_session_token

        app = FastAPI()
        install_error_handlers(app)
        app.include_router(attendance_router.router)
        app.include_router(batches_router.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

        db = cls._session_factory()
        try:
            for user_id, role in (
                (ADMIN, 'admin'),
                (TEACHER, 'teacher'),
                (OTHER_TEACHER, 'teacher'),
                (STUDENT_A, 'student'),
                (STUDENT_B, 'student'),
                (OUTSIDER, 'student'),
            ):
                db.add(User(id=user_id, name=f'User {user_id}', email=f'user{user_id}@example.com', role=role))
            batch = Batch(
                name='Maths 10',
                subject='Maths',
                teacher_id=TEACHER,
                schedule_days='monday,thursday',
                start_time='10:00',
                end_time='11:00',
                fee=1200,
                start_date=date(2026, 1, 1),
            )
            db.add(batch)
            db.flush()
            db.add_all([BatchStudent(batch_id=batch.id, student_id=STUDENT_A), BatchStudent(batch_id=batch.id, student_id=STUDENT_B)])
            db.commit()
            cls.batch_id = batch.id
        finally:
            db.close()

    @classmethod
    def tearDownClass(cls):
        router_guard.validate_session_token = cls._orig_validate_session_token
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            db.query(Attendance).delete()
            db.commit()
        finally:
            db.close()

    def _mark(self, student_id: int, day: str, status: str = 'present', user_id: int = TEACHER):
        return self.client.post(
            '/api/attendance',
            json={'student_id': student_id, 'batch_id': self.batch_id, 'date': day, 'status': status},
            headers=_token(user_id),
        )

    def test_create_and_reject_duplicate_for_same_day(self):
        res = self._mark(STUDENT_A, '2026-03-02')
        self.assertEqual(res.status_code, 201)
        data = res.json()['data']
        self.assertEqual(data['date'], '2026-03-02')
        self.assertEqual(data['marked_by_id'], TEACHER)

        duplicate = self._mark(STUDENT_A, '2026-03-02', status='absent')
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(duplicate.json()['error'], 'Attendance already marked for this student on this date')

    def test_create_requires_enrollment_and_batch_ownership(self):
        not_enrolled = self._mark(OUTSIDER, '2026-03-02')
        self.assertEqual(not_enrolled.status_code, 400)
        self.assertEqual(not_enrolled.json()['error'], 'Student is not enrolled in this batch')

        self.assertEqual(self._mark(STUDENT_A, '2026-03-02', user_id=OTHER_TEACHER).status_code, 403)
        self.assertEqual(self._mark(STUDENT_A, '2026-03-02', user_id=STUDENT_A).status_code, 403)

    def test_invalid_status_is_validation_error(self):
        res = self._mark(STUDENT_A, '2026-03-02', status='sleeping')
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()['error'], 'Validation failed')

    def test_bulk_mark_reports_partial_failures_and_upserts(self):
        self._mark(STUDENT_A, '2026-03-05', status='absent')
        res = self.client.post(
            '/api/attendance/mark',
            json={
                'batch_id': self.batch_id,
                'date': '2026-03-05',
                'attendances': [
                    {'student_id': STUDENT_A, 'status': 'present'},
                    {'student_id': OUTSIDER, 'status': 'present'},
                    {'student_id': STUDENT_B, 'status': 'late'},
                ],
            },
            headers=_token(TEACHER),
        )
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['count'], 2)
        self.assertEqual(body['errors'], [{'student_id': OUTSIDER, 'error': 'Student is not enrolled in this batch'}])

        db = self._session_factory()
        try:
            rows = {row.student_id: row.status for row in db.query(Attendance).all()}
        finally:
            db.close()
        self.assertEqual(rows, {STUDENT_A: 'present', STUDENT_B: 'late'})

    def test_bulk_mark_all_succeed(self):
        res = self.client.post(
            '/api/attendance/mark',
            json={'batch_id': self.batch_id, 'date': '2026-03-09', 'attendances': [{'student_id': STUDENT_B}]},
            headers=_token(ADMIN),
        )
        body = res.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['message'], 'Attendance marked successfully')
        self.assertNotIn('errors', body)

    def test_summary_percentage(self):
        for day, status in (
            ('2026-03-02', 'present'),
            ('2026-03-05', 'present'),
            ('2026-03-09', 'present'),
            ('2026-03-12', 'absent'),
        ):
            self._mark(STUDENT_A, day, status=status)

        res = self.client.get(
            f'/api/attendance/summary/student/{STUDENT_A}/batch/{self.batch_id}',
            headers=_token(STUDENT_A),
        )
        self.assertEqual(res.status_code, 200)
        summary = res.json()['data']
        self.assertEqual(summary['total'], 4)
        self.assertEqual(summary['present'], 3)
        self.assertEqual(summary['absent'], 1)
        self.assertEqual(summary['excused'], 0)
        self.assertEqual(summary['attendance_percentage'], 75)

        other = self.client.get(
            f'/api/attendance/summary/student/{STUDENT_A}/batch/{self.batch_id}',
            headers=_token(STUDENT_B),
        )
        self.assertEqual(other.status_code, 403)

    def test_summary_rounds_half_percent_up(self):
        self._mark(STUDENT_B, '2026-04-01', status='present')
        for day in range(2, 9):
            self._mark(STUDENT_B, f'2026-04-{day:02d}', status='absent')

        res = self.client.get(
            f'/api/attendance/summary/student/{STUDENT_B}/batch/{self.batch_id}',
            headers=_token(TEACHER),
        )
        summary = res.json()['data']
        self.assertEqual((summary['present'], summary['total']), (1, 8))
        self.assertEqual(summary['attendance_percentage'], 13)

    def test_summary_without_records_is_zero(self):
        res = self.client.get(
            f'/api/attendance/summary/student/{STUDENT_B}/batch/{self.batch_id}',
            headers=_token(TEACHER),
        )
        self.assertEqual(res.json()['data']['attendance_percentage'], 0)

    def test_read_access_is_marker_admin_or_own_student(self):
        record_id = self._mark(STUDENT_A, '2026-03-02').json()['data']['id']
        for user_id, expected in (
            (TEACHER, 200),
            (ADMIN, 200),
            (STUDENT_A, 200),
            (STUDENT_B, 403),
            (OTHER_TEACHER, 403),
        ):
            res = self.client.get(f'/api/attendance/{record_id}', headers=_token(user_id))
            self.assertEqual(res.status_code, expected, user_id)
        self.assertEqual(self.client.get('/api/attendance/9999', headers=_token(ADMIN)).status_code, 404)

    def test_update_keeps_identity_fields(self):
        record_id = self._mark(STUDENT_A, '2026-03-02').json()['data']['id']
        moved = self.client.put(f'/api/attendance/{record_id}', json={'date': '2026-03-03'}, headers=_token(TEACHER))
        self.assertEqual(moved.status_code, 400)

        res = self.client.put(
            f'/api/attendance/{record_id}',
            json={'status': 'excused', 'notes': 'Medical'},
            headers=_token(TEACHER),
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()['data']['status'], 'excused')
        self.assertEqual(res.json()['data']['notes'], 'Medical')

        self.assertEqual(
            self.client.put(f'/api/attendance/{record_id}', json={'status': 'late'}, headers=_token(OTHER_TEACHER)).status_code,
            403,
        )

    def test_delete_by_marker(self):
        record_id = self._mark(STUDENT_A, '2026-03-02').json()['data']['id']
        self.assertEqual(self.client.delete(f'/api/attendance/{record_id}', headers=_token(OTHER_TEACHER)).status_code, 403)
        self.assertEqual(self.client.delete(f'/api/attendance/{record_id}', headers=_token(TEACHER)).status_code, 200)
        self.assertEqual(self.client.get(f'/api/attendance/{record_id}', headers=_token(TEACHER)).status_code, 404)

    def test_students_only_list_their_own_records(self):
        self._mark(STUDENT_A, '2026-03-02')
        self._mark(STUDENT_B, '2026-03-02', status='absent')

        own = self.client.get('/api/attendance', headers=_token(STUDENT_B)).json()
        self.assertEqual([row['student_id'] for row in own['data']], [STUDENT_B])

        staff = self.client.get('/api/attendance', params={'status': 'absent'}, headers=_token(TEACHER)).json()
        self.assertEqual(staff['count'], 1)

        outsider = self.client.get('/api/attendance', headers=_token(OTHER_TEACHER)).json()
        self.assertEqual(outsider['count'], 0)

        batch_rows = self.client.get(f'/api/batches/{self.batch_id}/attendance', headers=_token(STUDENT_A)).json()
        self.assertEqual([row['student_id'] for row in batch_rows['data']], [STUDENT_A])


if __name__ == '__main__':
    unittest.main()
