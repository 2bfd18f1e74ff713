import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from academy.config import settings
from academy.core import router_guard
from academy.core.errors import DomainValidationError, install_error_handlers
from academy.core.time_provider import FixedTimeProvider
from academy.db import Base, get_db
from academy.models import Assignment, AssignmentFile, Batch, BatchStudent, Submission, User
from academy.request_context import RequestContext
from academy.routers import assignments as assignments_router
from academy.services import assignment_service, file_storage


ADMIN, TEACHER, OTHER_TEACHER, STUDENT_A, STUDENT_B, OUTSIDER = 1, 2, 3, 4, 5, 6
PDF_BYTES = b'%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n'
OPEN_DUE_DATE = '2099-12-31T18:00:00'
PAST_DUE_DATE = '2020-01-01T18:00:00'


def _token(user_id: int) -> dict:
    return {'Authorization': f'Bearer token-{user_id}'}


def _pdf(name: str = 'answer.pdf', content: bytes = PDF_BYTES):
    return ('files', (name, content, 'application/pdf'))


class SubmissionTransitionTests(unittest.TestCase):
    def test_allowed_transitions(self):
        assignment_service.check_transition(None, 'submitted')
        assignment_service.check_transition(None, 'late')
        assignment_service.check_transition('submitted', 'resubmitted')
        assignment_service.check_transition('late', 'graded')
        assignment_service.check_transition('resubmitted', 'resubmitted')
        assignment_service.check_transition('graded', 'graded')

    def test_graded_submission_cannot_be_resubmitted(self):
        with self.assertRaisesRegex(DomainValidationError, 'already graded'):
            assignment_service.check_transition('graded', 'resubmitted')

    def test_new_submission_cannot_start_graded(self):
        with self.assertRaises(DomainValidationError):
            assignment_service.check_transition(None, 'graded')


class AssignmentsApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_assignments_api.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        cls._orig_upload_dir = settings.upload_dir
        settings.upload_dir = str(Path(cls._tmpdir.name) / 'uploads')
        file_storage.ensure_upload_dirs()

        cls._orig_validate_session_token = router_guard.validate_session_token

        def fake_validate_session_token(token: str | None):
            if token and token.startswith('token-'):
                return {'user_id': int(token.split('-', 1)[1]), 'role': 'unused'}
            return None

        router_guard.validate_session_token = fake_validate_session_token

        app = FastAPI()
        install_error_handlers(app)
        app.include_router(assignments_router.router)

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
                name='Chemistry 12',
                subject='Chemistry',
                teacher_id=TEACHER,
                schedule_days='tuesday',
                start_time='15:00',
                end_time='16:00',
                fee=1800,
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
        settings.upload_dir = cls._orig_upload_dir
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for model in (AssignmentFile, Submission, Assignment):
                db.query(model).delete()
            db.commit()
        finally:
            db.close()

    def _create(
        self,
        allow_late: bool = True,
        total_marks: int = 50,
        files=None,
        user_id: int = TEACHER,
        due_date: str = OPEN_DUE_DATE,
    ):
        return self.client.post(
            '/api/assignments',
            data={
                'batch_id': str(self.batch_id),
                'title': 'Organic reactions',
                'description': 'Worksheet 3',
                'due_date': due_date,
                'total_marks': str(total_marks),
                'allow_late_submission': 'true' if allow_late else 'false',
            },
            files=files,
            headers=_token(user_id),
        )

    def _submit(self, assignment_id: int, user_id: int, files=None):
        return self.client.post(
            f'/api/assignments/{assignment_id}/submit',
            data={'notes': 'done'},
            files=files if files is not None else [_pdf()],
            headers=_token(user_id),
        )

    def _grade(self, assignment_id: int, student_id: int, marks, user_id: int = TEACHER):
        return self.client.put(
            f'/api/assignments/{assignment_id}/grade/{student_id}',
            json={'marks': marks, 'feedback': 'Good work'},
            headers=_token(user_id),
        )

    def _stored_name(self, file_id: int) -> str:
        db = self._session_factory()
        try:
            return db.get(AssignmentFile, file_id).stored_name
        finally:
            db.close()

    def test_create_with_attachment(self):
        res = self._create(files=[_pdf('brief.pdf')], due_date='2026-03-10T18:00:00')
        self.assertEqual(res.status_code, 201, res.text)
        data = res.json()['data']
        self.assertEqual(data['due_date'], '2026-03-10T18:00:00')
        self.assertEqual(data['total_marks'], 50)
        self.assertEqual([item['filename'] for item in data['attachments']], ['brief.pdf'])
        attachment = data['attachments'][0]
        self.assertEqual(attachment['url'], f"/api/assignments/{data['id']}/files/{attachment['id']}")

    def test_create_rejects_disallowed_file_type(self):
        res = self._create(files=[('files', ('script.exe', b'MZ', 'application/octet-stream'))])
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()['error'], 'Only document, image, and archive files are allowed')

    def test_create_rejects_bad_due_date(self):
        res = self._create(due_date='next tuesday')
        self.assertEqual(res.status_code, 400)

    def test_create_requires_batch_management(self):
        self.assertEqual(self._create(user_id=OTHER_TEACHER).status_code, 403)
        self.assertEqual(self._create(user_id=STUDENT_A).status_code, 403)

    def test_submission_state_machine(self):
        assignment_id = self._create().json()['data']['id']

        first = self._submit(assignment_id, STUDENT_A)
        self.assertEqual(first.status_code, 200, first.text)
        self.assertEqual(first.json()['data']['status'], 'submitted')
        self.assertFalse(first.json()['data']['is_late'])
        stored_name = self._stored_name(first.json()['data']['files'][0]['id'])
        self.assertTrue(file_storage.resolve_path(file_storage.SUBMISSIONS, stored_name).is_file())

        second = self._submit(assignment_id, STUDENT_A, files=[_pdf('answer-v2.pdf')])
        self.assertEqual(second.status_code, 200)
        data = second.json()['data']
        self.assertEqual(data['status'], 'resubmitted')
        self.assertIsNotNone(data['resubmitted_at'])
        self.assertEqual([item['filename'] for item in data['files']], ['answer-v2.pdf'])
        self.assertFalse(file_storage.resolve_path(file_storage.SUBMISSIONS, stored_name).exists())

        graded = self._grade(assignment_id, STUDENT_A, 42)
        self.assertEqual(graded.status_code, 200)
        self.assertEqual(graded.json()['data']['status'], 'graded')
        self.assertEqual(graded.json()['data']['marks_obtained'], 42)
        self.assertEqual(graded.json()['data']['graded_by_id'], TEACHER)

        again = self._submit(assignment_id, STUDENT_A)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()['error'], 'Assignment already graded, cannot resubmit')

    def test_late_submission_flagged_when_allowed(self):
        assignment_id = self._create(allow_late=True, due_date=PAST_DUE_DATE).json()['data']['id']
        res = self._submit(assignment_id, STUDENT_A)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()['data']['status'], 'late')
        self.assertTrue(res.json()['data']['is_late'])

    def test_late_submission_rejected_when_not_allowed(self):
        assignment_id = self._create(allow_late=False, due_date=PAST_DUE_DATE).json()['data']['id']
        res = self._submit(assignment_id, STUDENT_A)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()['error'], 'Late submissions are not allowed for this assignment')

    def test_lateness_is_measured_against_due_date(self):
        assignment_id = self._create(due_date='2026-03-10T18:00:00').json()['data']['id']
        db = self._session_factory()
        try:
            ctx = RequestContext.for_user(db.get(User, STUDENT_A))
            on_time = assignment_service.submit_assignment(
                db,
                ctx,
                assignment_id,
                '',
                [(PDF_BYTES, 'answer.pdf', 'application/pdf')],
                time_provider=FixedTimeProvider(datetime(2026, 3, 10, 17, 59)),
            )
            self.assertEqual(on_time.status, 'submitted')
            self.assertFalse(on_time.is_late)

            ctx = RequestContext.for_user(db.get(User, STUDENT_B))
            late = assignment_service.submit_assignment(
                db,
                ctx,
                assignment_id,
                '',
                [(PDF_BYTES, 'answer.pdf', 'application/pdf')],
                time_provider=FixedTimeProvider(datetime(2026, 3, 10, 18, 1)),
            )
            self.assertEqual(late.status, 'late')
            self.assertTrue(late.is_late)
        finally:
            db.close()

    def test_submit_requires_enrollment_and_files(self):
        assignment_id = self._create().json()['data']['id']
        outsider = self._submit(assignment_id, OUTSIDER)
        teacher = self._submit(assignment_id, TEACHER)
        empty = self.client.post(
            f'/api/assignments/{assignment_id}/submit',
            data={'notes': 'forgot the file'},
            headers=_token(STUDENT_A),
        )
        self.assertEqual(outsider.status_code, 403)
        self.assertEqual(teacher.status_code, 403)
        self.assertEqual(empty.status_code, 400)
        self.assertEqual(empty.json()['error'], 'Please upload at least one file')

    def test_grade_bounds_and_missing_submission(self):
        assignment_id = self._create(total_marks=20).json()['data']['id']
        missing = self._grade(assignment_id, STUDENT_B, 10)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['error'], 'Submission not found')

        self._submit(assignment_id, STUDENT_A)
        self.assertEqual(self._grade(assignment_id, STUDENT_A, 25).status_code, 400)
        self.assertEqual(self._grade(assignment_id, STUDENT_A, -1).status_code, 400)
        self.assertEqual(self._grade(assignment_id, STUDENT_A, 10, user_id=OTHER_TEACHER).status_code, 403)
        self.assertEqual(self._grade(assignment_id, STUDENT_A, 20, user_id=ADMIN).status_code, 200)

    def test_students_only_see_their_own_submission(self):
        assignment_id = self._create().json()['data']['id']
        self._submit(assignment_id, STUDENT_A)
        self._submit(assignment_id, STUDENT_B)

        as_student = self.client.get(f'/api/assignments/{assignment_id}', headers=_token(STUDENT_B)).json()['data']
        self.assertEqual([item['student_id'] for item in as_student['submissions']], [STUDENT_B])

        as_teacher = self.client.get(f'/api/assignments/{assignment_id}', headers=_token(TEACHER)).json()['data']
        self.assertEqual({item['student_id'] for item in as_teacher['submissions']}, {STUDENT_A, STUDENT_B})

        self.assertEqual(self.client.get(f'/api/assignments/{assignment_id}', headers=_token(OUTSIDER)).status_code, 403)

    def test_file_download_access(self):
        created = self._create(files=[_pdf('brief.pdf')]).json()['data']
        attachment_id = created['attachments'][0]['id']
        submission = self._submit(created['id'], STUDENT_A).json()['data']
        answer_id = submission['files'][0]['id']

        brief = self.client.get(f"/api/assignments/{created['id']}/files/{attachment_id}", headers=_token(STUDENT_B))
        self.assertEqual(brief.status_code, 200)
        self.assertEqual(brief.content, PDF_BYTES)

        own = self.client.get(f"/api/assignments/{created['id']}/files/{answer_id}", headers=_token(STUDENT_A))
        self.assertEqual(own.status_code, 200)
        peer = self.client.get(f"/api/assignments/{created['id']}/files/{answer_id}", headers=_token(STUDENT_B))
        self.assertEqual(peer.status_code, 403)
        teacher = self.client.get(f"/api/assignments/{created['id']}/files/{answer_id}", headers=_token(TEACHER))
        self.assertEqual(teacher.status_code, 200)

        anonymous = self.client.get(submission['files'][0]['url'])
        self.assertEqual(anonymous.status_code, 401)

    def test_list_hides_inactive_assignments(self):
        active_id = self._create().json()['data']['id']
        archived_id = self._create().json()['data']['id']
        res = self.client.put(
            f'/api/assignments/{archived_id}',
            data={'is_active': 'false'},
            headers=_token(TEACHER),
        )
        self.assertEqual(res.status_code, 200)

        rows = self.client.get('/api/assignments', headers=_token(STUDENT_A)).json()
        self.assertEqual([row['id'] for row in rows['data']], [active_id])
        self.assertEqual(self.client.get('/api/assignments', headers=_token(OUTSIDER)).json()['count'], 0)

    def test_delete_removes_files_and_submissions(self):
        created = self._create(files=[_pdf('brief.pdf')]).json()['data']
        stored_name = self._stored_name(created['attachments'][0]['id'])
        self._submit(created['id'], STUDENT_A)

        res = self.client.delete(f"/api/assignments/{created['id']}", headers=_token(TEACHER))
        self.assertEqual(res.status_code, 200)
        db = self._session_factory()
        try:
            for model in (Assignment, Submission, AssignmentFile):
                self.assertEqual(db.query(model).count(), 0, model.__name__)
        finally:
            db.close()
        self.assertFalse(file_storage.resolve_path(file_storage.ASSIGNMENTS, stored_name).exists())


if __name__ == '__main__':
    unittest.main()
