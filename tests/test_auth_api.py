import tempfile
import unittest
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from academy.core.errors import install_error_handlers
from academy.db import Base, get_db
from academy.models import User
from academy.routers import auth as auth_router
from academy.services.auth_service import hash_password


class AuthApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_auth_api.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        app = FastAPI()
        install_error_handlers(app)
        app.include_router(auth_router.router)

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
            db.add(
                User(
                    name='Dormant Teacher',
                    email='dormant@example.com',
                    password_hash=hash_password('secret123'),
                    role='teacher',
                    is_active=False,
                )
            )
            db.commit()
        finally:
            db.close()

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def _register(self, email: str, password: str = 'secret123'):
        return self.client.post(
            '/api/auth/register',
            json={'name': 'Asha', 'email': email, 'password': password, 'phone': '9000000001'},
        )

    def _auth(self, token: str) -> dict:
        return {'Authorization': f'Bearer {token}'}

    def test_register_always_creates_student_and_returns_token(self):
        res = self._register('Asha.Register@Example.com')
        self.assertEqual(res.status_code, 201)
        body = res.json()
        self.assertTrue(body['success'])
        self.assertTrue(body['token'])
        self.assertEqual(body['data']['role'], 'student')
        self.assertEqual(body['data']['email'], 'asha.register@example.com')
        self.assertNotIn('password_hash', body['data'])
        self.assertIn('auth_session', res.cookies)

    def test_register_rejects_duplicate_email_case_insensitively(self):
        self.assertEqual(self._register('dup@example.com').status_code, 201)
        res = self._register('DUP@example.com')
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json(), {
            'success': False,
            'error': 'Email is already registered',
            'errors': [{'field': 'email', 'message': 'already registered'}],
        })

    def test_register_rejects_short_password(self):
        res = self._register('short@example.com', password='abc')
        self.assertEqual(res.status_code, 400)
        self.assertFalse(res.json()['success'])

    def test_register_validation_failure_lists_fields(self):
        res = self.client.post('/api/auth/register', json={'name': 'No Email', 'password': 'secret123'})
        self.assertEqual(res.status_code, 400)
        body = res.json()
        self.assertEqual(body['error'], 'Validation failed')
        self.assertIn('email', [item['field'] for item in body['errors']])

    def test_login_and_me(self):
        self._register('login@example.com')
        res = self.client.post('/api/auth/login', json={'email': 'login@example.com', 'password': 'secret123'})
        self.assertEqual(res.status_code, 200)
        token = res.json()['token']

        me = self.client.get('/api/auth/me', headers=self._auth(token))
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()['data']['email'], 'login@example.com')
        self.assertIsNotNone(me.json()['data']['last_login_at'])

    def test_login_with_wrong_password_is_unauthorized(self):
        self._register('wrongpw@example.com')
        res = self.client.post('/api/auth/login', json={'email': 'wrongpw@example.com', 'password': 'nope-nope'})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json(), {'success': False, 'error': 'Invalid credentials'})

    def test_login_rejects_deactivated_account(self):
        res = self.client.post('/api/auth/login', json={'email': 'dormant@example.com', 'password': 'secret123'})
        self.assertEqual(res.status_code, 401)
        self.assertIn('deactivated', res.json()['error'])

    def test_me_requires_token(self):
        res = self.client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-token'})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()['error'], 'Not authorized to access this route')

    def test_logout_revokes_token(self):
        token = self._register('logout@example.com').json()['token']
        res = self.client.post('/api/auth/logout', headers=self._auth(token))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self.client.get('/api/auth/me', headers=self._auth(token)).status_code, 401)

    def test_update_profile_ignores_role(self):
        token = self._register('profile@example.com').json()['token']
        res = self.client.put(
            '/api/auth/me',
            headers=self._auth(token),
            json={'name': 'Asha K', 'city': 'Pune', 'role': 'admin'},
        )
        self.assertEqual(res.status_code, 200)
        data = res.json()['data']
        self.assertEqual(data['name'], 'Asha K')
        self.assertEqual(data['address']['city'], 'Pune')
        self.assertEqual(data['role'], 'student')

    def test_change_password_requires_current_password(self):
        token = self._register('pwchange@example.com').json()['token']
        bad = self.client.put(
            '/api/auth/password',
            headers=self._auth(token),
            json={'current_password': 'wrong-one', 'new_password': 'newsecret1'},
        )
        self.assertEqual(bad.status_code, 401)

        good = self.client.put(
            '/api/auth/password',
            headers=self._auth(token),
            json={'current_password': 'secret123', 'new_password': 'newsecret1'},
        )
        self.assertEqual(good.status_code, 200)
        login = self.client.post('/api/auth/login', json={'email': 'pwchange@example.com', 'password': 'newsecret1'})
        self.assertEqual(login.status_code, 200)


if __name__ == '__main__':
    unittest.main()
