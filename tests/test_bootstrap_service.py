import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from academy.config import settings
from academy.db import Base
from academy.models import User
from academy.services.auth_service import verify_password
from academy.services.bootstrap_service import run_bootstrap, seed_admin_if_needed


class BootstrapServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            'sqlite://',
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)()
        self._orig = (settings.bootstrap_admin_email, settings.bootstrap_admin_password)

    def tearDown(self):
        settings.bootstrap_admin_email, settings.bootstrap_admin_password = self._orig
        self.db.close()
        self.engine.dispose()

    def test_skips_without_credentials(self):
        settings.bootstrap_admin_email = ''
        settings.bootstrap_admin_password = ''
        self.assertEqual(seed_admin_if_needed(self.db), {'seeded': False, 'reason': 'no_bootstrap_credentials'})
        self.assertEqual(self.db.query(User).count(), 0)

    def test_seeds_admin_once(self):
        settings.bootstrap_admin_email = ' Root@Example.com '
        settings.bootstrap_admin_password = 'change-me-now'

        result = run_bootstrap(self.db)['admin']
        self.assertTrue(result['seeded'])
        admin = self.db.get(User, result['user_id'])
        self.assertEqual((admin.email, admin.role), ('root@example.com', 'admin'))
        self.assertTrue(verify_password('change-me-now', admin.password_hash))

        self.assertEqual(seed_admin_if_needed(self.db), {'seeded': False, 'reason': 'admin_exists'})


if __name__ == '__main__':
    unittest.main()
