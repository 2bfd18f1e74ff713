import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from academy.config import settings
from academy.core.time_provider import FixedTimeProvider
from academy.services import file_storage


class FileStorageTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self._orig_upload_dir = settings.upload_dir
        settings.upload_dir = str(Path(self._tmpdir.name) / 'uploads')

    def tearDown(self):
        settings.upload_dir = self._orig_upload_dir
        self._tmpdir.cleanup()

    def test_stored_name_uses_time_provider(self):
        clock = FixedTimeProvider(datetime(2026, 3, 10, 9, 30))
        stored = file_storage.save_file(
            file_storage.MATERIALS,
            b'%PDF-1.4',
            'Notes.PDF',
            'application/pdf',
            time_provider=clock,
        )
        millis = int(clock.now().timestamp() * 1000)
        self.assertRegex(stored.stored_name, rf'^material_{millis}_[0-9a-f]{{8}}\.pdf$')
        self.assertEqual(file_storage.resolve_path(file_storage.MATERIALS, stored.stored_name).read_bytes(), b'%PDF-1.4')

    def test_resolve_path_rejects_traversal(self):
        with self.assertRaises(file_storage.StorageError):
            file_storage.resolve_path(file_storage.MATERIALS, '../secret.pdf')


if __name__ == '__main__':
    unittest.main()
