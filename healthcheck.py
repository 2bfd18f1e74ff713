import sys
import uuid

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
import httpx
from sqlalchemy import inspect, text

from academy.config import settings
from academy.db import SessionLocal, engine
from academy.models import Role, User
from academy.services.file_storage import UPLOAD_KINDS, ensure_upload_dirs


EXPECTED_TABLES = {
    'users',
    'batches',
    'batch_students',
    'attendance',
    'assignments',
    'submissions',
    'assignment_files',
    'materials',
    'payments',
}

GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_db_connectivity_and_write():
    with engine.begin() as conn:
        conn.execute(text('SELECT 1'))
        conn.execute(text('CREATE TABLE IF NOT EXISTS _healthcheck_probe (id INTEGER PRIMARY KEY, note TEXT)'))
        conn.execute(text("INSERT INTO _healthcheck_probe (note) VALUES ('probe')"))
        conn.execute(text("DELETE FROM _healthcheck_probe WHERE note='probe'"))
        conn.execute(text('DROP TABLE IF EXISTS _healthcheck_probe'))
    return 'connect + write ok'


def check_schema_tables():
    present = set(inspect(engine).get_table_names())
    missing = sorted(EXPECTED_TABLES - present)
    if missing:
        raise RuntimeError(f'Missing tables (run bootstrap.py): {missing}')
    return f'{len(EXPECTED_TABLES)} tables present'


def check_alembic_head():
    cfg = Config('alembic.ini')
    heads = set(ScriptDirectory.from_config(cfg).get_heads())
    if not heads:
        raise RuntimeError('No alembic heads found in repository')

    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()

    if current is None:
        return 'no migration stamp (schema created by bootstrap.py)'
    if current not in heads:
        raise RuntimeError(f'DB revision {current} is not at head {sorted(heads)}')
    return f'current={current}'


def check_required_env():
    required = {
        'DATABASE_URL': settings.database_url,
        'AUTH_SECRET': settings.auth_secret,
        'UPLOAD_DIR': settings.upload_dir,
    }
    missing = [key for key, value in required.items() if not str(value).strip()]
    if missing:
        raise RuntimeError(f'Missing env vars: {", ".join(missing)}')
    if settings.auth_secret == 'change-me' and settings.app_env != 'local':
        raise RuntimeError('AUTH_SECRET still has the default value')
    return 'all required vars present'


def check_upload_dir_writable():
    root = ensure_upload_dirs()
    for kind in UPLOAD_KINDS:
        probe = root / kind / f'.probe_{uuid.uuid4().hex}'
        probe.write_bytes(b'ok')
        probe.unlink()
    return f'root={root}'


def check_admin_present():
    db = SessionLocal()
    try:
        admin = db.query(User).filter(User.role == Role.ADMIN.value, User.is_active.is_(True)).first()
        if not admin:
            raise RuntimeError('No active admin (set BOOTSTRAP_ADMIN_EMAIL and BOOTSTRAP_ADMIN_PASSWORD)')
        return f'admin_id={admin.id}'
    finally:
        db.close()


def check_api_health():
    res = httpx.get(f'{settings.app_base_url.rstrip("/")}/health', timeout=8)
    if res.status_code != 200:
        raise RuntimeError(f'HTTP {res.status_code} from /health')
    payload = res.json()
    if payload.get('status') != 'ok':
        raise RuntimeError(f'Unexpected health payload: {payload}')
    return f"env={payload.get('env')}"


def main():
    checks = [
        ('Database connectivity and write access', check_db_connectivity_and_write),
        ('Schema tables present', check_schema_tables),
        ('Alembic migration status at head', check_alembic_head),
        ('Required environment variables present', check_required_env),
        ('Upload directories writable', check_upload_dir_writable),
        ('Active admin account present', check_admin_present),
        ('API health endpoint reachable', check_api_health),
    ]

    all_ok = True
    for name, fn in checks:
        all_ok = run_check(name, fn) and all_ok

    if not all_ok:
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    main()
