from datetime import timedelta
from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from academy.core.time_provider import default_time_provider
from academy.db import Base, SessionLocal, engine
from academy.models import Batch, BatchStudent, Role, User
from academy.services.auth_service import find_user_by_email, hash_password


SAMPLE_PASSWORD = 'password123'


def _user(db, name: str, email: str, role: Role) -> User:
    row = find_user_by_email(db, email)
    if row:
        return row
    row = User(name=name, email=email, password_hash=hash_password(SAMPLE_PASSWORD), role=role.value)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    if not db.query(Batch).first():
        _user(db, 'Admin', 'admin@academy.local', Role.ADMIN)
        teacher = _user(db, 'Meera Iyer', 'teacher@academy.local', Role.TEACHER)
        students = [
            _user(db, 'Aarav', 'aarav@academy.local', Role.STUDENT),
            _user(db, 'Diya', 'diya@academy.local', Role.STUDENT),
            _user(db, 'Ishaan', 'ishaan@academy.local', Role.STUDENT),
        ]

        today = default_time_provider.today()
        batch = Batch(
            name='Physics 11 Morning',
            subject='Physics',
            teacher_id=teacher.id,
            schedule_days='monday,wednesday,friday',
            start_time='07:00',
            end_time='08:30',
            fee=2500,
            start_date=today.replace(day=1),
            end_date=today.replace(day=1) + timedelta(days=180),
            max_students=20,
        )
        batch.student_links = [BatchStudent(student_id=student.id) for student in students]
        db.add(batch)
        db.commit()
finally:
    db.close()

print(f'DB initialized with sample data (password for sample users: {SAMPLE_PASSWORD}).')
