from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from academy.core.access import BatchAction, ensure_can_act_on_batch, is_enrolled, visible_batch_ids
from academy.core.errors import AccessDeniedError, DomainValidationError, NotFoundError
from academy.models import (
    Assignment,
    AssignmentFile,
    Attendance,
    Batch,
    BatchStudent,
    Material,
    Payment,
    PaymentStatus,
    Role,
    Submission,
    User,
    WEEKDAYS,
)
from academy.request_context import RequestContext
from academy.services import file_storage


logger = logging.getLogger(__name__)

_TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')
UPDATABLE_FIELDS = (
    'name',
    'description',
    'subject',
    'schedule_days',
    'start_time',
    'end_time',
    'fee',
    'start_date',
    'end_date',
    'max_students',
    'is_active',
)


@dataclass
class CascadeReport:
    batch_id: int
    deleted: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    batch_deleted: bool = False

    @property
    def complete(self) -> bool:
        return self.batch_deleted and not self.errors

    def as_dict(self) -> dict:
        return {
            'batch_id': self.batch_id,
            'deleted': dict(self.deleted),
            'errors': list(self.errors),
            'batch_deleted': self.batch_deleted,
        }


def get_batch_or_404(db: Session, batch_id: int, ctx: RequestContext | None = None) -> Batch:
    if ctx is not None:
        cached = ctx.resources.get('batch')
        if cached is not None and int(cached.id) == int(batch_id):
            return cached
    batch = (
        db.query(Batch)
        .options(selectinload(Batch.student_links))
        .filter(Batch.id == batch_id)
        .first()
    )
    if not batch:
        raise NotFoundError(f'Batch not found with id of {batch_id}')
    if ctx is not None:
        ctx.remember('batch', batch)
    return batch


def _user_brief(user: User | None) -> dict | None:
    if not user:
        return None
    return {'id': user.id, 'name': user.name, 'email': user.email, 'phone': user.phone}


def serialize_batch(batch: Batch, *, include_students: bool = False) -> dict:
    payload = {
        'id': batch.id,
        'name': batch.name,
        'description': batch.description,
        'subject': batch.subject,
        'teacher_id': batch.teacher_id,
        'teacher': _user_brief(batch.teacher),
        'student_ids': batch.student_ids,
        'student_count': len(batch.student_links),
        'schedule': {
            'days': batch.days,
            'start_time': batch.start_time,
            'end_time': batch.end_time,
        },
        'fee': batch.fee,
        'start_date': batch.start_date.isoformat() if batch.start_date else None,
        'end_date': batch.end_date.isoformat() if batch.end_date else None,
        'duration_months': batch.duration_months,
        'max_students': batch.max_students,
        'is_active': batch.is_active,
        'created_at': batch.created_at.isoformat() if batch.created_at else None,
    }
    if include_students:
        payload['students'] = [_user_brief(link.student) for link in batch.student_links]
    return payload


def _normalize_days(days) -> str:
    clean = []
    for day in days or []:
        value = str(day).strip().lower()
        if value not in WEEKDAYS:
            raise DomainValidationError(
                f'Invalid schedule day {day}',
                fields=[{'field': 'schedule.days', 'message': f'{day} is not a weekday'}],
            )
        if value not in clean:
            clean.append(value)
    return ','.join(sorted(clean, key=WEEKDAYS.index))


def _validate_batch(batch: Batch) -> None:
    errors = []
    for field_name in ('start_time', 'end_time'):
        if not _TIME_PATTERN.match(getattr(batch, field_name) or ''):
            errors.append({'field': f'schedule.{field_name}', 'message': 'expected HH:MM'})
    if batch.end_date and batch.start_date and batch.end_date <= batch.start_date:
        errors.append({'field': 'end_date', 'message': 'End date must be after start date'})
    if int(batch.max_students or 0) < 1:
        errors.append({'field': 'max_students', 'message': 'Maximum students must be at least 1'})
    if float(batch.fee if batch.fee is not None else -1) < 0:
        errors.append({'field': 'fee', 'message': 'Fee cannot be negative'})
    if errors:
        raise DomainValidationError('; '.join(item['message'] for item in errors), fields=errors)
    if len(batch.student_links) > int(batch.max_students):
        raise DomainValidationError(
            'Maximum students cannot be lower than the number of enrolled students',
            fields=[{'field': 'max_students', 'message': 'below current enrollment'}],
        )


def _require_teacher_user(db: Session, teacher_id: int | None) -> User:
    if not teacher_id:
        raise DomainValidationError(
            'Please assign a teacher to this batch',
            fields=[{'field': 'teacher_id', 'message': 'required'}],
        )
    teacher = db.query(User).filter(User.id == teacher_id).first()
    if not teacher:
        raise NotFoundError(f'User not found with id of {teacher_id}')
    if teacher.role != Role.TEACHER.value:
        raise DomainValidationError(
            'Assigned user is not a teacher',
            fields=[{'field': 'teacher_id', 'message': 'must reference a teacher'}],
        )
    return teacher


def list_batches(
    db: Session,
    ctx: RequestContext,
    *,
    is_active: bool | None = None,
    subject: str | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Batch], int]:
    query = db.query(Batch).options(selectinload(Batch.student_links), selectinload(Batch.teacher))
    visible = visible_batch_ids(ctx)
    if visible is not None:
        query = query.filter(Batch.id.in_(visible))
    if is_active is not None:
        query = query.filter(Batch.is_active.is_(is_active))
    if subject:
        query = query.filter(func.lower(Batch.subject) == subject.strip().lower())
    total = query.count()
    rows = (
        query.order_by(Batch.created_at.desc(), Batch.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def get_batch(db: Session, ctx: RequestContext, batch_id: int) -> Batch:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.VIEW, 'Not authorized to access this batch')
    return batch


def create_batch(db: Session, ctx: RequestContext, payload: dict) -> Batch:
    if not (ctx.is_admin or ctx.is_teacher):
        raise AccessDeniedError('Only admins and teachers can create batches')
    teacher_id = ctx.user_id if ctx.is_teacher else payload.get('teacher_id')
    teacher = _require_teacher_user(db, teacher_id)

    schedule = payload.get('schedule') or {}
    batch = Batch(
        name=(payload.get('name') or '').strip(),
        description=(payload.get('description') or '').strip(),
        subject=(payload.get('subject') or '').strip(),
        teacher_id=teacher.id,
        schedule_days=_normalize_days(schedule.get('days')),
        start_time=schedule.get('start_time') or '',
        end_time=schedule.get('end_time') or '',
        fee=payload.get('fee'),
        start_date=payload.get('start_date'),
        end_date=payload.get('end_date'),
        max_students=payload.get('max_students') or 30,
        is_active=payload.get('is_active', True),
    )
    _validate_batch(batch)
    db.add(batch)
    db.commit()
    db.refresh(batch)
    logger.info('batch_created batch_id=%s teacher_id=%s actor_id=%s', batch.id, batch.teacher_id, ctx.user_id)
    return batch


def update_batch(db: Session, ctx: RequestContext, batch_id: int, changes: dict) -> Batch:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to update this batch')

    if 'teacher_id' in changes and changes['teacher_id'] is not None and int(changes['teacher_id']) != batch.teacher_id:
        if not ctx.is_admin:
            raise AccessDeniedError('Only admins can reassign the batch teacher')
        batch.teacher_id = _require_teacher_user(db, changes['teacher_id']).id

    schedule = changes.pop('schedule', None) or {}
    if 'days' in schedule and schedule['days'] is not None:
        changes['schedule_days'] = schedule['days']
    for key in ('start_time', 'end_time'):
        if schedule.get(key) is not None:
            changes[key] = schedule[key]

    for key in UPDATABLE_FIELDS:
        if key not in changes:
            continue
        value = changes[key]
        if value is None and key != 'end_date':
            continue
        if key == 'schedule_days':
            value = _normalize_days(value)
        setattr(batch, key, value)

    try:
        _validate_batch(batch)
    except DomainValidationError:
        db.rollback()
        raise
    db.commit()
    db.refresh(batch)
    logger.info('batch_updated batch_id=%s actor_id=%s', batch.id, ctx.user_id)
    return batch


def _run_step(db: Session, report: CascadeReport, name: str, step) -> bool:
    try:
        report.deleted[name] = int(step() or 0)
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        report.errors.append(f'{name}: {exc.__class__.__name__}')
        logger.exception('batch_cascade_step_failed batch_id=%s step=%s', report.batch_id, name)
        return False


def cascade_delete_batch(db: Session, batch: Batch) -> CascadeReport:
    """Delete a batch and everything it owns as a sequence of independent steps.

    Payments are detached (batch reference cleared) rather than deleted. The
    batch row itself is only removed when every child step succeeded.
    """
    batch_id = int(batch.id)
    report = CascadeReport(batch_id=batch_id)

    def delete_attendance() -> int:
        return db.query(Attendance).filter(Attendance.batch_id == batch_id).delete(synchronize_session=False)

    def delete_materials() -> int:
        rows = db.query(Material).filter(Material.batch_id == batch_id).all()
        for row in rows:
            file_storage.delete_file_quietly(file_storage.MATERIALS, row.stored_name)
        return db.query(Material).filter(Material.batch_id == batch_id).delete(synchronize_session=False)

    def delete_assignments() -> int:
        assignment_ids = [row_id for (row_id,) in db.query(Assignment.id).filter(Assignment.batch_id == batch_id).all()]
        if not assignment_ids:
            return 0
        files = db.query(AssignmentFile).filter(AssignmentFile.assignment_id.in_(assignment_ids)).all()
        for row in files:
            kind = file_storage.SUBMISSIONS if row.submission_id else file_storage.ASSIGNMENTS
            file_storage.delete_file_quietly(kind, row.stored_name)
        db.query(AssignmentFile).filter(AssignmentFile.assignment_id.in_(assignment_ids)).delete(synchronize_session=False)
        db.query(Submission).filter(Submission.assignment_id.in_(assignment_ids)).delete(synchronize_session=False)
        return db.query(Assignment).filter(Assignment.id.in_(assignment_ids)).delete(synchronize_session=False)

    def detach_payments() -> int:
        return (
            db.query(Payment)
            .filter(Payment.batch_id == batch_id)
            .update({Payment.batch_id: None}, synchronize_session=False)
        )

    def delete_enrollments() -> int:
        return db.query(BatchStudent).filter(BatchStudent.batch_id == batch_id).delete(synchronize_session=False)

    for name, step in (
        ('attendance', delete_attendance),
        ('materials', delete_materials),
        ('assignments', delete_assignments),
        ('payments_detached', detach_payments),
        ('enrollments', delete_enrollments),
    ):
        _run_step(db, report, name, step)

    if report.errors:
        logger.error('batch_cascade_incomplete batch_id=%s errors=%s', batch_id, report.errors)
        return report

    def delete_batch_row() -> int:
        return db.query(Batch).filter(Batch.id == batch_id).delete(synchronize_session=False)

    report.batch_deleted = _run_step(db, report, 'batch', delete_batch_row)
    db.expire_all()
    logger.info('batch_deleted batch_id=%s deleted=%s', batch_id, report.deleted)
    return report


def delete_batch(db: Session, ctx: RequestContext, batch_id: int) -> CascadeReport:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to delete this batch')
    ctx.resources.pop('batch', None)
    return cascade_delete_batch(db, batch)


def add_student(db: Session, ctx: RequestContext, batch_id: int, student_id: int) -> Batch:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to manage students of this batch')
    student = db.query(User).filter(User.id == student_id).first()
    if not student:
        raise NotFoundError('Batch or student not found')
    if student.role != Role.STUDENT.value:
        raise DomainValidationError('Only students can be enrolled in a batch')
    if is_enrolled(batch, student_id):
        raise DomainValidationError('Student already in this batch')
    if len(batch.student_links) >= int(batch.max_students):
        raise DomainValidationError('Batch is full')

    batch.student_links.append(BatchStudent(student_id=student.id))
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainValidationError('Student already in this batch') from exc
    db.refresh(batch)
    logger.info('batch_student_added batch_id=%s student_id=%s actor_id=%s', batch.id, student.id, ctx.user_id)
    return batch


def remove_student(db: Session, ctx: RequestContext, batch_id: int, student_id: int) -> Batch:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to manage students of this batch')
    link = next((row for row in batch.student_links if int(row.student_id) == int(student_id)), None)
    if link is None:
        raise DomainValidationError('Student not in this batch')
    batch.student_links.remove(link)
    db.commit()
    db.refresh(batch)
    logger.info('batch_student_removed batch_id=%s student_id=%s actor_id=%s', batch.id, student_id, ctx.user_id)
    return batch


def get_batch_stats(db: Session, ctx: RequestContext, batch_id: int) -> dict:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to view statistics of this batch')

    attendance_rows = (
        db.query(Attendance.status, func.count(Attendance.id))
        .filter(Attendance.batch_id == batch.id)
        .group_by(Attendance.status)
        .all()
    )
    payment_rows = (
        db.query(Payment.month, func.sum(Payment.amount), func.count(Payment.id))
        .filter(Payment.batch_id == batch.id, Payment.status == PaymentStatus.COMPLETED.value)
        .group_by(Payment.month)
        .order_by(Payment.month)
        .all()
    )
    submission_rows = (
        db.query(Submission.status, func.count(Submission.id), func.avg(Submission.marks_obtained))
        .join(Assignment, Assignment.id == Submission.assignment_id)
        .filter(Assignment.batch_id == batch.id)
        .group_by(Submission.status)
        .all()
    )
    return {
        'attendance': [{'status': status, 'count': int(count)} for status, count in attendance_rows],
        'payments': [
            {'month': month, 'total': float(total or 0), 'count': int(count)}
            for month, total, count in payment_rows
        ],
        'assignments': [
            {
                'status': status,
                'count': int(count),
                'average_marks': round(float(avg), 2) if avg is not None else None,
            }
            for status, count, avg in submission_rows
        ],
        'total_students': len(batch.student_links),
        'batch_status': 'Active' if batch.is_active else 'Inactive',
    }


def list_user_batches(db: Session, user: User) -> list[Batch]:
    query = db.query(Batch).options(selectinload(Batch.student_links), selectinload(Batch.teacher))
    if user.role == Role.TEACHER.value:
        query = query.filter(Batch.teacher_id == user.id)
    elif user.role == Role.STUDENT.value:
        query = query.filter(Batch.id.in_(select(BatchStudent.batch_id).where(BatchStudent.student_id == user.id)))
    return query.order_by(Batch.start_date.desc(), Batch.id.desc()).all()


def months_between(start: date, end: date) -> list[str]:
    """Every YYYY-MM from start's month through end's month, inclusive."""
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append(f'{year:04d}-{month:02d}')
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months
