from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from academy.core.access import BatchAction, ensure_can_act_on_batch, is_batch_teacher, is_enrolled, visible_batch_ids
from academy.core.errors import AccessDeniedError, DomainValidationError, NotFoundError
from academy.models import Attendance, AttendanceStatus, Batch
from academy.request_context import RequestContext
from academy.services.batch_service import get_batch_or_404


logger = logging.getLogger(__name__)


def serialize_attendance(row: Attendance) -> dict:
    return {
        'id': row.id,
        'student_id': row.student_id,
        'batch_id': row.batch_id,
        'date': row.attendance_date.isoformat(),
        'status': row.status,
        'notes': row.notes,
        'marked_by_id': row.marked_by_id,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }


def _normalize_status(status: str | None) -> str:
    value = (status or AttendanceStatus.PRESENT.value).strip().lower()
    try:
        return AttendanceStatus(value).value
    except ValueError as exc:
        raise DomainValidationError(
            f'Invalid attendance status {status}',
            fields=[{'field': 'status', 'message': 'must be present, absent, late or excused'}],
        ) from exc


def _require_enrolled(batch: Batch, student_id: int) -> None:
    if not is_enrolled(batch, student_id):
        raise DomainValidationError('Student is not enrolled in this batch')


def _get_record_or_404(db: Session, attendance_id: int) -> Attendance:
    row = db.query(Attendance).filter(Attendance.id == attendance_id).first()
    if not row:
        raise NotFoundError(f'Attendance not found with id of {attendance_id}')
    return row


def _ensure_can_edit(ctx: RequestContext, row: Attendance) -> None:
    if ctx.is_admin or int(row.marked_by_id) == int(ctx.user_id):
        return
    raise AccessDeniedError('Not authorized to modify this attendance')


def create_attendance(db: Session, ctx: RequestContext, payload: dict) -> Attendance:
    batch = get_batch_or_404(db, payload['batch_id'], ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to mark attendance for this batch')
    student_id = int(payload['student_id'])
    _require_enrolled(batch, student_id)

    row = Attendance(
        student_id=student_id,
        batch_id=batch.id,
        attendance_date=payload['date'],
        status=_normalize_status(payload.get('status')),
        notes=(payload.get('notes') or '').strip(),
        marked_by_id=ctx.user_id,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainValidationError('Attendance already marked for this student on this date') from exc
    db.refresh(row)
    logger.info(
        'attendance_created attendance_id=%s batch_id=%s student_id=%s status=%s',
        row.id,
        row.batch_id,
        row.student_id,
        row.status,
    )
    return row


def _upsert_entry(db: Session, ctx: RequestContext, batch: Batch, attendance_date: date, entry: dict) -> Attendance:
    student_id = int(entry['student_id'])
    _require_enrolled(batch, student_id)
    status = _normalize_status(entry.get('status'))
    notes = (entry.get('notes') or '').strip()

    row = (
        db.query(Attendance)
        .filter(
            Attendance.student_id == student_id,
            Attendance.batch_id == batch.id,
            Attendance.attendance_date == attendance_date,
        )
        .first()
    )
    if row:
        row.status = status
        row.notes = notes
        row.marked_by_id = ctx.user_id
    else:
        row = Attendance(
            student_id=student_id,
            batch_id=batch.id,
            attendance_date=attendance_date,
            status=status,
            notes=notes,
            marked_by_id=ctx.user_id,
        )
        db.add(row)
    db.commit()
    db.refresh(row)
    return row


def mark_bulk(
    db: Session,
    ctx: RequestContext,
    batch_id: int,
    attendance_date: date,
    entries: list[dict],
) -> tuple[list[Attendance], list[dict]]:
    """Upsert one record per entry, each in its own commit.

    A failing entry is reported and skipped; earlier successes stay committed.
    """
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to mark attendance for this batch')

    records: list[Attendance] = []
    errors: list[dict] = []
    for entry in entries:
        student_id = entry.get('student_id')
        try:
            records.append(_upsert_entry(db, ctx, batch, attendance_date, entry))
        except DomainValidationError as exc:
            errors.append({'student_id': student_id, 'error': str(exc)})
        except (IntegrityError, SQLAlchemyError) as exc:
            db.rollback()
            logger.warning('attendance_bulk_entry_failed batch_id=%s student_id=%s error=%s', batch.id, student_id, exc)
            errors.append({'student_id': student_id, 'error': 'Could not save attendance'})

    logger.info(
        'attendance_bulk_marked batch_id=%s date=%s saved=%s failed=%s',
        batch.id,
        attendance_date.isoformat(),
        len(records),
        len(errors),
    )
    return records, errors


def get_attendance(db: Session, ctx: RequestContext, attendance_id: int) -> Attendance:
    row = _get_record_or_404(db, attendance_id)
    if ctx.is_admin or int(row.marked_by_id) == int(ctx.user_id):
        return row
    if ctx.is_student and int(row.student_id) == int(ctx.user_id):
        return row
    raise AccessDeniedError('Not authorized to view this attendance')


def update_attendance(db: Session, ctx: RequestContext, attendance_id: int, changes: dict) -> Attendance:
    row = _get_record_or_404(db, attendance_id)
    _ensure_can_edit(ctx, row)
    for key, current in (('student_id', row.student_id), ('batch_id', row.batch_id), ('date', row.attendance_date)):
        if changes.get(key) is not None and changes[key] != current:
            raise DomainValidationError(f'Cannot change {key} of an attendance record')
    if changes.get('status') is not None:
        row.status = _normalize_status(changes['status'])
    if changes.get('notes') is not None:
        row.notes = str(changes['notes']).strip()
    db.commit()
    db.refresh(row)
    logger.info('attendance_updated attendance_id=%s status=%s actor_id=%s', row.id, row.status, ctx.user_id)
    return row


def delete_attendance(db: Session, ctx: RequestContext, attendance_id: int) -> None:
    row = _get_record_or_404(db, attendance_id)
    _ensure_can_edit(ctx, row)
    db.delete(row)
    db.commit()
    logger.info('attendance_deleted attendance_id=%s actor_id=%s', attendance_id, ctx.user_id)


def _apply_filters(query, filters: dict):
    if filters.get('batch_id'):
        query = query.filter(Attendance.batch_id == int(filters['batch_id']))
    if filters.get('student_id'):
        query = query.filter(Attendance.student_id == int(filters['student_id']))
    if filters.get('date_from'):
        query = query.filter(Attendance.attendance_date >= filters['date_from'])
    if filters.get('date_to'):
        query = query.filter(Attendance.attendance_date <= filters['date_to'])
    if filters.get('status'):
        query = query.filter(Attendance.status == _normalize_status(filters['status']))
    return query


def _page(query, page: int, page_size: int) -> tuple[list[Attendance], int]:
    total = query.count()
    rows = (
        query.order_by(Attendance.attendance_date.desc(), Attendance.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def list_attendance(
    db: Session,
    ctx: RequestContext,
    filters: dict,
    *,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Attendance], int]:
    query = db.query(Attendance)
    if ctx.is_student:
        query = query.filter(Attendance.student_id == ctx.user_id)
    else:
        visible = visible_batch_ids(ctx)
        if visible is not None:
            query = query.filter(Attendance.batch_id.in_(visible))
    return _page(_apply_filters(query, filters), page, page_size)


def list_batch_attendance(
    db: Session,
    ctx: RequestContext,
    batch_id: int,
    filters: dict,
    *,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Attendance], int]:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.VIEW)
    query = db.query(Attendance).filter(Attendance.batch_id == batch.id)
    if ctx.is_student:
        query = query.filter(Attendance.student_id == ctx.user_id)
    filters = {key: value for key, value in filters.items() if key != 'batch_id'}
    return _page(_apply_filters(query, filters), page, page_size)


def attendance_percentage(present: int, total: int) -> int:
    """Share of present records as a whole percent, halves rounded up."""
    if not total:
        return 0
    share = Decimal(present * 100) / Decimal(total)
    return int(share.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def attendance_summary(db: Session, ctx: RequestContext, student_id: int, batch_id: int) -> dict:
    batch = get_batch_or_404(db, batch_id, ctx)
    is_self = ctx.is_student and int(ctx.user_id) == int(student_id)
    if not (is_self or ctx.is_admin or is_batch_teacher(ctx, batch)):
        raise AccessDeniedError('Not authorized to view this attendance summary')

    rows = (
        db.query(Attendance.status, func.count(Attendance.id))
        .filter(Attendance.student_id == student_id, Attendance.batch_id == batch.id)
        .group_by(Attendance.status)
        .all()
    )
    counts = {status.value: 0 for status in AttendanceStatus}
    for status, count in rows:
        counts[status] = int(count)
    total = sum(counts.values())
    percentage = attendance_percentage(counts[AttendanceStatus.PRESENT.value], total)
    return {
        'student_id': int(student_id),
        'batch_id': batch.id,
        **counts,
        'total': total,
        'attendance_percentage': percentage,
    }
