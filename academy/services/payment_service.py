from __future__ import annotations

import calendar
import logging
import re
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.access import BatchAction, ensure_can_act_on_batch, is_batch_teacher, is_enrolled
from academy.core.errors import AccessDeniedError, DomainValidationError, NotFoundError
from academy.core.time_provider import TimeProvider, default_time_provider, to_naive_local
from academy.models import Batch, BatchStudent, Payment, PaymentMethod, PaymentStatus, Role, User
from academy.request_context import RequestContext
from academy.services.batch_service import get_batch_or_404, months_between
from academy.services.payment_gateway import get_payment_provider


logger = logging.getLogger(__name__)

_MONTH_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')
IMMUTABLE_FIELDS = ('student_id', 'batch_id', 'month')


def month_due_date(month: str) -> date:
    year, month_number = (int(part) for part in month.split('-'))
    return date(year, month_number, calendar.monthrange(year, month_number)[1])


def serialize_payment(row: Payment) -> dict:
    return {
        'id': row.id,
        'student_id': row.student_id,
        'batch_id': row.batch_id,
        'batch_name': row.batch.name if row.batch else None,
        'month': row.month,
        'due_date': month_due_date(row.month).isoformat(),
        'amount': row.amount,
        'payment_method': row.payment_method,
        'status': row.status,
        'payment_date': row.payment_date.isoformat() if row.payment_date else None,
        'transaction_id': row.transaction_id,
        'receipt_number': row.receipt_number,
        'notes': row.notes,
        'recorded_by_id': row.recorded_by_id,
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }


def _validate_month(month: str) -> str:
    clean = (month or '').strip()
    if not _MONTH_PATTERN.match(clean):
        raise DomainValidationError(
            'Month must be in YYYY-MM format',
            fields=[{'field': 'month', 'message': 'expected YYYY-MM'}],
        )
    return clean


def _normalize_method(method: str | None) -> str:
    try:
        return PaymentMethod((method or '').strip().lower()).value
    except ValueError as exc:
        raise DomainValidationError(
            f'Invalid payment method {method}',
            fields=[{'field': 'payment_method', 'message': 'unsupported method'}],
        ) from exc


def _normalize_status(status: str | None) -> str:
    try:
        return PaymentStatus((status or '').strip().lower()).value
    except ValueError as exc:
        raise DomainValidationError(
            f'Invalid payment status {status}',
            fields=[{'field': 'status', 'message': 'unsupported status'}],
        ) from exc


def assign_receipt(db: Session, payment: Payment) -> str:
    """Give a completed payment its receipt number once it has a primary key."""
    if payment.receipt_number:
        return payment.receipt_number
    if payment.id is None:
        db.flush()
    year = (payment.payment_date or payment.created_at).year
    payment.receipt_number = f'RCPT-{year}-{int(payment.id):06d}'
    return payment.receipt_number


def _get_payment_or_404(db: Session, payment_id: int) -> Payment:
    row = db.query(Payment).filter(Payment.id == payment_id).first()
    if not row:
        raise NotFoundError(f'Payment not found with id of {payment_id}')
    return row


def _ensure_can_read(ctx: RequestContext, row: Payment) -> None:
    if ctx.is_admin:
        return
    if ctx.is_student and int(row.student_id) == int(ctx.user_id):
        return
    if ctx.is_teacher and row.batch is not None and is_batch_teacher(ctx, row.batch):
        return
    raise AccessDeniedError('Not authorized to access this payment')


def _require_admin(ctx: RequestContext, message: str) -> None:
    if not ctx.is_admin:
        raise AccessDeniedError(message)


def create_payment(
    db: Session,
    ctx: RequestContext,
    payload: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Payment:
    batch = get_batch_or_404(db, payload['batch_id'], ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to record payments for this batch')
    student_id = int(payload['student_id'])
    if not is_enrolled(batch, student_id):
        raise DomainValidationError('Student is not enrolled in this batch')
    month = _validate_month(payload.get('month'))

    existing = (
        db.query(Payment.id)
        .filter(Payment.student_id == student_id, Payment.batch_id == batch.id, Payment.month == month)
        .first()
    )
    if existing:
        raise DomainValidationError('Payment for this month already exists')

    amount = payload.get('amount')
    if amount is None:
        amount = batch.fee
    if float(amount) < 0:
        raise DomainValidationError('Amount cannot be negative', fields=[{'field': 'amount', 'message': 'min 0'}])
    method = _normalize_method(payload.get('payment_method'))
    status = PaymentStatus.PENDING.value if method == PaymentMethod.ONLINE.value else PaymentStatus.COMPLETED.value
    payment_date = payload.get('payment_date')

    payment = Payment(
        student_id=student_id,
        batch_id=batch.id,
        month=month,
        amount=float(amount),
        payment_method=method,
        status=status,
        payment_date=to_naive_local(payment_date) if payment_date else time_provider.naive_now(),
        transaction_id=(payload.get('transaction_id') or '').strip(),
        notes=(payload.get('notes') or '').strip(),
        recorded_by_id=ctx.user_id,
    )
    db.add(payment)
    try:
        db.flush()
        if status == PaymentStatus.COMPLETED.value:
            assign_receipt(db, payment)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainValidationError('Payment for this month already exists') from exc
    db.refresh(payment)
    logger.info(
        'payment_recorded payment_id=%s student_id=%s batch_id=%s month=%s status=%s actor_id=%s',
        payment.id,
        student_id,
        batch.id,
        month,
        payment.status,
        ctx.user_id,
    )
    return payment


def update_payment(db: Session, ctx: RequestContext, payment_id: int, changes: dict) -> Payment:
    _require_admin(ctx, 'Only admins can update payments')
    payment = _get_payment_or_404(db, payment_id)
    for key in IMMUTABLE_FIELDS:
        if changes.get(key) is not None and changes[key] != getattr(payment, key):
            raise DomainValidationError(f'Cannot change {key} of a payment')

    if changes.get('amount') is not None:
        if float(changes['amount']) < 0:
            raise DomainValidationError('Amount cannot be negative')
        payment.amount = float(changes['amount'])
    if changes.get('payment_method') is not None:
        payment.payment_method = _normalize_method(changes['payment_method'])
    if changes.get('payment_date') is not None:
        payment.payment_date = to_naive_local(changes['payment_date'])
    for key in ('transaction_id', 'notes'):
        if changes.get(key) is not None:
            setattr(payment, key, str(changes[key]).strip())
    if changes.get('status') is not None:
        payment.status = _normalize_status(changes['status'])
    if payment.status == PaymentStatus.COMPLETED.value:
        assign_receipt(db, payment)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainValidationError('Could not update payment') from exc
    db.refresh(payment)
    logger.info('payment_updated payment_id=%s status=%s actor_id=%s', payment.id, payment.status, ctx.user_id)
    return payment


def delete_payment(db: Session, ctx: RequestContext, payment_id: int) -> None:
    _require_admin(ctx, 'Only admins can delete payments')
    payment = _get_payment_or_404(db, payment_id)
    db.delete(payment)
    db.commit()
    logger.info('payment_deleted payment_id=%s actor_id=%s', payment_id, ctx.user_id)


def get_payment(db: Session, ctx: RequestContext, payment_id: int) -> Payment:
    payment = _get_payment_or_404(db, payment_id)
    _ensure_can_read(ctx, payment)
    return payment


def list_payments(
    db: Session,
    ctx: RequestContext,
    filters: dict,
    *,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Payment], int]:
    query = db.query(Payment)
    if ctx.is_student:
        query = query.filter(Payment.student_id == ctx.user_id)
    elif ctx.is_teacher:
        query = query.filter(Payment.batch_id.in_(select(Batch.id).where(Batch.teacher_id == ctx.user_id)))
    if filters.get('student_id'):
        query = query.filter(Payment.student_id == int(filters['student_id']))
    if filters.get('batch_id'):
        query = query.filter(Payment.batch_id == int(filters['batch_id']))
    if filters.get('status'):
        query = query.filter(Payment.status == _normalize_status(filters['status']))
    if filters.get('month'):
        query = query.filter(Payment.month == _validate_month(filters['month']))
    total = query.count()
    rows = (
        query.order_by(Payment.payment_date.desc(), Payment.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def pending_months(batch: Batch, paid_months: set[str], today: date) -> list[str]:
    """Billable months of the batch up to today that have no completed payment."""
    if not batch.start_date or batch.start_date > today:
        return []
    last = min(batch.end_date, today) if batch.end_date else today
    return [month for month in months_between(batch.start_date, last) if month not in paid_months]


def payment_summary(
    db: Session,
    ctx: RequestContext,
    student_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    if not (ctx.is_admin or (ctx.is_student and int(ctx.user_id) == int(student_id))):
        raise AccessDeniedError('Not authorized to view this payment summary')
    student = db.query(User).filter(User.id == student_id).first()
    if not student or student.role != Role.STUDENT.value:
        raise NotFoundError(f'Student not found with id of {student_id}')

    completed = (
        db.query(Payment)
        .filter(Payment.student_id == student_id, Payment.status == PaymentStatus.COMPLETED.value)
        .all()
    )
    enrolled_ids = {batch_id for (batch_id,) in db.query(BatchStudent.batch_id).filter(BatchStudent.student_id == student_id)}
    batch_ids = enrolled_ids | {row.batch_id for row in completed if row.batch_id is not None}
    batches = db.query(Batch).filter(Batch.id.in_(batch_ids)).order_by(Batch.start_date.asc()).all() if batch_ids else []

    today = time_provider.today()
    per_batch = []
    for batch in batches:
        paid_rows = [row for row in completed if row.batch_id == batch.id]
        paid = {row.month for row in paid_rows}
        pending = pending_months(batch, paid, today) if batch.id in enrolled_ids else []
        per_batch.append(
            {
                'batch_id': batch.id,
                'batch_name': batch.name,
                'fee': batch.fee,
                'total_paid': sum(float(row.amount) for row in paid_rows),
                'paid_months': sorted(paid),
                'pending_months': pending,
                'pending_amount': float(batch.fee) * len(pending),
            }
        )
    return {
        'student_id': student.id,
        'total_paid': sum(float(row.amount) for row in completed),
        'batches': per_batch,
    }


def create_gateway_order(db: Session, ctx: RequestContext, payment_id: int) -> dict:
    provider = get_payment_provider()
    payment = _get_payment_or_404(db, payment_id)
    _ensure_can_read(ctx, payment)
    if payment.status != PaymentStatus.PENDING.value:
        raise DomainValidationError('Only pending payments can be paid online')

    order_ref = provider.create_order(float(payment.amount), settings.payment_currency)
    payment.gateway_order_ref = order_ref
    db.commit()
    logger.info('payment_order_created payment_id=%s provider=%s order_ref=%s', payment.id, provider.name, order_ref)
    return {
        'payment_id': payment.id,
        'order_ref': order_ref,
        'amount': payment.amount,
        'currency': settings.payment_currency,
        'provider': provider.name,
    }


def verify_gateway_payment(
    db: Session,
    ctx: RequestContext,
    order_ref: str,
    payment_ref: str,
    signature: str,
) -> Payment:
    provider = get_payment_provider()
    if not order_ref:
        raise DomainValidationError('Order reference is required')
    payment = db.query(Payment).filter(Payment.gateway_order_ref == order_ref).first()
    if not payment:
        raise NotFoundError('Payment not found for this order')
    _ensure_can_read(ctx, payment)

    if not provider.verify(order_ref, payment_ref, signature):
        payment.status = PaymentStatus.FAILED.value
        db.commit()
        logger.warning('payment_verification_failed payment_id=%s order_ref=%s', payment.id, order_ref)
        raise DomainValidationError('Payment verification failed')

    payment.status = PaymentStatus.COMPLETED.value
    payment.transaction_id = payment_ref
    assign_receipt(db, payment)
    db.commit()
    db.refresh(payment)
    logger.info('payment_verified payment_id=%s receipt=%s', payment.id, payment.receipt_number)
    return payment
