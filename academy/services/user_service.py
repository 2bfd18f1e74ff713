from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy.core.errors import AccessDeniedError, DomainValidationError, NotFoundError
from academy.core.time_provider import TimeProvider, default_time_provider
from academy.models import Attendance, Batch, BatchStudent, Payment, Role, Submission, User
from academy.request_context import RequestContext
from academy.services.auth_service import PROFILE_FIELDS, create_user, find_user_by_email, normalize_email
from academy.services.batch_service import cascade_delete_batch, list_user_batches


logger = logging.getLogger(__name__)


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f'User not found with id of {user_id}')
    return user


def list_users(
    db: Session,
    *,
    role: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[User], int]:
    query = db.query(User)
    if role:
        query = query.filter(User.role == Role(role).value)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    term = (search or '').strip().lower()
    if term:
        pattern = f'%{term}%'
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern), User.phone.ilike(pattern)))
    total = query.count()
    rows = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
    return rows, total


def admin_create_user(db: Session, ctx: RequestContext, payload: dict) -> User:
    user = create_user(db, payload)
    logger.info('admin_user_created user_id=%s role=%s actor_id=%s', user.id, user.role, ctx.user_id)
    return user


def admin_update_user(db: Session, ctx: RequestContext, user_id: int, changes: dict) -> User:
    user = get_user_or_404(db, user_id)

    if changes.get('email') is not None:
        clean_email = normalize_email(changes['email'])
        other = find_user_by_email(db, clean_email)
        if other and other.id != user.id:
            raise DomainValidationError('Email is already registered', fields=[{'field': 'email', 'message': 'already registered'}])
        user.email = clean_email

    if changes.get('role') is not None:
        new_role = Role(changes['role']).value
        if new_role != user.role:
            if int(user.id) == int(ctx.user_id):
                raise DomainValidationError('You cannot change your own role')
            if user.role == Role.TEACHER.value and user.taught_batches:
                raise DomainValidationError('Reassign the batches of this teacher before changing the role')
            user.role = new_role

    if changes.get('is_active') is not None:
        if int(user.id) == int(ctx.user_id) and not changes['is_active']:
            raise DomainValidationError('You cannot deactivate your own account')
        user.is_active = bool(changes['is_active'])

    for key in PROFILE_FIELDS:
        if changes.get(key) is not None:
            setattr(user, key, str(changes[key]).strip())

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainValidationError('Email is already registered') from exc
    db.refresh(user)
    logger.info('admin_user_updated user_id=%s actor_id=%s', user.id, ctx.user_id)
    return user


def toggle_user_status(db: Session, ctx: RequestContext, user_id: int) -> User:
    user = get_user_or_404(db, user_id)
    if int(user.id) == int(ctx.user_id):
        raise DomainValidationError('You cannot change your own status')
    user.is_active = not user.is_active
    db.commit()
    db.refresh(user)
    logger.info('user_status_toggled user_id=%s active=%s actor_id=%s', user.id, user.is_active, ctx.user_id)
    return user


def _blocking_references(db: Session, user: User) -> list[str]:
    reasons = []
    active_enrollment = (
        db.query(BatchStudent.id)
        .join(Batch, Batch.id == BatchStudent.batch_id)
        .filter(BatchStudent.student_id == user.id, Batch.is_active.is_(True))
        .first()
    )
    if active_enrollment:
        reasons.append('is enrolled in an active batch')
    if db.query(Attendance.id).filter(Attendance.student_id == user.id).first():
        reasons.append('has attendance records')
    if db.query(Submission.id).filter(Submission.student_id == user.id).first():
        reasons.append('has assignment submissions')
    if db.query(Payment.id).filter(Payment.student_id == user.id).first():
        reasons.append('has payment records')
    return reasons


def delete_user(db: Session, ctx: RequestContext, user_id: int) -> dict:
    user = get_user_or_404(db, user_id)
    if int(user.id) == int(ctx.user_id):
        raise DomainValidationError('You cannot delete your own account')

    reasons = _blocking_references(db, user)
    if reasons:
        raise DomainValidationError(
            'User cannot be deleted because the user ' + ', '.join(reasons) + '; deactivate the account instead',
            fields=[{'field': 'user', 'message': reason} for reason in reasons],
        )

    reports = []
    for batch in list(user.taught_batches):
        report = cascade_delete_batch(db, batch)
        reports.append(report.as_dict())
        if not report.complete:
            raise DomainValidationError(f'Could not delete batch {report.batch_id} taught by this user')

    db.query(BatchStudent).filter(BatchStudent.student_id == user.id).delete(synchronize_session=False)
    db.query(User).filter(User.id == user.id).delete(synchronize_session=False)
    db.commit()
    db.expire_all()
    logger.info('user_deleted user_id=%s batches_deleted=%s actor_id=%s', user_id, len(reports), ctx.user_id)
    return {'user_id': int(user_id), 'deleted_batches': reports}


def user_batches(db: Session, ctx: RequestContext, user_id: int) -> list[Batch]:
    if not (ctx.is_admin or int(ctx.user_id) == int(user_id)):
        raise AccessDeniedError('Not authorized to view batches of this user')
    return list_user_batches(db, get_user_or_404(db, user_id))


def user_stats(db: Session, *, time_provider: TimeProvider = default_time_provider) -> list[dict]:
    since = time_provider.naive_now() - timedelta(days=30)
    stats = []
    for role in Role:
        base = db.query(User).filter(User.role == role.value)
        total = base.count()
        active = base.filter(User.is_active.is_(True)).count()
        stats.append(
            {
                'role': role.value,
                'total': total,
                'active': active,
                'inactive': total - active,
                'new_last_30_days': base.filter(User.created_at >= since).count(),
            }
        )
    return stats
