from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from academy.config import settings
from academy.core.access import BatchAction, can_act_on_batch, ensure_can_act_on_batch, visible_batch_ids
from academy.core.errors import AccessDeniedError, DomainValidationError, NotFoundError
from academy.core.time_provider import TimeProvider, default_time_provider, to_naive_local
from academy.models import Assignment, AssignmentFile, Submission, SubmissionStatus
from academy.request_context import RequestContext
from academy.services import file_storage
from academy.services.batch_service import get_batch_or_404


logger = logging.getLogger(__name__)

UploadedFile = tuple[bytes, str, str]

_NEW = None
ALLOWED_TRANSITIONS: dict[str | None, set[str]] = {
    _NEW: {SubmissionStatus.SUBMITTED.value, SubmissionStatus.LATE.value},
    SubmissionStatus.SUBMITTED.value: {SubmissionStatus.RESUBMITTED.value, SubmissionStatus.GRADED.value},
    SubmissionStatus.LATE.value: {SubmissionStatus.RESUBMITTED.value, SubmissionStatus.GRADED.value},
    SubmissionStatus.RESUBMITTED.value: {SubmissionStatus.RESUBMITTED.value, SubmissionStatus.GRADED.value},
    SubmissionStatus.GRADED.value: {SubmissionStatus.GRADED.value},
}


def check_transition(current: str | None, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        if current == SubmissionStatus.GRADED.value:
            raise DomainValidationError('Assignment already graded, cannot resubmit')
        raise DomainValidationError(f'Cannot move submission from {current or "new"} to {target}')


def serialize_file(row: AssignmentFile) -> dict:
    return {
        'id': row.id,
        'filename': row.filename,
        'url': f'/api/assignments/{row.assignment_id}/files/{row.id}',
        'mime_type': row.mime_type,
        'size': row.size,
    }


def serialize_submission(row: Submission) -> dict:
    return {
        'id': row.id,
        'assignment_id': row.assignment_id,
        'student_id': row.student_id,
        'status': row.status,
        'is_late': row.is_late,
        'notes': row.notes,
        'files': [serialize_file(item) for item in row.files],
        'submitted_at': row.submitted_at.isoformat() if row.submitted_at else None,
        'resubmitted_at': row.resubmitted_at.isoformat() if row.resubmitted_at else None,
        'marks_obtained': row.marks_obtained,
        'feedback': row.feedback,
        'graded_by_id': row.graded_by_id,
        'graded_at': row.graded_at.isoformat() if row.graded_at else None,
    }


def serialize_assignment(row: Assignment, submissions: list[Submission] | None = None) -> dict:
    payload = {
        'id': row.id,
        'batch_id': row.batch_id,
        'assigned_by_id': row.assigned_by_id,
        'title': row.title,
        'description': row.description,
        'due_date': row.due_date.isoformat() if row.due_date else None,
        'total_marks': row.total_marks,
        'allow_late_submission': row.allow_late_submission,
        'is_active': row.is_active,
        'attachments': [serialize_file(item) for item in row.attachments],
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }
    if submissions is not None:
        payload['submissions'] = [serialize_submission(item) for item in submissions]
    return payload


def _get_assignment_or_404(db: Session, assignment_id: int) -> Assignment:
    row = (
        db.query(Assignment)
        .options(selectinload(Assignment.attachments))
        .filter(Assignment.id == assignment_id)
        .first()
    )
    if not row:
        raise NotFoundError(f'Assignment not found with id of {assignment_id}')
    return row


def _check_file_count(files: list[UploadedFile]) -> None:
    if len(files) > settings.assignment_max_files:
        raise DomainValidationError(
            f'You can upload at most {settings.assignment_max_files} files',
            fields=[{'field': 'files', 'message': 'too many files'}],
        )


def _store_files(kind: str, files: list[UploadedFile]) -> list[file_storage.StoredFile]:
    stored: list[file_storage.StoredFile] = []
    try:
        for file_bytes, filename, mime_type in files:
            stored.append(file_storage.save_file(kind, file_bytes, filename, mime_type))
    except file_storage.StorageError:
        _discard(kind, stored)
        raise
    return stored


def _discard(kind: str, stored: list[file_storage.StoredFile]) -> None:
    for item in stored:
        file_storage.delete_file_quietly(kind, item.stored_name)


def _file_rows(assignment_id: int, stored: list[file_storage.StoredFile], submission_id: int | None = None) -> list[AssignmentFile]:
    return [
        AssignmentFile(
            assignment_id=assignment_id,
            submission_id=submission_id,
            stored_name=item.stored_name,
            filename=item.filename,
            mime_type=item.mime_type,
            size=item.size,
        )
        for item in stored
    ]


def _file_kind(row: AssignmentFile) -> str:
    return file_storage.SUBMISSIONS if row.submission_id else file_storage.ASSIGNMENTS


def create_assignment(db: Session, ctx: RequestContext, payload: dict, files: list[UploadedFile]) -> Assignment:
    batch = get_batch_or_404(db, payload['batch_id'], ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to create assignments for this batch')
    _check_file_count(files)
    if float(payload.get('total_marks') or 0) < 1:
        raise DomainValidationError('Total marks must be at least 1', fields=[{'field': 'total_marks', 'message': 'min 1'}])

    stored = _store_files(file_storage.ASSIGNMENTS, files)
    assignment = Assignment(
        batch_id=batch.id,
        assigned_by_id=ctx.user_id,
        title=(payload.get('title') or '').strip(),
        description=(payload.get('description') or '').strip(),
        due_date=to_naive_local(payload['due_date']),
        total_marks=float(payload['total_marks']),
        allow_late_submission=bool(payload.get('allow_late_submission', True)),
        is_active=True,
    )
    try:
        db.add(assignment)
        db.flush()
        db.add_all(_file_rows(assignment.id, stored))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        _discard(file_storage.ASSIGNMENTS, stored)
        raise DomainValidationError('Could not create assignment') from exc
    db.refresh(assignment)
    logger.info(
        'assignment_created assignment_id=%s batch_id=%s files=%s actor_id=%s',
        assignment.id,
        batch.id,
        len(stored),
        ctx.user_id,
    )
    return assignment


def update_assignment(
    db: Session,
    ctx: RequestContext,
    assignment_id: int,
    changes: dict,
    files: list[UploadedFile],
) -> Assignment:
    assignment = _get_assignment_or_404(db, assignment_id)
    batch = get_batch_or_404(db, assignment.batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to update this assignment')
    _check_file_count(list(assignment.attachments) + list(files))

    for key in ('title', 'description'):
        if changes.get(key) is not None:
            setattr(assignment, key, str(changes[key]).strip())
    if changes.get('due_date') is not None:
        assignment.due_date = to_naive_local(changes['due_date'])
    if changes.get('total_marks') is not None:
        if float(changes['total_marks']) < 1:
            raise DomainValidationError('Total marks must be at least 1')
        assignment.total_marks = float(changes['total_marks'])
    for key in ('allow_late_submission', 'is_active'):
        if changes.get(key) is not None:
            setattr(assignment, key, bool(changes[key]))

    stored = _store_files(file_storage.ASSIGNMENTS, files)
    try:
        db.add_all(_file_rows(assignment.id, stored))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        _discard(file_storage.ASSIGNMENTS, stored)
        raise DomainValidationError('Could not update assignment') from exc
    db.expire(assignment)
    db.refresh(assignment)
    logger.info('assignment_updated assignment_id=%s new_files=%s actor_id=%s', assignment.id, len(stored), ctx.user_id)
    return assignment


def delete_assignment(db: Session, ctx: RequestContext, assignment_id: int) -> None:
    assignment = _get_assignment_or_404(db, assignment_id)
    batch = get_batch_or_404(db, assignment.batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to delete this assignment')

    files = db.query(AssignmentFile).filter(AssignmentFile.assignment_id == assignment.id).all()
    for row in files:
        file_storage.delete_file_quietly(_file_kind(row), row.stored_name)
    db.query(AssignmentFile).filter(AssignmentFile.assignment_id == assignment.id).delete(synchronize_session=False)
    db.delete(assignment)
    db.commit()
    logger.info('assignment_deleted assignment_id=%s files=%s actor_id=%s', assignment_id, len(files), ctx.user_id)


def _list_query(db: Session):
    return (
        db.query(Assignment)
        .options(selectinload(Assignment.attachments))
        .filter(Assignment.is_active.is_(True))
    )


def _page(query, page: int, page_size: int) -> tuple[list[Assignment], int]:
    total = query.count()
    rows = (
        query.order_by(Assignment.due_date.asc(), Assignment.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def list_assignments(
    db: Session,
    ctx: RequestContext,
    *,
    batch_id: int | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Assignment], int]:
    query = _list_query(db)
    visible = visible_batch_ids(ctx)
    if visible is not None:
        query = query.filter(Assignment.batch_id.in_(visible))
    if batch_id:
        query = query.filter(Assignment.batch_id == batch_id)
    return _page(query, page, page_size)


def list_batch_assignments(
    db: Session,
    ctx: RequestContext,
    batch_id: int,
    *,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Assignment], int]:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.VIEW)
    return _page(_list_query(db).filter(Assignment.batch_id == batch.id), page, page_size)


def get_assignment(db: Session, ctx: RequestContext, assignment_id: int) -> tuple[Assignment, list[Submission]]:
    assignment = _get_assignment_or_404(db, assignment_id)
    batch = get_batch_or_404(db, assignment.batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.VIEW, 'Not authorized to access this assignment')
    query = (
        db.query(Submission)
        .options(selectinload(Submission.files))
        .filter(Submission.assignment_id == assignment.id)
    )
    if ctx.is_student:
        query = query.filter(Submission.student_id == ctx.user_id)
    return assignment, query.order_by(Submission.id.asc()).all()


def submit_assignment(
    db: Session,
    ctx: RequestContext,
    assignment_id: int,
    notes: str,
    files: list[UploadedFile],
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Submission:
    assignment = _get_assignment_or_404(db, assignment_id)
    batch = get_batch_or_404(db, assignment.batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.SUBMIT, 'Only enrolled students can submit this assignment')
    if not assignment.is_active:
        raise DomainValidationError('Assignment is no longer accepting submissions')
    if not files:
        raise DomainValidationError('Please upload at least one file', fields=[{'field': 'files', 'message': 'required'}])
    _check_file_count(files)

    now = time_provider.naive_now()
    is_late = now > assignment.due_date
    if is_late and not assignment.allow_late_submission:
        raise DomainValidationError('Late submissions are not allowed for this assignment')

    submission = (
        db.query(Submission)
        .options(selectinload(Submission.files))
        .filter(Submission.assignment_id == assignment.id, Submission.student_id == ctx.user_id)
        .first()
    )
    if submission is None:
        target = SubmissionStatus.LATE.value if is_late else SubmissionStatus.SUBMITTED.value
        check_transition(_NEW, target)
    else:
        target = SubmissionStatus.RESUBMITTED.value
        check_transition(submission.status, target)

    stored = _store_files(file_storage.SUBMISSIONS, files)
    replaced: list[str] = []
    try:
        if submission is None:
            submission = Submission(
                assignment_id=assignment.id,
                student_id=ctx.user_id,
                status=target,
                is_late=is_late,
                notes=(notes or '').strip(),
                submitted_at=now,
            )
            db.add(submission)
            db.flush()
        else:
            replaced = [row.stored_name for row in submission.files]
            submission.files.clear()
            submission.status = target
            submission.is_late = is_late
            submission.notes = (notes or '').strip()
            submission.resubmitted_at = now
            db.flush()
        db.add_all(_file_rows(assignment.id, stored, submission_id=submission.id))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        _discard(file_storage.SUBMISSIONS, stored)
        raise DomainValidationError('Assignment already submitted') from exc

    for stored_name in replaced:
        file_storage.delete_file_quietly(file_storage.SUBMISSIONS, stored_name)
    db.refresh(submission)
    logger.info(
        'assignment_submitted assignment_id=%s student_id=%s status=%s late=%s',
        assignment.id,
        ctx.user_id,
        submission.status,
        submission.is_late,
    )
    return submission


def grade_submission(
    db: Session,
    ctx: RequestContext,
    assignment_id: int,
    student_id: int,
    marks: float,
    feedback: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Submission:
    assignment = _get_assignment_or_404(db, assignment_id)
    batch = get_batch_or_404(db, assignment.batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to grade this assignment')

    submission = (
        db.query(Submission)
        .filter(Submission.assignment_id == assignment.id, Submission.student_id == student_id)
        .first()
    )
    if not submission:
        raise NotFoundError('Submission not found')
    marks = float(marks)
    if marks < 0 or marks > float(assignment.total_marks):
        raise DomainValidationError(
            f'Marks must be between 0 and {assignment.total_marks:g}',
            fields=[{'field': 'marks', 'message': 'out of range'}],
        )
    check_transition(submission.status, SubmissionStatus.GRADED.value)

    submission.status = SubmissionStatus.GRADED.value
    submission.marks_obtained = marks
    submission.feedback = (feedback or '').strip()
    submission.graded_by_id = ctx.user_id
    submission.graded_at = time_provider.naive_now()
    db.commit()
    db.refresh(submission)
    logger.info(
        'submission_graded assignment_id=%s student_id=%s marks=%s actor_id=%s',
        assignment.id,
        student_id,
        marks,
        ctx.user_id,
    )
    return submission


def _get_file_or_404(db: Session, assignment: Assignment, file_id: int) -> AssignmentFile:
    row = (
        db.query(AssignmentFile)
        .filter(AssignmentFile.id == file_id, AssignmentFile.assignment_id == assignment.id)
        .first()
    )
    if not row:
        raise NotFoundError('File not found')
    return row


def get_assignment_file(db: Session, ctx: RequestContext, assignment_id: int, file_id: int) -> tuple[AssignmentFile, Path]:
    assignment = _get_assignment_or_404(db, assignment_id)
    batch = get_batch_or_404(db, assignment.batch_id, ctx)
    row = _get_file_or_404(db, assignment, file_id)
    if row.submission_id is None:
        ensure_can_act_on_batch(ctx, batch, BatchAction.VIEW, 'Not authorized to access this file')
    else:
        owner_id = row.submission.student_id if row.submission else None
        is_owner = ctx.is_student and owner_id is not None and int(owner_id) == int(ctx.user_id)
        if not (is_owner or can_act_on_batch(ctx, batch, BatchAction.MANAGE)):
            raise AccessDeniedError('Not authorized to access this file')
    path = file_storage.resolve_path(_file_kind(row), row.stored_name)
    if not path.is_file():
        raise NotFoundError('File not found')
    return row, path


def delete_assignment_file(db: Session, ctx: RequestContext, assignment_id: int, file_id: int) -> None:
    assignment = _get_assignment_or_404(db, assignment_id)
    batch = get_batch_or_404(db, assignment.batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.MANAGE, 'Not authorized to delete this file')
    row = _get_file_or_404(db, assignment, file_id)
    file_storage.delete_file_quietly(_file_kind(row), row.stored_name)
    db.delete(row)
    db.commit()
    logger.info('assignment_file_deleted assignment_id=%s file_id=%s actor_id=%s', assignment.id, file_id, ctx.user_id)
