from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DOMAIN_ERRORS, to_http_exception
from academy.core.responses import ok, paginated
from academy.core.router_guard import require_auth_user, roles
from academy.core.time_provider import to_naive_local
from academy.db import get_db
from academy.route_logging import EndpointNameRoute
from academy.request_context import RequestContext
from academy.schemas import GradeRequest
from academy.services import assignment_service
from academy.services.file_storage import ASSIGNMENT_POLICY, StorageError, read_validated_upload


router = APIRouter(prefix='/api/assignments', tags=['Assignments'], route_class=EndpointNameRoute)
staff_only = roles('admin', 'teacher')
student_only = roles('student')


def _parse_datetime(value: str | None) -> datetime | None:
    raw = (value or '').strip()
    if not raw:
        return None
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid datetime format, expected ISO-8601') from exc
    return to_naive_local(parsed)


async def _read_files(files: list[UploadFile] | None) -> list[tuple[bytes, str, str]]:
    uploads = [item for item in (files or []) if item.filename]
    if len(uploads) > settings.assignment_max_files:
        raise HTTPException(status_code=400, detail=f'You can upload at most {settings.assignment_max_files} files')
    return [await read_validated_upload(item, ASSIGNMENT_POLICY) for item in uploads]


@router.get('')
def list_assignments(
    batch_id: int | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    rows, total = assignment_service.list_assignments(db, ctx, batch_id=batch_id, page=page, page_size=page_size)
    return paginated(rows, total, page, page_size, assignment_service.serialize_assignment)


@router.post('', status_code=201)
async def create_assignment(
    batch_id: int = Form(...),
    title: str = Form(..., min_length=1, max_length=200),
    description: str = Form(default=''),
    due_date: str = Form(...),
    total_marks: float = Form(..., ge=1),
    allow_late_submission: bool = Form(default=True),
    files: list[UploadFile] | None = File(default=None),
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    payload = {
        'batch_id': batch_id,
        'title': title,
        'description': description,
        'due_date': _parse_datetime(due_date),
        'total_marks': total_marks,
        'allow_late_submission': allow_late_submission,
    }
    if payload['due_date'] is None:
        raise HTTPException(status_code=400, detail='Please add a due date')
    try:
        uploads = await _read_files(files)
        assignment = assignment_service.create_assignment(db, ctx, payload, uploads)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ok(assignment_service.serialize_assignment(assignment))


@router.get('/{assignment_id}')
def get_assignment(assignment_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        assignment, submissions = assignment_service.get_assignment(db, ctx, assignment_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(assignment_service.serialize_assignment(assignment, submissions))


@router.put('/{assignment_id}')
async def update_assignment(
    assignment_id: int,
    title: str | None = Form(default=None, max_length=200),
    description: str | None = Form(default=None),
    due_date: str | None = Form(default=None),
    total_marks: float | None = Form(default=None, ge=1),
    allow_late_submission: bool | None = Form(default=None),
    is_active: bool | None = Form(default=None),
    files: list[UploadFile] | None = File(default=None),
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    changes = {
        'title': title,
        'description': description,
        'due_date': _parse_datetime(due_date),
        'total_marks': total_marks,
        'allow_late_submission': allow_late_submission,
        'is_active': is_active,
    }
    try:
        uploads = await _read_files(files)
        assignment = assignment_service.update_assignment(db, ctx, assignment_id, changes, uploads)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ok(assignment_service.serialize_assignment(assignment))


@router.delete('/{assignment_id}')
def delete_assignment(assignment_id: int, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        assignment_service.delete_assignment(db, ctx, assignment_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok({})


@router.post('/{assignment_id}/submit')
async def submit_assignment(
    assignment_id: int,
    notes: str = Form(default='', max_length=1000),
    files: list[UploadFile] | None = File(default=None),
    ctx: RequestContext = Depends(student_only),
    db: Session = Depends(get_db),
):
    try:
        uploads = await _read_files(files)
        submission = assignment_service.submit_assignment(db, ctx, assignment_id, notes, uploads)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ok(assignment_service.serialize_submission(submission))


@router.put('/{assignment_id}/grade/{student_id}')
def grade_submission(
    assignment_id: int,
    student_id: int,
    payload: GradeRequest,
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    try:
        submission = assignment_service.grade_submission(
            db,
            ctx,
            assignment_id,
            student_id,
            payload.marks,
            payload.feedback,
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(assignment_service.serialize_submission(submission))


@router.get('/{assignment_id}/files/{file_id}')
def download_file(
    assignment_id: int,
    file_id: int,
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        row, path = assignment_service.get_assignment_file(db, ctx, assignment_id, file_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=404, detail='File not found') from exc
    return FileResponse(path, media_type=row.mime_type or 'application/octet-stream', filename=row.filename)


@router.delete('/{assignment_id}/files/{file_id}')
def delete_file(
    assignment_id: int,
    file_id: int,
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    try:
        assignment_service.delete_assignment_file(db, ctx, assignment_id, file_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok({})
