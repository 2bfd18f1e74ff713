from datetime import date

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DOMAIN_ERRORS, to_http_exception
from academy.core.responses import ok, paginated
from academy.core.router_guard import require_auth_user, roles
from academy.db import get_db
from academy.route_logging import EndpointNameRoute
from academy.request_context import RequestContext
from academy.schemas import AttendanceStatusName, BatchCreateRequest, BatchStudentRequest, BatchUpdateRequest
from academy.services import assignment_service, attendance_service, batch_service, material_service


router = APIRouter(prefix='/api/batches', tags=['Batches'], route_class=EndpointNameRoute)
staff_only = roles('admin', 'teacher')


@router.get('')
def list_batches(
    is_active: bool | None = Query(default=None),
    subject: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    rows, total = batch_service.list_batches(
        db,
        ctx,
        is_active=is_active,
        subject=subject,
        page=page,
        page_size=page_size,
    )
    return paginated(rows, total, page, page_size, batch_service.serialize_batch)


@router.post('', status_code=201)
def create_batch(payload: BatchCreateRequest, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        batch = batch_service.create_batch(db, ctx, payload.model_dump())
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(batch_service.serialize_batch(batch))


@router.get('/{batch_id}')
def get_batch(batch_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        batch = batch_service.get_batch(db, ctx, batch_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(batch_service.serialize_batch(batch, include_students=True))


@router.put('/{batch_id}')
def update_batch(
    batch_id: int,
    payload: BatchUpdateRequest,
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    if changes.get('schedule') is not None:
        changes['schedule'] = {key: value for key, value in changes['schedule'].items() if value is not None}
    try:
        batch = batch_service.update_batch(db, ctx, batch_id, changes)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(batch_service.serialize_batch(batch))


@router.delete('/{batch_id}')
def delete_batch(batch_id: int, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        report = batch_service.delete_batch(db, ctx, batch_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    if not report.complete:
        return JSONResponse(
            status_code=500,
            content={'success': False, 'error': 'Batch deletion incomplete', 'data': report.as_dict()},
        )
    return ok(report.as_dict())


@router.get('/{batch_id}/stats')
def batch_stats(batch_id: int, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        stats = batch_service.get_batch_stats(db, ctx, batch_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(stats)


@router.post('/{batch_id}/students')
def add_student(
    batch_id: int,
    payload: BatchStudentRequest,
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    try:
        batch = batch_service.add_student(db, ctx, batch_id, payload.student_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(batch_service.serialize_batch(batch))


@router.delete('/{batch_id}/students/{student_id}')
def remove_student(
    batch_id: int,
    student_id: int,
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    try:
        batch = batch_service.remove_student(db, ctx, batch_id, student_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(batch_service.serialize_batch(batch))


@router.get('/{batch_id}/attendance')
def batch_attendance(
    batch_id: int,
    student_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    status: AttendanceStatusName | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    filters = {'student_id': student_id, 'date_from': date_from, 'date_to': date_to, 'status': status}
    try:
        rows, total = attendance_service.list_batch_attendance(
            db,
            ctx,
            batch_id,
            filters,
            page=page,
            page_size=page_size,
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return paginated(rows, total, page, page_size, attendance_service.serialize_attendance)


@router.get('/{batch_id}/assignments')
def batch_assignments(
    batch_id: int,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        rows, total = assignment_service.list_batch_assignments(db, ctx, batch_id, page=page, page_size=page_size)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return paginated(rows, total, page, page_size, assignment_service.serialize_assignment)


@router.get('/{batch_id}/materials')
def batch_materials(
    batch_id: int,
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        rows, total = material_service.list_batch_materials(
            db,
            ctx,
            batch_id,
            search=search,
            page=page,
            page_size=page_size,
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return paginated(rows, total, page, page_size, material_service.serialize_material)
