from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DOMAIN_ERRORS, to_http_exception
from academy.core.responses import ok, paginated
from academy.core.router_guard import require_auth_user, roles
from academy.db import get_db
from academy.route_logging import EndpointNameRoute
from academy.request_context import RequestContext
from academy.schemas import AttendanceCreateRequest, AttendanceStatusName, AttendanceUpdateRequest, BulkAttendanceRequest
from academy.services import attendance_service


router = APIRouter(prefix='/api/attendance', tags=['Attendance'], route_class=EndpointNameRoute)
staff_only = roles('admin', 'teacher')


@router.get('')
def list_attendance(
    batch_id: int | None = Query(default=None),
    student_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    status: AttendanceStatusName | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    filters = {
        'batch_id': batch_id,
        'student_id': student_id,
        'date_from': date_from,
        'date_to': date_to,
        'status': status,
    }
    rows, total = attendance_service.list_attendance(db, ctx, filters, page=page, page_size=page_size)
    return paginated(rows, total, page, page_size, attendance_service.serialize_attendance)


@router.post('', status_code=201)
def create_attendance(
    payload: AttendanceCreateRequest,
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    try:
        row = attendance_service.create_attendance(db, ctx, payload.model_dump(by_alias=True))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(attendance_service.serialize_attendance(row))


@router.post('/mark')
def mark_bulk(payload: BulkAttendanceRequest, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        records, errors = attendance_service.mark_bulk(
            db,
            ctx,
            payload.batch_id,
            payload.attendance_date,
            [entry.model_dump() for entry in payload.attendances],
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    body = {
        'success': not errors,
        'count': len(records),
        'message': f'Processed with {len(errors)} error(s)' if errors else 'Attendance marked successfully',
        'data': [attendance_service.serialize_attendance(row) for row in records],
    }
    if errors:
        body['errors'] = errors
    return body


@router.get('/summary/student/{student_id}/batch/{batch_id}')
def attendance_summary(
    student_id: int,
    batch_id: int,
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        summary = attendance_service.attendance_summary(db, ctx, student_id, batch_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(summary)


@router.get('/{attendance_id}')
def get_attendance(attendance_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        row = attendance_service.get_attendance(db, ctx, attendance_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(attendance_service.serialize_attendance(row))


@router.put('/{attendance_id}')
def update_attendance(
    attendance_id: int,
    payload: AttendanceUpdateRequest,
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    try:
        row = attendance_service.update_attendance(
            db,
            ctx,
            attendance_id,
            payload.model_dump(by_alias=True, exclude_none=True),
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(attendance_service.serialize_attendance(row))


@router.delete('/{attendance_id}')
def delete_attendance(attendance_id: int, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        attendance_service.delete_attendance(db, ctx, attendance_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok({})
