from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DOMAIN_ERRORS, to_http_exception
from academy.core.responses import ok, paginated
from academy.core.router_guard import require_auth_user, roles
from academy.db import get_db
from academy.route_logging import EndpointNameRoute
from academy.request_context import RequestContext
from academy.schemas import PaymentCreateRequest, PaymentStatusName, PaymentUpdateRequest, PaymentVerifyRequest
from academy.services import payment_service


router = APIRouter(prefix='/api/payments', tags=['Payments'], route_class=EndpointNameRoute)
staff_only = roles('admin', 'teacher')
admin_only = roles('admin')


@router.get('')
def list_payments(
    student_id: int | None = Query(default=None),
    batch_id: int | None = Query(default=None),
    status: PaymentStatusName | None = Query(default=None),
    month: str | None = Query(default=None, pattern=r'^\d{4}-(0[1-9]|1[0-2])$'),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    filters = {'student_id': student_id, 'batch_id': batch_id, 'status': status, 'month': month}
    rows, total = payment_service.list_payments(db, ctx, filters, page=page, page_size=page_size)
    return paginated(rows, total, page, page_size, payment_service.serialize_payment)


@router.post('', status_code=201)
def create_payment(payload: PaymentCreateRequest, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        payment = payment_service.create_payment(db, ctx, payload.model_dump())
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(payment_service.serialize_payment(payment))


@router.get('/summary/student/{student_id}')
def payment_summary(student_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        summary = payment_service.payment_summary(db, ctx, student_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(summary)


@router.post('/verify')
def verify_payment(
    payload: PaymentVerifyRequest,
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        payment = payment_service.verify_gateway_payment(
            db,
            ctx,
            payload.order_ref,
            payload.payment_ref,
            payload.signature,
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(payment_service.serialize_payment(payment))


@router.get('/{payment_id}')
def get_payment(payment_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        payment = payment_service.get_payment(db, ctx, payment_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(payment_service.serialize_payment(payment))


@router.put('/{payment_id}')
def update_payment(
    payment_id: int,
    payload: PaymentUpdateRequest,
    ctx: RequestContext = Depends(admin_only),
    db: Session = Depends(get_db),
):
    try:
        payment = payment_service.update_payment(db, ctx, payment_id, payload.model_dump(exclude_none=True))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(payment_service.serialize_payment(payment))


@router.delete('/{payment_id}')
def delete_payment(payment_id: int, ctx: RequestContext = Depends(admin_only), db: Session = Depends(get_db)):
    try:
        payment_service.delete_payment(db, ctx, payment_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok({})


@router.post('/{payment_id}/create-order')
def create_order(payment_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        order = payment_service.create_gateway_order(db, ctx, payment_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(order)
