from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DOMAIN_ERRORS, to_http_exception
from academy.core.responses import listing, ok, paginated
from academy.core.router_guard import require_auth_user, roles
from academy.db import get_db
from academy.route_logging import EndpointNameRoute
from academy.request_context import RequestContext
from academy.schemas import RoleName, UserCreateRequest, UserUpdateRequest
from academy.services.auth_service import serialize_user
from academy.services.batch_service import serialize_batch
from academy.services import user_service


router = APIRouter(prefix='/api/users', tags=['Users'], route_class=EndpointNameRoute)
admin_only = roles('admin')


@router.get('/stats/summary')
def user_stats(_: RequestContext = Depends(admin_only), db: Session = Depends(get_db)):
    return ok(user_service.user_stats(db))


@router.get('')
def list_users(
    role: RoleName | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    _: RequestContext = Depends(admin_only),
    db: Session = Depends(get_db),
):
    rows, total = user_service.list_users(
        db,
        role=role,
        is_active=is_active,
        search=search,
        page=page,
        page_size=page_size,
    )
    return paginated(rows, total, page, page_size, serialize_user)


@router.post('', status_code=201)
def create_user(payload: UserCreateRequest, ctx: RequestContext = Depends(admin_only), db: Session = Depends(get_db)):
    try:
        user = user_service.admin_create_user(db, ctx, payload.model_dump())
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(serialize_user(user))


@router.get('/{user_id}/batches')
def user_batches(user_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        rows = user_service.user_batches(db, ctx, user_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return listing(rows, serialize_batch)


@router.get('/{user_id}')
def get_user(user_id: int, _: RequestContext = Depends(admin_only), db: Session = Depends(get_db)):
    try:
        user = user_service.get_user_or_404(db, user_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(serialize_user(user))


@router.put('/{user_id}/status')
def toggle_status(user_id: int, ctx: RequestContext = Depends(admin_only), db: Session = Depends(get_db)):
    try:
        user = user_service.toggle_user_status(db, ctx, user_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(serialize_user(user))


@router.put('/{user_id}')
def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    ctx: RequestContext = Depends(admin_only),
    db: Session = Depends(get_db),
):
    try:
        user = user_service.admin_update_user(db, ctx, user_id, payload.model_dump(exclude_none=True))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(serialize_user(user))


@router.delete('/{user_id}')
def delete_user(user_id: int, ctx: RequestContext = Depends(admin_only), db: Session = Depends(get_db)):
    try:
        report = user_service.delete_user(db, ctx, user_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(report)
