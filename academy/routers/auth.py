import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DOMAIN_ERRORS, to_http_exception
from academy.core.router_guard import require_auth_user, resolve_token
from academy.db import get_db
from academy.route_logging import EndpointNameRoute
from academy.request_context import RequestContext
from academy.schemas import LoginRequest, PasswordChangeRequest, ProfileUpdateRequest, RegisterRequest
from academy.services.auth_service import (
    change_password,
    clear_session_token,
    login_password,
    register_student,
    serialize_user,
    update_profile,
)


router = APIRouter(prefix='/api/auth', tags=['Auth'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)


def _session_response(data: dict, status_code: int = 200) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={
            'success': True,
            'token': data['token'],
            'expires_at': data['expires_at'],
            'data': data['user'],
        },
    )
    response.set_cookie(
        key='auth_session',
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=False,
        max_age=settings.auth_session_expiry_hours * 60 * 60,
    )
    return response


@router.post('/register', status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    try:
        data = register_student(db, payload.model_dump())
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _session_response(data, status_code=201)


@router.post('/login')
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    try:
        data = login_password(db, payload.email, payload.password)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _session_response(data)


@router.post('/logout')
def logout(request: Request, ctx: RequestContext = Depends(require_auth_user)):
    clear_session_token(resolve_token(request))
    logger.info('auth_logout user_id=%s', ctx.user_id)
    response = JSONResponse(content={'success': True, 'data': {}})
    response.delete_cookie('auth_session')
    return response


@router.get('/me')
def me(ctx: RequestContext = Depends(require_auth_user)):
    return {'success': True, 'data': serialize_user(ctx.user)}


@router.put('/me')
def update_me(
    payload: ProfileUpdateRequest,
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    user = update_profile(db, ctx.user, payload.model_dump(exclude_none=True))
    return {'success': True, 'data': serialize_user(user)}


@router.put('/password')
def update_password(
    payload: PasswordChangeRequest,
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        user = change_password(db, ctx.user, payload.current_password, payload.new_password)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return {'success': True, 'data': serialize_user(user)}
