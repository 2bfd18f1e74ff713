from __future__ import annotations

from typing import Iterable

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from academy.db import get_db
from academy.models import User
from academy.request_context import RequestContext
from academy.services.auth_service import validate_session_token


def resolve_token(request: Request) -> str | None:
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return request.cookies.get('auth_session')


def require_auth_user(request: Request, db: Session = Depends(get_db)) -> RequestContext:
    session = validate_session_token(resolve_token(request))
    if not session:
        raise HTTPException(status_code=401, detail='Not authorized to access this route')
    user_id = int(session.get('user_id') or 0)
    if user_id <= 0:
        raise HTTPException(status_code=401, detail='Not authorized to access this route')
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail='User not found')
    if not user.is_active:
        raise HTTPException(status_code=401, detail='Account is deactivated')
    return RequestContext.for_user(user)


def require_role(ctx: RequestContext, allowed_roles: set[str] | Iterable[str]) -> None:
    normalized = {str(role).strip().lower() for role in allowed_roles}
    if ctx.role not in normalized:
        raise HTTPException(status_code=403, detail=f'User role {ctx.role} is not authorized to access this route')


def roles(*allowed_roles: str):
    """Dependency factory: authenticated caller restricted to the given roles."""

    def dependency(ctx: RequestContext = Depends(require_auth_user)) -> RequestContext:
        require_role(ctx, allowed_roles)
        return ctx

    return dependency
