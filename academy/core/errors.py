from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    pass


class AccessDeniedError(PermissionError):
    pass


class AuthenticationError(PermissionError):
    pass


class DomainValidationError(ValueError):
    def __init__(self, message: str, fields: list[dict] | None = None):
        super().__init__(message)
        self.fields = fields or []


class GatewayNotConfiguredError(RuntimeError):
    pass


STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (NotFoundError, 404),
    (AuthenticationError, 401),
    (AccessDeniedError, 403),
    (DomainValidationError, 400),
    (GatewayNotConfiguredError, 501),
)


def to_http_exception(exc: Exception) -> HTTPException:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            fields = getattr(exc, 'fields', None)
            detail: str | dict = str(exc) or 'Request failed'
            if fields:
                detail = {'message': str(exc), 'errors': fields}
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=500, detail='Server Error')


DOMAIN_ERRORS = (
    NotFoundError,
    AuthenticationError,
    AccessDeniedError,
    DomainValidationError,
    GatewayNotConfiguredError,
)


def _error_body(detail) -> dict:
    if isinstance(detail, dict):
        body = {'success': False, 'error': str(detail.get('message') or 'Request failed')}
        if detail.get('errors'):
            body['errors'] = detail['errors']
        return body
    return {'success': False, 'error': str(detail or 'Request failed')}


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail), headers=getattr(exc, 'headers', None))


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = []
    for item in exc.errors():
        location = [str(part) for part in item.get('loc', ()) if part not in ('body', 'query', 'path', 'form')]
        fields.append({'field': '.'.join(location), 'message': str(item.get('msg') or '')})
    return JSONResponse(
        status_code=400,
        content={'success': False, 'error': 'Validation failed', 'errors': fields},
    )


async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception('unhandled_error path=%s method=%s', request.url.path, request.method)
    return JSONResponse(status_code=500, content={'success': False, 'error': 'Server Error'})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
