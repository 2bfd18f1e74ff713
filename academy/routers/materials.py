from __future__ import annotations

import json

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DOMAIN_ERRORS, to_http_exception
from academy.core.responses import ok, paginated
from academy.core.router_guard import require_auth_user, roles
from academy.db import get_db
from academy.route_logging import EndpointNameRoute
from academy.request_context import RequestContext
from academy.services import material_service
from academy.services.file_storage import MATERIAL_POLICY, StorageError, read_validated_upload


router = APIRouter(prefix='/api/materials', tags=['Materials'], route_class=EndpointNameRoute)
staff_only = roles('admin', 'teacher')


def _parse_multi_values(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return []
    if value.startswith('['):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                return [str(item) for item in parsed]
        except json.JSONDecodeError:
            pass
    return [chunk.strip() for chunk in value.split(',') if chunk.strip()]


@router.get('')
def list_materials(
    batch_id: int | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
    ctx: RequestContext = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    rows, total = material_service.list_materials(
        db,
        ctx,
        batch_id=batch_id,
        search=search,
        page=page,
        page_size=page_size,
    )
    return paginated(rows, total, page, page_size, material_service.serialize_material)


@router.post('', status_code=201)
async def upload_material(
    batch_id: int = Form(...),
    title: str = Form(..., max_length=200),
    description: str = Form(default='', max_length=1000),
    tags: str = Form(default=''),
    file: UploadFile | None = File(default=None),
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail='Please upload a file')
    payload = {
        'batch_id': batch_id,
        'title': title,
        'description': description,
        'tags': _parse_multi_values(tags),
    }
    try:
        file_bytes, filename, mime_type = await read_validated_upload(file, MATERIAL_POLICY)
        material = material_service.upload_material(db, ctx, payload, file_bytes, filename, mime_type)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail='Problem with file upload') from exc
    return ok(material_service.serialize_material(material))


@router.get('/{material_id}/download')
def download_material(material_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        material, path = material_service.material_download_path(db, ctx, material_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=404, detail='File not found') from exc
    return FileResponse(path, media_type=material.mime_type or 'application/octet-stream', filename=material.filename)


@router.get('/{material_id}')
def get_material(material_id: int, ctx: RequestContext = Depends(require_auth_user), db: Session = Depends(get_db)):
    try:
        material = material_service.get_material(db, ctx, material_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ok(material_service.serialize_material(material))


@router.put('/{material_id}')
async def update_material(
    material_id: int,
    title: str | None = Form(default=None, max_length=200),
    description: str | None = Form(default=None, max_length=1000),
    tags: str | None = Form(default=None),
    is_active: bool | None = Form(default=None),
    file: UploadFile | None = File(default=None),
    ctx: RequestContext = Depends(staff_only),
    db: Session = Depends(get_db),
):
    changes = {
        'title': title,
        'description': description,
        'tags': _parse_multi_values(tags),
        'is_active': is_active,
    }
    try:
        replacement = None
        if file is not None and file.filename:
            replacement = await read_validated_upload(file, MATERIAL_POLICY)
        material = material_service.update_material(db, ctx, material_id, changes, replacement)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail='Problem with file upload') from exc
    return ok(material_service.serialize_material(material))


@router.delete('/{material_id}')
def delete_material(material_id: int, ctx: RequestContext = Depends(staff_only), db: Session = Depends(get_db)):
    try:
        material_service.delete_material(db, ctx, material_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail='Could not delete material file') from exc
    return ok({})
