from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy.core.access import BatchAction, ensure_can_act_on_batch, visible_batch_ids
from academy.core.errors import AccessDeniedError, DomainValidationError, NotFoundError
from academy.models import Material
from academy.request_context import RequestContext
from academy.services import file_storage
from academy.services.batch_service import get_batch_or_404


logger = logging.getLogger(__name__)


def normalize_tags(tags) -> str:
    if tags is None:
        return ''
    if isinstance(tags, str):
        tags = tags.split(',')
    clean = []
    for tag in tags:
        value = str(tag).strip().lower()
        if value and value not in clean:
            clean.append(value)
    return ','.join(clean)


def serialize_material(row: Material) -> dict:
    return {
        'id': row.id,
        'batch_id': row.batch_id,
        'uploaded_by_id': row.uploaded_by_id,
        'title': row.title,
        'description': row.description,
        'tags': row.tag_list,
        'file': {
            'filename': row.filename,
            'url': f'/api/materials/{row.id}/download',
            'mime_type': row.mime_type,
            'size': row.size,
        },
        'is_active': row.is_active,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }


def _get_material_or_404(db: Session, material_id: int) -> Material:
    row = db.query(Material).filter(Material.id == material_id).first()
    if not row:
        raise NotFoundError(f'Material not found with id of {material_id}')
    return row


def _ensure_can_edit(ctx: RequestContext, row: Material) -> None:
    if ctx.is_admin or int(row.uploaded_by_id) == int(ctx.user_id):
        return
    raise AccessDeniedError('Not authorized to modify this material')


def upload_material(
    db: Session,
    ctx: RequestContext,
    payload: dict,
    file_bytes: bytes,
    filename: str,
    mime_type: str,
) -> Material:
    batch = get_batch_or_404(db, payload['batch_id'], ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.UPLOAD_MATERIAL, 'Only the batch teacher can upload materials')
    title = (payload.get('title') or '').strip()
    if not title:
        raise DomainValidationError('Please add a title', fields=[{'field': 'title', 'message': 'required'}])

    stored = file_storage.save_file(file_storage.MATERIALS, file_bytes, filename, mime_type)
    row = Material(
        batch_id=batch.id,
        uploaded_by_id=ctx.user_id,
        title=title,
        description=(payload.get('description') or '').strip(),
        tags=normalize_tags(payload.get('tags')),
        stored_name=stored.stored_name,
        filename=stored.filename,
        mime_type=stored.mime_type,
        size=stored.size,
        is_active=True,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        file_storage.delete_file_quietly(file_storage.MATERIALS, stored.stored_name)
        raise DomainValidationError('Could not save material') from exc
    db.refresh(row)
    logger.info('material_uploaded material_id=%s batch_id=%s size=%s actor_id=%s', row.id, batch.id, row.size, ctx.user_id)
    return row


def update_material(
    db: Session,
    ctx: RequestContext,
    material_id: int,
    changes: dict,
    replacement: tuple[bytes, str, str] | None = None,
) -> Material:
    row = _get_material_or_404(db, material_id)
    _ensure_can_edit(ctx, row)

    if changes.get('title') is not None:
        title = str(changes['title']).strip()
        if not title:
            raise DomainValidationError('Please add a title')
        row.title = title
    if changes.get('description') is not None:
        row.description = str(changes['description']).strip()
    if changes.get('tags') is not None:
        row.tags = normalize_tags(changes['tags'])
    if changes.get('is_active') is not None:
        row.is_active = bool(changes['is_active'])

    old_name = None
    stored = None
    if replacement is not None:
        stored = file_storage.save_file(file_storage.MATERIALS, *replacement)
        old_name = row.stored_name
        row.stored_name = stored.stored_name
        row.filename = stored.filename
        row.mime_type = stored.mime_type
        row.size = stored.size

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if stored is not None:
            file_storage.delete_file_quietly(file_storage.MATERIALS, stored.stored_name)
        raise DomainValidationError('Could not update material') from exc
    if old_name:
        file_storage.delete_file_quietly(file_storage.MATERIALS, old_name)
    db.refresh(row)
    logger.info('material_updated material_id=%s replaced_file=%s actor_id=%s', row.id, bool(old_name), ctx.user_id)
    return row


def delete_material(db: Session, ctx: RequestContext, material_id: int) -> None:
    row = _get_material_or_404(db, material_id)
    _ensure_can_edit(ctx, row)
    # StorageError propagates; the record stays when its file could not be removed.
    removed = file_storage.delete_file(file_storage.MATERIALS, row.stored_name)
    if not removed:
        logger.info('material_file_already_absent material_id=%s name=%s', row.id, row.stored_name)
    db.delete(row)
    db.commit()
    logger.info('material_deleted material_id=%s actor_id=%s', material_id, ctx.user_id)


def get_material(db: Session, ctx: RequestContext, material_id: int) -> Material:
    row = _get_material_or_404(db, material_id)
    batch = get_batch_or_404(db, row.batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.VIEW, 'Not authorized to access this material')
    return row


def material_download_path(db: Session, ctx: RequestContext, material_id: int) -> tuple[Material, Path]:
    row = get_material(db, ctx, material_id)
    path = file_storage.resolve_path(file_storage.MATERIALS, row.stored_name)
    if not path.is_file():
        raise NotFoundError('File not found')
    return row, path


def _search(query, search: str | None):
    term = (search or '').strip().lower()
    if not term:
        return query
    pattern = f'%{term}%'
    return query.filter(
        or_(
            Material.title.ilike(pattern),
            Material.description.ilike(pattern),
            Material.tags.ilike(pattern),
        )
    )


def _page(query, page: int, page_size: int) -> tuple[list[Material], int]:
    total = query.count()
    rows = (
        query.order_by(Material.created_at.desc(), Material.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def list_materials(
    db: Session,
    ctx: RequestContext,
    *,
    batch_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Material], int]:
    query = db.query(Material).filter(Material.is_active.is_(True))
    visible = visible_batch_ids(ctx)
    if visible is not None:
        query = query.filter(Material.batch_id.in_(visible))
    if batch_id:
        query = query.filter(Material.batch_id == batch_id)
    return _page(_search(query, search), page, page_size)


def list_batch_materials(
    db: Session,
    ctx: RequestContext,
    batch_id: int,
    *,
    search: str | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Material], int]:
    batch = get_batch_or_404(db, batch_id, ctx)
    ensure_can_act_on_batch(ctx, batch, BatchAction.VIEW)
    query = db.query(Material).filter(Material.batch_id == batch.id, Material.is_active.is_(True))
    return _page(_search(query, search), page, page_size)
