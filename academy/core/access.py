from __future__ import annotations

from enum import Enum

from sqlalchemy import Select, false, select

from academy.core.errors import AccessDeniedError
from academy.models import Batch, BatchStudent
from academy.request_context import RequestContext


class BatchAction(str, Enum):
    VIEW = 'view'
    MANAGE = 'manage'
    UPLOAD_MATERIAL = 'upload_material'
    SUBMIT = 'submit'


def is_enrolled(batch: Batch, student_id: int) -> bool:
    return int(student_id) in {int(sid) for sid in batch.student_ids}


def is_batch_teacher(ctx: RequestContext, batch: Batch) -> bool:
    return ctx.is_teacher and int(batch.teacher_id) == int(ctx.user_id)


def can_act_on_batch(ctx: RequestContext, batch: Batch, action: BatchAction | str) -> bool:
    action = BatchAction(action)
    if action == BatchAction.VIEW:
        if ctx.is_admin or is_batch_teacher(ctx, batch):
            return True
        return ctx.is_student and is_enrolled(batch, ctx.user_id)
    if action == BatchAction.MANAGE:
        return ctx.is_admin or is_batch_teacher(ctx, batch)
    if action == BatchAction.UPLOAD_MATERIAL:
        return is_batch_teacher(ctx, batch)
    if action == BatchAction.SUBMIT:
        return ctx.is_student and is_enrolled(batch, ctx.user_id)
    return False


def ensure_can_act_on_batch(
    ctx: RequestContext,
    batch: Batch,
    action: BatchAction | str,
    message: str = 'Not authorized to access this batch',
) -> None:
    if not can_act_on_batch(ctx, batch, action):
        raise AccessDeniedError(message)


def visible_batch_ids(ctx: RequestContext) -> Select | None:
    """Select of batch ids the caller may list, or None when every batch is visible."""
    if ctx.is_admin:
        return None
    if ctx.is_teacher:
        return select(Batch.id).where(Batch.teacher_id == ctx.user_id)
    if ctx.is_student:
        return select(BatchStudent.batch_id).where(BatchStudent.student_id == ctx.user_id)
    return select(Batch.id).where(false())
