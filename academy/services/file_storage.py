from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path

from fastapi import UploadFile

from academy.config import settings
from academy.core.errors import DomainValidationError
from academy.core.time_provider import TimeProvider, default_time_provider


logger = logging.getLogger(__name__)

MATERIALS = 'materials'
ASSIGNMENTS = 'assignments'
SUBMISSIONS = 'submissions'
UPLOAD_KINDS = (MATERIALS, ASSIGNMENTS, SUBMISSIONS)

DOCUMENT_MIME_TYPES = {
    '.pdf': {'application/pdf'},
    '.doc': {'application/msword'},
    '.docx': {'application/vnd.openxmlformats-officedocument.wordprocessingml.document'},
    '.ppt': {'application/vnd.ms-powerpoint'},
    '.pptx': {'application/vnd.openxmlformats-officedocument.presentationml.presentation'},
    '.txt': {'text/plain'},
}
IMAGE_MIME_TYPES = {
    '.jpg': {'image/jpeg'},
    '.jpeg': {'image/jpeg'},
    '.png': {'image/png'},
}
ARCHIVE_MIME_TYPES = {
    '.zip': {'application/zip', 'application/x-zip-compressed'},
    '.rar': {'application/vnd.rar', 'application/x-rar-compressed'},
}


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class UploadPolicy:
    mime_types_by_extension: dict[str, set[str]]
    max_bytes_setting: str
    error_message: str

    @property
    def max_bytes(self) -> int:
        return int(getattr(settings, self.max_bytes_setting))


@dataclass
class StoredFile:
    stored_name: str
    filename: str
    mime_type: str
    size: int


MATERIAL_POLICY = UploadPolicy(
    mime_types_by_extension=DOCUMENT_MIME_TYPES,
    max_bytes_setting='material_max_bytes',
    error_message='Only document files are allowed (PDF, DOC, DOCX, PPT, PPTX, TXT)',
)
ASSIGNMENT_POLICY = UploadPolicy(
    mime_types_by_extension={**DOCUMENT_MIME_TYPES, **IMAGE_MIME_TYPES, **ARCHIVE_MIME_TYPES},
    max_bytes_setting='assignment_max_bytes',
    error_message='Only document, image, and archive files are allowed',
)


def upload_root() -> Path:
    return Path(settings.upload_dir).resolve()


def ensure_upload_dirs() -> Path:
    root = upload_root()
    for kind in UPLOAD_KINDS:
        (root / kind).mkdir(parents=True, exist_ok=True)
    return root


def resolve_path(kind: str, stored_name: str) -> Path:
    if kind not in UPLOAD_KINDS:
        raise StorageError(f'Unknown upload kind {kind}')
    clean_name = os.path.basename(stored_name or '')
    if not clean_name or clean_name != stored_name:
        raise StorageError('Invalid stored file name')
    return upload_root() / kind / clean_name


def validate_upload(policy: UploadPolicy, filename: str, content_type: str, size: int) -> str:
    extension = Path(filename or '').suffix.lower()
    allowed_types = policy.mime_types_by_extension.get(extension)
    normalized_type = (content_type or '').split(';', 1)[0].strip().lower()
    if not allowed_types or normalized_type not in allowed_types:
        raise DomainValidationError(policy.error_message, fields=[{'field': 'file', 'message': filename or ''}])
    if size <= 0:
        raise DomainValidationError('Please upload a non-empty file', fields=[{'field': 'file', 'message': 'empty'}])
    if size > policy.max_bytes:
        limit_mb = policy.max_bytes // (1024 * 1024)
        raise DomainValidationError(
            f'File size cannot be more than {limit_mb}MB',
            fields=[{'field': 'file', 'message': filename or ''}],
        )
    return normalized_type


async def read_validated_upload(upload: UploadFile, policy: UploadPolicy) -> tuple[bytes, str, str]:
    file_bytes = await upload.read()
    filename = upload.filename or ''
    mime_type = validate_upload(policy, filename, upload.content_type or '', len(file_bytes))
    return file_bytes, filename, mime_type


def save_file(
    kind: str,
    file_bytes: bytes,
    filename: str,
    mime_type: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> StoredFile:
    prefix = kind.rstrip('s')
    extension = Path(filename or '').suffix.lower()
    millis = int(time_provider.now().timestamp() * 1000)
    stored_name = f'{prefix}_{millis}_{secrets.token_hex(4)}{extension}'
    path = resolve_path(kind, stored_name)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(file_bytes)
    except OSError as exc:
        logger.error('file_store_failed kind=%s name=%s error=%s', kind, stored_name, exc)
        raise StorageError('Problem with file upload') from exc
    return StoredFile(
        stored_name=stored_name,
        filename=filename,
        mime_type=mime_type,
        size=len(file_bytes),
    )


def delete_file(kind: str, stored_name: str) -> bool:
    """Remove a stored file. Returns False when it was already absent."""
    path = resolve_path(kind, stored_name)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StorageError(f'Could not delete file {stored_name}') from exc
    return True


def delete_file_quietly(kind: str, stored_name: str) -> bool:
    try:
        return delete_file(kind, stored_name)
    except StorageError as exc:
        logger.warning('file_delete_failed kind=%s name=%s error=%s', kind, stored_name, exc)
        return False
