from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import AuthenticationError, DomainValidationError
from academy.core.time_provider import TimeProvider, default_time_provider
from academy.models import Role, User


_REVOKED_TOKENS: set[str] = set()
_TOKENS_LOCK = threading.RLock()
logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('name', 'phone', 'street', 'city', 'state', 'zip_code', 'country')


def normalize_email(email: str) -> str:
    return (email or '').strip().lower()


def _mask_email(email: str) -> str:
    local, _, domain = normalize_email(email).partition('@')
    if not domain:
        return '***'
    return f'{local[:1]}***@{domain}'


def hash_password(password: str) -> str:
    if len(password or '') < settings.auth_password_min_length:
        raise DomainValidationError(
            f'Password must be at least {settings.auth_password_min_length} characters',
            fields=[{'field': 'password', 'message': 'too short'}],
        )
    salt = secrets.token_hex(16)
    iterations = 120000
    derived = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('utf-8'), iterations)
    return f'pbkdf2_sha256${iterations}${salt}${derived.hex()}'


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iter_raw, salt, digest_hex = password_hash.split('$', 3)
    except ValueError:
        return False
    if algo != 'pbkdf2_sha256':
        return False
    derived = hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), int(iter_raw)).hex()
    return hmac.compare_digest(derived, digest_hex)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


def _encode_jwt(payload: dict) -> str:
    header = {'alg': 'HS256', 'typ': 'JWT'}
    header_part = _b64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))
    payload_part = _b64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    return f'{header_part}.{payload_part}.{_b64url_encode(signature)}'


def _decode_jwt(token: str) -> dict | None:
    try:
        header_part, payload_part, signature_part = token.split('.')
    except ValueError:
        return None

    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    expected_signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    try:
        provided_signature = _b64url_decode(signature_part)
    except ValueError:
        return None
    if not hmac.compare_digest(provided_signature, expected_signature):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_part).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None
    return payload


def issue_session_token(user: User, *, time_provider: TimeProvider = default_time_provider) -> dict:
    now = time_provider.now()
    expires_at = now + timedelta(hours=settings.auth_session_expiry_hours)
    token = _encode_jwt(
        {
            'sub': int(user.id),
            'role': user.role,
            'iat': int(now.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
    )
    return {
        'token': token,
        'user_id': int(user.id),
        'role': user.role,
        'expires_at': expires_at.isoformat(),
    }


def validate_session_token(token: str | None, *, time_provider: TimeProvider = default_time_provider) -> dict | None:
    if not token:
        return None
    with _TOKENS_LOCK:
        if token in _REVOKED_TOKENS:
            return None

    payload = _decode_jwt(token)
    if not payload:
        return None

    user_id = payload.get('sub')
    role = payload.get('role')
    if user_id is None or not role:
        return None
    expires_at = int(payload.get('exp') or 0)
    if expires_at and expires_at < int(time_provider.now().timestamp()):
        return None
    return {'user_id': int(user_id), 'role': str(role)}


def clear_session_token(token: str | None) -> None:
    if not token:
        return
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.add(token)


def find_user_by_email(db: Session, email: str) -> User | None:
    clean_email = normalize_email(email)
    if not clean_email:
        return None
    return db.query(User).filter(func.lower(User.email) == clean_email).first()


def create_user(db: Session, payload: dict) -> User:
    clean_email = normalize_email(payload.get('email', ''))
    if find_user_by_email(db, clean_email):
        raise DomainValidationError(
            'Email is already registered',
            fields=[{'field': 'email', 'message': 'already registered'}],
        )
    role = payload.get('role') or Role.STUDENT.value
    user = User(
        name=(payload.get('name') or '').strip(),
        email=clean_email,
        password_hash=hash_password(payload.get('password') or ''),
        role=Role(role).value,
        is_active=bool(payload.get('is_active', True)),
        **{key: payload.get(key) or '' for key in PROFILE_FIELDS if key != 'name'},
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DomainValidationError('Email is already registered') from exc
    db.refresh(user)
    logger.info('user_created user_id=%s role=%s email=%s', user.id, user.role, _mask_email(user.email))
    return user


def register_student(db: Session, payload: dict, *, time_provider: TimeProvider = default_time_provider) -> dict:
    user = create_user(db, {**payload, 'role': Role.STUDENT.value, 'is_active': True})
    session = issue_session_token(user, time_provider=time_provider)
    return {**session, 'user': serialize_user(user)}


def login_password(
    db: Session,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    user = find_user_by_email(db, email)
    if not user or not user.password_hash or not verify_password(password, user.password_hash):
        logger.warning('auth_login_failed email=%s', _mask_email(email))
        raise AuthenticationError('Invalid credentials')
    if not user.is_active:
        logger.warning('auth_login_inactive user_id=%s', user.id)
        raise AuthenticationError('Account is deactivated. Please contact admin.')

    user.last_login_at = time_provider.naive_now()
    db.commit()
    db.refresh(user)
    logger.info('auth_login_success user_id=%s role=%s', user.id, user.role)
    return {**issue_session_token(user, time_provider=time_provider), 'user': serialize_user(user)}


def update_profile(db: Session, user: User, changes: dict) -> User:
    for key in PROFILE_FIELDS:
        if key in changes and changes[key] is not None:
            setattr(user, key, str(changes[key]).strip())
    db.commit()
    db.refresh(user)
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> User:
    if not verify_password(current_password, user.password_hash or ''):
        raise AuthenticationError('Current password is incorrect')
    user.password_hash = hash_password(new_password)
    db.commit()
    db.refresh(user)
    logger.info('auth_password_changed user_id=%s', user.id)
    return user


def serialize_user(user: User) -> dict:
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'phone': user.phone,
        'address': {
            'street': user.street,
            'city': user.city,
            'state': user.state,
            'zip_code': user.zip_code,
            'country': user.country,
        },
        'is_active': user.is_active,
        'last_login_at': user.last_login_at.isoformat() if user.last_login_at else None,
        'created_at': user.created_at.isoformat() if user.created_at else None,
    }
