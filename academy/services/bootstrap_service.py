import logging

from sqlalchemy.orm import Session

from academy.config import settings
from academy.core.errors import DomainValidationError
from academy.models import Role, User
from academy.services.auth_service import create_user, normalize_email


logger = logging.getLogger(__name__)


def seed_admin_if_needed(db: Session) -> dict:
    if db.query(User.id).filter(User.role == Role.ADMIN.value).first():
        return {'seeded': False, 'reason': 'admin_exists'}

    email = normalize_email(settings.bootstrap_admin_email)
    if not email or not settings.bootstrap_admin_password:
        logger.warning('admin_seed_skipped missing_bootstrap_credentials')
        return {'seeded': False, 'reason': 'no_bootstrap_credentials'}

    try:
        user = create_user(
            db,
            {
                'name': settings.bootstrap_admin_name,
                'email': email,
                'password': settings.bootstrap_admin_password,
                'role': Role.ADMIN.value,
            },
        )
    except DomainValidationError as exc:
        logger.warning('admin_seed_skipped reason=%s', exc)
        return {'seeded': False, 'reason': str(exc)}
    logger.warning('Bootstrap admin created - change the password after first login (user_id=%s)', user.id)
    return {'seeded': True, 'user_id': user.id}


def run_bootstrap(db: Session) -> dict:
    return {'admin': seed_admin_if_needed(db)}
