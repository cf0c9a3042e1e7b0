# cargodesk/services/auth.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from cargodesk.core.config import settings
from cargodesk.core.security import create_access_token, verify_password
from cargodesk.db.models import User

log = logging.getLogger(__name__)


async def authenticate(store, *, email: str, password: str) -> Optional[User]:
    """Return the user on a password match; ``None`` for unknown, inactive or wrong password."""
    user = await store.get_user_by_email(email)
    if user is None or not user.password_hash:
        return None
    if not verify_password(password, user.password_hash):
        return None
    if not user.is_active:
        log.info("login_inactive_user", extra={"user_id": user.id})
        return None

    user.last_login_at = datetime.now(timezone.utc)
    await store.commit()
    return user


def serialize_user(user: User) -> dict:
    dept = user.department
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role_name,
        "role_display_name": user.role.display_name if user.role is not None else None,
        "department_id": user.department_id,
        "department_code": dept.code if dept is not None else None,
        "is_active": user.is_active,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


def make_token_for_user(user: User, *, remember_me: bool = False) -> str:
    """
    Issue an access token.
    With remember_me=True the longer jwt_remember_expires_min TTL is used.
    """
    minutes = settings.jwt_remember_expires_min if remember_me else settings.jwt_expires_min
    return create_access_token(
        user.id,
        user.role_name or "",
        secret=settings.jwt_secret,
        expires_minutes=minutes,
        algorithm=settings.jwt_alg,
    )
