from __future__ import annotations

import logging

from sqlalchemy import func, select

from .auth_models import User, UserRole
from .auth_security import hash_password, verify_password
from .db import db_session
from .errors import ValidationError

logger = logging.getLogger(__name__)


def count_users() -> int:
    with db_session() as s:
        return s.scalar(select(func.count(User.id))) or 0


def create_user(
    username: str,
    password: str,
    role: UserRole = UserRole.RECEPTIONIST,
    full_name: str | None = None,
) -> str:
    username = username.strip().lower()
    if not username or not password:
        raise ValidationError("Username and password are required.")

    with db_session() as s:
        exists = s.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if exists:
            raise ValidationError("Username already registered.")

        u = User(
            username=username,
            password_hash=hash_password(password),
            role=role,
            full_name=full_name,
            is_active=True,
        )
        s.add(u)
        s.flush()
        logger.info("user created: %s (%s)", username, role.value)
        return u.id


def authenticate(username: str, password: str) -> User | None:
    username = username.strip().lower()
    with db_session() as s:
        u = s.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if not u or not u.is_active:
            return None
        if not verify_password(password, u.password_hash):
            logger.warning("failed login for %s", username)
            return None
        return u


def get_user_by_id(user_id: str) -> User | None:
    with db_session() as s:
        return s.get(User, user_id)
