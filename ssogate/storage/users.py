"""SQLAlchemy-backed user repository."""

from __future__ import annotations

import logging

from sqlalchemy import select

from ssogate.core.errors import EntityNotFoundError
from ssogate.core.identity import NewUser, User
from ssogate.storage.database import Database
from ssogate.storage.models import AppUser

logger = logging.getLogger(__name__)


def _to_user(row: AppUser) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        is_external=row.is_external,
        is_active=row.is_active,
        is_superuser=row.is_superuser,
        is_tmp_password=row.is_tmp_password,
        created_at=row.created_at,
    )


class SQLAlchemyUserRepository:
    """User repository over the ``app_users`` table.

    Args:
        db: Database manager.
        activate_external_users: Whether users created through SSO start
            out active.
    """

    def __init__(self, db: Database, activate_external_users: bool = True) -> None:
        self.db = db
        self.activate_external_users = activate_external_users

    def get_by_username(self, username: str) -> User:
        with self.db.get_session() as session:
            row = session.scalars(select(AppUser).where(AppUser.username == username)).first()
            if row is None:
                raise EntityNotFoundError(f"User not found: {username}")
            return _to_user(row)

    def get_by_email(self, email: str) -> User:
        with self.db.get_session() as session:
            row = session.scalars(
                select(AppUser).where(AppUser.email == email).order_by(AppUser.id)
            ).first()
            if row is None:
                raise EntityNotFoundError(f"User not found: {email}")
            return _to_user(row)

    def create(self, new_user: NewUser) -> User:
        row = AppUser(
            username=new_user.username,
            email=new_user.email,
            password_hash=new_user.password_hash,
            is_tmp_password=new_user.is_tmp_password,
            is_external=new_user.is_external,
            is_superuser=new_user.is_superuser,
            is_active=self.activate_external_users if new_user.is_external else True,
        )
        with self.db.get_session() as session:
            session.add(row)
            session.commit()
            user = _to_user(row)
        logger.debug(f"Stored user {user.username} (id={user.id})")
        return user

    def set_active(self, username: str, active: bool) -> User:
        """Activate or deactivate a user."""
        with self.db.get_session() as session:
            row = session.scalars(select(AppUser).where(AppUser.username == username)).first()
            if row is None:
                raise EntityNotFoundError(f"User not found: {username}")
            row.is_active = active
            session.commit()
            return _to_user(row)

    def list_users(self) -> list[User]:
        with self.db.get_session() as session:
            return [_to_user(row) for row in session.scalars(select(AppUser).order_by(AppUser.id))]
