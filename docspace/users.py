"""
User lookup — the account system's read surface consumed by the core.

Registration, authentication and password handling live elsewhere;
the core only needs to resolve users by id and by email.
"""

from __future__ import annotations

import uuid
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from docspace.db.models import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserDirectory(Protocol):
    def get_user(self, user_id: uuid.UUID) -> Optional[User]: ...

    def find_by_email(self, email: str) -> Optional[User]: ...


class SqlUserDirectory:
    """Default UserDirectory reading the ``users`` table in the caller's session."""

    def __init__(self, session: Session):
        self._session = session

    def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return self._session.get(User, user_id)

    def find_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == normalize_email(email))
        return self._session.execute(stmt).scalar_one_or_none()

    def create_user(self, email: str, display_name: Optional[str] = None) -> User:
        """Insert a user row. Used by seeding and tests; accounts are owned elsewhere."""
        user = User(email=normalize_email(email), display_name=display_name)
        self._session.add(user)
        self._session.flush()
        return user
