"""
DocSpace Models — SQLAlchemy tables for the workspace core.

Tables:
1. users               — account directory (owned by the external account system)
2. documents           — single-parent document forest, owner immutable
3. permission_grants   — explicit grants, unique per (document, user)
4. sharing_invitations — pending shares for unregistered emails, single-use token

Grants carry no "inherited" flag: inheritance is always computed by
the PermissionResolver from the live parent chain.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)

from docspace.db.base import Base, TimestampMixin, as_utc, utcnow
from docspace.permissions.levels import PermissionLevel

_level_type = Enum(
    PermissionLevel,
    name="permission_level",
    native_enum=False,
    length=16,
    values_callable=lambda e: [m.value for m in e],
)


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


# ---------------------------------------------------------------------------
# 2. Documents
# ---------------------------------------------------------------------------

class Document(Base, TimestampMixin):
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    parent_id = Column(Uuid, ForeignKey("documents.id"), nullable=True, index=True)
    title = Column(String(500), nullable=False, default="Untitled")
    content_ref = Column(String(255), nullable=True)
    version_id = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, owner={self.owner_id}, parent={self.parent_id})>"


# ---------------------------------------------------------------------------
# 3. Permission grants
# ---------------------------------------------------------------------------

class PermissionGrant(Base):
    __tablename__ = "permission_grants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid, ForeignKey("documents.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    level = Column(_level_type, nullable=False)
    granted_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    granted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_grant_document_user"),
        Index("idx_grant_document_id", "document_id"),
        Index("idx_grant_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<PermissionGrant(document={self.document_id}, user={self.user_id}, level={self.level})>"


# ---------------------------------------------------------------------------
# 4. Sharing invitations
# ---------------------------------------------------------------------------

class SharingInvitation(Base):
    __tablename__ = "sharing_invitations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid, ForeignKey("documents.id"), nullable=False, index=True)
    invited_email = Column(String(255), nullable=False, index=True)
    invited_user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    level = Column(_level_type, nullable=False)
    invited_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    token = Column(String(128), unique=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def is_accepted(self) -> bool:
        return self.accepted_at is not None

    def is_expired(self, now=None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())

    def is_pending(self, now=None) -> bool:
        return not self.is_accepted() and not self.is_expired(now)

    def __repr__(self) -> str:
        return f"<SharingInvitation(document={self.document_id}, email='{self.invited_email}')>"
