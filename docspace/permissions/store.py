"""
Permission Store — persisted explicit grants (document, user) → level.

At most one grant exists per (document, user); granting again updates the
existing row. All methods run in the caller's session and never commit.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from docspace.db.base import utcnow
from docspace.db.models import PermissionGrant
from docspace.permissions.levels import PermissionLevel

logger = logging.getLogger("docspace.permissions.store")


class GrantStore:

    def __init__(self, session: Session):
        self._session = session

    def get(self, document_id: uuid.UUID, user_id: uuid.UUID) -> Optional[PermissionGrant]:
        stmt = select(PermissionGrant).where(
            PermissionGrant.document_id == document_id,
            PermissionGrant.user_id == user_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def upsert(
        self,
        document_id: uuid.UUID,
        user_id: uuid.UUID,
        level: PermissionLevel,
        granted_by: uuid.UUID,
    ) -> tuple[PermissionGrant, bool]:
        """
        Create the grant, or update level and grantor of the existing one.

        Returns:
            (grant, created) — created is False when an existing row was updated.
        """
        grant = self.get(document_id, user_id)
        if grant is not None:
            grant.level = level
            grant.granted_by = granted_by
            grant.updated_at = utcnow()
            self._session.flush()
            logger.debug(f"Updated grant {user_id} on {document_id} to {level.value}")
            return grant, False

        now = utcnow()
        grant = PermissionGrant(
            document_id=document_id,
            user_id=user_id,
            level=level,
            granted_by=granted_by,
            granted_at=now,
            updated_at=now,
        )
        self._session.add(grant)
        self._session.flush()
        logger.debug(f"Created grant {user_id} on {document_id} at {level.value}")
        return grant, True

    def delete(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Delete one grant. Returns False when there was nothing to delete."""
        result = self._session.execute(
            delete(PermissionGrant).where(
                PermissionGrant.document_id == document_id,
                PermissionGrant.user_id == user_id,
            )
        )
        return result.rowcount > 0

    def delete_for_document(self, document_id: uuid.UUID) -> int:
        result = self._session.execute(
            delete(PermissionGrant).where(PermissionGrant.document_id == document_id)
        )
        return result.rowcount

    def delete_for_user(self, user_id: uuid.UUID) -> int:
        """Remove every grant held by or issued by a user."""
        result = self._session.execute(
            delete(PermissionGrant).where(
                (PermissionGrant.user_id == user_id) | (PermissionGrant.granted_by == user_id)
            )
        )
        return result.rowcount

    def list_for_document(self, document_id: uuid.UUID) -> List[PermissionGrant]:
        stmt = (
            select(PermissionGrant)
            .where(PermissionGrant.document_id == document_id)
            .order_by(PermissionGrant.granted_at, PermissionGrant.id)
        )
        return list(self._session.execute(stmt).scalars())

    def list_for_user(self, user_id: uuid.UUID) -> List[PermissionGrant]:
        stmt = (
            select(PermissionGrant)
            .where(PermissionGrant.user_id == user_id)
            .order_by(PermissionGrant.granted_at, PermissionGrant.id)
        )
        return list(self._session.execute(stmt).scalars())

    def levels_for_user(
        self,
        user_id: uuid.UUID,
        document_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> Dict[uuid.UUID, PermissionLevel]:
        """Map document_id → level for the user's grants, optionally restricted."""
        stmt = select(PermissionGrant.document_id, PermissionGrant.level).where(
            PermissionGrant.user_id == user_id
        )
        if document_ids is not None:
            ids = list(document_ids)
            if not ids:
                return {}
            stmt = stmt.where(PermissionGrant.document_id.in_(ids))
        return {doc_id: level for doc_id, level in self._session.execute(stmt)}
