"""
Invitation store — pending shares addressed to an email.

An invitation is pending while ``accepted_at`` is NULL and ``expires_at``
is in the future. ``claim()`` is the single-use gate: a conditional UPDATE
that only one transaction can win.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from docspace.db.base import utcnow
from docspace.db.models import SharingInvitation
from docspace.permissions.levels import PermissionLevel
from docspace.users import normalize_email

logger = logging.getLogger("docspace.sharing.store")


class InvitationStore:

    def __init__(self, session: Session):
        self._session = session

    def create(
        self,
        document_id: uuid.UUID,
        email: str,
        level: PermissionLevel,
        invited_by: uuid.UUID,
        token: str,
        expires_at: datetime,
        invited_user_id: Optional[uuid.UUID] = None,
    ) -> SharingInvitation:
        invitation = SharingInvitation(
            document_id=document_id,
            invited_email=normalize_email(email),
            invited_user_id=invited_user_id,
            level=level,
            invited_by=invited_by,
            token=token,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        self._session.add(invitation)
        self._session.flush()
        return invitation

    def refresh(
        self,
        invitation: SharingInvitation,
        level: PermissionLevel,
        invited_by: uuid.UUID,
        token: str,
        expires_at: datetime,
    ) -> SharingInvitation:
        """Re-issue a pending invitation with a new level, token and expiry."""
        invitation.level = level
        invitation.invited_by = invited_by
        invitation.token = token
        invitation.expires_at = expires_at
        self._session.flush()
        return invitation

    def get_by_token(self, token: str) -> Optional[SharingInvitation]:
        stmt = select(SharingInvitation).where(SharingInvitation.token == token)
        return self._session.execute(stmt).scalar_one_or_none()

    def find_pending(
        self, document_id: uuid.UUID, email: str, now: Optional[datetime] = None
    ) -> Optional[SharingInvitation]:
        stmt = select(SharingInvitation).where(
            SharingInvitation.document_id == document_id,
            SharingInvitation.invited_email == normalize_email(email),
            SharingInvitation.accepted_at.is_(None),
            SharingInvitation.expires_at > (now or utcnow()),
        )
        return self._session.execute(stmt).scalars().first()

    def list_pending_for_document(
        self, document_id: uuid.UUID, now: Optional[datetime] = None
    ) -> List[SharingInvitation]:
        stmt = (
            select(SharingInvitation)
            .where(
                SharingInvitation.document_id == document_id,
                SharingInvitation.accepted_at.is_(None),
                SharingInvitation.expires_at > (now or utcnow()),
            )
            .order_by(SharingInvitation.created_at)
        )
        return list(self._session.execute(stmt).scalars())

    def list_pending_for_email(self, email: str, now: Optional[datetime] = None) -> List[SharingInvitation]:
        stmt = (
            select(SharingInvitation)
            .where(
                SharingInvitation.invited_email == normalize_email(email),
                SharingInvitation.accepted_at.is_(None),
                SharingInvitation.expires_at > (now or utcnow()),
            )
            .order_by(SharingInvitation.created_at)
        )
        return list(self._session.execute(stmt).scalars())

    def claim(self, invitation_id: uuid.UUID, now: Optional[datetime] = None) -> bool:
        """
        Mark an invitation accepted if, and only if, it is still pending.

        Returns False when another transaction claimed it first or it expired.
        """
        now = now or utcnow()
        result = self._session.execute(
            update(SharingInvitation)
            .where(
                SharingInvitation.id == invitation_id,
                SharingInvitation.accepted_at.is_(None),
                SharingInvitation.expires_at > now,
            )
            .values(accepted_at=now)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        invitation = self._session.get(SharingInvitation, invitation_id)
        if invitation is not None:
            self._session.refresh(invitation)
        return claimed

    def attach_user(self, email: str, user_id: uuid.UUID) -> int:
        """Record the resolved account on every pending invitation for an email."""
        result = self._session.execute(
            update(SharingInvitation)
            .where(
                SharingInvitation.invited_email == normalize_email(email),
                SharingInvitation.accepted_at.is_(None),
                SharingInvitation.invited_user_id.is_(None),
            )
            .values(invited_user_id=user_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def delete_for_document(self, document_id: uuid.UUID) -> int:
        result = self._session.execute(
            delete(SharingInvitation).where(SharingInvitation.document_id == document_id)
        )
        return result.rowcount

    def delete_for_user(self, user_id: uuid.UUID) -> int:
        """Remove invitations issued by, or resolved to, a user."""
        result = self._session.execute(
            delete(SharingInvitation).where(
                (SharingInvitation.invited_by == user_id)
                | (SharingInvitation.invited_user_id == user_id)
            )
        )
        return result.rowcount

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired, never-accepted invitations. Idempotent."""
        result = self._session.execute(
            delete(SharingInvitation)
            .where(
                SharingInvitation.accepted_at.is_(None),
                SharingInvitation.expires_at <= (now or utcnow()),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Deleted {result.rowcount} expired invitations")
        return result.rowcount
