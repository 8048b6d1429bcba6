"""
Sharing result views — Pydantic models returned across the public surface.

The request layer serializes these; the core never returns ORM rows.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from docspace.permissions.levels import PermissionLevel


class GrantView(BaseModel):
    """An explicit grant on one document."""

    id: uuid.UUID
    document_id: uuid.UUID
    user_id: uuid.UUID
    user_email: Optional[str] = None
    level: PermissionLevel
    granted_by: uuid.UUID
    granted_by_email: Optional[str] = None
    granted_at: datetime
    updated_at: datetime


class InvitationView(BaseModel):
    """A pending invitation. The token is only present for the sharer's response."""

    id: uuid.UUID
    document_id: uuid.UUID
    invited_email: str
    invited_user_id: Optional[uuid.UUID] = None
    level: PermissionLevel
    invited_by: uuid.UUID
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    token: Optional[str] = Field(default=None, repr=False)


class ShareResult(BaseModel):
    """Outcome of ``share``: either a grant (registered email) or an invitation."""

    document_id: uuid.UUID
    grantee_email: str
    level: PermissionLevel
    grant: Optional[GrantView] = None
    invitation: Optional[InvitationView] = None
    created: bool = True

    @property
    def invited(self) -> bool:
        return self.invitation is not None


class Collaborator(BaseModel):
    """One entry of ``list_collaborators``: the owner or a direct grant holder."""

    user_id: uuid.UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    level: PermissionLevel
    is_owner: bool = False
    granted_by: Optional[uuid.UUID] = None
    granted_by_email: Optional[str] = None
    granted_at: Optional[datetime] = None

