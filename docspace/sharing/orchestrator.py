"""
Sharing Orchestrator — the public sharing workflow.

Every call checks authorization with the PermissionResolver before it
mutates anything, inside the caller's transaction:

    share              canShare → grant (registered email) or invitation
    revoke             canShare → delete grant (missing grant is a no-op)
    accept_invitation  single-use token → grant with the stored level/grantor
    list_collaborators VIEWER → owner + direct grants (no inherited entries)
    check_access       effective level or None

Failures: NotFoundError for unknown ids, ForbiddenError when an existing
document is out of the actor's reach, BadRequestError for invalid targets.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import timedelta
from typing import List, Optional

from docspace.db.base import as_utc, utcnow
from docspace.db.models import PermissionGrant, SharingInvitation, User
from docspace.engine.config import SharingConfig
from docspace.engine.errors import BadRequestError, NotFoundError
from docspace.engine.logging import log, log_sharing_event
from docspace.hierarchy.store import DocumentStore
from docspace.permissions.levels import MAX_LEVEL, PermissionLevel
from docspace.permissions.resolver import PermissionResolver
from docspace.permissions.store import GrantStore
from docspace.sharing.schemas import Collaborator, GrantView, InvitationView, ShareResult
from docspace.sharing.store import InvitationStore
from docspace.users import UserDirectory, normalize_email

logger = logging.getLogger("docspace.sharing.orchestrator")


class SharingOrchestrator:

    def __init__(
        self,
        documents: DocumentStore,
        grants: GrantStore,
        invitations: InvitationStore,
        resolver: PermissionResolver,
        users: UserDirectory,
        config: Optional[SharingConfig] = None,
    ):
        self._documents = documents
        self._grants = grants
        self._invitations = invitations
        self._resolver = resolver
        self._users = users
        self._config = config or SharingConfig()

    # -------------------------------------------------------------------
    # Share / revoke
    # -------------------------------------------------------------------

    def share(
        self,
        document_id: uuid.UUID,
        grantee_email: str,
        level,
        acting_user: uuid.UUID,
    ) -> ShareResult:
        """
        Share a document with an email address.

        A registered email gets a grant immediately (created, or updated in
        place). An unknown email gets an invitation; re-sharing with the same
        email while an invitation is pending re-issues that invitation.
        """
        level = PermissionLevel.parse(level)
        email = normalize_email(grantee_email or "")
        if not email or "@" not in email:
            raise BadRequestError("A valid email address is required", document_id=document_id)

        doc = self._documents.get(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        self._require_share(document_id, acting_user, "share")

        grantee = self._users.find_by_email(email)
        if grantee is not None:
            if grantee.id == acting_user:
                raise BadRequestError(
                    "Cannot share a document with yourself",
                    document_id=document_id,
                    user_id=acting_user,
                )
            if grantee.id == doc.owner_id:
                raise BadRequestError(
                    "The document owner already has full access",
                    document_id=document_id,
                    user_id=acting_user,
                )
            grant, created = self._grants.upsert(document_id, grantee.id, level, acting_user)
            log(log_sharing_event(
                "permission_granted" if created else "permission_updated",
                document_id, acting_user, grantee_id=grantee.id, level=level.value,
            ))
            logger.info(
                f"{'Granted' if created else 'Updated'} {level.value} on {document_id} "
                f"to {grantee.id} by {acting_user}"
            )
            return ShareResult(
                document_id=document_id,
                grantee_email=email,
                level=level,
                grant=self._grant_view(grant, grantee),
                created=created,
            )

        invitation, created = self._invite(document_id, email, level, acting_user)
        return ShareResult(
            document_id=document_id,
            grantee_email=email,
            level=level,
            invitation=self._invitation_view(invitation, include_token=True),
            created=created,
        )

    def _invite(
        self,
        document_id: uuid.UUID,
        email: str,
        level: PermissionLevel,
        acting_user: uuid.UUID,
    ) -> tuple[SharingInvitation, bool]:
        token = self._new_token()
        expires_at = utcnow() + timedelta(hours=self._config.invitation_ttl_hours)

        pending = self._invitations.find_pending(document_id, email)
        if pending is not None:
            invitation = self._invitations.refresh(pending, level, acting_user, token, expires_at)
            created = False
        else:
            invitation = self._invitations.create(
                document_id, email, level, acting_user, token, expires_at,
            )
            created = True

        log(log_sharing_event(
            "invitation_created" if created else "invitation_reissued",
            document_id, acting_user, grantee_email=email, level=level.value,
        ))
        logger.info(f"Invited {email} to {document_id} at {level.value} (expires {expires_at.isoformat()})")
        return invitation, created

    def _new_token(self) -> str:
        return secrets.token_urlsafe(self._config.token_bytes)

    def revoke(
        self,
        document_id: uuid.UUID,
        grantee_user_id: uuid.UUID,
        acting_user: uuid.UUID,
    ) -> bool:
        """
        Remove a user's explicit grant on a document.

        Idempotent: returns False (not an error) when no grant existed.
        Inherited access from ancestors is unaffected.
        """
        doc = self._documents.get(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        self._require_share(document_id, acting_user, "revoke")
        if grantee_user_id == doc.owner_id:
            raise BadRequestError(
                "Cannot revoke the owner's access",
                document_id=document_id,
                user_id=acting_user,
            )

        removed = self._grants.delete(document_id, grantee_user_id)
        if removed:
            log(log_sharing_event("permission_revoked", document_id, acting_user, grantee_id=grantee_user_id))
            logger.info(f"Revoked {grantee_user_id} on {document_id} by {acting_user}")
        return removed

    # -------------------------------------------------------------------
    # Invitations
    # -------------------------------------------------------------------

    def accept_invitation(self, token: str, accepting_user: uuid.UUID) -> GrantView:
        """
        Consume an invitation token and grant its level to the accepting user.

        The claim is a conditional update, so of two concurrent accepts
        exactly one creates the grant; the other gets BadRequestError.
        """
        invitation = self._invitations.get_by_token(token) if token else None
        if invitation is None:
            raise BadRequestError("Invalid invitation token", user_id=accepting_user)
        if invitation.is_accepted():
            raise BadRequestError("Invitation has already been accepted", user_id=accepting_user)
        now = utcnow()
        if invitation.is_expired(now):
            raise BadRequestError("Invitation has expired", user_id=accepting_user)
        if invitation.invited_user_id is not None and invitation.invited_user_id != accepting_user:
            raise BadRequestError("Invitation was issued to a different account", user_id=accepting_user)

        user = self._users.get_user(accepting_user)
        if user is None:
            raise NotFoundError("User", accepting_user)
        if self._documents.node(invitation.document_id) is None:
            raise NotFoundError("Document", invitation.document_id)
        if self._resolver.is_owner(invitation.document_id, accepting_user):
            raise BadRequestError(
                "The document owner already has full access",
                document_id=invitation.document_id,
                user_id=accepting_user,
            )

        if not self._invitations.claim(invitation.id, now):
            raise BadRequestError("Invitation has already been accepted", user_id=accepting_user)

        grant, _ = self._grants.upsert(
            invitation.document_id, accepting_user, invitation.level, invitation.invited_by,
        )
        log(log_sharing_event(
            "invitation_accepted", invitation.document_id, accepting_user,
            grantee_id=accepting_user, level=invitation.level.value,
        ))
        logger.info(f"{accepting_user} accepted invitation to {invitation.document_id}")
        return self._grant_view(grant, user)

    def list_pending_invitations(
        self, document_id: uuid.UUID, acting_user: uuid.UUID
    ) -> List[InvitationView]:
        if self._documents.node(document_id) is None:
            raise NotFoundError("Document", document_id)
        self._require_share(document_id, acting_user, "list_invitations")
        return [
            self._invitation_view(inv)
            for inv in self._invitations.list_pending_for_document(document_id)
        ]

    def resolve_invitations_for(self, user_id: uuid.UUID) -> int:
        """Attach a newly registered account to invitations sent to its email."""
        user = self._users.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return self._invitations.attach_user(user.email, user.id)

    def cleanup_expired_invitations(self) -> int:
        return self._invitations.delete_expired()

    # -------------------------------------------------------------------
    # Read views
    # -------------------------------------------------------------------

    def list_collaborators(
        self, document_id: uuid.UUID, requesting_user: uuid.UUID
    ) -> List[Collaborator]:
        """
        The owner (``is_owner=True``) followed by every direct grant on the
        document. Grants on ancestors are not enumerated here.
        """
        doc = self._documents.get(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        self._resolver.require(document_id, requesting_user, PermissionLevel.VIEWER, "list_collaborators")

        owner = self._users.get_user(doc.owner_id)
        collaborators = [
            Collaborator(
                user_id=doc.owner_id,
                email=owner.email if owner else None,
                display_name=owner.display_name if owner else None,
                level=MAX_LEVEL,
                is_owner=True,
            )
        ]
        for grant in self._grants.list_for_document(document_id):
            user = self._users.get_user(grant.user_id)
            grantor = self._users.get_user(grant.granted_by)
            collaborators.append(Collaborator(
                user_id=grant.user_id,
                email=user.email if user else None,
                display_name=user.display_name if user else None,
                level=grant.level,
                granted_by=grant.granted_by,
                granted_by_email=grantor.email if grantor else None,
                granted_at=as_utc(grant.granted_at),
            ))
        return collaborators

    def check_access(
        self, document_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[PermissionLevel]:
        return self._resolver.effective_permission(document_id, user_id)

    def shared_with(self, user_id: uuid.UUID) -> List[GrantView]:
        """Explicit grants held by a user (documents shared with them)."""
        user = self._users.get_user(user_id)
        return [self._grant_view(g, user) for g in self._grants.list_for_user(user_id)]

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _require_share(self, document_id: uuid.UUID, acting_user: uuid.UUID, action: str) -> None:
        if self._resolver.is_owner(document_id, acting_user):
            return
        self._resolver.require(document_id, acting_user, PermissionLevel.EDITOR, action)

    def _grant_view(self, grant: PermissionGrant, user: Optional[User]) -> GrantView:
        grantor = self._users.get_user(grant.granted_by)
        return GrantView(
            id=grant.id,
            document_id=grant.document_id,
            user_id=grant.user_id,
            user_email=user.email if user else None,
            level=grant.level,
            granted_by=grant.granted_by,
            granted_by_email=grantor.email if grantor else None,
            granted_at=as_utc(grant.granted_at),
            updated_at=as_utc(grant.updated_at),
        )

    @staticmethod
    def _invitation_view(invitation: SharingInvitation, include_token: bool = False) -> InvitationView:
        return InvitationView(
            id=invitation.id,
            document_id=invitation.document_id,
            invited_email=invitation.invited_email,
            invited_user_id=invitation.invited_user_id,
            level=invitation.level,
            invited_by=invitation.invited_by,
            expires_at=as_utc(invitation.expires_at),
            accepted_at=as_utc(invitation.accepted_at),
            token=invitation.token if include_token else None,
        )
