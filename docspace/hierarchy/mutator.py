"""
Hierarchy Mutator — validated structural changes to the document forest.

Operations:
- create: new document, optionally under a parent the actor can edit
- move:   re-parent a document; rejects self-parenting and cycles
- delete: promote children to top level, drop grants and invitations, delete
- rename: change the title (EDITOR)
- purge_owner: full cascade for an account being removed

All operations run inside the caller's transaction. ``move`` writes the new
parent, then re-validates the cycle condition on a fresh, locked read of the
new parent's ancestor chain, so a concurrent move that changed the chain is
seen before commit.
Grants stay attached to their documents when a subtree moves: the moved
descendants simply inherit from their new ancestors.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from docspace.db.models import Document
from docspace.engine.errors import BadRequestError, ForbiddenError, NotFoundError
from docspace.engine.logging import log, log_access_denied, log_hierarchy_event
from docspace.hierarchy.store import DocumentStore
from docspace.permissions.levels import PermissionLevel
from docspace.permissions.resolver import PermissionResolver
from docspace.permissions.store import GrantStore
from docspace.sharing.store import InvitationStore
from docspace.users import UserDirectory

logger = logging.getLogger("docspace.hierarchy.mutator")


@dataclass
class DeleteResult:
    document_id: uuid.UUID
    promoted_children: List[uuid.UUID] = field(default_factory=list)
    grants_removed: int = 0
    invitations_removed: int = 0


@dataclass
class PurgeResult:
    user_id: uuid.UUID
    documents_deleted: int = 0
    children_promoted: int = 0
    grants_removed: int = 0
    invitations_removed: int = 0


class HierarchyMutator:

    def __init__(
        self,
        documents: DocumentStore,
        grants: GrantStore,
        invitations: InvitationStore,
        resolver: PermissionResolver,
        users: Optional[UserDirectory] = None,
    ):
        self._documents = documents
        self._grants = grants
        self._invitations = invitations
        self._resolver = resolver
        self._users = users

    # -------------------------------------------------------------------
    # Create / rename
    # -------------------------------------------------------------------

    def create(
        self,
        owner_id: uuid.UUID,
        title: str,
        parent_id: Optional[uuid.UUID] = None,
        content_ref: Optional[str] = None,
    ) -> Document:
        """Create a document. Creating under a parent requires EDITOR on it."""
        title = (title or "").strip() or "Untitled"
        if self._users is not None and self._users.get_user(owner_id) is None:
            raise NotFoundError("User", owner_id)
        if parent_id is not None:
            self._resolver.require(parent_id, owner_id, PermissionLevel.EDITOR, "create_under")

        doc = self._documents.create(owner_id, title, parent_id=parent_id, content_ref=content_ref)
        log(log_hierarchy_event("created", doc.id, owner_id, new_parent_id=parent_id))
        logger.info(f"Created document {doc.id} for {owner_id} under {parent_id}")
        return doc

    def rename(self, document_id: uuid.UUID, title: str, acting_user: uuid.UUID) -> Document:
        title = (title or "").strip()
        if not title:
            raise BadRequestError("Title must not be empty", document_id=document_id)
        self._resolver.require(document_id, acting_user, PermissionLevel.EDITOR, "edit")
        doc = self._documents.get(document_id)
        self._documents.set_title(doc, title)
        log(log_hierarchy_event("renamed", document_id, acting_user))
        return doc

    # -------------------------------------------------------------------
    # Move
    # -------------------------------------------------------------------

    def move(
        self,
        document_id: uuid.UUID,
        new_parent_id: Optional[uuid.UUID],
        acting_user: uuid.UUID,
    ) -> Document:
        """
        Re-parent ``document_id`` under ``new_parent_id`` (None → top level).

        Raises:
            BadRequestError: new parent is the document itself or one of its descendants.
            NotFoundError: either id does not resolve.
            ForbiddenError: actor lacks EDITOR on the document or on the new parent.
            ConflictError: (from the session scope) a concurrent writer changed the document.
        """
        if new_parent_id is not None and new_parent_id == document_id:
            raise BadRequestError(
                "A document cannot be its own parent",
                document_id=document_id,
                user_id=acting_user,
            )

        doc = self._documents.get_for_update(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        if new_parent_id is not None and self._documents.node(new_parent_id) is None:
            raise NotFoundError("Document", new_parent_id, role="new_parent")

        self._resolver.require(document_id, acting_user, PermissionLevel.EDITOR, "move")
        if new_parent_id is not None:
            self._resolver.require(new_parent_id, acting_user, PermissionLevel.EDITOR, "move_into")

        old_parent_id = doc.parent_id
        if old_parent_id == new_parent_id:
            return doc

        if new_parent_id is not None and self._documents.is_ancestor(document_id, new_parent_id):
            self._reject_cycle(document_id, new_parent_id, acting_user)

        # Write first, then re-walk the destination chain in the same
        # transaction. Once the write holds its lock (row locks on Postgres,
        # the database write lock on SQLite) a concurrent move of the chain
        # has either committed, and is seen here, or fails on its own re-walk.
        self._documents.set_parent(doc, new_parent_id)
        if new_parent_id is not None:
            self._documents.forget()
            if self._documents.is_ancestor(document_id, new_parent_id, lock=True):
                self._reject_cycle(document_id, new_parent_id, acting_user)

        log(log_hierarchy_event(
            "moved", document_id, acting_user,
            old_parent_id=old_parent_id, new_parent_id=new_parent_id,
        ))
        logger.info(f"Moved document {document_id}: {old_parent_id} → {new_parent_id}")
        return doc

    def _reject_cycle(self, document_id: uuid.UUID, new_parent_id: uuid.UUID, acting_user: uuid.UUID) -> None:
        raise BadRequestError(
            "Moving the document there would create a cycle",
            document_id=document_id,
            user_id=acting_user,
            new_parent_id=new_parent_id,
        )

    # -------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------

    def delete(self, document_id: uuid.UUID, acting_user: uuid.UUID) -> DeleteResult:
        """
        Delete a document. Only its owner may delete it.

        Children are promoted to top level, never deleted; explicit grants
        and invitations on the document are removed.
        """
        doc = self._documents.get_for_update(document_id)
        if doc is None:
            raise NotFoundError("Document", document_id)
        if doc.owner_id != acting_user:
            actual = self._resolver.effective_permission(document_id, acting_user)
            log(log_access_denied(
                "delete", document_id, acting_user,
                required_level="OWNER", actual_level=actual.value if actual else None,
            ))
            raise ForbiddenError(
                "Only the document owner can delete documents",
                document_id=document_id,
                user_id=acting_user,
                required_level="OWNER",
                actual_level=actual.value if actual else None,
            )

        result = self._remove(doc)
        log(log_hierarchy_event(
            "deleted", document_id, acting_user,
            old_parent_id=doc.parent_id,
            promoted_children=result.promoted_children,
            grants_removed=result.grants_removed,
        ))
        logger.info(
            f"Deleted document {document_id}: promoted {len(result.promoted_children)} "
            f"children, removed {result.grants_removed} grants"
        )
        return result

    def _remove(self, doc: Document) -> DeleteResult:
        # Order matters: children first so no row ever points at a deleted parent.
        result = DeleteResult(document_id=doc.id)
        result.promoted_children = self._documents.detach_children(doc.id)
        result.grants_removed = self._grants.delete_for_document(doc.id)
        result.invitations_removed = self._invitations.delete_for_document(doc.id)
        self._documents.delete(doc)
        return result

    # -------------------------------------------------------------------
    # Account removal
    # -------------------------------------------------------------------

    def purge_owner(self, user_id: uuid.UUID) -> PurgeResult:
        """
        Remove everything an account owns: its documents (with their grants
        and invitations), the grants it holds or issued, and its invitations.
        Documents owned by other users that sat under a purged document are
        promoted to top level.
        """
        result = PurgeResult(user_id=user_id)
        owned = self._documents.list_by_owner(user_id)
        owned_ids = {d.id for d in owned}

        for doc in owned:
            removed = self._remove(doc)
            result.documents_deleted += 1
            result.grants_removed += removed.grants_removed
            result.invitations_removed += removed.invitations_removed
            result.children_promoted += sum(1 for c in removed.promoted_children if c not in owned_ids)

        result.grants_removed += self._grants.delete_for_user(user_id)
        result.invitations_removed += self._invitations.delete_for_user(user_id)
        log(log_hierarchy_event("owner_purged", None, user_id, grants_removed=result.grants_removed))
        logger.info(f"Purged account {user_id}: {result.documents_deleted} documents")
        return result
