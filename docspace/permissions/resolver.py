"""
Permission Resolver — effective access for (document, user).

Resolution:
    1. The document's owner → EDITOR, unconditionally.
    2. The owner of any ancestor → EDITOR: documents others create under
       your document stay reachable to you.
    3. Otherwise walk from the document to the root, collecting the user's
       explicit grants on every visited node (the document included).
    4. The strongest collected level wins; no grant on the path → None.

There is no explicit-deny primitive: a weaker or missing grant lower in the
tree never shadows a stronger grant above it. A missing ancestor ends the
path. The resolver has no side effects.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, Iterable, List, Optional

from docspace.engine.errors import ForbiddenError, NotFoundError
from docspace.engine.logging import log, log_access_denied
from docspace.hierarchy.store import DocumentStore
from docspace.permissions import levels
from docspace.permissions.levels import MAX_LEVEL, PermissionLevel
from docspace.permissions.store import GrantStore

logger = logging.getLogger("docspace.permissions.resolver")


class PermissionResolver:

    def __init__(self, documents: DocumentStore, grants: GrantStore):
        self._documents = documents
        self._grants = grants

    # -------------------------------------------------------------------
    # Single document
    # -------------------------------------------------------------------

    def effective_permission(
        self, document_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[PermissionLevel]:
        """
        Effective level of ``user_id`` on ``document_id``; None means no access.

        Raises:
            NotFoundError: the document itself does not exist.
        """
        node = self._documents.node(document_id)
        if node is None:
            raise NotFoundError("Document", document_id)
        if node.owner_id == user_id:
            return MAX_LEVEL

        path = list(self._documents.walk_up(document_id))
        if any(self._documents.node(node_id).owner_id == user_id for node_id in path):
            return MAX_LEVEL
        held = self._grants.levels_for_user(user_id, path)
        return levels.strongest(*held.values())

    def is_owner(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        node = self._documents.node(document_id)
        if node is None:
            raise NotFoundError("Document", document_id)
        return node.owner_id == user_id

    def can_view(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return levels.can_view(self.effective_permission(document_id, user_id))

    def can_comment(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return levels.can_comment(self.effective_permission(document_id, user_id))

    def can_edit(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return levels.can_edit(self.effective_permission(document_id, user_id))

    def can_share(self, document_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Sharing policy: the owner, or anyone holding EDITOR."""
        return self.is_owner(document_id, user_id) or self.can_edit(document_id, user_id)

    def require(
        self,
        document_id: uuid.UUID,
        user_id: uuid.UUID,
        required: PermissionLevel,
        action: str,
    ) -> PermissionLevel:
        """
        Return the actor's effective level, or raise ForbiddenError if it is
        below ``required``. NotFoundError if the document does not exist.
        """
        level = self.effective_permission(document_id, user_id)
        if not levels.at_least(level, required):
            log(log_access_denied(
                action=action,
                document_id=document_id,
                user_id=user_id,
                required_level=required.value,
                actual_level=level.value if level else None,
            ))
            logger.info(f"Denied {action} on {document_id} for {user_id} (has {level}, needs {required.value})")
            raise ForbiddenError(
                f"You don't have permission to {action.replace('_', ' ')} this document",
                document_id=document_id,
                user_id=user_id,
                required_level=required.value,
                actual_level=level.value if level else None,
                action=action,
            )
        return level

    # -------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------

    def effective_permissions(
        self, document_ids: Iterable[uuid.UUID], user_id: uuid.UUID
    ) -> Dict[uuid.UUID, Optional[PermissionLevel]]:
        """
        Effective levels for many documents and one user.

        The user's grants are loaded with one query. For every visited node
        the strongest grant from that node up to the root is memoized, so
        documents sharing ancestors walk each shared segment once. Unknown
        ids map to None.
        """
        grants = self._grants.levels_for_user(user_id)
        # node id → strongest grant on the path from that node to the root
        inherited: Dict[uuid.UUID, Optional[PermissionLevel]] = {}
        result: Dict[uuid.UUID, Optional[PermissionLevel]] = {}

        for document_id in document_ids:
            node = self._documents.node(document_id)
            if node is None:
                result[document_id] = None
                continue
            if node.owner_id == user_id:
                result[document_id] = MAX_LEVEL
                continue
            result[document_id] = self._inherited_level(document_id, user_id, grants, inherited)

        return result

    def _inherited_level(
        self,
        document_id: uuid.UUID,
        user_id: uuid.UUID,
        grants: Dict[uuid.UUID, PermissionLevel],
        inherited: Dict[uuid.UUID, Optional[PermissionLevel]],
    ) -> Optional[PermissionLevel]:
        # Climb until a memoized node, a root, or a missing parent.
        path: List[uuid.UUID] = []
        owned = set()
        on_path = set()
        above: Optional[PermissionLevel] = None
        current: Optional[uuid.UUID] = document_id
        while current is not None:
            if current in inherited:
                above = inherited[current]
                break
            if current in on_path:
                logger.error(f"Parent chain of {document_id} revisits {current}; stopping walk")
                break
            node = self._documents.node(current)
            if node is None:
                break
            path.append(current)
            on_path.add(current)
            if node.owner_id == user_id:
                owned.add(current)
            current = node.parent_id

        # Unwind root-side first so each node folds in the level above it.
        for node_id in reversed(path):
            own = MAX_LEVEL if node_id in owned else None
            above = levels.strongest(grants.get(node_id), own, above)
            inherited[node_id] = above
        return inherited.get(document_id, above)

    # -------------------------------------------------------------------
    # Accessible set
    # -------------------------------------------------------------------

    def accessible_documents(self, user_id: uuid.UUID) -> Dict[uuid.UUID, PermissionLevel]:
        """
        Every document the user can reach, with its effective level:
        owned and explicitly shared documents, and their descendants.
        """
        candidates: List[uuid.UUID] = []
        for doc in self._documents.list_by_owner(user_id):
            candidates.append(doc.id)
            candidates.extend(self._documents.descendants(doc.id))
        for document_id in self._grants.levels_for_user(user_id):
            candidates.append(document_id)
            candidates.extend(self._documents.descendants(document_id))

        resolved = self.effective_permissions(dict.fromkeys(candidates), user_id)
        return {doc_id: level for doc_id, level in resolved.items() if level is not None}
