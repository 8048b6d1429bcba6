"""
Per-user document tree — the sidebar view of a workspace.

Visible documents are the ones the user owns, the ones other users created
beneath them, and the ones explicitly shared with the user. A visible
document whose parent is not visible is shown at the top level.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from docspace.db.base import as_utc
from docspace.db.models import Document
from docspace.hierarchy.store import DocumentStore
from docspace.permissions.levels import PermissionLevel
from docspace.permissions.resolver import PermissionResolver
from docspace.permissions.store import GrantStore


class DocumentView(BaseModel):
    """A document's metadata as returned from the workspace."""

    id: uuid.UUID
    parent_id: Optional[uuid.UUID] = None
    owner_id: uuid.UUID
    title: str
    content_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentView":
        return cls(
            id=doc.id,
            parent_id=doc.parent_id,
            owner_id=doc.owner_id,
            title=doc.title,
            content_ref=doc.content_ref,
            created_at=as_utc(doc.created_at),
            updated_at=as_utc(doc.updated_at),
        )


class DocumentTreeNode(BaseModel):
    id: uuid.UUID
    parent_id: Optional[uuid.UUID] = None
    owner_id: uuid.UUID
    title: str
    level: PermissionLevel
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    children: List["DocumentTreeNode"] = Field(default_factory=list)

    def walk(self):
        """Depth-first iteration over this node and its descendants."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


DocumentTreeNode.model_rebuild()


class TreeBuilder:

    def __init__(self, documents: DocumentStore, grants: GrantStore, resolver: PermissionResolver):
        self._documents = documents
        self._grants = grants
        self._resolver = resolver

    def build_tree(self, user_id: uuid.UUID) -> List[DocumentTreeNode]:
        owned = self._documents.list_by_owner(user_id)
        extra_ids = [g.document_id for g in self._grants.list_for_user(user_id)]
        for doc in owned:
            extra_ids.extend(self._documents.descendants(doc.id))
        visible: Dict[uuid.UUID, Document] = {d.id: d for d in owned}
        for doc in self._documents.get_many({i for i in extra_ids if i not in visible}):
            visible[doc.id] = doc

        resolved = self._resolver.effective_permissions(visible.keys(), user_id)
        nodes = {
            doc_id: _to_node(doc, resolved[doc_id])
            for doc_id, doc in visible.items()
            if resolved.get(doc_id) is not None
        }

        roots: List[DocumentTreeNode] = []
        for node in nodes.values():
            parent = nodes.get(node.parent_id) if node.parent_id is not None else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)

        _sort(roots)
        return roots


def _to_node(doc: Document, level: PermissionLevel) -> DocumentTreeNode:
    return DocumentTreeNode(
        id=doc.id,
        parent_id=doc.parent_id,
        owner_id=doc.owner_id,
        title=doc.title,
        level=level,
        created_at=as_utc(doc.created_at),
        updated_at=as_utc(doc.updated_at),
    )


def _sort(nodes: List[DocumentTreeNode]) -> None:
    stack = [nodes]
    while stack:
        siblings = stack.pop()
        siblings.sort(key=lambda n: (n.title.lower(), str(n.id)))
        stack.extend(n.children for n in siblings if n.children)
