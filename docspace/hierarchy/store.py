"""
Document Hierarchy Store — documents with owner and nullable parent.

The tree is a flat index id → (owner_id, parent_id). Traversal is an
iterative parent-pointer walk that visits each id at most once; a missing
node ends the walk (the parent may have been deleted concurrently).
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, Iterator, List, NamedTuple, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from docspace.db.base import utcnow
from docspace.db.models import Document

logger = logging.getLogger("docspace.hierarchy.store")


class Node(NamedTuple):
    owner_id: uuid.UUID
    parent_id: Optional[uuid.UUID]


class DocumentStore:
    """
    CRUD and traversal over the ``documents`` table in the caller's session.

    ``node()`` memoizes (owner, parent) reads for the lifetime of the store;
    callers that mutate parents go through this store, which keeps the memo
    in step, or call ``forget()``.
    """

    def __init__(self, session: Session):
        self._session = session
        self._nodes: Dict[uuid.UUID, Optional[Node]] = {}

    # -------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------

    def create(
        self,
        owner_id: uuid.UUID,
        title: str,
        parent_id: Optional[uuid.UUID] = None,
        content_ref: Optional[str] = None,
    ) -> Document:
        doc = Document(
            owner_id=owner_id,
            parent_id=parent_id,
            title=title,
            content_ref=content_ref,
        )
        self._session.add(doc)
        self._session.flush()
        self._nodes[doc.id] = Node(doc.owner_id, doc.parent_id)
        return doc

    def get(self, document_id: uuid.UUID) -> Optional[Document]:
        return self._session.get(Document, document_id)

    def get_for_update(self, document_id: uuid.UUID) -> Optional[Document]:
        """Load a document with a row lock (ignored by backends without FOR UPDATE)."""
        doc = self._session.get(Document, document_id, with_for_update=True, populate_existing=True)
        self._remember(document_id, doc)
        return doc

    def set_title(self, doc: Document, title: str) -> Document:
        doc.title = title
        doc.updated_at = utcnow()
        self._session.flush()
        return doc

    def set_parent(self, doc: Document, parent_id: Optional[uuid.UUID]) -> Document:
        """Re-parent one document. The flush is version-checked."""
        doc.parent_id = parent_id
        doc.updated_at = utcnow()
        self._session.flush()
        self._nodes[doc.id] = Node(doc.owner_id, parent_id)
        return doc

    def delete(self, doc: Document) -> None:
        self._session.delete(doc)
        self._session.flush()
        self._nodes[doc.id] = None

    def list_by_owner(self, owner_id: uuid.UUID) -> List[Document]:
        stmt = select(Document).where(Document.owner_id == owner_id).order_by(Document.created_at, Document.id)
        return list(self._session.execute(stmt).scalars())

    def list_children(self, document_id: uuid.UUID) -> List[Document]:
        stmt = select(Document).where(Document.parent_id == document_id).order_by(Document.created_at, Document.id)
        return list(self._session.execute(stmt).scalars())

    def get_many(self, document_ids) -> List[Document]:
        ids = list(document_ids)
        if not ids:
            return []
        stmt = select(Document).where(Document.id.in_(ids))
        return list(self._session.execute(stmt).scalars())

    def count(self) -> int:
        return self._session.execute(select(func.count(Document.id))).scalar_one()

    def detach_children(self, document_id: uuid.UUID) -> List[uuid.UUID]:
        """
        Promote every direct child to top level (parent_id = NULL).

        Bumps each child's version so concurrent movers of a child
        see a conflict instead of silently overwriting.
        """
        child_ids = list(self._session.execute(
            select(Document.id).where(Document.parent_id == document_id)
        ).scalars())
        if not child_ids:
            return []
        self._session.execute(
            update(Document)
            .where(Document.parent_id == document_id)
            .values(parent_id=None, version_id=Document.version_id + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        promoted = set(child_ids)
        for obj in list(self._session.identity_map.values()):
            if isinstance(obj, Document) and obj.id in promoted:
                self._session.expire(obj)
        for child_id in child_ids:
            node = self._nodes.get(child_id)
            if node is not None:
                self._nodes[child_id] = Node(node.owner_id, None)
        return child_ids

    # -------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------

    def node(self, document_id: uuid.UUID) -> Optional[Node]:
        """(owner_id, parent_id) for a document, or None if it does not exist."""
        if document_id in self._nodes:
            return self._nodes[document_id]
        row = self._session.execute(
            select(Document.owner_id, Document.parent_id).where(Document.id == document_id)
        ).first()
        node = Node(row.owner_id, row.parent_id) if row is not None else None
        self._nodes[document_id] = node
        return node

    def forget(self) -> None:
        self._nodes.clear()

    def walk_up(
        self,
        document_id: uuid.UUID,
        include_self: bool = True,
        lock: bool = False,
    ) -> Iterator[uuid.UUID]:
        """
        Yield ids from ``document_id`` toward the root.

        Stops at a root or at a missing node. A revisited id also stops the
        walk and is logged: that state can only come from data written
        outside this core. Every id is visited at most once, so the walk
        never exceeds the number of stored documents.
        """
        visited = set()
        current: Optional[uuid.UUID] = document_id
        first = True
        while current is not None:
            if current in visited:
                logger.error(f"Parent chain of {document_id} revisits {current}; stopping walk")
                return
            visited.add(current)

            if lock:
                doc = self.get_for_update(current)
                node = Node(doc.owner_id, doc.parent_id) if doc is not None else None
            else:
                node = self.node(current)
            if node is None:
                return

            if include_self or not first:
                yield current
            first = False
            current = node.parent_id

    def ancestors(self, document_id: uuid.UUID, lock: bool = False) -> List[uuid.UUID]:
        """Ancestors of a document, nearest first, excluding the document itself."""
        return list(self.walk_up(document_id, include_self=False, lock=lock))

    def is_ancestor(self, candidate_id: uuid.UUID, of_id: uuid.UUID, lock: bool = False) -> bool:
        """True if ``candidate_id`` appears on the parent chain of ``of_id`` (inclusive)."""
        return any(node_id == candidate_id for node_id in self.walk_up(of_id, lock=lock))

    def descendants(self, document_id: uuid.UUID) -> List[uuid.UUID]:
        """All descendants, breadth-first, iteratively."""
        found: List[uuid.UUID] = []
        seen = {document_id}
        frontier = [document_id]
        while frontier:
            rows = self._session.execute(
                select(Document.id).where(Document.parent_id.in_(frontier))
            ).scalars()
            frontier = []
            for child_id in rows:
                if child_id not in seen:
                    seen.add(child_id)
                    found.append(child_id)
                    frontier.append(child_id)
        return found

    def _remember(self, document_id: uuid.UUID, doc: Optional[Document]) -> None:
        self._nodes[document_id] = Node(doc.owner_id, doc.parent_id) if doc is not None else None
