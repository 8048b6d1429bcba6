"""
DocSpace Workspace — the public surface of the core.

Each call opens one transaction (``session_scope``), builds the stores,
resolver, mutator and sharing orchestrator on that session, runs the
operation and commits. Authorization and mutation therefore read from the
same transaction. Mutating calls are retried on ConflictError up to
``sharing.conflict_retries`` times (once by default).

Usage:
    workspace = Workspace.from_config(get_config())
    doc = workspace.create_document(owner_id, "Roadmap")
    workspace.share(doc.id, "bob@example.com", "EDITOR", owner_id)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy.orm import Session

from docspace.db.session import init_workspace_db, session_scope
from docspace.engine.config import DocSpaceConfig
from docspace.engine.errors import BadRequestError, ConflictError
from docspace.engine.logging import ensure_logging
from docspace.hierarchy.mutator import DeleteResult, HierarchyMutator, PurgeResult
from docspace.hierarchy.store import DocumentStore
from docspace.hierarchy.tree import DocumentTreeNode, DocumentView, TreeBuilder
from docspace.permissions.levels import PermissionLevel
from docspace.permissions.resolver import PermissionResolver
from docspace.permissions.store import GrantStore
from docspace.sharing.orchestrator import SharingOrchestrator
from docspace.sharing.schemas import Collaborator, GrantView, InvitationView, ShareResult
from docspace.sharing.store import InvitationStore
from docspace.users import SqlUserDirectory, UserDirectory

logger = logging.getLogger("docspace.workspace")

T = TypeVar("T")


@dataclass
class Components:
    """Everything one transaction needs, bound to its session."""
    session: Session
    documents: DocumentStore
    grants: GrantStore
    invitations: InvitationStore
    users: UserDirectory
    resolver: PermissionResolver
    mutator: HierarchyMutator
    sharing: SharingOrchestrator
    tree: TreeBuilder


class Workspace:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: Optional[DocSpaceConfig] = None,
        user_directory: Callable[[Session], UserDirectory] = SqlUserDirectory,
    ):
        self._session_factory = session_factory
        self._config = config or DocSpaceConfig()
        self._user_directory = user_directory

    @classmethod
    def from_config(cls, config: DocSpaceConfig, create_tables: bool = False) -> "Workspace":
        """
        Initialise the database and the event log from config and return a
        workspace bound to them. Call ``shutdown_logging()`` on exit to
        flush pending log entries.
        """
        ensure_logging(config.logging)
        db = config.database
        factory = init_workspace_db(
            db.url,
            create_tables=create_tables,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=db.pool_pre_ping,
            echo=db.echo,
        )
        return cls(factory, config)

    @property
    def config(self) -> DocSpaceConfig:
        return self._config

    # -------------------------------------------------------------------
    # Transaction plumbing
    # -------------------------------------------------------------------

    def _components(self, session: Session) -> Components:
        documents = DocumentStore(session)
        grants = GrantStore(session)
        invitations = InvitationStore(session)
        users = self._user_directory(session)
        resolver = PermissionResolver(documents, grants)
        return Components(
            session=session,
            documents=documents,
            grants=grants,
            invitations=invitations,
            users=users,
            resolver=resolver,
            mutator=HierarchyMutator(documents, grants, invitations, resolver, users),
            sharing=SharingOrchestrator(
                documents, grants, invitations, resolver, users, self._config.sharing,
            ),
            tree=TreeBuilder(documents, grants, resolver),
        )

    def _read(self, operation: Callable[[Components], T]) -> T:
        with session_scope(self._session_factory) as session:
            return operation(self._components(session))

    def _write(self, name: str, operation: Callable[[Components], T]) -> T:
        retries = self._config.sharing.conflict_retries
        attempt = 0
        while True:
            try:
                with session_scope(self._session_factory) as session:
                    return operation(self._components(session))
            except ConflictError:
                if attempt >= retries:
                    logger.error(f"{name} failed after {attempt + 1} attempts: conflict")
                    raise
                attempt += 1
                logger.warning(f"{name} hit a concurrent modification; retrying ({attempt}/{retries})")

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------

    def add_user(self, email: str, display_name: Optional[str] = None) -> uuid.UUID:
        """
        Register a user row and attach any invitations already sent to the
        address. Account management proper belongs to the account system.
        """
        def op(c: Components) -> uuid.UUID:
            if c.users.find_by_email(email) is not None:
                raise BadRequestError(f"A user with email {email} already exists")
            user = SqlUserDirectory(c.session).create_user(email, display_name)
            attached = c.invitations.attach_user(user.email, user.id)
            if attached:
                logger.info(f"Attached {attached} pending invitations to new user {user.id}")
            return user.id

        return self._write("add_user", op)

    def purge_user(self, user_id: uuid.UUID) -> PurgeResult:
        return self._write("purge_user", lambda c: c.mutator.purge_owner(user_id))

    # -------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------

    def create_document(
        self,
        owner_id: uuid.UUID,
        title: str,
        parent_id: Optional[uuid.UUID] = None,
        content_ref: Optional[str] = None,
    ) -> DocumentView:
        return self._write(
            "create_document",
            lambda c: DocumentView.from_document(
                c.mutator.create(owner_id, title, parent_id=parent_id, content_ref=content_ref)
            ),
        )

    def get_document(self, document_id: uuid.UUID, user_id: uuid.UUID) -> DocumentView:
        """Document metadata; VIEWER required."""
        def op(c: Components) -> DocumentView:
            c.resolver.require(document_id, user_id, PermissionLevel.VIEWER, "view")
            return DocumentView.from_document(c.documents.get(document_id))

        return self._read(op)

    def rename_document(self, document_id: uuid.UUID, title: str, acting_user: uuid.UUID) -> DocumentView:
        return self._write(
            "rename_document",
            lambda c: DocumentView.from_document(c.mutator.rename(document_id, title, acting_user)),
        )

    def move_document(
        self,
        document_id: uuid.UUID,
        new_parent_id: Optional[uuid.UUID],
        acting_user: uuid.UUID,
    ) -> DocumentView:
        return self._write(
            "move_document",
            lambda c: DocumentView.from_document(c.mutator.move(document_id, new_parent_id, acting_user)),
        )

    def delete_document(self, document_id: uuid.UUID, acting_user: uuid.UUID) -> DeleteResult:
        return self._write("delete_document", lambda c: c.mutator.delete(document_id, acting_user))

    def document_tree(self, user_id: uuid.UUID) -> List[DocumentTreeNode]:
        return self._read(lambda c: c.tree.build_tree(user_id))

    # -------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------

    def effective_permission(self, document_id: uuid.UUID, user_id: uuid.UUID) -> Optional[PermissionLevel]:
        return self._read(lambda c: c.resolver.effective_permission(document_id, user_id))

    def effective_permissions(
        self, document_ids: Iterable[uuid.UUID], user_id: uuid.UUID
    ) -> Dict[uuid.UUID, Optional[PermissionLevel]]:
        ids = list(document_ids)
        return self._read(lambda c: c.resolver.effective_permissions(ids, user_id))

    def accessible_documents(self, user_id: uuid.UUID) -> Dict[uuid.UUID, PermissionLevel]:
        return self._read(lambda c: c.resolver.accessible_documents(user_id))

    # -------------------------------------------------------------------
    # Sharing
    # -------------------------------------------------------------------

    def share(self, document_id: uuid.UUID, grantee_email: str, level, acting_user: uuid.UUID) -> ShareResult:
        return self._write("share", lambda c: c.sharing.share(document_id, grantee_email, level, acting_user))

    def revoke(self, document_id: uuid.UUID, grantee_user_id: uuid.UUID, acting_user: uuid.UUID) -> bool:
        return self._write("revoke", lambda c: c.sharing.revoke(document_id, grantee_user_id, acting_user))

    def accept_invitation(self, token: str, accepting_user: uuid.UUID) -> GrantView:
        return self._write("accept_invitation", lambda c: c.sharing.accept_invitation(token, accepting_user))

    def list_collaborators(self, document_id: uuid.UUID, requesting_user: uuid.UUID) -> List[Collaborator]:
        return self._read(lambda c: c.sharing.list_collaborators(document_id, requesting_user))

    def check_access(self, document_id: uuid.UUID, user_id: uuid.UUID) -> Optional[PermissionLevel]:
        return self._read(lambda c: c.sharing.check_access(document_id, user_id))

    def list_pending_invitations(self, document_id: uuid.UUID, acting_user: uuid.UUID) -> List[InvitationView]:
        return self._read(lambda c: c.sharing.list_pending_invitations(document_id, acting_user))

    def shared_with(self, user_id: uuid.UUID) -> List[GrantView]:
        return self._read(lambda c: c.sharing.shared_with(user_id))

    def resolve_invitations_for(self, user_id: uuid.UUID) -> int:
        return self._write("resolve_invitations_for", lambda c: c.sharing.resolve_invitations_for(user_id))

    def cleanup_expired_invitations(self) -> int:
        return self._write("cleanup_expired_invitations", lambda c: c.sharing.cleanup_expired_invitations())
