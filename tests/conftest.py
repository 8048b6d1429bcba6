"""
DocSpace Test Suite — Shared fixtures and configuration.

Every test that touches the database gets its own in-memory SQLite
workspace; no Postgres or Redis is needed.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest


# ---------------------------------------------------------------------------
# Global singletons, reset between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch):
    """Reset config and logging singletons; ignore any real DATABASE_URL."""
    import docspace.engine.config as cfg_mod
    import docspace.engine.logging as log_mod

    monkeypatch.delenv(cfg_mod.DATABASE_URL_ENV, raising=False)
    cfg_mod._config = None
    yield
    log_mod.shutdown_logging()
    cfg_mod._config = None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """In-memory SQLite database with all tables created."""
    from docspace.db.session import close_all_sessions, init_workspace_db

    factory = init_workspace_db("sqlite:///:memory:", create_tables=True)
    yield factory
    close_all_sessions()


@pytest.fixture
def session(session_factory):
    """A bare session for store-level tests. Rolled back afterwards."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def stores(session):
    """Stores and services bound to the ``session`` fixture."""
    from docspace.engine.config import SharingConfig
    from docspace.hierarchy.mutator import HierarchyMutator
    from docspace.hierarchy.store import DocumentStore
    from docspace.hierarchy.tree import TreeBuilder
    from docspace.permissions.resolver import PermissionResolver
    from docspace.permissions.store import GrantStore
    from docspace.sharing.orchestrator import SharingOrchestrator
    from docspace.sharing.store import InvitationStore
    from docspace.users import SqlUserDirectory

    documents = DocumentStore(session)
    grants = GrantStore(session)
    invitations = InvitationStore(session)
    users = SqlUserDirectory(session)
    resolver = PermissionResolver(documents, grants)
    return SimpleNamespace(
        session=session,
        documents=documents,
        grants=grants,
        invitations=invitations,
        users=users,
        resolver=resolver,
        mutator=HierarchyMutator(documents, grants, invitations, resolver, users),
        sharing=SharingOrchestrator(documents, grants, invitations, resolver, users, SharingConfig()),
        tree=TreeBuilder(documents, grants, resolver),
    )


@pytest.fixture
def accounts(stores):
    """Four registered users in the ``session`` fixture (ids only)."""
    return SimpleNamespace(
        alice=stores.users.create_user("alice@example.com", "Alice").id,
        bob=stores.users.create_user("bob@example.com", "Bob").id,
        carol=stores.users.create_user("carol@example.com", "Carol").id,
        dave=stores.users.create_user("dave@example.com", "Dave").id,
    )


# ---------------------------------------------------------------------------
# Workspace facade
# ---------------------------------------------------------------------------

@pytest.fixture
def workspace(session_factory):
    from docspace.engine.config import DocSpaceConfig
    from docspace.workspace import Workspace

    return Workspace(session_factory, DocSpaceConfig())


@pytest.fixture
def people(workspace):
    """Four registered users created through the workspace (ids only)."""
    return SimpleNamespace(
        alice=workspace.add_user("alice@example.com", "Alice"),
        bob=workspace.add_user("bob@example.com", "Bob"),
        carol=workspace.add_user("carol@example.com", "Carol"),
        dave=workspace.add_user("dave@example.com", "Dave"),
    )


@pytest.fixture
def project_root(tmp_path):
    """A directory holding a docspace.yaml that points at a SQLite file."""
    root = tmp_path / "project"
    root.mkdir()
    db_path = root / "docspace.db"
    (root / "docspace.yaml").write_text(
        "environment: dev\n"
        "database:\n"
        f"  url: sqlite:///{db_path.as_posix()}\n"
        "sharing:\n"
        "  invitation_ttl_hours: 48\n"
        "logging:\n"
        "  level: warning\n"
        f"  directory: {(root / 'logs').as_posix()}\n",
        encoding="utf-8",
    )
    return root
