"""
Integration tests for docspace.workspace — one transaction per call.

Covers the end-to-end scenarios and the properties every deployment
relies on: strongest-wins inheritance, acyclic moves, promotion on delete,
single-use invitations and conflict retry.
"""

import itertools
import random
import threading
import uuid

import pytest

from docspace.db.session import close_all_sessions, init_workspace_db
from docspace.engine.config import DocSpaceConfig, SharingConfig
from docspace.engine.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from docspace.hierarchy.mutator import HierarchyMutator
from docspace.hierarchy.store import DocumentStore
from docspace.permissions.levels import PermissionLevel, rank
from docspace.permissions.resolver import PermissionResolver
from docspace.permissions.store import GrantStore
from docspace.sharing.orchestrator import SharingOrchestrator
from docspace.sharing.store import InvitationStore
from docspace.users import SqlUserDirectory
from docspace.workspace import Workspace

VIEWER = PermissionLevel.VIEWER
COMMENTER = PermissionLevel.COMMENTER
EDITOR = PermissionLevel.EDITOR


@pytest.fixture
def abc(workspace, people):
    """Alice's chain A → B → C."""
    a = workspace.create_document(people.alice, "A")
    b = workspace.create_document(people.alice, "B", parent_id=a.id)
    c = workspace.create_document(people.alice, "C", parent_id=b.id)
    return a.id, b.id, c.id


class TestScenarios:

    def test_strongest_wins_then_move_reverts(self, workspace, people, abc):
        a, b, c = abc
        workspace.share(a, "bob@example.com", VIEWER, people.alice)
        assert workspace.effective_permission(c, people.bob) is VIEWER

        workspace.share(b, "bob@example.com", EDITOR, people.alice)
        assert workspace.effective_permission(c, people.bob) is EDITOR

        workspace.move_document(c, a, people.alice)
        assert workspace.effective_permission(c, people.bob) is VIEWER

    def test_non_collaborator_cannot_share(self, workspace, people, abc):
        with pytest.raises(ForbiddenError):
            workspace.share(abc[0], "bob@example.com", EDITOR, people.bob)
        assert workspace.check_access(abc[0], people.bob) is None

    def test_delete_promotes_and_drops_grant(self, workspace, people, abc):
        a, b, c = abc
        workspace.share(a, "bob@example.com", VIEWER, people.alice)
        workspace.share(b, "bob@example.com", EDITOR, people.alice)

        result = workspace.delete_document(b, people.alice)

        assert result.promoted_children == [c]
        assert result.grants_removed == 1
        assert workspace.get_document(c, people.alice).parent_id is None
        with pytest.raises(NotFoundError):
            workspace.effective_permission(b, people.bob)
        # Bob's access to C now depends only on grants on C itself (none).
        assert workspace.effective_permission(c, people.bob) is None
        assert workspace.effective_permission(a, people.bob) is VIEWER

    def test_invitation_round_trip(self, workspace, people, abc):
        result = workspace.share(abc[1], "erin@example.com", COMMENTER, people.alice)
        assert result.invited
        assert len(workspace.list_pending_invitations(abc[1], people.alice)) == 1

        erin = workspace.add_user("erin@example.com", "Erin")
        grant = workspace.accept_invitation(result.invitation.token, erin)
        assert grant.level is COMMENTER
        assert workspace.effective_permission(abc[2], erin) is COMMENTER
        assert workspace.list_pending_invitations(abc[1], people.alice) == []
        with pytest.raises(BadRequestError):
            workspace.accept_invitation(result.invitation.token, erin)


class TestProperties:

    def test_grants_are_monotonic(self, workspace, people, abc):
        a, b, c = abc
        before = rank(workspace.effective_permission(c, people.bob))
        for doc_id, level in [(b, VIEWER), (a, COMMENTER), (c, VIEWER), (a, EDITOR)]:
            workspace.share(doc_id, "bob@example.com", level, people.alice)
            after = rank(workspace.effective_permission(c, people.bob))
            assert after >= before
            before = after

        for doc_id in (a, c, b):
            workspace.revoke(doc_id, people.bob, people.alice)
            after = rank(workspace.effective_permission(c, people.bob))
            assert after <= before
            before = after
        assert before == rank(None)

    def test_revoke_missing_grant_is_noop(self, workspace, people, abc):
        workspace.share(abc[0], "bob@example.com", VIEWER, people.alice)
        assert workspace.revoke(abc[1], people.bob, people.alice) is False
        assert workspace.effective_permission(abc[2], people.bob) is VIEWER

    def test_random_moves_stay_acyclic(self, workspace, people):
        rng = random.Random(7)
        ids = [workspace.create_document(people.alice, f"D{i}").id for i in range(8)]
        for _ in range(60):
            doc_id = rng.choice(ids)
            parent = rng.choice(ids + [None])
            try:
                workspace.move_document(doc_id, parent, people.alice)
            except BadRequestError:
                pass

        tree = workspace.document_tree(people.alice)
        seen = [node.id for root in tree for node in root.walk()]
        assert sorted(seen) == sorted(ids)

    def test_move_root_under_deep_descendant(self, workspace, people):
        chain = []
        parent = None
        for i in range(6):
            parent = workspace.create_document(people.alice, f"L{i}", parent_id=parent).id
            chain.append(parent)
        with pytest.raises(BadRequestError, match="cycle"):
            workspace.move_document(chain[0], chain[-1], people.alice)


@pytest.fixture
def file_factory(tmp_path):
    """A file-backed SQLite database, so each session gets its own connection."""
    factory = init_workspace_db(f"sqlite:///{(tmp_path / 'race.db').as_posix()}", create_tables=True)
    yield factory
    close_all_sessions()


class TestConcurrentAccept:

    def test_interleaved_accepts_create_one_grant(self, file_factory):
        """Two transactions both see the invitation pending; only one claim wins."""
        factory = file_factory
        workspace = Workspace(factory, DocSpaceConfig())
        alice = workspace.add_user("alice@example.com")
        erin = workspace.add_user("erin@example.com")
        doc = workspace.create_document(alice, "Doc")
        token = workspace.share(doc.id, "erin.work@example.com", EDITOR, alice).invitation.token

        def orchestrator(session):
            documents, grants = DocumentStore(session), GrantStore(session)
            invitations = InvitationStore(session)
            resolver = PermissionResolver(documents, grants)
            return SharingOrchestrator(
                documents, grants, invitations, resolver, SqlUserDirectory(session), SharingConfig(),
            ), invitations

        late_session = factory()
        late, late_invitations = orchestrator(late_session)
        assert late_invitations.get_by_token(token).is_pending()

        workspace.accept_invitation(token, erin)

        with pytest.raises(BadRequestError, match="already been accepted"):
            late.accept_invitation(token, erin)
        late_session.rollback()
        late_session.close()

        assert [g.document_id for g in workspace.shared_with(erin)] == [doc.id]
        assert len(workspace.list_collaborators(doc.id, alice)) == 2


class TestConcurrentMove:

    def test_crossed_moves_never_commit_a_cycle(self, file_factory, monkeypatch):
        """A→B and B→A both pass the pre-check before either writes; one must fail."""
        workspace = Workspace(file_factory, DocSpaceConfig())
        alice = workspace.add_user("alice@example.com")
        a = workspace.create_document(alice, "A").id
        b = workspace.create_document(alice, "B").id

        barrier = threading.Barrier(2, timeout=10)
        gated = itertools.count()
        original = DocumentStore.set_parent

        def set_parent_together(self, doc, parent_id):
            if next(gated) < 2:
                barrier.wait()
            return original(self, doc, parent_id)

        monkeypatch.setattr(DocumentStore, "set_parent", set_parent_together)

        outcomes = {}

        def move(doc_id, parent_id):
            try:
                outcomes[doc_id] = workspace.move_document(doc_id, parent_id, alice)
            except (BadRequestError, ConflictError) as e:
                outcomes[doc_id] = e

        threads = [
            threading.Thread(target=move, args=(a, b)),
            threading.Thread(target=move, args=(b, a)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(outcomes) == 2
        failed = [o for o in outcomes.values() if isinstance(o, Exception)]
        assert len(failed) == 1

        parent_of_a = workspace.get_document(a, alice).parent_id
        parent_of_b = workspace.get_document(b, alice).parent_id
        assert not (parent_of_a == b and parent_of_b == a)
        assert {parent_of_a, parent_of_b} in ({b, None}, {a, None})


class TestConflictRetry:

    def test_retries_once(self, workspace, people, abc, monkeypatch):
        calls = itertools.count()
        original = HierarchyMutator.move

        def flaky_move(self, *args, **kwargs):
            if next(calls) == 0:
                raise ConflictError("simulated race")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(HierarchyMutator, "move", flaky_move)
        moved = workspace.move_document(abc[2], abc[0], people.alice)
        assert moved.parent_id == abc[0]

    def test_gives_up_after_retries(self, workspace, people, abc, monkeypatch):
        def always_conflict(self, *args, **kwargs):
            raise ConflictError("simulated race")

        monkeypatch.setattr(HierarchyMutator, "move", always_conflict)
        with pytest.raises(ConflictError):
            workspace.move_document(abc[2], abc[0], people.alice)

    def test_reads_are_not_retried(self, workspace, people, abc, monkeypatch):
        calls = []

        def conflict(self, *args, **kwargs):
            calls.append(1)
            raise ConflictError("simulated race")

        monkeypatch.setattr(PermissionResolver, "effective_permission", conflict)
        with pytest.raises(ConflictError):
            workspace.effective_permission(abc[0], people.bob)
        assert len(calls) == 1


class TestViews:

    def test_document_tree_for_collaborator(self, workspace, people, abc):
        a, b, c = abc
        workspace.share(b, "bob@example.com", VIEWER, people.alice)
        own = workspace.create_document(people.bob, "Bob's notes")

        roots = workspace.document_tree(people.bob)

        # B's parent A is not visible to Bob, so B is shown at the top level.
        assert [r.title for r in roots] == ["B", "Bob's notes"]
        assert roots[0].level is VIEWER
        assert roots[1].id == own.id
        assert roots[1].level is EDITOR

    def test_owner_tree_nests(self, workspace, people, abc):
        roots = workspace.document_tree(people.alice)
        assert len(roots) == 1
        assert [n.title for n in roots[0].walk()] == ["A", "B", "C"]

    def test_accessible_documents(self, workspace, people, abc):
        a, b, c = abc
        workspace.share(b, "bob@example.com", COMMENTER, people.alice)
        assert workspace.accessible_documents(people.bob) == {b: COMMENTER, c: COMMENTER}

    def test_effective_permissions_batch(self, workspace, people, abc):
        workspace.share(abc[1], "bob@example.com", EDITOR, people.alice)
        missing = uuid.uuid4()
        assert workspace.effective_permissions([*abc, missing], people.bob) == {
            abc[0]: None, abc[1]: EDITOR, abc[2]: EDITOR, missing: None,
        }

    def test_parent_owner_reaches_collaborator_child(self, workspace, people, abc):
        a, b, c = abc
        workspace.share(a, "bob@example.com", EDITOR, people.alice)
        notes = workspace.create_document(people.bob, "Bob's notes", parent_id=c)

        assert workspace.effective_permission(notes.id, people.alice) is EDITOR
        assert workspace.get_document(notes.id, people.alice).owner_id == people.bob
        titles = [n.title for n in workspace.document_tree(people.alice)[0].walk()]
        assert titles == ["A", "B", "C", "Bob's notes"]
        assert workspace.accessible_documents(people.alice)[notes.id] is EDITOR

        moved = workspace.move_document(notes.id, a, people.alice)
        assert moved.parent_id == a

    def test_get_document_requires_view(self, workspace, people, abc):
        with pytest.raises(ForbiddenError):
            workspace.get_document(abc[0], people.bob)

    def test_rename(self, workspace, people, abc):
        assert workspace.rename_document(abc[0], "Renamed", people.alice).title == "Renamed"


class TestUsers:

    def test_duplicate_email(self, workspace, people):
        with pytest.raises(BadRequestError):
            workspace.add_user("ALICE@example.com")

    def test_unknown_owner_is_not_found(self, workspace, people, monkeypatch):
        attempts = []
        original = HierarchyMutator.create

        def counting_create(self, *args, **kwargs):
            attempts.append(1)
            return original(self, *args, **kwargs)

        monkeypatch.setattr(HierarchyMutator, "create", counting_create)
        with pytest.raises(NotFoundError, match="User"):
            workspace.create_document(uuid.uuid4(), "Orphan")
        assert len(attempts) == 1
        assert workspace.document_tree(people.alice) == []

    def test_new_user_picks_up_invitations(self, workspace, people, abc):
        workspace.share(abc[0], "erin@example.com", VIEWER, people.alice)
        erin = workspace.add_user("erin@example.com")
        pending = workspace.list_pending_invitations(abc[0], people.alice)
        assert pending[0].invited_user_id == erin

    def test_purge_user(self, workspace, people, abc):
        workspace.share(abc[0], "bob@example.com", EDITOR, people.alice)
        result = workspace.purge_user(people.alice)
        assert result.documents_deleted == 3
        assert workspace.document_tree(people.alice) == []
        assert workspace.shared_with(people.bob) == []
