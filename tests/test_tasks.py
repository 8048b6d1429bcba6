"""Unit tests for docspace.tasks — Celery app and invitation cleanup."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from docspace import tasks
from docspace.db.base import utcnow
from docspace.db.models import SharingInvitation
from docspace.db.session import session_scope
from docspace.engine.config import CleanupConfig, DocSpaceConfig
from docspace.engine.logging import FileLogger, init_logging, shutdown_logging
from docspace.permissions.levels import PermissionLevel


class TestCeleryApp:

    def test_beat_schedule_from_config(self):
        config = DocSpaceConfig(cleanup=CleanupConfig(
            broker="memory://", result_backend="cache+memory://", interval_seconds=120,
        ))
        app = tasks._create_celery_app(config)
        entry = app.conf.beat_schedule["cleanup-expired-invitations"]
        assert entry["task"] == tasks.CLEANUP_TASK_NAME
        assert entry["schedule"] == 120.0
        assert app.conf.task_serializer == "json"

    def test_task_registered(self):
        assert tasks.CLEANUP_TASK_NAME in tasks.celery_app.tasks

    def test_singleton(self):
        tasks.reset_celery_app()
        first = tasks.get_celery_app()
        assert tasks.get_celery_app() is first


class TestInvitationCleanup:

    def test_deletes_only_expired(self, workspace, people, session_factory, tmp_path):
        doc = workspace.create_document(people.alice, "Doc")
        stale = workspace.share(doc.id, "old@example.com", PermissionLevel.VIEWER, people.alice)
        workspace.share(doc.id, "fresh@example.com", PermissionLevel.VIEWER, people.alice)
        with session_scope(session_factory) as s:
            s.execute(
                update(SharingInvitation)
                .where(SharingInvitation.id == stale.invitation.id)
                .values(expires_at=utcnow() - timedelta(hours=1))
            )

        init_logging(log_dir=str(tmp_path / "logs"), flush_interval_ms=10)
        assert tasks.run_invitation_cleanup(workspace) == {"deleted": 1}
        assert tasks.run_invitation_cleanup(workspace) == {"deleted": 0}
        shutdown_logging()

        pending = workspace.list_pending_invitations(doc.id, people.alice)
        assert [p.invited_email for p in pending] == ["fresh@example.com"]
        events = FileLogger(str(tmp_path / "logs")).read_today("system", "execution")
        assert [e["deleted"] for e in events] == [1, 0]

    def test_task_uses_configured_workspace(self, project_root, monkeypatch):
        from docspace.cli import main
        from docspace.db.session import close_all_sessions

        monkeypatch.chdir(project_root)
        assert main(["init"]) == 0
        try:
            assert tasks.cleanup_expired_invitations_task.run() == {"deleted": 0}
        finally:
            close_all_sessions()
