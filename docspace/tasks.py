"""
DocSpace background tasks — Celery app and the periodic invitation sweep.

Celery Tasks:
    - docspace.tasks.cleanup_expired_invitations_task: deletes expired,
      never-accepted invitations. Idempotent; overlapping runs are harmless.

Run with:
    celery -A docspace.tasks worker --beat
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from docspace.engine.config import DocSpaceConfig, get_config
from docspace.engine.logging import ensure_logging, log, log_system_event, shutdown_logging

logger = logging.getLogger("docspace.tasks")

CLEANUP_TASK_NAME = "docspace.tasks.cleanup_expired_invitations_task"


# ---------------------------------------------------------------------------
# Celery app (configured from docspace.yaml)
# ---------------------------------------------------------------------------

_celery_app: Optional[Celery] = None


def get_celery_app() -> Celery:
    """Get or create the Celery app singleton."""
    global _celery_app
    if _celery_app is None:
        _celery_app = _create_celery_app()
    return _celery_app


def _create_celery_app(config: Optional[DocSpaceConfig] = None) -> Celery:
    """Create and configure the Celery application."""
    config = config or get_config()
    cleanup = config.cleanup

    app = Celery("docspace", broker=cleanup.broker, backend=cleanup.result_backend)
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_default_queue="maintenance",
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        beat_schedule={
            "cleanup-expired-invitations": {
                "task": CLEANUP_TASK_NAME,
                "schedule": float(cleanup.interval_seconds),
            },
        },
    )
    return app


def reset_celery_app() -> None:
    global _celery_app
    _celery_app = None


def run_invitation_cleanup(workspace=None) -> Dict[str, Any]:
    """
    Delete expired invitations once and report the count.

    Shared by the Celery task and ``docspace cleanup-invitations``.
    """
    if workspace is None:
        from docspace.workspace import Workspace
        workspace = Workspace.from_config(get_config())

    deleted = workspace.cleanup_expired_invitations()
    log(log_system_event(
        "invitations_cleaned",
        f"Deleted {deleted} expired invitations",
        deleted=deleted,
    ))
    logger.info(f"Invitation cleanup removed {deleted} rows")
    return {"deleted": deleted}


celery_app = get_celery_app()


@celery_app.task(name=CLEANUP_TASK_NAME)
def cleanup_expired_invitations_task() -> Dict[str, Any]:
    """Celery Beat task: sweep expired invitations."""
    return run_invitation_cleanup()


@worker_process_init.connect
def _start_worker_logging(**kwargs: Any) -> None:
    """Each worker process writes its own event log queue."""
    ensure_logging(get_config().logging)


@worker_process_shutdown.connect
def _stop_worker_logging(**kwargs: Any) -> None:
    shutdown_logging()
