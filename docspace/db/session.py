"""
DocSpace Database Session Management.

Single entry point for database initialisation plus the transactional
session scope every public operation runs in.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from docspace.db.base import Base, engine_registry
from docspace.engine.errors import ConflictError

logger = logging.getLogger("docspace.db.session")

ENGINE_NAME = "docspace"

# Postgres SQLSTATEs that mean "another transaction got there first".
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_UNIQUE_VIOLATION = "23505"

_session_factory: Optional[sessionmaker] = None


def init_workspace_db(
    db_url: str,
    create_tables: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> sessionmaker:
    """
    Initialise the workspace database.

    1. Registers the "docspace" engine in the EngineRegistry.
    2. On SQLite, turns on foreign key enforcement for every connection.
    3. Optionally runs Base.metadata.create_all() (dev / ``docspace init``).
    4. Stores the session factory used by ``session_scope()``.

    Returns:
        The sessionmaker bound to the engine.
    """
    global _session_factory

    import docspace.db.models  # noqa: F401  (register tables on Base.metadata)

    engine = engine_registry.register(
        ENGINE_NAME, db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
    )

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_sqlite_fks(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    if create_tables:
        Base.metadata.create_all(engine)
        logger.info("Workspace tables created")

    _session_factory = engine_registry.get_session_factory(ENGINE_NAME)
    return _session_factory


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Workspace DB not initialized. Call init_workspace_db() first.")
    return _session_factory


def is_conflict(exc: BaseException) -> bool:
    """
    True when a database error means a concurrent writer won the race:
    a stale version, a unique violation, a serialization failure or
    deadlock, or SQLite's busy lock. Other integrity errors (foreign keys,
    NOT NULL) are caller mistakes and are not retried.
    """
    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, DBAPIError):
        return False

    sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    message = str(exc.orig)
    if isinstance(exc, IntegrityError):
        return sqlstate == _UNIQUE_VIOLATION or message.startswith("UNIQUE constraint failed")
    if isinstance(exc, OperationalError) and "database is locked" in message:
        return True
    return sqlstate in _RETRYABLE_SQLSTATES


@contextmanager
def session_scope(
    factory: Optional[Callable[[], Session]] = None,
) -> Generator[Session, None, None]:
    """
    Transaction boundary with auto-commit/rollback.

    Concurrency failures (see ``is_conflict``) are re-raised as
    ConflictError so callers can retry.

    Usage:
        with session_scope() as session:
            session.get(Document, doc_id)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except (StaleDataError, DBAPIError) as e:
        session.rollback()
        if is_conflict(e):
            logger.warning(f"Concurrent modification detected: {e.__class__.__name__}")
            raise ConflictError(
                "The workspace changed while this operation ran; retry",
                cause=e.__class__.__name__,
            ) from e
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_all_sessions() -> None:
    """Dispose all engines. Used during shutdown."""
    global _session_factory
    _session_factory = None
    engine_registry.dispose()
