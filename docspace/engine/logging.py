"""
DocSpace Logging System — Structured JSON event files with an async queue.

Implements:
- FileLogger: per-object-type, per-category JSONL files (daily rotation)
- AsyncLogQueue: in-memory queue with background flush (interval / batch size)
- Entry builders for hierarchy, sharing, access-denied and system events
- configure_logging(): stdlib logging setup for the ``docspace.*`` loggers
- ensure_logging(): both of the above, started from a ``LoggingConfig``

Layout: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("docspace.engine.logging")

OBJECT_TYPE_CATEGORIES = {
    "documents": ["execution", "security"],
    "sharing": ["execution", "security"],
    "invitations": ["execution"],
    "system": ["execution", "security"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        if object_type not in OBJECT_TYPE_CATEGORIES:
            raise ValueError(f"Unknown log object type: {object_type}")
        if category not in OBJECT_TYPE_CATEGORIES[object_type]:
            raise ValueError(f"Category '{category}' not valid for {object_type}")
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-object-type, per-category files.

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of entries, grouped by file path."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[str(self._resolve_path(entry.object_type, entry.category))].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        today = date.today().isoformat()
        return self._log_dir / object_type / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def read_today(self, object_type: str, category: str) -> List[Dict[str, Any]]:
        """Read back today's entries for one object_type/category (oldest first)."""
        path = self._resolve_path(object_type, category)
        if not path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed log line in %s", path)
        return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Entries are pushed non-blocking. The flush thread writes to the FileLogger
    every flush_interval_ms or when flush_batch_size entries accumulate,
    whichever comes first. A full queue drops entries and counts them.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="docspace-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        """Queue an entry. Returns False if it was dropped (queue full)."""
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except OSError as e:
                    logger.error(f"Log flush error: {e}")
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while not self._queue.empty():
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    document_id: Optional[Any] = None,
    user_id: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if document_id is not None:
        entry["document_id"] = str(document_id)
    if user_id is not None:
        entry["user_id"] = str(user_id)
    for key, value in extra.items():
        if value is not None:
            entry[key] = value
    return entry


def log_hierarchy_event(
    event: str,
    document_id: Any,
    user_id: Any,
    old_parent_id: Optional[Any] = None,
    new_parent_id: Optional[Any] = None,
    promoted_children: Optional[List[Any]] = None,
    grants_removed: Optional[int] = None,
) -> LogEntry:
    """Build a document structure event (created/moved/deleted/renamed)."""
    data = _base_entry(
        event=f"document_{event}",
        level="INFO",
        document_id=document_id,
        user_id=user_id,
        old_parent_id=str(old_parent_id) if old_parent_id else None,
        new_parent_id=str(new_parent_id) if new_parent_id else None,
        grants_removed=grants_removed,
    )
    if promoted_children:
        data["promoted_children"] = [str(c) for c in promoted_children]
    return LogEntry("documents", "execution", data)


def log_sharing_event(
    event: str,
    document_id: Any,
    user_id: Any,
    grantee_id: Optional[Any] = None,
    grantee_email: Optional[str] = None,
    level: Optional[str] = None,
) -> LogEntry:
    """Build a sharing event (granted/updated/revoked/invited/accepted)."""
    data = _base_entry(
        event=event,
        level="INFO",
        document_id=document_id,
        user_id=user_id,
        grantee_id=str(grantee_id) if grantee_id else None,
        grantee_email=grantee_email,
        permission_level=level,
    )
    object_type = "invitations" if event.startswith("invitation_") else "sharing"
    return LogEntry(object_type, "execution", data)


def log_access_denied(
    action: str,
    document_id: Any,
    user_id: Any,
    required_level: str,
    actual_level: Optional[str] = None,
) -> LogEntry:
    """Build a security entry for a rejected operation."""
    data = _base_entry(
        event="access_denied",
        level="WARNING",
        document_id=document_id,
        user_id=user_id,
        action=action,
        required_level=required_level,
        actual_level=actual_level or "none",
    )
    object_type = "sharing" if action in ("share", "revoke", "list_invitations") else "documents"
    return LogEntry(object_type, "security", data)


def log_system_event(event: str, message: str, **details: Any) -> LogEntry:
    """Build a system event (startup, cleanup runs, config reloads)."""
    data = _base_entry(event=event, level="INFO", message=message, **details)
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Global queue + stdlib setup
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def configure_logging(level: str = "INFO") -> None:
    """Configure the ``docspace`` stdlib logger hierarchy."""
    root = logging.getLogger("docspace")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        root.addHandler(handler)


def init_logging(
    log_dir: str = ".docspace/logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Create and start the global async log queue."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()

    file_logger = FileLogger(log_dir=log_dir)
    _global_queue = AsyncLogQueue(
        file_logger=file_logger,
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def ensure_logging(settings) -> AsyncLogQueue:
    """
    Configure stdlib logging and start the global queue from a
    ``LoggingConfig``. A queue that is already running is kept.
    """
    configure_logging(settings.level)
    if _global_queue is not None:
        return _global_queue
    queue = init_logging(
        log_dir=settings.directory,
        flush_interval_ms=settings.flush_interval_ms,
        flush_batch_size=settings.flush_batch_size,
        max_queue_size=settings.max_queue_size,
    )
    logger.info(f"Event log writing to {settings.directory}")
    return queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push an entry to the global queue. Non-blocking."""
    if _global_queue is None:
        logger.debug("Log queue not initialized — %s entry dropped", entry.data.get("event"))
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
