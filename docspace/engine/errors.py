"""
DocSpace Error Hierarchy — Structured, request-scoped exceptions.

Every error is per-operation; none is fatal to the process. Each class
carries the status code the request-handling layer should surface and
whether a caller may retry.

Hierarchy:
    DocSpaceError
    ├── NotFoundError    — document / user / invitation id does not resolve (404)
    ├── ForbiddenError   — actor lacks the required effective permission (403)
    ├── BadRequestError  — invalid target: self-share, cyclic move, spent token (400)
    ├── ConflictError    — concurrent structural race detected at commit (409, retry once)
    └── ConfigError      — invalid docspace.yaml

Delete semantics callers must know about: deleting a document drops its
explicit grants and promotes its direct children to top-level documents.
Children are never deleted with their parent.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DocSpaceError(Exception):
    """
    Base error for all DocSpace failures.
    All context is serializable to JSON for logging.
    """

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.document_id: Optional[Any] = context.get("document_id")
        self.user_id: Optional[Any] = context.get("user_id")
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "document_id": str(self.document_id) if self.document_id else None,
            "user_id": str(self.user_id) if self.user_id else None,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("document_id", "user_id")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.document_id:
            parts.append(f"document_id={self.document_id}")
        if self.user_id:
            parts.append(f"user_id={self.user_id}")
        return " | ".join(parts)


class NotFoundError(DocSpaceError):
    """An identifier does not resolve to an existing row."""

    status_code = 404

    def __init__(self, resource: str, identifier: Any, **context: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            f"{resource} not found: {identifier}",
            resource=resource,
            identifier=identifier,
            **context,
        )


class ForbiddenError(DocSpaceError):
    """
    Actor lacks the effective permission an operation needs.
    Includes the level that was required and the level the actor holds.
    """

    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.required_level: Optional[str] = context.get("required_level")
        self.actual_level: Optional[str] = context.get("actual_level")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["required_level"] = self.required_level
        d["actual_level"] = self.actual_level
        return d


class BadRequestError(DocSpaceError):
    """Invalid target or input; the caller must correct it."""

    status_code = 400


class ConflictError(DocSpaceError):
    """Concurrent modification detected at commit time. Safe to retry once."""

    status_code = 409
    retryable = True


class ConfigError(DocSpaceError):
    """Configuration error — invalid docspace.yaml."""
    pass
