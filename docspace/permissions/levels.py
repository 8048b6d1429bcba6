"""
Permission levels and their total order.

The order is an explicit table, not enum declaration order:
VIEWER (0) < COMMENTER (1) < EDITOR (2). "No access" is ``None``.
"""

from __future__ import annotations

import enum
from typing import Optional

from docspace.engine.errors import BadRequestError


class PermissionLevel(str, enum.Enum):
    VIEWER = "VIEWER"
    COMMENTER = "COMMENTER"
    EDITOR = "EDITOR"

    @classmethod
    def parse(cls, value) -> "PermissionLevel":
        """Accept an enum member or a case-insensitive name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise BadRequestError(
            f"Unknown permission level: {value!r}",
            allowed=[m.value for m in cls],
        )


RANK = {
    PermissionLevel.VIEWER: 0,
    PermissionLevel.COMMENTER: 1,
    PermissionLevel.EDITOR: 2,
}

MAX_LEVEL = PermissionLevel.EDITOR


def rank(level: Optional[PermissionLevel]) -> int:
    """Rank of a level; ``None`` (no access) ranks below VIEWER."""
    if level is None:
        return -1
    return RANK[level]


def compare(a: Optional[PermissionLevel], b: Optional[PermissionLevel]) -> int:
    """Three-way comparison: negative if a < b, zero if equal, positive if a > b."""
    return rank(a) - rank(b)


def at_least(level: Optional[PermissionLevel], required: PermissionLevel) -> bool:
    return rank(level) >= rank(required)


def strongest(*levels: Optional[PermissionLevel]) -> Optional[PermissionLevel]:
    """Strongest of the given levels; ``None`` when all are ``None``."""
    best: Optional[PermissionLevel] = None
    for level in levels:
        if level is not None and rank(level) > rank(best):
            best = level
    return best


def can_view(level: Optional[PermissionLevel]) -> bool:
    return level is not None


def can_comment(level: Optional[PermissionLevel]) -> bool:
    return at_least(level, PermissionLevel.COMMENTER)


def can_edit(level: Optional[PermissionLevel]) -> bool:
    return at_least(level, PermissionLevel.EDITOR)
