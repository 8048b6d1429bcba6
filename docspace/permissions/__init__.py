"""DocSpace permissions — levels, explicit grants and the effective-permission resolver."""

from docspace.permissions.levels import MAX_LEVEL, PermissionLevel  # noqa: F401

__all__ = ["PermissionLevel", "MAX_LEVEL"]
