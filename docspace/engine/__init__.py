"""DocSpace Engine — errors, configuration, structured logging."""

from docspace.engine.errors import (  # noqa: F401
    BadRequestError,
    ConfigError,
    ConflictError,
    DocSpaceError,
    ForbiddenError,
    NotFoundError,
)

__all__ = [
    "DocSpaceError",
    "NotFoundError",
    "ForbiddenError",
    "BadRequestError",
    "ConflictError",
    "ConfigError",
]
