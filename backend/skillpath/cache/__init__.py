"""Local persistent caches shared by stores and views."""

from .local_cache import (
    ALL_PATHS,
    COMPLETION,
    PATHS,
    PENDING_SYNC,
    PATH_SCOPED_KINDS,
    PROGRESS,
    VISITED_LINKS,
    LocalCache,
    normalize_user_id,
)

__all__ = [
    "ALL_PATHS",
    "COMPLETION",
    "LocalCache",
    "PATHS",
    "PATH_SCOPED_KINDS",
    "PENDING_SYNC",
    "PROGRESS",
    "VISITED_LINKS",
    "normalize_user_id",
]
