"""Database utilities for the skillpath local cache."""

from .session import (
    build_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
    session_scope,
)

__all__ = [
    "build_engine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
