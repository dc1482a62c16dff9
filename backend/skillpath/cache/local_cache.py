"""Persistent key/value cache namespaced by (kind, learning path, user)."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from ..db.models import LocalCacheEntryModel
from ..db.session import build_engine, create_session_factory, get_engine, session_scope

logger = logging.getLogger(__name__)

PROGRESS = "learning-progress"
VISITED_LINKS = "visited-links"
PENDING_SYNC = "pending-sync"
COMPLETION = "course-completion"
PATHS = "learning-paths"

# Namespace used for per-user entries that are not tied to a single path.
ALL_PATHS = "*"

PATH_SCOPED_KINDS = (PROGRESS, VISITED_LINKS, PENDING_SYNC, COMPLETION)

GUEST_USER = "guest"


def _normalize_key(value: Optional[str], *, label: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise ValueError(f"{label} cannot be empty when addressing the local cache.")
    return normalized


def normalize_user_id(user_id: Optional[str]) -> str:
    trimmed = (user_id or "").strip()
    return trimmed or GUEST_USER


class LocalCache:
    """SQL-backed cache standing in for the browser's persistent storage.

    Every read returns a private copy. ``update`` performs read-modify-write in
    one transaction under a process lock, so writes to the same key are applied
    in issue order.
    """

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self._engine = engine or get_engine()
        self._session_factory: sessionmaker[Session] = create_session_factory(self._engine)
        self._lock = threading.RLock()

    @classmethod
    def from_url(cls, database_url: str, *, echo: bool = False) -> "LocalCache":
        return cls(build_engine(database_url, echo=echo))

    @property
    def engine(self) -> Engine:
        return self._engine

    def _select(self, session: Session, kind: str, path_id: str, user_id: str) -> Optional[LocalCacheEntryModel]:
        stmt = select(LocalCacheEntryModel).where(
            LocalCacheEntryModel.kind == kind,
            LocalCacheEntryModel.learning_path_id == path_id,
            LocalCacheEntryModel.user_id == user_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def get(self, kind: str, path_id: str, user_id: Optional[str]) -> Dict[str, Any]:
        path_key = _normalize_key(path_id, label="Learning path id")
        user_key = normalize_user_id(user_id)
        with session_scope(self._session_factory, commit=False) as session:
            model = self._select(session, kind, path_key, user_key)
            if model is None:
                return {}
            return copy.deepcopy(dict(model.payload or {}))

    def set(self, kind: str, path_id: str, user_id: Optional[str], payload: Dict[str, Any]) -> None:
        self.update(kind, path_id, user_id, lambda _current: payload)

    def update(
        self,
        kind: str,
        path_id: str,
        user_id: Optional[str],
        mutate: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """Apply ``mutate`` to the stored payload and persist the result.

        ``mutate`` may edit the dict in place and return ``None``, or return a
        replacement dict.
        """
        path_key = _normalize_key(path_id, label="Learning path id")
        user_key = normalize_user_id(user_id)
        with self._lock, session_scope(self._session_factory) as session:
            model = self._select(session, kind, path_key, user_key)
            current = copy.deepcopy(dict(model.payload or {})) if model is not None else {}
            result = mutate(current)
            updated = current if result is None else dict(result)
            if model is None:
                model = LocalCacheEntryModel(
                    kind=kind,
                    learning_path_id=path_key,
                    user_id=user_key,
                    payload=updated,
                )
                session.add(model)
            else:
                model.payload = copy.deepcopy(updated)
            return copy.deepcopy(updated)

    def delete(self, kind: str, path_id: str, user_id: Optional[str]) -> bool:
        path_key = _normalize_key(path_id, label="Learning path id")
        user_key = normalize_user_id(user_id)
        with self._lock, session_scope(self._session_factory) as session:
            result = session.execute(
                delete(LocalCacheEntryModel).where(
                    LocalCacheEntryModel.kind == kind,
                    LocalCacheEntryModel.learning_path_id == path_key,
                    LocalCacheEntryModel.user_id == user_key,
                )
            )
            return bool(result.rowcount)

    def purge(
        self,
        path_id: str,
        user_id: Optional[str],
        kinds: Iterable[str] = PATH_SCOPED_KINDS,
    ) -> int:
        """Remove every entry of ``kinds`` for one (path, user) namespace."""
        path_key = _normalize_key(path_id, label="Learning path id")
        user_key = normalize_user_id(user_id)
        selected = list(kinds)
        with self._lock, session_scope(self._session_factory) as session:
            result = session.execute(
                delete(LocalCacheEntryModel).where(
                    LocalCacheEntryModel.learning_path_id == path_key,
                    LocalCacheEntryModel.user_id == user_key,
                    LocalCacheEntryModel.kind.in_(selected),
                )
            )
            removed = int(result.rowcount or 0)
        if removed:
            logger.debug("Purged %s local cache entries for path=%s user=%s", removed, path_key, user_key)
        return removed

    def entry_counts(self) -> Dict[str, int]:
        with session_scope(self._session_factory, commit=False) as session:
            rows = session.execute(
                select(LocalCacheEntryModel.kind, func.count()).group_by(LocalCacheEntryModel.kind)
            ).all()
        return {kind: int(count) for kind, count in rows}


__all__ = [
    "ALL_PATHS",
    "COMPLETION",
    "GUEST_USER",
    "LocalCache",
    "PATHS",
    "PATH_SCOPED_KINDS",
    "PENDING_SYNC",
    "PROGRESS",
    "VISITED_LINKS",
    "normalize_user_id",
]
