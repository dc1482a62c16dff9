"""Learning path listing and lifecycle with a local fallback copy."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .cache import ALL_PATHS, PATHS, LocalCache, normalize_user_id
from .errors import MalformedDataError, OwnershipError, SkillpathError
from .events import PATH_CREATED, PATH_DELETED, EventBus
from .models import LearningPath
from .remote.payloads import parse_remote_path, path_create_payload
from .remote.services import LearningPathService
from .task_plan import DEFAULT_DURATION_DAYS, normalize_level, normalize_skills
from .telemetry import emit_event

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"


def ensure_owned(path: LearningPath, user_id: Optional[str], *, strict: bool) -> bool:
    """Check that ``path`` belongs to ``user_id``.

    Raises ``OwnershipError`` when ``strict``; otherwise logs and returns False.
    """
    owner = normalize_user_id(user_id)
    if path.user_id == owner:
        return True
    message = f"Learning path {path.id} belongs to {path.user_id!r}, not {owner!r}."
    if strict:
        raise OwnershipError(message)
    logger.error("Refusing to operate on foreign learning path: %s", message)
    return False


def is_local_only(path_id: str) -> bool:
    return path_id.startswith(LOCAL_ID_PREFIX)


class LearningPathRegistry:
    """Lists, creates and deletes one user's learning paths.

    The remote service is the source of truth. Every successful listing is
    mirrored into the local cache, which answers when the remote cannot. Paths
    created while offline get a ``local-`` id and ``synced=False``.
    """

    def __init__(
        self,
        service: LearningPathService,
        cache: LocalCache,
        user_id: Optional[str],
        *,
        bus: Optional[EventBus] = None,
        default_duration: int = DEFAULT_DURATION_DAYS,
    ) -> None:
        self._service = service
        self._cache = cache
        self._user_id = normalize_user_id(user_id)
        self._bus = bus
        self._default_duration = default_duration

    @property
    def user_id(self) -> str:
        return self._user_id

    def cached_paths(self) -> List[LearningPath]:
        stored = self._cache.get(PATHS, ALL_PATHS, self._user_id)
        paths: List[LearningPath] = []
        for raw in stored.get("paths", []):
            try:
                paths.append(LearningPath.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed cached learning path for user=%s: %s", self._user_id, exc)
        return paths

    def _store_paths(self, paths: Iterable[LearningPath]) -> None:
        payload = {"paths": [path.model_dump(mode="json") for path in paths]}
        self._cache.set(PATHS, ALL_PATHS, self._user_id, payload)

    def _parse_owned(self, entries: List[Dict[str, Any]]) -> List[LearningPath]:
        paths: List[LearningPath] = []
        for raw in entries:
            try:
                path = parse_remote_path(raw, self._user_id)
            except MalformedDataError as exc:
                logger.warning("Skipping malformed remote learning path: %s", exc)
                continue
            if path.user_id != self._user_id:
                logger.warning("Remote listed path %s owned by another user; ignoring", path.id)
                continue
            paths.append(path)
        return paths

    async def list_paths(self) -> List[LearningPath]:
        cached = self.cached_paths()
        try:
            remote = self._parse_owned(await self._service.list_paths())
        except SkillpathError as exc:
            logger.info("Learning path list unavailable, using local copy for user=%s: %s", self._user_id, exc)
            return cached

        seen = {(path.domain, path.level) for path in remote}
        unsynced = [
            path for path in cached if not path.synced and (path.domain, path.level) not in seen
        ]
        merged = remote + unsynced
        self._store_paths(merged)
        return merged

    async def list_completed_paths(self) -> List[LearningPath]:
        try:
            return self._parse_owned(await self._service.list_completed_paths())
        except SkillpathError as exc:
            logger.info("Completed path list unavailable, using local copy for user=%s: %s", self._user_id, exc)
            return [path for path in self.cached_paths() if path.status == "completed"]

    async def get_path(self, path_id: str) -> Optional[LearningPath]:
        for path in await self.list_paths():
            if path.id == path_id:
                return path
        return None

    async def create_path(
        self,
        domain: str,
        skills: Any = None,
        level: Any = None,
        *,
        total_days: Optional[int] = None,
        title: Optional[str] = None,
    ) -> LearningPath:
        draft = LearningPath(
            id=f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}",
            user_id=self._user_id,
            domain=domain,
            level=normalize_level(level),
            skills=normalize_skills(domain, skills),
            total_days=self._default_duration if total_days is None else total_days,
            title=title,
            synced=False,
        )
        try:
            created = await self._service.create_path(path_create_payload(draft))
            path = parse_remote_path(created, self._user_id)
        except SkillpathError as exc:
            logger.warning("Learning path saved locally only for user=%s: %s", self._user_id, exc)
            path = draft
        else:
            # Fields the server may omit fall back to the draft.
            path = path.model_copy(
                update={
                    "user_id": self._user_id,
                    "skills": path.skills or draft.skills,
                    "title": path.title or draft.title,
                    "domain": draft.domain if path.domain == "general" else path.domain,
                }
            )

        others = [existing for existing in self.cached_paths() if existing.id != path.id]
        self._store_paths([path, *others])
        emit_event("learning_path_created", learning_path_id=path.id, user_id=self._user_id, synced=path.synced)
        if self._bus is not None:
            self._bus.publish(
                PATH_CREATED,
                {"learningPathId": path.id, "domain": path.domain, "level": path.level, "synced": path.synced},
            )
        return path

    async def delete_path(self, path_id: str) -> bool:
        """Delete remotely, then drop every local trace of the path.

        Returns False and changes nothing when the remote delete fails.
        """
        if not is_local_only(path_id):
            try:
                await self._service.delete_path(path_id)
            except SkillpathError as exc:
                logger.warning("Could not delete learning path %s: %s", path_id, exc)
                return False

        self._cache.purge(path_id, self._user_id)
        self._store_paths(path for path in self.cached_paths() if path.id != path_id)
        emit_event("learning_path_deleted", learning_path_id=path_id, user_id=self._user_id)
        if self._bus is not None:
            self._bus.publish(PATH_DELETED, {"learningPathId": path_id})
        return True


__all__ = ["LOCAL_ID_PREFIX", "LearningPathRegistry", "ensure_owned", "is_local_only"]
