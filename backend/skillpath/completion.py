"""One-shot side effects fired when a learning path reaches 100%."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from .cache import COMPLETION, LocalCache, normalize_user_id
from .errors import SkillpathError
from .events import COURSE_COMPLETED, EventBus
from .models import LearningPath, ProgressRecord
from .remote.services import LearningPathService
from .telemetry import emit_event

logger = logging.getLogger(__name__)


def is_complete(record: ProgressRecord) -> bool:
    return record.total_tasks > 0 and record.overall_progress_percent >= 100


class CompletionDetector:
    """Announces completion once and keeps retrying the remote status update.

    The per-path marker lives in the local cache as
    ``{"announced": bool, "remote_synced": bool, "completed_at": iso}``. It is
    purged together with the rest of the path's local state on a fresh start,
    so a restarted path can complete again.
    """

    def __init__(
        self,
        path_service: LearningPathService,
        cache: LocalCache,
        bus: Optional[EventBus],
        user_id: Optional[str],
    ) -> None:
        self._path_service = path_service
        self._cache = cache
        self._bus = bus
        self._user_id = normalize_user_id(user_id)
        self._inflight: Set[str] = set()

    def marker(self, path_id: str) -> Dict[str, Any]:
        return self._cache.get(COMPLETION, path_id, self._user_id)

    def _claim_announcement(self, path_id: str, completed_at: datetime) -> bool:
        claimed = False

        def _mutate(current: Dict[str, Any]) -> None:
            nonlocal claimed
            if current.get("announced"):
                return
            current.update(
                {
                    "announced": True,
                    "remote_synced": bool(current.get("remote_synced")),
                    "completed_at": completed_at.isoformat(),
                }
            )
            claimed = True

        self._cache.update(COMPLETION, path_id, self._user_id, _mutate)
        return claimed

    async def evaluate(self, path: LearningPath, record: ProgressRecord) -> bool:
        """Returns True only on the evaluation that first observes completion."""
        if not is_complete(record):
            return False

        now = datetime.now(timezone.utc)
        first = self._claim_announcement(path.id, now)
        if first:
            emit_event(
                "course_completed",
                learning_path_id=path.id,
                user_id=self._user_id,
                total_tasks=record.total_tasks,
            )
            if self._bus is not None:
                self._bus.publish(
                    COURSE_COMPLETED,
                    {
                        "learningPathId": path.id,
                        "domain": path.domain,
                        "title": path.title,
                        "completedAt": now.isoformat(),
                    },
                )

        marker = self.marker(path.id)
        if marker.get("remote_synced") or path.id in self._inflight:
            return first
        if path.status == "completed" and path.synced:
            self._mark_synced(path.id)
            return first

        self._inflight.add(path.id)
        try:
            await self._path_service.update_path(
                path.id,
                {
                    "status": "completed",
                    "completedAt": marker.get("completed_at") or now.isoformat(),
                    "finalProgress": 100,
                },
            )
        except SkillpathError as exc:
            logger.warning("Completion status for path=%s not saved yet, will retry: %s", path.id, exc)
        else:
            self._mark_synced(path.id)
        finally:
            self._inflight.discard(path.id)
        return first

    def _mark_synced(self, path_id: str) -> None:
        def _mutate(current: Dict[str, Any]) -> None:
            current["remote_synced"] = True

        self._cache.update(COMPLETION, path_id, self._user_id, _mutate)


__all__ = ["CompletionDetector", "is_complete"]
