from __future__ import annotations

import copy
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import pytest

from skillpath.cache import LocalCache
from skillpath.completion import CompletionDetector
from skillpath.errors import TransientNetworkError
from skillpath.events import EventBus
from skillpath.models import LearningPath
from skillpath.path_registry import LearningPathRegistry
from skillpath.progress_store import ProgressStore
from skillpath.reconciliation import ReconciliationEngine

USER_ID = "learner-1"


class FakeProgressService:
    """In-memory progress ledger; flip ``raise_errors`` to simulate an outage."""

    def __init__(self, user_id: str = USER_ID) -> None:
        self.user_id = user_id
        self.raise_errors = False
        self.error_factory: Callable[[], Exception] = lambda: TransientNetworkError("ledger unavailable")
        self.entries: Dict[str, Dict[str, Any]] = {}
        # Per-task documents the ledger keeps beside the main record; listed first, as the ledger does.
        self.task_documents: List[Dict[str, Any]] = []
        self.completions: List[Tuple[str, int, int, str]] = []
        self.updates: List[Dict[str, Any]] = []
        self.fetches = 0

    def _maybe_fail(self) -> None:
        if self.raise_errors:
            raise self.error_factory()

    def seed(self, path_id: str, task_ids: List[str], **extra: Any) -> None:
        self.entries[path_id] = {
            "learningPathId": path_id,
            "userId": self.user_id,
            "completedTasks": {task_id: {"completed": True, "timeSpent": 0} for task_id in task_ids},
            **extra,
        }

    async def fetch_all_progress(self) -> List[Dict[str, Any]]:
        self.fetches += 1
        self._maybe_fail()
        return [copy.deepcopy(entry) for entry in [*self.task_documents, *self.entries.values()]]

    async def submit_task_completion(self, path_id: str, day: int, task_index: int, task_id: str) -> None:
        self._maybe_fail()
        entry = self.entries.setdefault(
            path_id, {"learningPathId": path_id, "userId": self.user_id, "completedTasks": {}}
        )
        entry["completedTasks"][task_id] = {"completed": True, "completedAt": None, "timeSpent": 0}
        self.completions.append((path_id, day, task_index, task_id))

    async def submit_overall_progress(
        self,
        path_id: str,
        current_day: int,
        total_days: int,
        completed_tasks: Dict[str, Dict[str, Any]],
        overall_progress_percent: int,
    ) -> None:
        self._maybe_fail()
        self.entries[path_id] = {
            "learningPathId": path_id,
            "userId": self.user_id,
            "currentDay": current_day,
            "totalDays": total_days,
            "completedTasks": copy.deepcopy(completed_tasks),
            "overallProgress": overall_progress_percent,
        }
        self.updates.append(copy.deepcopy(self.entries[path_id]))


class FakePathService:
    def __init__(self, user_id: str = USER_ID) -> None:
        self.user_id = user_id
        self.raise_errors = False
        self.error_factory: Callable[[], Exception] = lambda: TransientNetworkError("paths unavailable")
        self.paths: Dict[str, Dict[str, Any]] = {}
        self.status_updates: List[Tuple[str, Dict[str, Any]]] = []
        self.deleted: List[str] = []
        self._counter = 0

    def _maybe_fail(self) -> None:
        if self.raise_errors:
            raise self.error_factory()

    async def list_paths(self) -> List[Dict[str, Any]]:
        self._maybe_fail()
        return [copy.deepcopy(path) for path in self.paths.values()]

    async def list_completed_paths(self) -> List[Dict[str, Any]]:
        self._maybe_fail()
        return [copy.deepcopy(path) for path in self.paths.values() if path.get("status") == "completed"]

    async def create_path(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._maybe_fail()
        self._counter += 1
        path_id = f"path-{self._counter}"
        self.paths[path_id] = {"_id": path_id, **copy.deepcopy(fields)}
        return copy.deepcopy(self.paths[path_id])

    async def update_path(self, path_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._maybe_fail()
        self.status_updates.append((path_id, copy.deepcopy(fields)))
        self.paths.setdefault(path_id, {"_id": path_id, "userId": self.user_id}).update(fields)
        return copy.deepcopy(self.paths[path_id])

    async def delete_path(self, path_id: str) -> None:
        self._maybe_fail()
        self.deleted.append(path_id)
        self.paths.pop(path_id, None)


def make_path(
    path_id: str = "path-1",
    *,
    user_id: str = USER_ID,
    skills: Optional[List[str]] = None,
    total_days: int = 10,
    level: str = "beginner",
    domain: str = "web-development",
) -> LearningPath:
    return LearningPath(
        id=path_id,
        user_id=user_id,
        domain=domain,
        level=level,
        skills=skills if skills is not None else ["HTML", "CSS", "JS"],
        total_days=total_days,
    )


@pytest.fixture()
def cache() -> Iterator[LocalCache]:
    local = LocalCache.from_url("sqlite://")
    yield local
    local.engine.dispose()


@pytest.fixture()
def progress_service() -> FakeProgressService:
    return FakeProgressService()


@pytest.fixture()
def path_service() -> FakePathService:
    return FakePathService()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus(user_id=USER_ID)


@pytest.fixture()
def store(progress_service: FakeProgressService, cache: LocalCache) -> ProgressStore:
    return ProgressStore(progress_service, cache, USER_ID)


@pytest.fixture()
def detector(path_service: FakePathService, cache: LocalCache, bus: EventBus) -> CompletionDetector:
    return CompletionDetector(path_service, cache, bus, USER_ID)


@pytest.fixture()
def engine(store: ProgressStore, detector: CompletionDetector) -> ReconciliationEngine:
    return ReconciliationEngine(store, detector=detector)


@pytest.fixture()
def path() -> LearningPath:
    return make_path()


@pytest.fixture()
def registry(path_service: FakePathService, cache: LocalCache, bus: EventBus) -> LearningPathRegistry:
    return LearningPathRegistry(path_service, cache, USER_ID, bus=bus)
