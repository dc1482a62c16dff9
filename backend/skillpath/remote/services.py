"""Remote progress and learning-path service contracts with HTTP implementations."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

from ..errors import MalformedDataError
from .client import ApiClient


class ProgressService(Protocol):
    """Remote progress ledger as seen by the store."""

    async def fetch_all_progress(self) -> List[Dict[str, Any]]:  # pragma: no cover - protocol definition
        ...

    async def submit_task_completion(
        self, path_id: str, day: int, task_index: int, task_id: str
    ) -> None:  # pragma: no cover - protocol definition
        ...

    async def submit_overall_progress(
        self,
        path_id: str,
        current_day: int,
        total_days: int,
        completed_tasks: Dict[str, Dict[str, Any]],
        overall_progress_percent: int,
    ) -> None:  # pragma: no cover - protocol definition
        ...


class LearningPathService(Protocol):
    async def list_paths(self) -> List[Dict[str, Any]]:  # pragma: no cover - protocol definition
        ...

    async def list_completed_paths(self) -> List[Dict[str, Any]]:  # pragma: no cover - protocol definition
        ...

    async def create_path(self, fields: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - protocol definition
        ...

    async def update_path(
        self, path_id: str, fields: Dict[str, Any]
    ) -> Dict[str, Any]:  # pragma: no cover - protocol definition
        ...

    async def delete_path(self, path_id: str) -> None:  # pragma: no cover - protocol definition
        ...


def _expect_list(data: Any, endpoint: str) -> List[Dict[str, Any]]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise MalformedDataError(f"{endpoint} returned {type(data).__name__}, expected a list")
    return [item for item in data if isinstance(item, dict)]


def _expect_mapping(data: Any, endpoint: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedDataError(f"{endpoint} returned {type(data).__name__}, expected an object")
    return data


class HttpProgressService:
    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def fetch_all_progress(self) -> List[Dict[str, Any]]:
        data = await self._client.request("GET", "/api/progress")
        return _expect_list(data, "GET /api/progress")

    async def submit_task_completion(self, path_id: str, day: int, task_index: int, task_id: str) -> None:
        await self._client.request(
            "POST",
            "/api/progress/complete-task",
            json={
                "learningPathId": path_id,
                "day": day,
                "taskIndex": task_index,
                "taskId": task_id,
            },
        )

    async def submit_overall_progress(
        self,
        path_id: str,
        current_day: int,
        total_days: int,
        completed_tasks: Dict[str, Dict[str, Any]],
        overall_progress_percent: int,
    ) -> None:
        await self._client.request(
            "POST",
            "/api/progress/update",
            json={
                "learningPathId": path_id,
                "currentDay": current_day,
                "totalDays": total_days,
                "completedTasks": completed_tasks,
                "overallProgress": overall_progress_percent,
            },
        )


class HttpLearningPathService:
    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def list_paths(self) -> List[Dict[str, Any]]:
        return _expect_list(await self._client.request("GET", "/api/paths"), "GET /api/paths")

    async def list_completed_paths(self) -> List[Dict[str, Any]]:
        data = await self._client.request("GET", "/api/paths/completed")
        return _expect_list(data, "GET /api/paths/completed")

    async def create_path(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._client.request("POST", "/api/paths", json=fields)
        return _expect_mapping(data, "POST /api/paths")

    async def update_path(self, path_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._client.request("PUT", f"/api/paths/{path_id}", json=fields)
        return data if isinstance(data, dict) else {}

    async def delete_path(self, path_id: str) -> None:
        await self._client.request("DELETE", f"/api/paths/{path_id}")


__all__ = [
    "HttpLearningPathService",
    "HttpProgressService",
    "LearningPathService",
    "ProgressService",
]
