"""Learning path, plan and progress records."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, Field, model_validator

LearningLevel = Literal["beginner", "intermediate", "professional"]
PathStatus = Literal["active", "completed"]

_TASK_ID_PATTERN = re.compile(r"^day-(\d+)-task-(\d+)$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def task_id_for(day: int, index: int) -> str:
    return f"day-{day}-task-{index}"


def parse_task_id(task_id: str) -> Optional[Tuple[int, int]]:
    """Return ``(day, index)`` for a task id, or ``None`` when it is not one."""
    match = _TASK_ID_PATTERN.match(task_id or "")
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def resource_link_id(task_id: str, resource_index: int) -> str:
    return f"{task_id}-link-{resource_index}"


class Resource(BaseModel):
    """External reference attached to a task."""

    url: str
    title: str
    type: str = "documentation"


class Task(BaseModel):
    id: str
    day: int = Field(ge=1)
    index: int = Field(default=0, ge=0)
    title: str
    description: str
    estimated_time: str
    resources: List[Resource] = Field(default_factory=list)
    completed: bool = False

    def link_ids(self) -> List[str]:
        return [resource_link_id(self.id, position) for position in range(len(self.resources))]


class DailyPlan(BaseModel):
    """Tasks assigned to one day of a learning path. Regenerated, never stored."""

    day: int = Field(ge=1)
    theme: str
    title: str
    tasks: List[Task] = Field(default_factory=list)


class LearningPath(BaseModel):
    """A user's enrollment in one domain and level curriculum."""

    id: str
    user_id: str
    domain: str
    level: LearningLevel = "beginner"
    skills: List[str] = Field(default_factory=list)
    total_days: int = Field(default=10, ge=0)
    title: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    status: PathStatus = "active"
    synced: bool = True


class CompletedTaskEntry(BaseModel):
    completed: bool = True
    completed_at: Optional[datetime] = None
    time_spent: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    def _accept_bare_flags(cls, data: Any) -> Any:
        # Older ledgers stored ``taskId -> true`` instead of an entry object.
        if isinstance(data, bool):
            return {"completed": data}
        return data


class ProgressRecord(BaseModel):
    """Canonical completion state for one (learning path, user) pair."""

    learning_path_id: str
    user_id: str
    current_day: int = Field(default=1, ge=1)
    total_days: int = Field(default=0, ge=0)
    total_tasks: int = Field(default=0, ge=0)
    completed_tasks: Dict[str, CompletedTaskEntry] = Field(default_factory=dict)
    overall_progress_percent: int = Field(default=0, ge=0, le=100)
    resources_visited: Dict[str, bool] = Field(default_factory=dict)

    def completed_task_ids(self) -> Set[str]:
        return {task_id for task_id, entry in self.completed_tasks.items() if entry.completed}

    @property
    def completed_count(self) -> int:
        return len(self.completed_task_ids())

    @property
    def has_progress(self) -> bool:
        return self.completed_count > 0

    def is_task_completed(self, task_id: str) -> bool:
        entry = self.completed_tasks.get(task_id)
        return bool(entry and entry.completed)

    @classmethod
    def empty(cls, learning_path_id: str, user_id: str) -> "ProgressRecord":
        return cls(learning_path_id=learning_path_id, user_id=user_id)


class LoadClassification(str, Enum):
    """How a learning path load relates to any progress that already exists."""

    EXPLICIT_FRESH_START = "fresh_start"
    CONTINUING = "continuing"
    NEW = "new"


__all__ = [
    "CompletedTaskEntry",
    "DailyPlan",
    "LearningLevel",
    "LearningPath",
    "LoadClassification",
    "PathStatus",
    "ProgressRecord",
    "Resource",
    "Task",
    "parse_task_id",
    "resource_link_id",
    "task_id_for",
]
