"""Wire payloads exchanged with the remote ledger services."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..errors import MalformedDataError
from ..models import CompletedTaskEntry, LearningPath, ProgressRecord
from ..task_plan import normalize_level


class RemoteTaskEntryPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    completed: bool = False
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    time_spent: float = Field(default=0, alias="timeSpent", ge=0)

    @model_validator(mode="before")
    def _accept_bare_flags(cls, data: Any) -> Any:
        if isinstance(data, bool):
            return {"completed": data}
        return data


class RemoteProgressPayload(BaseModel):
    """One entry of ``GET /api/progress``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    learning_path_id: str = Field(alias="learningPathId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    domain: Optional[str] = None
    current_day: int = Field(default=1, alias="currentDay")
    total_days: int = Field(default=0, alias="totalDays", ge=0)
    completed_tasks: Dict[str, RemoteTaskEntryPayload] = Field(default_factory=dict, alias="completedTasks")
    overall_progress: Optional[float] = Field(default=None, alias="overallProgress")

    @field_validator("completed_tasks", mode="before")
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_record(self, user_id: str) -> ProgressRecord:
        entries = {
            task_id: CompletedTaskEntry(
                completed=entry.completed,
                completed_at=entry.completed_at,
                time_spent=int(entry.time_spent),
            )
            for task_id, entry in self.completed_tasks.items()
        }
        return ProgressRecord(
            learning_path_id=self.learning_path_id,
            user_id=user_id,
            current_day=max(self.current_day, 1),
            total_days=self.total_days,
            completed_tasks=entries,
            overall_progress_percent=min(max(int(round(self.overall_progress or 0)), 0), 100),
        )


class RemotePathPayload(BaseModel):
    """One learning path as returned by ``/api/paths``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")
    user: Optional[Any] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    title: Optional[str] = None
    domain: Optional[str] = None
    level: Optional[str] = None
    skills: List[Any] = Field(default_factory=list)
    total_days: int = Field(default=10, alias="totalDays", ge=0)
    status: Optional[str] = None
    is_completed: bool = Field(default=False, alias="isCompleted")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @property
    def owner(self) -> Optional[str]:
        return self.user_id or (self.user if isinstance(self.user, str) else None)

    def to_domain(self, fallback_user_id: str) -> LearningPath:
        skills: List[str] = []
        for entry in self.skills:
            name = entry.get("name") if isinstance(entry, dict) else entry
            if isinstance(name, str) and name.strip():
                skills.append(name.strip())
        completed = self.is_completed or (self.status or "").lower() == "completed"
        return LearningPath(
            id=self.id,
            user_id=self.owner or fallback_user_id,
            domain=self.domain or "general",
            level=normalize_level(self.level),
            skills=skills,
            total_days=self.total_days,
            title=self.title,
            created_at=self.created_at or datetime.now(timezone.utc),
            status="completed" if completed else "active",
            synced=True,
        )


def parse_remote_progress(raw: Any, user_id: str) -> ProgressRecord:
    try:
        payload = RemoteProgressPayload.model_validate(raw)
    except ValidationError as exc:
        raise MalformedDataError(f"Remote progress entry failed validation: {exc}") from exc
    return payload.to_record(user_id)


def parse_remote_path(raw: Any, user_id: str) -> LearningPath:
    try:
        payload = RemotePathPayload.model_validate(raw)
    except ValidationError as exc:
        raise MalformedDataError(f"Remote learning path failed validation: {exc}") from exc
    return payload.to_domain(user_id)


def completed_tasks_payload(record: ProgressRecord) -> Dict[str, Dict[str, Any]]:
    return {
        task_id: {
            "completed": entry.completed,
            "completedAt": entry.completed_at.isoformat() if entry.completed_at else None,
            "timeSpent": entry.time_spent,
        }
        for task_id, entry in sorted(record.completed_tasks.items())
    }


def path_create_payload(path: LearningPath) -> Dict[str, Any]:
    return {
        "title": path.title or f"{path.domain} Learning Path",
        "domain": path.domain,
        "level": path.level,
        "difficulty": path.level,
        "skills": list(path.skills),
        "totalDays": path.total_days,
        "currentDay": 1,
        "status": "in_progress" if path.status == "active" else "completed",
        "isAIGenerated": True,
        "userId": path.user_id,
    }


__all__ = [
    "RemotePathPayload",
    "RemoteProgressPayload",
    "RemoteTaskEntryPayload",
    "completed_tasks_payload",
    "parse_remote_path",
    "parse_remote_progress",
    "path_create_payload",
]
