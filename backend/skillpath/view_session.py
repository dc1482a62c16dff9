"""Per-view controller for one open learning path."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .events import PATH_DELETED, PROGRESS_UPDATED, BroadcastMessage, EventBus, Subscription
from .gate import GateController
from .models import LearningPath, ProgressRecord, Task
from .path_registry import ensure_owned
from .reconciliation import ReconciliationEngine, ReconciliationResult
from .task_plan import find_task

logger = logging.getLogger(__name__)

SYNC_NOTICE = "Progress saved locally; it will sync when the connection recovers."

STATUS_COMPLETED = "completed"
STATUS_ALREADY_COMPLETED = "already_completed"
STATUS_GATE_VIOLATION = "gate_violation"

Identity = Tuple[Optional[str], str, int]


@dataclass
class CompletionOutcome:
    task_id: str
    status: str
    record: Optional[ProgressRecord] = None
    unvisited: List[str] = field(default_factory=list)
    sync_notice: Optional[str] = None
    reauth_required: bool = False
    course_completed: bool = False

    @property
    def accepted(self) -> bool:
        return self.status == STATUS_COMPLETED


class LearningSession:
    """State of one view (tab) showing a learning path.

    Every awaited result is applied only if the view still shows the same
    (path, user, generation) it showed when the call started; loading another
    path or closing the view bumps the generation.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        bus: EventBus,
        *,
        strict_ownership: bool = True,
    ) -> None:
        self._engine = engine
        self._bus = bus
        self._strict_ownership = strict_ownership
        self._session_id = uuid.uuid4().hex
        self._path: Optional[LearningPath] = None
        self._result: Optional[ReconciliationResult] = None
        self._generation = 0
        self._closed = False
        self._subscriptions: List[Subscription] = [
            bus.subscribe(PROGRESS_UPDATED, self._on_progress_updated),
            bus.subscribe(PATH_DELETED, self._on_path_deleted),
        ]

    @property
    def user_id(self) -> str:
        return self._engine.store.user_id

    @property
    def path(self) -> Optional[LearningPath]:
        return self._path

    @property
    def result(self) -> Optional[ReconciliationResult]:
        return self._result

    @property
    def record(self) -> Optional[ProgressRecord]:
        return self._result.record if self._result else None

    @property
    def closed(self) -> bool:
        return self._closed

    def identity(self) -> Identity:
        return (self._path.id if self._path else None, self.user_id, self._generation)

    def _require_path(self) -> LearningPath:
        if self._closed:
            raise RuntimeError("Learning session has been closed.")
        if self._path is None:
            raise RuntimeError("No learning path loaded in this session.")
        return self._path

    def _accept(self, identity: Identity, result: ReconciliationResult) -> Optional[ReconciliationResult]:
        if identity != self.identity():
            logger.debug("Discarding stale reconciliation for path=%s", result.path.id)
            return None
        self._result = result
        return result

    async def load(
        self,
        path: LearningPath,
        *,
        fresh_start: bool = False,
        resume: bool = False,
    ) -> Optional[ReconciliationResult]:
        """Show ``path`` in this view. Returns None if the load was refused or superseded."""
        if self._closed:
            raise RuntimeError("Learning session has been closed.")
        if not ensure_owned(path, self.user_id, strict=self._strict_ownership):
            return None
        self._path = path
        self._result = None
        self._generation += 1
        identity = self.identity()
        result = await self._engine.reconcile(path, fresh_start=fresh_start, resume=resume)
        return self._accept(identity, result)

    async def refresh(self) -> Optional[ReconciliationResult]:
        path = self._require_path()
        identity = self.identity()
        result = await self._engine.reconcile(path, resume=True)
        return self._accept(identity, result)

    def _gate(self) -> GateController:
        return self._engine.gate_for(self._require_path())

    def _task(self, task_id: str) -> Task:
        plans = self._result.plans if self._result else self._engine.plans_for(self._require_path())
        task = find_task(plans, task_id)
        if task is None:
            raise ValueError(f"Task {task_id} is not part of learning path {self._require_path().id}.")
        return task

    def visit_resource(self, task_id: str, resource_index: int) -> bool:
        task = self._task(task_id)
        if not 0 <= resource_index < len(task.resources):
            raise ValueError(f"Task {task_id} has no resource #{resource_index}.")
        return self._gate().mark_visited(task_id, resource_index)

    def can_complete(self, task_id: str) -> bool:
        return self._gate().can_complete(self._task(task_id))

    async def complete_task(self, task_id: str) -> CompletionOutcome:
        path = self._require_path()
        task = self._task(task_id)
        gate = self._gate()
        if not gate.can_complete(task):
            return CompletionOutcome(
                task_id=task_id,
                status=STATUS_GATE_VIOLATION,
                record=self.record,
                unvisited=gate.unvisited(task),
            )

        identity = self.identity()
        write = await self._engine.store.record_task_completion(path.id, task_id)
        if not write.changed:
            return CompletionOutcome(task_id=task_id, status=STATUS_ALREADY_COMPLETED, record=self.record)

        result = await self._engine.reconcile(path, resume=True)
        synced = write.synced
        if synced:
            # Keeps the ledger's overall percent and current day in step with each completion.
            synced = await self._engine.store.submit_overall_progress(result.record)
        self._accept(identity, result)
        self._bus.publish(
            PROGRESS_UPDATED,
            {
                "learningPathId": path.id,
                "taskId": task_id,
                "completedTasks": result.record.completed_count,
                "overallProgress": result.record.overall_progress_percent,
                "sessionId": self._session_id,
            },
        )
        return CompletionOutcome(
            task_id=task_id,
            status=STATUS_COMPLETED,
            record=result.record,
            sync_notice=None if synced else SYNC_NOTICE,
            reauth_required=write.reauth_required or result.reauth_required,
            course_completed=result.newly_completed,
        )

    async def _on_progress_updated(self, message: BroadcastMessage) -> None:
        if message.payload.get("sessionId") == self._session_id:
            return
        if self._closed or self._path is None:
            return
        if message.payload.get("learningPathId") not in (None, self._path.id):
            return
        await self.refresh()

    def _on_path_deleted(self, message: BroadcastMessage) -> None:
        if self._path is not None and message.payload.get("learningPathId") == self._path.id:
            logger.info("Learning path %s was deleted; clearing view", self._path.id)
            self._path = None
            self._result = None
            self._generation += 1

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []
        self._closed = True
        self._path = None
        self._result = None
        self._generation += 1

    def __enter__(self) -> "LearningSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = [
    "CompletionOutcome",
    "LearningSession",
    "STATUS_ALREADY_COMPLETED",
    "STATUS_COMPLETED",
    "STATUS_GATE_VIOLATION",
    "SYNC_NOTICE",
]
