"""Canonical progress from the remote ledger, the local cache and the task plan.

The merge policy picks one source for the entire record.

* The remote record wins when it carries at least one completed task and no
  local write for the path is still waiting to be synced.
* Otherwise the local cache wins.

When the remote wins, the local cache is refreshed from it, except that local
completions the remote has not seen yet are kept and queued for resync.

Derived fields (``current_day``, ``total_tasks``, ``overall_progress_percent``)
are always recomputed from the winning completed map and the regenerated plan,
never copied from either source, which keeps reconciliation idempotent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

from .completion import CompletionDetector
from .gate import GateController
from .models import DailyPlan, LearningPath, LoadClassification, ProgressRecord
from .task_plan import TaskPlanGenerator
from .telemetry import emit_event

if TYPE_CHECKING:
    from .path_registry import LearningPathRegistry
    from .progress_store import ProgressSnapshot, ProgressStore

logger = logging.getLogger(__name__)

SOURCE_REMOTE = "remote"
SOURCE_LOCAL = "local"
SOURCE_RESET = "reset"


def merge_sources(
    remote: Optional[ProgressRecord],
    local: Optional[ProgressRecord],
    *,
    pending_sync: bool = False,
) -> Tuple[ProgressRecord, str]:
    if remote is not None and remote.has_progress and not pending_sync:
        return remote, SOURCE_REMOTE
    if local is not None:
        return local, SOURCE_LOCAL
    if remote is not None:
        return remote, SOURCE_REMOTE
    raise ValueError("merge_sources needs at least one progress record.")


def classify_load(*, fresh_start: bool, resume: bool, has_progress: bool) -> LoadClassification:
    if fresh_start:
        return LoadClassification.EXPLICIT_FRESH_START
    if resume or has_progress:
        return LoadClassification.CONTINUING
    return LoadClassification.NEW


def progress_percent(completed: int, total_tasks: int) -> int:
    """Round half up, reserving 100 for a fully completed plan."""
    if total_tasks <= 0 or completed <= 0:
        return 0
    if completed >= total_tasks:
        return 100
    return min((200 * completed + total_tasks) // (2 * total_tasks), 99)


def current_day_for(plans: Sequence[DailyPlan], completed_ids: Iterable[str], total_days: int) -> int:
    completed = set(completed_ids)
    last_full_day = 0
    for plan in plans:
        if plan.tasks and all(task.id in completed for task in plan.tasks):
            last_full_day = max(last_full_day, plan.day)
    if last_full_day == 0:
        return 1
    return max(min(last_full_day + 1, total_days), 1)


def build_record(
    path: LearningPath,
    plans: Sequence[DailyPlan],
    source: ProgressRecord,
    visited: Optional[Dict[str, bool]] = None,
) -> ProgressRecord:
    inventory = [task.id for plan in plans for task in plan.tasks]
    completed_entries = {
        task_id: entry.model_copy() for task_id, entry in sorted(source.completed_tasks.items()) if entry.completed
    }
    done = sum(1 for task_id in inventory if task_id in completed_entries)
    total_days = len(plans)
    return ProgressRecord(
        learning_path_id=path.id,
        user_id=source.user_id,
        current_day=current_day_for(plans, completed_entries, total_days),
        total_days=total_days,
        total_tasks=len(inventory),
        completed_tasks=completed_entries,
        overall_progress_percent=progress_percent(done, len(inventory)),
        resources_visited=dict(sorted((visited or {}).items())),
    )


def apply_plan_state(plans: Sequence[DailyPlan], record: ProgressRecord) -> List[DailyPlan]:
    """Copies of ``plans`` with each task's ``completed`` flag taken from ``record``."""
    updated: List[DailyPlan] = []
    for plan in plans:
        tasks = [task.model_copy(update={"completed": record.is_task_completed(task.id)}) for task in plan.tasks]
        updated.append(plan.model_copy(update={"tasks": tasks}))
    return updated


@dataclass
class ReconciliationResult:
    path: LearningPath
    record: ProgressRecord
    classification: LoadClassification
    plans: List[DailyPlan] = field(default_factory=list)
    source: str = SOURCE_LOCAL
    pending_sync: bool = False
    reauth_required: bool = False
    remote_error: Optional[str] = None
    newly_completed: bool = False


class ReconciliationEngine:
    """Produces the canonical progress record for a path load or refresh."""

    def __init__(
        self,
        store: "ProgressStore",
        *,
        generator: Optional[TaskPlanGenerator] = None,
        detector: Optional[CompletionDetector] = None,
    ) -> None:
        self._store = store
        self._generator = generator or TaskPlanGenerator()
        self._detector = detector

    @property
    def store(self) -> "ProgressStore":
        return self._store

    def plans_for(self, path: LearningPath) -> List[DailyPlan]:
        return self._generator.generate(path.domain, path.skills, path.level, path.total_days)

    def gate_for(self, path: LearningPath) -> GateController:
        return GateController(self._store.cache, path.id, self._store.user_id)

    async def reconcile(
        self,
        path: LearningPath,
        *,
        fresh_start: bool = False,
        resume: bool = False,
    ) -> ReconciliationResult:
        if fresh_start:
            plans = self.plans_for(path)
            synced = await self._store.reset(path.id, total_days=len(plans))
            return await self._finish(
                path,
                plans,
                ProgressRecord.empty(path.id, self._store.user_id),
                LoadClassification.EXPLICIT_FRESH_START,
                SOURCE_RESET,
                pending_sync=not synced,
            )
        snapshot = await self._store.fetch_snapshot(path.id)
        return await self.reconcile_snapshot(path, snapshot, resume=resume)

    async def reconcile_snapshot(
        self,
        path: LearningPath,
        snapshot: "ProgressSnapshot",
        *,
        resume: bool = False,
    ) -> ReconciliationResult:
        plans = self.plans_for(path)
        merged, source = merge_sources(snapshot.remote, snapshot.local, pending_sync=snapshot.pending_sync)
        classification = classify_load(fresh_start=False, resume=resume, has_progress=merged.has_progress)
        if classification is LoadClassification.NEW:
            self._store.purge_local(path.id, keep_pending=True)
            logger.debug("New load for path=%s user=%s; local state purged", path.id, self._store.user_id)
            merged = ProgressRecord.empty(path.id, self._store.user_id)

        result = await self._finish(
            path,
            plans,
            merged,
            classification,
            source,
            pending_sync=snapshot.pending_sync,
        )
        result.reauth_required = snapshot.reauth_required
        result.remote_error = snapshot.remote_error
        if snapshot.remote_error is None and source == SOURCE_LOCAL and result.record.has_progress:
            await self._push_if_behind(snapshot.remote, result)
        return result

    async def _finish(
        self,
        path: LearningPath,
        plans: List[DailyPlan],
        merged: ProgressRecord,
        classification: LoadClassification,
        source: str,
        *,
        pending_sync: bool,
    ) -> ReconciliationResult:
        gate = self.gate_for(path)
        gate.backfill(plans, merged.completed_task_ids())
        record = build_record(path, plans, merged, gate.visited_links())
        if source == SOURCE_REMOTE and self._store.refresh_local(record):
            # Local completions the remote has not seen yet stay, queued for resync.
            merged = self._store.load_local(path.id)
            gate.backfill(plans, merged.completed_task_ids())
            record = build_record(path, plans, merged, gate.visited_links())
            pending_sync = True

        newly_completed = False
        if self._detector is not None:
            newly_completed = await self._detector.evaluate(path, record)

        emit_event(
            "progress_reconciled",
            learning_path_id=path.id,
            user_id=self._store.user_id,
            classification=classification,
            source=source,
            completed=record.completed_count,
            total_tasks=record.total_tasks,
            percent=record.overall_progress_percent,
        )
        return ReconciliationResult(
            path=path,
            record=record,
            classification=classification,
            plans=apply_plan_state(plans, record),
            source=source,
            pending_sync=pending_sync,
            newly_completed=newly_completed,
        )

    async def _push_if_behind(self, remote: Optional[ProgressRecord], result: ReconciliationResult) -> None:
        record = result.record
        if remote is not None and remote.completed_task_ids() >= record.completed_task_ids():
            return
        if not await self._store.submit_overall_progress(record):
            result.pending_sync = True

    async def reconcile_paths(
        self,
        registry: "LearningPathRegistry",
        *,
        resume: bool = True,
    ) -> List[ReconciliationResult]:
        """Reconcile every path the registry lists for this user.

        The path list and the progress ledger are fetched concurrently; the
        ledger is fetched once and shared by every path.
        """
        paths, index = await asyncio.gather(registry.list_paths(), self._store.fetch_remote_index())
        results: List[ReconciliationResult] = []
        for path in paths:
            snapshot = self._store.snapshot_from(path.id, index)
            results.append(await self.reconcile_snapshot(path, snapshot, resume=resume))
        return results


__all__ = [
    "ReconciliationEngine",
    "ReconciliationResult",
    "SOURCE_LOCAL",
    "SOURCE_REMOTE",
    "SOURCE_RESET",
    "apply_plan_state",
    "build_record",
    "classify_load",
    "current_day_for",
    "merge_sources",
    "progress_percent",
]
