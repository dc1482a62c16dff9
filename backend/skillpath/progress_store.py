"""Progress persistence over the remote ledger and the local cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .cache import PATH_SCOPED_KINDS, PENDING_SYNC, PROGRESS, LocalCache, normalize_user_id
from .errors import AuthExpiredError, MalformedDataError, SkillpathError
from .models import CompletedTaskEntry, ProgressRecord, parse_task_id
from .reconciliation import merge_sources
from .remote.payloads import completed_tasks_payload, parse_remote_progress
from .remote.services import ProgressService
from .telemetry import emit_event

logger = logging.getLogger(__name__)


@dataclass
class ProgressSnapshot:
    """Both progress sources for one path, as fetched in a single pass."""

    learning_path_id: str
    user_id: str
    remote: Optional[ProgressRecord]
    local: ProgressRecord
    pending_sync: bool = False
    reauth_required: bool = False
    remote_error: Optional[str] = None


@dataclass
class RemoteIndex:
    records: Dict[str, ProgressRecord] = field(default_factory=dict)
    error: Optional[Exception] = None


@dataclass(frozen=True)
class CompletionWrite:
    task_id: str
    changed: bool
    synced: bool
    reauth_required: bool = False
    error: Optional[str] = None


class ProgressStore:
    """Reads and writes one user's progress, preferring the remote ledger.

    Nothing here raises on network, auth or validation failures. Remote writes
    that fail are remembered in a persistent pending-sync entry and replayed at
    the start of the next snapshot fetch.
    """

    def __init__(self, service: ProgressService, cache: LocalCache, user_id: Optional[str]) -> None:
        self._service = service
        self._cache = cache
        self._user_id = normalize_user_id(user_id)

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def cache(self) -> LocalCache:
        return self._cache

    # Local cache -----------------------------------------------------------------

    def load_local(self, path_id: str) -> ProgressRecord:
        payload = self._cache.get(PROGRESS, path_id, self._user_id)
        if not payload:
            return ProgressRecord.empty(path_id, self._user_id)
        payload.update({"learning_path_id": path_id, "user_id": self._user_id})
        try:
            return ProgressRecord.model_validate(payload)
        except ValidationError as exc:
            error = MalformedDataError(f"Local progress for {path_id} failed validation: {exc}")
            logger.warning("Discarding local progress for path=%s user=%s: %s", path_id, self._user_id, error)
            return ProgressRecord.empty(path_id, self._user_id)

    def refresh_local(self, record: ProgressRecord) -> List[str]:
        """Refresh the cached record from ``record`` without losing local completions.

        Completions present locally but missing from ``record`` (written by
        another view while the remote fetch was in flight, for instance) are kept
        and queued for resync. Returns their task ids.
        """
        payload = record.model_dump(mode="json", exclude={"resources_visited"})
        kept: List[str] = []

        def _mutate(current: Dict[str, Any]) -> Dict[str, Any]:
            tasks = dict(payload["completed_tasks"])
            for task_id, entry in (current.get("completed_tasks") or {}).items():
                if task_id in tasks:
                    continue
                if entry is True or (isinstance(entry, dict) and entry.get("completed")):
                    tasks[task_id] = entry
                    kept.append(task_id)
            return {**payload, "completed_tasks": tasks}

        self._cache.update(PROGRESS, record.learning_path_id, self._user_id, _mutate)
        for task_id in sorted(kept):
            self._mark_pending(record.learning_path_id, task_id=task_id)
        if kept:
            logger.info(
                "Kept %d local completion(s) missing from remote progress for path=%s user=%s",
                len(kept),
                record.learning_path_id,
                self._user_id,
            )
        return sorted(kept)

    def record_local_completion(self, path_id: str, task_id: str) -> bool:
        """Mark ``task_id`` complete in the local cache. Returns False if it already was."""
        changed = False

        def _mutate(current: Dict[str, Any]) -> None:
            nonlocal changed
            tasks = current.setdefault("completed_tasks", {})
            existing = tasks.get(task_id)
            if isinstance(existing, dict) and existing.get("completed"):
                return
            if existing is True:
                return
            tasks[task_id] = CompletedTaskEntry(
                completed=True, completed_at=datetime.now(timezone.utc)
            ).model_dump(mode="json")
            changed = True

        self._cache.update(PROGRESS, path_id, self._user_id, _mutate)
        return changed

    def purge_local(self, path_id: str, *, keep_pending: bool = False) -> int:
        kinds = [kind for kind in PATH_SCOPED_KINDS if not (keep_pending and kind == PENDING_SYNC)]
        return self._cache.purge(path_id, self._user_id, kinds)

    # Pending sync ----------------------------------------------------------------

    def has_pending(self, path_id: str) -> bool:
        pending = self._cache.get(PENDING_SYNC, path_id, self._user_id)
        return bool(pending.get("tasks") or pending.get("reset") or pending.get("overall"))

    def _mark_pending(self, path_id: str, **changes: Any) -> None:
        def _mutate(current: Dict[str, Any]) -> None:
            task_id = changes.get("task_id")
            if task_id:
                tasks = set(current.get("tasks", []))
                tasks.add(task_id)
                current["tasks"] = sorted(tasks)
            if changes.get("reset"):
                current["reset"] = True
                current["tasks"] = []
                current["total_days"] = changes.get("total_days", 0)
            if changes.get("overall"):
                current["overall"] = True

        self._cache.update(PENDING_SYNC, path_id, self._user_id, _mutate)

    def _clear_pending(self, path_id: str, *, task_id: Optional[str] = None, flag: Optional[str] = None) -> None:
        def _mutate(current: Dict[str, Any]) -> None:
            if task_id:
                current["tasks"] = [item for item in current.get("tasks", []) if item != task_id]
            if flag:
                current.pop(flag, None)

        self._cache.update(PENDING_SYNC, path_id, self._user_id, _mutate)

    async def _try_resync(self, path_id: str) -> bool:
        pending = self._cache.get(PENDING_SYNC, path_id, self._user_id)
        if not (pending.get("tasks") or pending.get("reset") or pending.get("overall")):
            return True
        try:
            if pending.get("reset"):
                await self._service.submit_overall_progress(path_id, 1, int(pending.get("total_days", 0)), {}, 0)
                self._clear_pending(path_id, flag="reset")
            for task_id in pending.get("tasks", []):
                day, index = parse_task_id(task_id) or (0, 0)
                await self._service.submit_task_completion(path_id, day, index, task_id)
                self._clear_pending(path_id, task_id=task_id)
            if pending.get("overall"):
                local = self.load_local(path_id)
                await self._service.submit_overall_progress(
                    path_id,
                    local.current_day,
                    local.total_days,
                    completed_tasks_payload(local),
                    local.overall_progress_percent,
                )
                self._clear_pending(path_id, flag="overall")
        except SkillpathError as exc:
            logger.info("Deferred resync for path=%s user=%s: %s", path_id, self._user_id, exc)
            return False
        emit_event("progress_resynced", learning_path_id=path_id, user_id=self._user_id)
        return True

    # Remote ----------------------------------------------------------------------

    async def fetch_remote_index(self) -> RemoteIndex:
        """Fetch every remote progress entry owned by this user, keyed by path id."""
        try:
            entries = await self._service.fetch_all_progress()
        except SkillpathError as exc:
            return RemoteIndex(error=exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure fetching remote progress for user=%s", self._user_id)
            return RemoteIndex(error=exc)

        index = RemoteIndex()
        ranks: Dict[str, Tuple[bool, int]] = {}
        for entry in entries:
            path_id = entry.get("learningPathId")
            if not isinstance(path_id, str):
                continue
            owner = entry.get("userId")
            if owner is not None and str(owner) != self._user_id:
                logger.warning("Ignoring remote progress for path=%s owned by another user (%s)", path_id, owner)
                continue
            try:
                record = parse_remote_progress(entry, self._user_id)
            except MalformedDataError as exc:
                logger.warning("Treating malformed remote progress for path=%s as empty: %s", path_id, exc)
                continue
            # The ledger also keeps one document per completed task (carrying
            # ``taskId``); the path's main record outranks those, then the fuller one wins.
            rank = (not entry.get("taskId"), record.completed_count)
            if path_id not in ranks or rank > ranks[path_id]:
                ranks[path_id] = rank
                index.records[path_id] = record
        return index

    def snapshot_from(self, path_id: str, index: RemoteIndex) -> ProgressSnapshot:
        error = index.error
        if error is not None:
            emit_event(
                "remote_progress_unavailable",
                learning_path_id=path_id,
                user_id=self._user_id,
                error=type(error).__name__,
            )
        return ProgressSnapshot(
            learning_path_id=path_id,
            user_id=self._user_id,
            remote=index.records.get(path_id),
            local=self.load_local(path_id),
            pending_sync=self.has_pending(path_id),
            reauth_required=isinstance(error, AuthExpiredError),
            remote_error=str(error) if error is not None else None,
        )

    async def fetch_snapshot(self, path_id: str) -> ProgressSnapshot:
        await self._try_resync(path_id)
        return self.snapshot_from(path_id, await self.fetch_remote_index())

    async def get_progress(self, path_id: str) -> ProgressRecord:
        """Best available progress for ``path_id``; an empty record at worst."""
        snapshot = await self.fetch_snapshot(path_id)
        record, source = merge_sources(snapshot.remote, snapshot.local, pending_sync=snapshot.pending_sync)
        if source == "remote" and self.refresh_local(record):
            return self.load_local(path_id)
        return record

    async def record_task_completion(self, path_id: str, task_id: str) -> CompletionWrite:
        # The local write lands before the first suspension point.
        changed = self.record_local_completion(path_id, task_id)
        if not changed:
            return CompletionWrite(task_id=task_id, changed=False, synced=True)

        day, index = parse_task_id(task_id) or (0, 0)
        try:
            await self._service.submit_task_completion(path_id, day, index, task_id)
        except SkillpathError as exc:
            self._mark_pending(path_id, task_id=task_id)
            emit_event(
                "remote_sync_deferred",
                learning_path_id=path_id,
                user_id=self._user_id,
                task_id=task_id,
                error=type(exc).__name__,
            )
            return CompletionWrite(
                task_id=task_id,
                changed=True,
                synced=False,
                reauth_required=isinstance(exc, AuthExpiredError),
                error=str(exc),
            )
        return CompletionWrite(task_id=task_id, changed=True, synced=True)

    async def submit_overall_progress(self, record: ProgressRecord) -> bool:
        try:
            await self._service.submit_overall_progress(
                record.learning_path_id,
                record.current_day,
                record.total_days,
                completed_tasks_payload(record),
                record.overall_progress_percent,
            )
        except SkillpathError as exc:
            logger.info("Overall progress for path=%s queued for resync: %s", record.learning_path_id, exc)
            self._mark_pending(record.learning_path_id, overall=True)
            return False
        return True

    async def reset(self, path_id: str, *, total_days: int = 0) -> bool:
        """Explicit fresh start: drop local state and replace the remote record."""
        self.purge_local(path_id)
        self._mark_pending(path_id, reset=True, total_days=total_days)
        try:
            await self._service.submit_overall_progress(path_id, 1, total_days, {}, 0)
        except SkillpathError as exc:
            logger.info("Fresh-start reset for path=%s queued for resync: %s", path_id, exc)
            return False
        self._clear_pending(path_id, flag="reset")
        return True


__all__ = ["CompletionWrite", "ProgressSnapshot", "ProgressStore", "RemoteIndex"]
