"""Resource-visit gate guarding task completion."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .cache import VISITED_LINKS, LocalCache, normalize_user_id
from .models import DailyPlan, Task, resource_link_id

logger = logging.getLogger(__name__)


class GateController:
    """Tracks which resource links a user has opened for one learning path.

    A task may only be completed once every one of its resources has been
    visited. Visits are stored in the local cache as ``{link_id: True}``.
    """

    def __init__(self, cache: LocalCache, path_id: str, user_id: Optional[str]) -> None:
        self._cache = cache
        self._path_id = path_id
        self._user_id = normalize_user_id(user_id)

    @property
    def path_id(self) -> str:
        return self._path_id

    def visited_links(self) -> Dict[str, bool]:
        stored = self._cache.get(VISITED_LINKS, self._path_id, self._user_id)
        return {link: True for link, visited in stored.items() if visited is True}

    def is_visited(self, task_id: str, resource_index: int) -> bool:
        return self.visited_links().get(resource_link_id(task_id, resource_index), False)

    def mark_visited(self, task_id: str, resource_index: int) -> bool:
        """Record a visit. Returns True when the link was not visited before."""
        if resource_index < 0:
            raise ValueError("Resource index cannot be negative.")
        link_id = resource_link_id(task_id, resource_index)
        changed = False

        def _mutate(current: Dict[str, Any]) -> None:
            nonlocal changed
            if current.get(link_id) is not True:
                current[link_id] = True
                changed = True

        self._cache.update(VISITED_LINKS, self._path_id, self._user_id, _mutate)
        return changed

    def unvisited(self, task: Task) -> List[str]:
        visited = self.visited_links()
        return [link for link in task.link_ids() if not visited.get(link)]

    def can_complete(self, task: Task) -> bool:
        if not task.resources:
            return True
        return not self.unvisited(task)

    def backfill(self, plans: Iterable[DailyPlan], completed_task_ids: Iterable[str]) -> int:
        """Mark every resource of already-completed tasks as visited.

        Returns the number of links added; the cache is written only when that
        number is non-zero.
        """
        completed = set(completed_task_ids)
        if not completed:
            return 0
        wanted = [
            link
            for plan in plans
            for task in plan.tasks
            if task.id in completed
            for link in task.link_ids()
        ]
        visited = self.visited_links()
        missing = [link for link in wanted if not visited.get(link)]
        if not missing:
            return 0

        def _mutate(current: Dict[str, Any]) -> None:
            for link in missing:
                current[link] = True

        self._cache.update(VISITED_LINKS, self._path_id, self._user_id, _mutate)
        logger.debug("Backfilled %s visited links for path=%s user=%s", len(missing), self._path_id, self._user_id)
        return len(missing)

    def purge(self) -> bool:
        return self._cache.delete(VISITED_LINKS, self._path_id, self._user_id)


__all__ = ["GateController"]
