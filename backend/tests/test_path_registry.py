from __future__ import annotations

import asyncio

import pytest

from skillpath.cache import PROGRESS, LocalCache
from skillpath.errors import OwnershipError
from skillpath.events import PATH_CREATED, PATH_DELETED, BroadcastMessage, EventBus
from skillpath.path_registry import LearningPathRegistry, ensure_owned

from conftest import USER_ID, FakePathService, make_path


def test_create_path_posts_and_announces(
    registry: LearningPathRegistry, path_service: FakePathService, bus: EventBus
) -> None:
    created: list[BroadcastMessage] = []
    bus.subscribe(PATH_CREATED, created.append)

    path = asyncio.run(registry.create_path("web-development", ["HTML", "CSS"], "Intermediate"))

    assert path.id == "path-1"
    assert path.synced is True
    assert path.level == "intermediate"
    assert path.skills == ["HTML", "CSS"]
    assert path_service.paths["path-1"]["userId"] == USER_ID
    assert path_service.paths["path-1"]["totalDays"] == 10
    assert created[0].payload["learningPathId"] == "path-1"


def test_offline_creation_keeps_a_local_path(
    registry: LearningPathRegistry, path_service: FakePathService
) -> None:
    path_service.raise_errors = True

    path = asyncio.run(registry.create_path("data-science", None, "beginner"))

    assert path.id.startswith("local-")
    assert path.synced is False
    assert path.skills == ["Python", "Machine Learning", "Data Analysis"]
    assert [cached.id for cached in registry.cached_paths()] == [path.id]


def test_listing_falls_back_to_cache_and_keeps_unsynced_paths(
    registry: LearningPathRegistry, path_service: FakePathService
) -> None:
    path_service.paths["remote-1"] = {"_id": "remote-1", "userId": USER_ID, "domain": "web-development"}
    listed = asyncio.run(registry.list_paths())
    assert [path.id for path in listed] == ["remote-1"]

    path_service.raise_errors = True
    offline = asyncio.run(registry.create_path("cloud-computing", ["AWS"]))
    assert [path.id for path in asyncio.run(registry.list_paths())] == [offline.id, "remote-1"]

    path_service.raise_errors = False
    relisted = asyncio.run(registry.list_paths())
    assert [path.id for path in relisted] == ["remote-1", offline.id]


def test_listing_skips_foreign_and_malformed_paths(
    registry: LearningPathRegistry, path_service: FakePathService
) -> None:
    path_service.paths["mine"] = {"_id": "mine", "user": USER_ID, "domain": "web-development"}
    path_service.paths["theirs"] = {"_id": "theirs", "userId": "someone-else", "domain": "web-development"}
    path_service.paths["broken"] = {"domain": "web-development"}

    assert [path.id for path in asyncio.run(registry.list_paths())] == ["mine"]


def test_completed_paths_come_from_remote_or_cache(
    registry: LearningPathRegistry, path_service: FakePathService
) -> None:
    path_service.paths["done"] = {"_id": "done", "userId": USER_ID, "domain": "web-development", "status": "completed"}
    path_service.paths["open"] = {"_id": "open", "userId": USER_ID, "domain": "web-development"}

    assert [path.id for path in asyncio.run(registry.list_completed_paths())] == ["done"]

    asyncio.run(registry.list_paths())
    path_service.raise_errors = True
    assert [path.id for path in asyncio.run(registry.list_completed_paths())] == ["done"]


def test_delete_purges_local_state_and_announces(
    registry: LearningPathRegistry, path_service: FakePathService, cache: LocalCache, bus: EventBus
) -> None:
    deleted: list[BroadcastMessage] = []
    bus.subscribe(PATH_DELETED, deleted.append)
    path = asyncio.run(registry.create_path("web-development", ["HTML"]))
    cache.set(PROGRESS, path.id, USER_ID, {"completed_tasks": {}})

    assert asyncio.run(registry.delete_path(path.id)) is True

    assert path_service.deleted == [path.id]
    assert cache.get(PROGRESS, path.id, USER_ID) == {}
    assert registry.cached_paths() == []
    assert deleted[0].payload == {"learningPathId": path.id}


def test_failed_delete_changes_nothing(registry: LearningPathRegistry, path_service: FakePathService) -> None:
    path = asyncio.run(registry.create_path("web-development", ["HTML"]))
    path_service.raise_errors = True

    assert asyncio.run(registry.delete_path(path.id)) is False
    assert [cached.id for cached in registry.cached_paths()] == [path.id]


def test_ownership_check_is_strict_in_development() -> None:
    foreign = make_path(user_id="someone-else")

    with pytest.raises(OwnershipError):
        ensure_owned(foreign, USER_ID, strict=True)
    assert ensure_owned(foreign, USER_ID, strict=False) is False
    assert ensure_owned(make_path(), USER_ID, strict=True) is True


def test_get_path_finds_remote_and_offline_paths(
    registry: LearningPathRegistry, path_service: FakePathService
) -> None:
    path_service.paths["remote-1"] = {"_id": "remote-1", "userId": USER_ID, "domain": "web-development"}
    path_service.raise_errors = True
    offline = asyncio.run(registry.create_path("cloud-computing", ["AWS"]))
    path_service.raise_errors = False

    found = asyncio.run(registry.get_path("remote-1"))
    assert found is not None and found.synced is True
    local = asyncio.run(registry.get_path(offline.id))
    assert local is not None and local.synced is False
    assert asyncio.run(registry.get_path("missing")) is None
