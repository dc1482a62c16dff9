from __future__ import annotations

import asyncio
import json

import pytest

from skillpath.cache import PROGRESS, LocalCache
from skillpath.config import Settings, get_settings
from skillpath.events import PROGRESS_UPDATED, DatabaseBroadcastChannel
from skillpath.runtime import Runtime
from skillpath.view_session import STATUS_COMPLETED

from scripts import cache_maintenance

from conftest import USER_ID, FakePathService, FakeProgressService


def _settings(**overrides: object) -> Settings:
    return Settings(cache_url="sqlite://", **overrides)  # type: ignore[arg-type]


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SKILLPATH_API_URL", "https://ledger.example")
    monkeypatch.setenv("SKILLPATH_DEFAULT_DURATION", "14")
    monkeypatch.setenv("SKILLPATH_STRICT_OWNERSHIP", "false")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.api_base_url == "https://ledger.example"
    assert settings.default_duration_days == 14
    assert settings.strict_ownership is False


def test_invalid_settings_raise_runtime_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SKILLPATH_DEFAULT_DURATION", "0")
    get_settings.cache_clear()
    try:
        with pytest.raises(RuntimeError):
            get_settings()
    finally:
        get_settings.cache_clear()


def test_runtime_wires_a_working_session(cache: LocalCache) -> None:
    progress_service = FakeProgressService()
    path_service = FakePathService()
    runtime = Runtime.create(
        USER_ID,
        settings=_settings(SKILLPATH_DEFAULT_DURATION=3),
        cache=cache,
        progress_service=progress_service,
        path_service=path_service,
    )

    async def scenario() -> None:
        path = await runtime.registry.create_path("web-development", ["HTML"])
        session = runtime.open_session()
        result = await session.load(path)
        assert result is not None
        assert result.record.total_tasks == 3

        for index in range(len(result.plans[0].tasks[0].resources)):
            session.visit_resource("day-1-task-0", index)
        outcome = await session.complete_task("day-1-task-0")
        assert outcome.status == STATUS_COMPLETED
        assert outcome.record is not None
        assert outcome.record.overall_progress_percent == 33
        session.close()
        await runtime.aclose()

    asyncio.run(scenario())

    assert runtime.client is None
    assert isinstance(runtime.bus.channel, DatabaseBroadcastChannel)
    assert progress_service.completions[0][3] == "day-1-task-0"


def test_runtimes_sharing_a_cache_exchange_broadcasts(cache: LocalCache) -> None:
    services = {"progress_service": FakeProgressService(), "path_service": FakePathService()}
    first = Runtime.create(USER_ID, settings=_settings(), cache=cache, **services)
    second = Runtime.create(USER_ID, settings=_settings(), cache=cache, **services)
    received: list[str] = []
    second.bus.subscribe(PROGRESS_UPDATED, lambda message: received.append(message.payload["learningPathId"]))

    first.bus.publish(PROGRESS_UPDATED, {"learningPathId": "path-1"})

    assert second.poll_peers() == 1
    assert first.poll_peers() == 0
    assert received == ["path-1"]


def test_runtime_builds_http_client_without_injected_services(cache: LocalCache) -> None:
    runtime = Runtime.create(USER_ID, token="secret", settings=_settings(), cache=cache)

    assert runtime.client is not None
    assert runtime.client.has_token
    asyncio.run(runtime.aclose())


def test_cache_maintenance_reports_counts(
    tmp_path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    database_url = f"sqlite:///{tmp_path / 'cache.db'}"
    LocalCache.from_url(database_url).set(PROGRESS, "path-1", USER_ID, {"completed_tasks": {}})
    get_settings.cache_clear()
    monkeypatch.setenv("SKILLPATH_CACHE_URL", database_url)
    try:
        exit_code = cache_maintenance.main(["--retention-seconds", "60"])
    finally:
        get_settings.cache_clear()

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["entries"] == {PROGRESS: 1}
    assert payload["broadcasts_pruned"] == 0
