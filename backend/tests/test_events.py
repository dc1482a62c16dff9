from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from skillpath.cache import LocalCache
from skillpath.db.models import BroadcastMessageModel
from skillpath.db.session import create_session_factory, session_scope
from skillpath.events import (
    PATH_CREATED,
    PROGRESS_UPDATED,
    TOPICS,
    BroadcastMessage,
    DatabaseBroadcastChannel,
    EventBus,
    InMemoryBroadcastHub,
)


def test_publish_reaches_same_view_subscribers() -> None:
    bus = EventBus(user_id="alice")
    received: list[BroadcastMessage] = []
    bus.subscribe(PROGRESS_UPDATED, received.append)

    bus.publish(PROGRESS_UPDATED, {"learningPathId": "path-1"})
    bus.publish(PATH_CREATED, {"learningPathId": "path-2"})

    assert [message.payload for message in received] == [{"learningPathId": "path-1"}]
    assert received[0].user_id == "alice"


def test_closed_subscription_stops_delivery() -> None:
    bus = EventBus(user_id="alice")
    received: list[BroadcastMessage] = []

    with bus.subscribe(PROGRESS_UPDATED, received.append) as subscription:
        bus.publish(PROGRESS_UPDATED)
    bus.publish(PROGRESS_UPDATED)

    assert subscription.closed
    assert len(received) == 1
    assert bus.subscriber_count(PROGRESS_UPDATED) == 0


def test_failing_handler_does_not_reach_publisher() -> None:
    bus = EventBus(user_id="alice")
    received: list[BroadcastMessage] = []

    def explode(_message: BroadcastMessage) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe(PROGRESS_UPDATED, explode)
    bus.subscribe(PROGRESS_UPDATED, received.append)

    bus.publish(PROGRESS_UPDATED)

    assert len(received) == 1


def test_async_handlers_run_on_the_loop() -> None:
    bus = EventBus(user_id="alice")
    received: list[str] = []

    async def handler(message: BroadcastMessage) -> None:
        await asyncio.sleep(0)
        received.append(message.topic)

    async def failing(_message: BroadcastMessage) -> None:
        raise RuntimeError("async handler bug")

    bus.subscribe(PROGRESS_UPDATED, handler)
    bus.subscribe(PROGRESS_UPDATED, failing)

    async def scenario() -> None:
        bus.publish(PROGRESS_UPDATED)
        await bus.drain()

    asyncio.run(scenario())

    assert received == [PROGRESS_UPDATED]


def test_hub_delivers_to_peer_views_only() -> None:
    hub = InMemoryBroadcastHub()
    first = EventBus(hub.channel(), user_id="alice")
    second = EventBus(hub.channel(), user_id="alice")
    stranger = EventBus(hub.channel(), user_id="bob")
    seen: dict[str, list[BroadcastMessage]] = {"first": [], "second": [], "stranger": []}
    first.subscribe(PROGRESS_UPDATED, seen["first"].append)
    second.subscribe(PROGRESS_UPDATED, seen["second"].append)
    stranger.subscribe(PROGRESS_UPDATED, seen["stranger"].append)

    message = first.publish(PROGRESS_UPDATED, {"taskId": "day-1-task-0"})

    assert len(seen["first"]) == 1
    assert [item.message_id for item in seen["second"]] == [message.message_id]
    assert seen["stranger"] == []

    second.close()
    first.publish(PROGRESS_UPDATED)
    assert len(seen["second"]) == 1


def test_database_channel_delivers_other_origins_for_same_user(cache: LocalCache) -> None:
    sender = EventBus(DatabaseBroadcastChannel(cache.engine, "alice"), user_id="alice")
    receiving_channel = DatabaseBroadcastChannel(cache.engine, "alice")
    receiver = EventBus(receiving_channel, user_id="alice")
    other_user_channel = DatabaseBroadcastChannel(cache.engine, "bob")
    received: list[BroadcastMessage] = []
    receiver.subscribe(PATH_CREATED, received.append)

    sender.publish(PATH_CREATED, {"learningPathId": "path-1"})

    assert receiving_channel.poll() == 1
    assert receiving_channel.poll() == 0
    assert other_user_channel.poll() == 0
    assert [message.payload for message in received] == [{"learningPathId": "path-1"}]


def test_database_channel_prunes_old_rows(cache: LocalCache) -> None:
    channel = DatabaseBroadcastChannel(cache.engine, "alice")
    channel.post(BroadcastMessage(topic=PATH_CREATED, payload={}, user_id="alice", origin="x"))
    channel.post(BroadcastMessage(topic=PATH_CREATED, payload={}, user_id="alice", origin="x"))
    stale = datetime.now(timezone.utc) - timedelta(hours=2)
    with session_scope(create_session_factory(cache.engine)) as session:
        session.execute(
            update(BroadcastMessageModel).where(BroadcastMessageModel.id == 1).values(created_at=stale)
        )

    assert channel.prune(3600) == 1


def test_unknown_topics_are_rejected() -> None:
    bus = EventBus(user_id="alice")

    with pytest.raises(ValueError):
        bus.subscribe("progress-upd", lambda _message: None)
    with pytest.raises(ValueError):
        bus.publish("course-complete")
    assert all(bus.subscriber_count(topic) == 0 for topic in TOPICS)
