"""Publish/subscribe notifications within a view and across views of one user.

Delivery is at-least-once and unordered. Handlers must tolerate duplicates and
must not assume that a same-view notification arrives before or after its
cross-view copy.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Union

from sqlalchemy import Engine, delete, func, select

from .cache import normalize_user_id
from .db.models import BroadcastMessageModel
from .db.session import create_session_factory, session_scope

logger = logging.getLogger(__name__)

PROGRESS_UPDATED = "progress-updated"
PATH_CREATED = "path-created"
COURSE_COMPLETED = "course-completed"
PATH_DELETED = "path-deleted"

TOPICS = (PROGRESS_UPDATED, PATH_CREATED, COURSE_COMPLETED, PATH_DELETED)


def _new_origin() -> str:
    return uuid.uuid4().hex


def _check_topic(topic: str) -> str:
    if topic not in TOPICS:
        raise ValueError(f"Unknown event topic {topic!r}; expected one of {', '.join(TOPICS)}.")
    return topic


@dataclass(frozen=True)
class BroadcastMessage:
    topic: str
    payload: Dict[str, Any]
    user_id: str
    origin: str
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))


Handler = Callable[[BroadcastMessage], Union[None, Awaitable[None]]]
Listener = Callable[[BroadcastMessage], None]


class BroadcastChannel(Protocol):
    """Carries messages between views; never echoes a message to its sender."""

    def post(self, message: BroadcastMessage) -> None:  # pragma: no cover - protocol definition
        ...

    def attach(self, listener: Listener) -> None:  # pragma: no cover - protocol definition
        ...

    def close(self) -> None:  # pragma: no cover - protocol definition
        ...


class InMemoryBroadcastHub:
    """Connects views living in the same process."""

    def __init__(self) -> None:
        self._channels: List["_HubChannel"] = []
        self._lock = threading.RLock()

    def channel(self) -> "_HubChannel":
        channel = _HubChannel(self)
        with self._lock:
            self._channels.append(channel)
        return channel

    def _deliver(self, sender: "_HubChannel", message: BroadcastMessage) -> None:
        with self._lock:
            peers = [channel for channel in self._channels if channel is not sender]
        for peer in peers:
            peer._receive(message)

    def _detach(self, channel: "_HubChannel") -> None:
        with self._lock:
            if channel in self._channels:
                self._channels.remove(channel)


class _HubChannel:
    def __init__(self, hub: InMemoryBroadcastHub) -> None:
        self._hub = hub
        self._listeners: List[Listener] = []

    def post(self, message: BroadcastMessage) -> None:
        self._hub._deliver(self, message)

    def attach(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _receive(self, message: BroadcastMessage) -> None:
        for listener in list(self._listeners):
            listener(message)

    def close(self) -> None:
        self._listeners.clear()
        self._hub._detach(self)


class DatabaseBroadcastChannel:
    """Cross-process channel backed by the ``broadcast_messages`` table.

    ``post`` inserts a row; ``poll`` delivers rows written by other origins for
    the same user since the last poll. Rows that predate the channel are never
    delivered.
    """

    def __init__(self, engine: Engine, user_id: Optional[str], *, origin: Optional[str] = None) -> None:
        self._session_factory = create_session_factory(engine)
        self._user_id = normalize_user_id(user_id)
        self._origin = origin or _new_origin()
        self._listeners: List[Listener] = []
        with session_scope(self._session_factory, commit=False) as session:
            self._cursor = int(session.execute(select(func.max(BroadcastMessageModel.id))).scalar() or 0)

    @property
    def origin(self) -> str:
        return self._origin

    def post(self, message: BroadcastMessage) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                BroadcastMessageModel(
                    message_id=message.message_id,
                    user_id=self._user_id,
                    topic=message.topic,
                    origin=self._origin,
                    payload=dict(message.payload),
                )
            )

    def attach(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def poll(self) -> int:
        with session_scope(self._session_factory, commit=False) as session:
            rows = (
                session.execute(
                    select(BroadcastMessageModel)
                    .where(
                        BroadcastMessageModel.id > self._cursor,
                        BroadcastMessageModel.user_id == self._user_id,
                    )
                    .order_by(BroadcastMessageModel.id)
                )
                .scalars()
                .all()
            )
            messages = []
            for row in rows:
                self._cursor = max(self._cursor, row.id)
                if row.origin == self._origin:
                    continue
                messages.append(
                    BroadcastMessage(
                        topic=row.topic,
                        payload=dict(row.payload or {}),
                        user_id=row.user_id,
                        origin=row.origin,
                        message_id=row.message_id,
                    )
                )
        for message in messages:
            for listener in list(self._listeners):
                listener(message)
        return len(messages)

    def prune(self, retention_seconds: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=retention_seconds)
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(BroadcastMessageModel).where(BroadcastMessageModel.created_at < cutoff))
            return int(result.rowcount or 0)

    def close(self) -> None:
        self._listeners.clear()


class Subscription:
    """Disposable handle returned by ``EventBus.subscribe``."""

    def __init__(self, bus: "EventBus", topic: str, handler: Handler) -> None:
        self._bus = bus
        self.topic = topic
        self.handler = handler
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self._bus._unsubscribe(self)
            self.closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class EventBus:
    """In-view publish/subscribe with an optional cross-view channel."""

    def __init__(self, channel: Optional[BroadcastChannel] = None, *, user_id: Optional[str] = None) -> None:
        self._user_id = normalize_user_id(user_id)
        self._origin = _new_origin()
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.RLock()
        self._pending: Set["asyncio.Task[None]"] = set()
        self._channel = channel
        if channel is not None:
            channel.attach(self._receive_from_peer)

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def channel(self) -> Optional[BroadcastChannel]:
        return self._channel

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        _check_topic(topic)
        subscription = Subscription(self, topic, handler)
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            handlers = self._subscriptions.get(subscription.topic, [])
            if subscription in handlers:
                handlers.remove(subscription)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, []))

    def publish(self, topic: str, payload: Optional[Dict[str, Any]] = None) -> BroadcastMessage:
        message = BroadcastMessage(
            topic=_check_topic(topic),
            payload=dict(payload or {}),
            user_id=self._user_id,
            origin=self._origin,
        )
        self._dispatch(message)
        if self._channel is not None:
            try:
                self._channel.post(message)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to broadcast %s to peer views", topic)
        return message

    def _receive_from_peer(self, message: BroadcastMessage) -> None:
        if message.user_id != self._user_id:
            return
        self._dispatch(message)

    def _dispatch(self, message: BroadcastMessage) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.get(message.topic, []))
        for subscription in subscriptions:
            try:
                result = subscription.handler(message)
            except Exception:  # noqa: BLE001
                logger.exception("Handler for %s failed", message.topic)
                continue
            if inspect.isawaitable(result):
                self._schedule(message.topic, result)

    def _schedule(self, topic: str, awaitable: Awaitable[None]) -> None:
        async def _run() -> None:
            try:
                await awaitable
            except Exception:  # noqa: BLE001
                logger.exception("Async handler for %s failed", topic)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Dropping async handler for %s: no running event loop", topic)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every async handler scheduled so far, including ones they schedule."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        with self._lock:
            self._subscriptions.clear()
        if self._channel is not None:
            self._channel.close()


__all__ = [
    "COURSE_COMPLETED",
    "PATH_CREATED",
    "PATH_DELETED",
    "PROGRESS_UPDATED",
    "TOPICS",
    "BroadcastChannel",
    "BroadcastMessage",
    "DatabaseBroadcastChannel",
    "EventBus",
    "InMemoryBroadcastHub",
    "Subscription",
]
