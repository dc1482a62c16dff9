"""Composition root wiring settings, cache, remote clients and the event bus."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .cache import LocalCache, normalize_user_id
from .completion import CompletionDetector
from .config import Settings, get_settings
from .events import BroadcastChannel, DatabaseBroadcastChannel, EventBus
from .logging_config import configure_logging
from .path_registry import LearningPathRegistry
from .progress_store import ProgressStore
from .reconciliation import ReconciliationEngine
from .remote.client import ApiClient
from .remote.services import HttpLearningPathService, HttpProgressService, LearningPathService, ProgressService
from .task_plan import TaskPlanGenerator
from .view_session import LearningSession

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    user_id: str
    cache: LocalCache
    client: Optional[ApiClient]
    bus: EventBus
    store: ProgressStore
    registry: LearningPathRegistry
    engine: ReconciliationEngine

    @classmethod
    def create(
        cls,
        user_id: Optional[str],
        *,
        token: Optional[str] = None,
        settings: Optional[Settings] = None,
        cache: Optional[LocalCache] = None,
        channel: Optional[BroadcastChannel] = None,
        progress_service: Optional[ProgressService] = None,
        path_service: Optional[LearningPathService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        setup_logging: bool = False,
    ) -> "Runtime":
        """Build every collaborator for one signed-in user (or the guest).

        Services passed in replace the HTTP implementations; without a channel
        the bus broadcasts through the cache database.
        """
        if setup_logging:
            configure_logging()
        settings = settings or get_settings()
        user = normalize_user_id(user_id)
        cache = cache or LocalCache.from_url(settings.cache_url, echo=settings.cache_echo)

        client: Optional[ApiClient] = None
        if progress_service is None or path_service is None:
            client = ApiClient.from_settings(settings, token=token, transport=transport)
        progress_service = progress_service or HttpProgressService(client)  # type: ignore[arg-type]
        path_service = path_service or HttpLearningPathService(client)  # type: ignore[arg-type]

        if channel is None:
            channel = DatabaseBroadcastChannel(cache.engine, user)
        bus = EventBus(channel, user_id=user)
        store = ProgressStore(progress_service, cache, user)
        detector = CompletionDetector(path_service, cache, bus, user)
        engine = ReconciliationEngine(
            store,
            generator=TaskPlanGenerator(default_duration=settings.default_duration_days),
            detector=detector,
        )
        registry = LearningPathRegistry(
            path_service,
            cache,
            user,
            bus=bus,
            default_duration=settings.default_duration_days,
        )
        logger.info("Skillpath runtime ready for user=%s (remote=%s)", user, settings.api_base_url)
        return cls(
            settings=settings,
            user_id=user,
            cache=cache,
            client=client,
            bus=bus,
            store=store,
            registry=registry,
            engine=engine,
        )

    def open_session(self) -> LearningSession:
        return LearningSession(self.engine, self.bus, strict_ownership=self.settings.strict_ownership)

    def poll_peers(self) -> int:
        """Deliver broadcasts from other processes when the bus uses the database channel."""
        channel = self.bus.channel
        if isinstance(channel, DatabaseBroadcastChannel):
            return channel.poll()
        return 0

    async def aclose(self) -> None:
        await self.bus.drain()
        self.bus.close()
        if self.client is not None:
            await self.client.aclose()


__all__ = ["Runtime"]
