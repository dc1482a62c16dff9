"""Structured telemetry lines for reconciliation and sync diagnostics.

Every event is written to the ``skillpath.telemetry`` logger as one JSON line,
kept in a short in-memory history, and handed to registered listeners.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger("skillpath.telemetry")

HISTORY_SIZE = 200

Listener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


_listeners: List[Listener] = []
_history: Deque[TelemetryEvent] = deque(maxlen=HISTORY_SIZE)
_lock = RLock()


def register_listener(listener: Listener) -> Callable[[], None]:
    """Register an in-process listener; returns a callable that removes it."""
    with _lock:
        _listeners.append(listener)

    def _unregister() -> None:
        with _lock:
            if listener in _listeners:
                _listeners.remove(listener)

    return _unregister


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()
        _history.clear()


def recent_events(name: Optional[str] = None) -> List[TelemetryEvent]:
    with _lock:
        events = list(_history)
    if name is None:
        return events
    return [event for event in events if event.name == name]


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    event = TelemetryEvent(name=name, payload={key: _plain(value) for key, value in fields.items()})

    with _lock:
        _history.append(event)
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    if logger.isEnabledFor(logging.INFO):
        line = {**event.payload, "event": name, "emitted_at": event.emitted_at.isoformat()}
        logger.info("TELEMETRY %s", json.dumps(line, default=str, sort_keys=True))
    return event


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    return value


__all__ = [
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "recent_events",
    "register_listener",
]
