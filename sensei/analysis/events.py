"""Session-scoped event delivery for executors and observers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from .models import SessionKey

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    ANALYZING_STARTED = "analyzing-started"
    ANALYZING_ENDED = "analyzing-ended"
    RECOMMENDATION_AVAILABLE = "recommendation-available"
    APPROVED = "approved"
    PENDING_COUNT_CHANGED = "pending-count-changed"


@dataclass(frozen=True)
class EngineEvent:
    """An event with its owning session and payload."""

    type: EventType
    session_key: SessionKey
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "session_key": str(self.session_key),
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


Listener = Callable[[EngineEvent], Any]


@dataclass
class _Subscription:
    event_type: EventType
    listener: Listener
    session_key: SessionKey | None = None


class EventEmitter:
    """Delivers events to listeners in subscription order.

    A listener may be bound to a single session or to all sessions
    (``session_key=None``). Delivery is best-effort: a failing listener is
    logged and the remaining listeners still run. Coroutine listeners are
    scheduled on the running loop.
    """

    def __init__(self):
        self._subscriptions: list[_Subscription] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, listener: Listener,
                  session_key: SessionKey | None = None) -> Callable[[], None]:
        sub = _Subscription(EventType(event_type), listener, session_key)
        self._subscriptions.append(sub)

        def unsubscribe():
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    def listener_count(self, event_type: EventType | None = None) -> int:
        if event_type is None:
            return len(self._subscriptions)
        return sum(1 for s in self._subscriptions if s.event_type == event_type)

    def emit(self, event_type: EventType, session_key: SessionKey, **data) -> EngineEvent:
        event = EngineEvent(EventType(event_type), session_key, data)
        for sub in list(self._subscriptions):
            if sub.event_type != event.type:
                continue
            if sub.session_key is not None and sub.session_key != session_key:
                continue
            try:
                result = sub.listener(event)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception as e:
                logger.error(f"Listener for {event.type.value} on {session_key} failed: {e}")
        return event

    def _schedule(self, awaitable):
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Async listener failed: {exc}")

    async def drain(self):
        """Wait for scheduled coroutine listeners to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self):
        self._subscriptions.clear()
