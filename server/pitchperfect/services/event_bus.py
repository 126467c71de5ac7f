"""Session-scoped async event bus for practice-session notifications.

Each practice session gets its own EventBus instance. The UI relay and the
session logger subscribe to event types and receive non-blocking delivery via
asyncio.create_task. Floor decisions themselves never go through the bus;
they are applied synchronously by the TurnArbiter.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Awaitable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    STATUS_CHANGED = "status_changed"
    FLOOR_CHANGED = "floor_changed"
    FLOOR_DECISION = "floor_decision"
    SEGMENT_CLOSED = "segment_closed"
    AGENT_CONNECTED = "agent_connected"
    AGENT_DISCONNECTED = "agent_disconnected"
    AGENT_ERROR = "agent_error"


@dataclass
class Event:
    type: EventType
    data: dict
    timestamp: float = field(default_factory=time.time)
    source: str = ""  # "system", "arbiter", or participant id


class EventBus:
    """In-process async event bus for a single practice session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._subscribers: dict[EventType, list[Callable[[Event], Awaitable[None]]]] = {}
        self._history: list[Event] = []
        self._max_history = 200

    def subscribe(self, event_type: EventType, callback: Callable[[Event], Awaitable[None]]):
        self._subscribers.setdefault(event_type, []).append(callback)

    def subscribe_all(self, callback: Callable[[Event], Awaitable[None]]):
        """Subscribe to all event types."""
        for et in EventType:
            self.subscribe(et, callback)

    def publish_nowait(self, event: Event):
        """Record the event and schedule every subscriber as its own task.

        Safe to call from synchronous code running inside the event loop.
        Without a running loop the event is only recorded.
        """
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        callbacks = self._subscribers.get(event.type, [])
        if not callbacks:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        for cb in callbacks:
            try:
                loop.create_task(cb(event))
            except Exception as e:
                logger.error(
                    f"EventBus [{self.session_id}]: error scheduling "
                    f"subscriber for {event.type}: {e}"
                )

    def get_recent_events(
        self, event_type: EventType | None = None, limit: int = 50
    ) -> list[Event]:
        if event_type:
            return [e for e in self._history if e.type == event_type][-limit:]
        return self._history[-limit:]
