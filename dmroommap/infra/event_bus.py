"""
Event Bus: async-native publish/subscribe infrastructure.

Fire-and-forget event emission with subscriber error isolation.  Each
subscriber call runs as its own task on the event loop, in emission order.
``subscribe()`` hands back a ``Subscription`` whose ``dispose()`` removes
the listener again.
"""

import asyncio
import logging
import threading
import time as _time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from dmroommap.core.types import Subscription

logger = logging.getLogger(__name__)


@dataclass
class Event:
    event_type: str
    data: dict[str, Any]
    timestamp: float = field(default_factory=_time.time)


class EventBus:
    """Async event bus with history."""

    def __init__(self, history_size: int = 200) -> None:
        # event_type -> {sub_id: callback}
        self._subs: dict[str, dict[str, Callable]] = {}
        self._history: deque[Event] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def emit(self, event_type: str, **data: Any) -> None:
        """Fire-and-forget event emission. Never raises."""
        event = Event(event_type=event_type, data=data)
        self._history.append(event)
        with self._lock:
            subs = dict(self._subs.get(event_type, {}))
        for sub_id, callback in subs.items():
            self._fire(sub_id, callback, event)

    def _fire(self, sub_id: str, callback: Callable, event: Event) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("EventBus: event dropped for %s — no running event loop", sub_id)
            return
        loop.create_task(self._safe_call(sub_id, callback, event))

    async def _safe_call(self, sub_id: str, callback: Callable, event: Event) -> None:
        with self._lock:
            # Skip deliveries queued before the subscriber went away.
            if sub_id not in self._subs.get(event.event_type, {}):
                return
        try:
            result = callback(event)
            if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                await result
        except Exception:
            logger.exception("EventBus: subscriber %s raised on %s", sub_id, event.event_type)

    def subscribe(self, event_type: str, callback: Callable) -> Subscription:
        """Subscribe to an event type.  Dispose the returned handle to unsubscribe."""
        sub_id = f"sub_{uuid.uuid4().hex[:8]}"
        with self._lock:
            self._subs.setdefault(event_type, {})[sub_id] = callback
        logger.debug("EventBus: %s subscribed to %s", sub_id, event_type)
        return Subscription(sub_id=sub_id, _cancel=self.unsubscribe)

    def unsubscribe(self, sub_id: str) -> None:
        """Remove a subscription by ID."""
        with self._lock:
            for event_type, subs in self._subs.items():
                if sub_id in subs:
                    del subs[sub_id]
                    logger.debug("EventBus: %s unsubscribed from %s", sub_id, event_type)
                    return

    def subscriber_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._subs.get(event_type, {}))

    def history(self, event_type: Optional[str] = None,
                since: Optional[float] = None,
                limit: int = 100) -> list[Event]:
        """Query event history with optional filters."""
        results = []
        for event in reversed(self._history):
            if event_type and event.event_type != event_type:
                continue
            if since and event.timestamp < since:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results
