# bulkdispatch/infra/event_hub.py
"""
In-process fan-out of dispatch events to connected observers.

Each observer (a WebSocket connection) subscribes and gets its own bounded
asyncio queue. Publishing never blocks the send loop: when an observer
falls behind, its oldest queued event is dropped.

The latest ``status``, ``progress`` and ``pairing-code`` events are
remembered and replayed to new subscribers so a reconnecting observer sees
the current state immediately.

Usage:
    hub = ObserverHub()
    queue = hub.subscribe()
    await hub.publish("status", "Connected")
    event = await queue.get()   # {"event": "status", "data": "Connected"}
    hub.unsubscribe(queue)
"""
from __future__ import annotations

import asyncio
from typing import Any

from bulkdispatch.infra.logging_config import get_logger
from bulkdispatch.infra.metrics import DispatchMetrics, inc_counter

logger = get_logger(__name__)

REPLAYED_EVENTS = ("status", "progress", "pairing-code")


class ObserverHub:
    """Broadcast event sink backed by one queue per subscriber."""

    def __init__(self, max_queue_size: int = 256):
        self._max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue] = set()
        self._latest: dict[str, Any] = {}

    async def publish(self, event: str, data: Any) -> None:
        message = {"event": event, "data": data}
        if event in REPLAYED_EVENTS:
            self._latest[event] = data

        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                inc_counter("observer_events_dropped")
            queue.put_nowait(message)

        inc_counter("observer_events_published", event=event)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        for event, data in self._latest.items():
            queue.put_nowait({"event": event, "data": data})
        self._subscribers.add(queue)
        DispatchMetrics.observers_connected(len(self._subscribers))
        logger.info(f"Observer subscribed (observers={len(self._subscribers)})")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        DispatchMetrics.observers_connected(len(self._subscribers))
        logger.info(f"Observer unsubscribed (observers={len(self._subscribers)})")

    @property
    def observer_count(self) -> int:
        return len(self._subscribers)

    def latest(self, event: str) -> Any:
        return self._latest.get(event)

