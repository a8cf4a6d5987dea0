"""
In-process broadcast of tracker events to live subscribers.

Each subscriber (one per WebSocket connection) gets its own bounded queue.
A slow subscriber loses its oldest queued events instead of blocking the
tracker.
"""

import asyncio
from typing import Any, Dict, Set

from fleet_eta.core.logger import logger

ROUTE_UPDATE_EVENT = "route-update"
SNAPSHOT_EVENT = "devices-snapshot"


class Broadcaster:
    """Fan-out of events to subscriber queues"""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        logger.info(f"Subscriber connected ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.discard(queue)
            logger.info(f"Subscriber disconnected ({len(self._subscribers)} total)")

    def publish(self, event: str, data: Dict[str, Any]):
        message = {"event": event, "data": data}
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(message)
