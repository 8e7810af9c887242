"""
SSE (Server-Sent Events) broadcaster

Fan-out of job updates and other server events to connected admin clients.
Every subscriber owns a bounded asyncio.Queue; publishing copies the payload
into each queue and drops it for consumers whose queue is full.

``sse_broadcaster`` is the process-wide instance.
"""

import asyncio
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class SSEBroadcaster:
    def __init__(self, max_queue_size: int = 100) -> None:
        self._queues: list[asyncio.Queue] = []
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    # ── Public API ────────────────────────────────────────────────────────────

    async def subscribe(self) -> asyncio.Queue:
        """Register and return a new listener queue; pair with ``unsubscribe`` in a finally block."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._queues.append(queue)
        logger.debug("SSE subscriber added (total: %d)", len(self._queues))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        async with self._lock:
            if queue in self._queues:
                self._queues.remove(queue)
                logger.debug("SSE subscriber removed (total: %d)", len(self._queues))

    async def publish(self, event_type: str, data: dict) -> int:
        """Send an event to every listener and return how many queues accepted it."""
        payload = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        async with self._lock:
            queues = list(self._queues)

        delivered = 0
        for queue in queues:
            try:
                queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("SSE queue full, dropping event '%s' for slow consumer", event_type)
        return delivered

    def subscriber_count(self) -> int:
        return len(self._queues)


sse_broadcaster = SSEBroadcaster()