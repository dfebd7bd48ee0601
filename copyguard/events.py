"""
CopyGuard - Workflow change notifications.

``EventBroadcaster`` fans committed ``WorkflowEvent``s out to subscriber
queues. It is registered with ``WorkflowEngine.subscribe`` and read by the
SSE endpoint, so dashboards can react to transitions instead of polling.
Transitions run on worker threads; each queue is fed on its own event loop.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from .models import WorkflowEvent

logger = logging.getLogger("copyguard.events")


class EventBroadcaster:
    """Thread-safe fan-out of workflow events to asyncio queues."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: List[Tuple[asyncio.Queue, asyncio.AbstractEventLoop, Optional[str]]] = []
        self._lock = threading.Lock()

    def subscribe(self, content_id: Optional[str] = None) -> asyncio.Queue:
        """Create a queue on the running loop. ``content_id`` narrows the stream."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        loop = asyncio.get_running_loop()
        with self._lock:
            self._subscribers.append((queue, loop, content_id))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers = [s for s in self._subscribers if s[0] is not queue]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: WorkflowEvent) -> None:
        data = event.to_dict()
        with self._lock:
            subscribers = list(self._subscribers)
        for queue, loop, content_id in subscribers:
            if content_id and content_id != event.content_id:
                continue
            try:
                loop.call_soon_threadsafe(self._offer, queue, data)
            except RuntimeError:
                # Loop already closed; the stream is gone.
                self.unsubscribe(queue)

    __call__ = publish

    @staticmethod
    def _offer(queue: asyncio.Queue, data: Dict[str, Any]) -> None:
        try:
            queue.put_nowait(data)
        except asyncio.QueueFull:
            logger.debug("Event queue full, dropping event")
