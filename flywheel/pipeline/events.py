from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from flywheel.common import log_event

DEFAULT_QUEUE_SIZE = 100


def format_sse(event: str, data: Any) -> str:
    encoded = json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)
    return f"event: {event}\ndata: {encoded}\n\n"


class EventBroadcaster:
    """Fan-out of cycle events to live subscribers; late subscribers get no replay."""

    def __init__(self, *, logger: logging.Logger, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._logger = logger
        self._queue_size = max(1, queue_size)
        self._subscribers: set[asyncio.Queue[str]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[str]:
        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[str]) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: str, data: Any) -> int:
        message = format_sse(event, data)
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                log_event(
                    self._logger,
                    level="warning",
                    event="sse_subscriber_lagging",
                    message="Dropping event for slow subscriber",
                    sse_event=event,
                )
        return delivered

    async def stream(self) -> AsyncIterator[str]:
        """SSE messages for one client, registered only once iteration starts."""
        queue = self.subscribe()
        try:
            yield format_sse("hello", {"ok": True})
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(queue)
