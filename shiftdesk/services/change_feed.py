from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from fastapi import Request

logger = logging.getLogger("shiftdesk.change_feed")

KEEPALIVE_SECONDS = 15.0


@dataclass(frozen=True)
class ChangeEvent:
    topic: str
    action: str
    entity_id: int | None = None
    user_id: int | None = None
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def as_sse(self) -> str:
        return f"event: {self.topic}\ndata: {json.dumps(asdict(self))}\n\n"


class ChangeFeed:
    """Fan-out of committed changes to connected clients.

    ``publish`` is called from worker threads after a commit; subscribers are
    asyncio queues bound to the loop that created them. A slow subscriber
    loses its oldest events rather than blocking publishers.
    """

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self._lock = threading.Lock()
        self._subscribers: list[tuple[asyncio.AbstractEventLoop, asyncio.Queue[ChangeEvent]]] = []

    def subscribe(self) -> asyncio.Queue[ChangeEvent]:
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=self.max_queue)
        with self._lock:
            self._subscribers.append((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ChangeEvent]) -> None:
        with self._lock:
            self._subscribers = [entry for entry in self._subscribers if entry[1] is not queue]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @staticmethod
    def _offer(queue: asyncio.Queue[ChangeEvent], event: ChangeEvent) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(event)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for loop, queue in subscribers:
            try:
                loop.call_soon_threadsafe(self._offer, queue, event)
            except RuntimeError:
                logger.info("change_feed_subscriber_dropped", extra={"topic": event.topic})
                self.unsubscribe(queue)

    async def stream(self, topics: set[str] | None = None) -> AsyncIterator[str]:
        queue = self.subscribe()
        try:
            yield ": connected\n\n"
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if topics and event.topic not in topics:
                    continue
                yield event.as_sse()
        finally:
            self.unsubscribe(queue)


class QueryGenerations:
    """Monotonic generation per query key; a newer ``begin`` supersedes older ones."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: dict[str, int] = {}

    def begin(self, key: str) -> Callable[[], bool]:
        with self._lock:
            generation = self._current.get(key, 0) + 1
            self._current[key] = generation

        def is_current() -> bool:
            with self._lock:
                return self._current.get(key) == generation

        return is_current


def publish_change(
    request: Request,
    topic: str,
    action: str,
    *,
    entity_id: int | None = None,
    user_id: int | None = None,
) -> None:
    feed: ChangeFeed | None = getattr(request.app.state, "change_feed", None)
    if feed is None:
        return
    feed.publish(ChangeEvent(topic=topic, action=action, entity_id=entity_id, user_id=user_id))
