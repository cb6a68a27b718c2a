"""Fan-out of backend events to event-stream subscribers.

Producers (terminal readers, the watch dispatcher) publish from the
event loop; every subscriber owns a bounded queue and an optional filter
on event kinds. Publishing never blocks: a full subscriber queue drops
the event for that subscriber only.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from vibe.adapters.events import BackendEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One consumer's view of the event stream."""

    def __init__(self, kinds: Iterable[str] | None, maxsize: int) -> None:
        self.kinds: frozenset[str] | None = frozenset(kinds) if kinds else None
        self._queue: asyncio.Queue[BackendEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def accepts(self, kind: str) -> bool:
        return self.kinds is None or kind in self.kinds

    def offer(self, event: BackendEvent | None) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self, timeout: float | None = None) -> BackendEvent | None:
        """Next event, or None on timeout or when the bus closes."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def pending(self) -> int:
        return self._queue.qsize()


class EventBus:
    """Async fan-out bus bridging backend producers to stream consumers."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._maxsize = maxsize
        self._subscribers: list[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, kinds: Iterable[str] | None = None) -> Subscription:
        sub = Subscription(kinds, self._maxsize)
        self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass

    def publish(self, event: BackendEvent) -> int:
        """Deliver *event* to every interested subscriber. Returns the count."""
        if self._closed:
            return 0
        delivered = 0
        for sub in list(self._subscribers):
            if not sub.accepts(event.kind):
                continue
            if sub.offer(event):
                delivered += 1
            else:
                logger.warning(
                    "Event queue full, dropping %s (dropped so far: %d)",
                    event.kind, sub.dropped,
                )
        return delivered

    def close(self) -> None:
        """Stop accepting events and wake every subscriber."""
        self._closed = True
        for sub in list(self._subscribers):
            sub.offer(None)
