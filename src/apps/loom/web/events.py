"""Broadcast of render events to streaming web clients."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Mapping

import structlog

logger = structlog.get_logger(__name__)

KEEPALIVE_INTERVAL_ENV = "LOOM_SSE_KEEPALIVE_INTERVAL"
DEFAULT_KEEPALIVE_INTERVAL = 15.0


class EventBroadcaster:
    """Publish render events to multiple subscribers with backpressure handling.

    :meth:`publish` is synchronous so render jobs can call it from their
    callbacks; delivery is scheduled on the loop the first subscriber used.
    Events published before anyone subscribed are dropped.
    """

    def __init__(self, max_buffer: int = 32) -> None:
        self._max_buffer = max_buffer
        self._subscribers: set[asyncio.Queue[Any]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock: asyncio.Lock | None = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue[Any]:
        """Register a new subscriber and return its queue."""

        queue: asyncio.Queue[Any] = asyncio.Queue(self._max_buffer)
        loop = asyncio.get_running_loop()

        if self._loop is None or self._loop.is_closed():
            self._loop = loop
            self._lock = asyncio.Lock()
            self._subscribers.clear()
        elif self._loop is not loop:
            raise RuntimeError("EventBroadcaster is bound to a different event loop")

        lock = self._ensure_lock()

        async with lock:
            self._subscribers.add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[Any]) -> None:
        """Remove a subscriber queue from the broadcast set."""

        lock = self._lock
        if lock is None:
            self._subscribers.discard(queue)
            return

        async with lock:
            self._subscribers.discard(queue)

    def publish(self, payload: Mapping[str, Any]) -> None:
        """Schedule an event for delivery to all subscribers."""

        loop = self._loop
        if loop is None or loop.is_closed():
            return

        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is loop:
            # Deliver synchronously so subscribers observe publish order.
            self._deliver(payload)
        else:
            loop.call_soon_threadsafe(self._deliver, payload)

    def _deliver(self, payload: Mapping[str, Any]) -> None:
        """Dispatch payload to all subscribers respecting backpressure."""

        dropped = [
            queue for queue in list(self._subscribers) if not self._offer(queue, payload)
        ]
        for queue in dropped:
            if queue in self._subscribers:
                self._subscribers.discard(queue)
                logger.warning("loom.events.dropped_subscriber", queue_id=id(queue))

    def _offer(self, queue: asyncio.Queue[Any], payload: Any) -> bool:
        """Attempt to enqueue ``payload`` without blocking.

        Returns ``True`` if the payload was enqueued or ``False`` when the
        subscriber was dropped because it could not keep up with the stream.
        """

        try:
            queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            # Drop the oldest item and retry once. If the queue is still full the
            # consumer is too slow and the subscription is removed.
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:  # pragma: no cover - defensive guard
                pass
            try:
                queue.put_nowait(payload)
                logger.warning(
                    "loom.events.backpressure", queue_id=id(queue), action="trim"
                )
                return True
            except asyncio.QueueFull:
                logger.warning(
                    "loom.events.backpressure", queue_id=id(queue), action="drop"
                )
                return False

    def _ensure_lock(self) -> asyncio.Lock:
        lock = self._lock
        if lock is None:
            raise RuntimeError("EventBroadcaster lock is not initialized")
        return lock


def format_sse_chunk(event_name: str | None, payload: Any) -> bytes:
    """Encode ``payload`` as one server-sent event frame."""

    lines: list[bytes] = []
    if event_name:
        lines.append(b"event: " + event_name.encode("utf-8"))
    lines.append(b"data: " + json.dumps(payload).encode("utf-8"))
    return b"\n".join(lines) + b"\n\n"


def resolve_keepalive_interval(default: float = DEFAULT_KEEPALIVE_INTERVAL) -> float:
    """Return the SSE keepalive interval, honouring ``LOOM_SSE_KEEPALIVE_INTERVAL``."""

    raw_value = os.environ.get(KEEPALIVE_INTERVAL_ENV)
    if raw_value is None:
        return default
    try:
        interval = float(raw_value)
    except ValueError:
        logger.warning("loom.events.keepalive_invalid", value=raw_value)
        return default
    if interval <= 0:
        logger.warning("loom.events.keepalive_ignored", value=raw_value)
        return default
    return interval


__all__ = [
    "DEFAULT_KEEPALIVE_INTERVAL",
    "EventBroadcaster",
    "KEEPALIVE_INTERVAL_ENV",
    "format_sse_chunk",
    "resolve_keepalive_interval",
]
