"""Fan-out hub for live dashboard connections.

Each connected client owns a ``Subscriber`` with a bounded
``asyncio.Queue`` of pre-encoded SSE frames.  ``publish()`` encodes a
message once and hands it to every eligible queue with ``put_nowait``, so
the mutation path never waits on a client.  A subscriber whose queue is
full is closed and removed; it reconnects and receives a fresh full
``stats`` frame on subscribe.

Improvements over a plain list of open responses:
- Per-subscriber topic eligibility (private topics need authorization)
- Dead-letter tracking for failed deliveries
- Deterministic removal on disconnect via ``stream()``'s ``finally``
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from drink_tracker.core.clock import IClock, WallClock
from drink_tracker.core.errors import DeliveryError
from drink_tracker.core.ids import new_id
from drink_tracker.core.messages import (
    PUBLIC_TYPES,
    MessageType,
    encode_sse,
)
from drink_tracker.core.periodic import PeriodicWorker

logger = logging.getLogger(__name__)

# Returns the current full ``stats`` payload for cold-start frames.
SnapshotProvider = Callable[[], Any]

_CLOSE = None
_DROPPED_HISTORY = 100


@dataclass
class DroppedSubscriber:
    """A subscriber removed because a frame could not be queued for it."""

    subscriber_id: str
    message_type: str
    error: str
    timestamp: float = field(default_factory=time.monotonic)


class Subscriber:
    """One live connection.  Created by ``BroadcastHub.subscribe()``."""

    def __init__(self, topics: frozenset[MessageType], queue_size: int) -> None:
        self.id = new_id()
        self.topics = topics
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self.delivered = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def accepts(self, message_type: MessageType) -> bool:
        return message_type in self.topics

    def offer(self, frame: str) -> None:
        """Enqueue *frame* without waiting.

        Raises ``DeliveryError`` when the subscriber is closed or its
        buffer is full.
        """
        if self._closed:
            raise DeliveryError(f"subscriber {self.id[:8]} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as exc:
            raise DeliveryError(
                f"subscriber {self.id[:8]} buffer full ({self._queue.maxsize})"
            ) from exc
        self.delivered += 1

    def close(self) -> None:
        """Stop delivery.  Pending frames are discarded."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSE)

    async def frames(self) -> AsyncIterator[str]:
        """Yield frames until the subscriber is closed."""
        while True:
            frame = await self._queue.get()
            if frame is _CLOSE or self._closed:
                return
            yield frame


class BroadcastHub:
    """Registry of live subscribers with non-blocking fan-out.

    Parameters
    ----------
    snapshot_provider:
        Called on every ``subscribe()`` to build the initial ``stats``
        frame.  Optional (no cold-start frame when absent).
    queue_size:
        Per-subscriber buffer, in frames.
    clock:
        Source of heartbeat timestamps.
    """

    def __init__(
        self,
        snapshot_provider: SnapshotProvider | None = None,
        *,
        queue_size: int = 256,
        clock: IClock | None = None,
    ) -> None:
        self._snapshot_provider = snapshot_provider
        self._queue_size = queue_size
        self._clock: IClock = clock or WallClock()
        self._subscribers: dict[str, Subscriber] = {}

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dropped: deque[DroppedSubscriber] = deque(maxlen=_DROPPED_HISTORY)
        self._messages_published = 0

    def set_snapshot_provider(self, provider: SnapshotProvider) -> None:
        self._snapshot_provider = provider

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def subscribe(
        self,
        *,
        authorized: bool = False,
        topics: Iterable[MessageType] | None = None,
    ) -> Subscriber:
        """Register a new subscriber and queue its cold-start ``stats`` frame.

        *topics* narrows what the subscriber receives; ``heartbeat`` is
        always included.  Private topics require *authorized*.
        """
        allowed = frozenset(MessageType) if authorized else PUBLIC_TYPES
        if topics is not None:
            allowed = allowed & (frozenset(topics) | {MessageType.HEARTBEAT})
        subscriber = Subscriber(allowed, self._queue_size)
        self._subscribers[subscriber.id] = subscriber

        if self._snapshot_provider is not None and subscriber.accepts(MessageType.STATS):
            try:
                subscriber.offer(encode_sse(MessageType.STATS, self._snapshot_provider()))
            except Exception:
                logger.exception("Cold-start stats frame failed for %s", subscriber.id[:8])

        logger.info(
            "Subscriber connected (%s, authorized=%s, %d total)",
            subscriber.id[:8],
            authorized,
            len(self._subscribers),
        )
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove *subscriber*.  Idempotent."""
        subscriber.close()
        if self._subscribers.pop(subscriber.id, None) is not None:
            logger.info(
                "Subscriber disconnected (%s, %d remaining)",
                subscriber.id[:8],
                len(self._subscribers),
            )

    async def stream(self, subscriber: Subscriber) -> AsyncIterator[str]:
        """Yield *subscriber*'s frames; unsubscribe when the consumer stops."""
        try:
            async for frame in subscriber.frames():
                yield frame
        finally:
            self.unsubscribe(subscriber)

    def close_all(self) -> None:
        for subscriber in list(self._subscribers.values()):
            self.unsubscribe(subscriber)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, topic: MessageType, payload: Any) -> int:
        """Deliver *payload* to every eligible subscriber.

        Never blocks and never raises for delivery problems.  Returns the
        number of subscribers the frame was queued for.
        """
        frame = encode_sse(topic, payload)
        self._messages_published += 1
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if not subscriber.accepts(topic):
                continue
            try:
                subscriber.offer(frame)
                delivered += 1
            except DeliveryError as exc:
                self._record_failure(subscriber, topic, exc)
                self.unsubscribe(subscriber)
        return delivered

    def heartbeat(self) -> int:
        """Send a liveness frame to every subscriber."""
        return self.publish(MessageType.HEARTBEAT, {"time": self._clock.now()})

    def _record_failure(
        self,
        subscriber: Subscriber,
        topic: MessageType,
        exc: Exception,
    ) -> None:
        self._error_counts[topic.value] += 1
        self._dropped.append(
            DroppedSubscriber(
                subscriber_id=subscriber.id,
                message_type=topic.value,
                error=str(exc),
            )
        )
        logger.warning("Dropping subscriber %s: %s", subscriber.id[:8], exc)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def messages_published(self) -> int:
        return self._messages_published

    def get_error_counts(self) -> dict[str, int]:
        """Return per-message-type delivery failure counts."""
        return dict(self._error_counts)

    @property
    def dropped(self) -> list[DroppedSubscriber]:
        """Most recent drops, oldest first."""
        return list(self._dropped)

    def clear_dropped(self) -> list[DroppedSubscriber]:
        drained = list(self._dropped)
        self._dropped.clear()
        return drained


class HeartbeatWorker(PeriodicWorker):
    """Sends ``heartbeat`` to every subscriber on a fixed interval."""

    def __init__(self, hub: BroadcastHub, interval: float = 15.0) -> None:
        super().__init__(interval=interval)
        self._hub = hub

    async def _work(self) -> None:
        self._hub.heartbeat()

