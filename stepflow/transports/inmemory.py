"""In-memory transport for local runs and tests."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from ..contracts import QueueMessage
from .base import DEDUPLICATION_WINDOW_SECONDS, BaseTransport

logger = logging.getLogger(__name__)

RawMessage = Tuple[str, QueueMessage]


class InMemoryTransport(BaseTransport[RawMessage]):
    """In-process queues keyed by queue URL, delivered the way SQS does.

    A message published with ``delay_seconds`` stays invisible until the
    delay has passed. A ``message_deduplication_id`` already seen on the same
    queue inside the deduplication window is accepted but not enqueued again.
    """

    def __init__(
        self,
        dedup_window: float = DEDUPLICATION_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        # queue url -> [(visible at, raw message)]
        self._queues: Dict[str, List[Tuple[float, RawMessage]]] = defaultdict(list)
        # queue url -> {deduplication id: (message id, expires at)}
        self._dedup: Dict[str, Dict[str, Tuple[str, float]]] = defaultdict(dict)
        self._dedup_window = dedup_window
        self._clock = clock
        self._lock = asyncio.Lock()

    def _seen(self, queue_url: str, dedup_id: str, now: float) -> Optional[str]:
        seen = self._dedup[queue_url]
        for key in [k for k, (_, expires) in seen.items() if expires <= now]:
            del seen[key]
        entry = seen.get(dedup_id)
        return entry[0] if entry else None

    async def publish(self, queue_url: str, message: QueueMessage) -> Optional[str]:
        """Queue ``message``; a duplicate returns the original message id."""
        now = self._clock()
        async with self._lock:
            dedup_id = message.message_deduplication_id
            if dedup_id:
                original = self._seen(queue_url, dedup_id, now)
                if original is not None:
                    logger.debug(f"Dropped duplicate {dedup_id} on {queue_url}")
                    return original
                self._dedup[queue_url][dedup_id] = (
                    message.message_id,
                    now + self._dedup_window,
                )
            visible_at = now + (message.delay_seconds or 0)
            self._queues[queue_url].append((visible_at, (message.to_json(), message)))
        return None

    async def _pop_visible(self, queue_url: str) -> Optional[RawMessage]:
        now = self._clock()
        async with self._lock:
            queue = self._queues[queue_url]
            for index, (visible_at, raw) in enumerate(queue):
                if visible_at <= now:
                    del queue[index]
                    return raw
        return None

    async def subscribe(
        self, queue_url: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, QueueMessage]]:
        """Read visible messages from a queue in publish order.

        Args:
            queue_url: The queue to read from
            lifespan: Maximum time in seconds to keep reading. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                if loop.time() - start_time >= lifespan:
                    break

            raw_message = await self._pop_visible(queue_url)
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(0.1)

    async def ack(self, raw_message: RawMessage) -> None:
        """Messages leave the queue when read, so there is nothing to do."""
        pass

    def pending(self, queue_url: str) -> int:
        """Number of messages on ``queue_url``, delayed ones included."""
        return len(self._queues[queue_url])
