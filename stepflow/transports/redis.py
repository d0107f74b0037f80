"""Redis transport for queues shared between processes."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Optional, Tuple

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import QueueMessage
from .base import DEDUPLICATION_WINDOW_SECONDS, BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Each queue is a Redis list plus a sorted set of delayed messages.

    Delayed messages are scored by the time they become visible and moved to
    the list once that time has passed. Deduplication ids are kept as keys
    that expire with the deduplication window.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
        dedup_window: float = DEDUPLICATION_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if redis is None and client is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client
        self._dedup_window = dedup_window
        self._clock = clock

    @staticmethod
    def queue_name(queue_url: str) -> str:
        return f"stepflow:{queue_url}"

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is not None:
            return
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, queue_url: str, message: QueueMessage) -> Optional[str]:
        """Push ``message`` onto the queue, or park it until its delay ends."""
        await self.connect()
        name = self.queue_name(queue_url)

        dedup_id = message.message_deduplication_id
        if dedup_id:
            key = f"{name}:dedup:{dedup_id}"
            first = await self._redis.set(
                key, message.message_id, nx=True, ex=max(1, int(self._dedup_window))
            )
            if not first:
                logger.debug(f"Dropped duplicate {dedup_id} on {queue_url}")
                return await self._redis.get(key)

        if message.delay_seconds:
            visible_at = self._clock() + message.delay_seconds
            await self._redis.zadd(f"{name}:delayed", {message.to_json(): visible_at})
        else:
            await self._redis.lpush(name, message.to_json())
        return None

    async def _release_delayed(self, name: str) -> None:
        due = await self._redis.zrangebyscore(f"{name}:delayed", 0, self._clock())
        for message_json in due:
            # Only the reader that removes the entry moves it
            if await self._redis.zrem(f"{name}:delayed", message_json):
                await self._redis.lpush(name, message_json)

    async def subscribe(
        self, queue_url: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, QueueMessage]]:
        """Pop visible messages from the queue's list."""
        await self.connect()
        name = self.queue_name(queue_url)

        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                if loop.time() - start_time >= lifespan:
                    break

            await self._release_delayed(name)
            message_json = await self._redis.rpop(name)

            if message_json is None:
                await asyncio.sleep(0.1)
                continue

            try:
                message = QueueMessage.model_validate(json.loads(message_json))
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning(f"Failed to parse message: {e}")
                continue
            yield message_json, message

    async def ack(self, raw_message: str) -> None:
        """Messages leave the list when popped, so there is nothing to do."""
        pass
