"""Queue interface behind the ``sqs:sendMessage`` service integration."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, List, Optional, Tuple, TypeVar

from ..contracts import QueueMessage

RawMessageT = TypeVar("RawMessageT")

# How long SQS remembers a MessageDeduplicationId
DEDUPLICATION_WINDOW_SECONDS = 300.0


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """A set of queues addressed by queue URL.

    Implementations follow SQS delivery: a message published with
    ``delay_seconds`` is not delivered before the delay has passed, and a
    repeated ``message_deduplication_id`` inside the deduplication window is
    accepted without being delivered twice.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, queue_url: str, message: QueueMessage) -> Optional[str]:
        """Send ``message`` to ``queue_url``.

        Returns the broker-assigned message id when the broker issues its own,
        or the earlier message's id when ``message`` is a duplicate.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, queue_url: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, QueueMessage]]:
        """Yield ``(raw, message)`` pairs as messages become visible.

        Args:
            queue_url: The queue to read from
            lifespan: Seconds to keep reading. If None, runs indefinitely.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Remove a delivered message from its queue."""
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Give a message back to the queue (acks when unsupported)."""
        await self.ack(raw_message)

    async def receive(
        self, queue_url: str, max_messages: int = 10, wait_seconds: float = 1.0
    ) -> List[QueueMessage]:
        """Read and delete up to ``max_messages`` within ``wait_seconds``."""
        received: List[QueueMessage] = []
        async for raw, message in self.subscribe(queue_url, lifespan=wait_seconds):
            await self.ack(raw)
            received.append(message)
            if len(received) >= max_messages:
                break
        return received
