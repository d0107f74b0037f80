"""Amazon SQS transport."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from ..contracts import QueueMessage
from .base import BaseTransport

logger = logging.getLogger(__name__)


class SQSTransport(BaseTransport[Dict[str, Any]]):
    """Send and receive through SQS using a boto3 client.

    boto3 is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        region: str = "eu-west-1",
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client

    async def connect(self) -> None:
        """Create the boto3 SQS client."""
        if self._client is not None:
            return
        import boto3

        client_kwargs: Dict[str, Any] = {
            "service_name": "sqs",
            "region_name": self.region,
        }
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self._access_key_id and self._secret_access_key:
            client_kwargs["aws_access_key_id"] = self._access_key_id
            client_kwargs["aws_secret_access_key"] = self._secret_access_key

        self._client = boto3.client(**client_kwargs)
        logger.info(f"SQS client initialized for region {self.region}")

    async def publish(self, queue_url: str, message: QueueMessage) -> Optional[str]:
        """Send ``message`` with ``SendMessage``."""
        await self.connect()

        params: Dict[str, Any] = {"QueueUrl": queue_url, "MessageBody": message.body}
        if message.delay_seconds is not None:
            params["DelaySeconds"] = message.delay_seconds
        if message.message_deduplication_id is not None:
            params["MessageDeduplicationId"] = message.message_deduplication_id
        if message.message_group_id is not None:
            params["MessageGroupId"] = message.message_group_id
        if message.message_attributes is not None:
            params["MessageAttributes"] = message.message_attributes

        response = await asyncio.to_thread(self._client.send_message, **params)
        return response.get("MessageId")

    async def subscribe(
        self, queue_url: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Dict[str, Any], QueueMessage]]:
        """Long-poll ``queue_url`` with ``ReceiveMessage``."""
        await self.connect()

        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                if loop.time() - start_time >= lifespan:
                    break

            response = await asyncio.to_thread(
                self._client.receive_message,
                QueueUrl=queue_url,
                MaxNumberOfMessages=10,
                WaitTimeSeconds=1,
                MessageAttributeNames=["All"],
            )
            for raw in response.get("Messages", []):
                raw["QueueUrl"] = queue_url
                yield raw, QueueMessage(
                    message_id=raw["MessageId"],
                    queue_url=queue_url,
                    body=raw["Body"],
                    md5_of_body=raw.get("MD5OfBody", ""),
                    message_attributes=raw.get("MessageAttributes"),
                )

    async def ack(self, raw_message: Dict[str, Any]) -> None:
        """Delete the message from its queue."""
        await asyncio.to_thread(
            self._client.delete_message,
            QueueUrl=raw_message["QueueUrl"],
            ReceiptHandle=raw_message["ReceiptHandle"],
        )

    async def nack(self, raw_message: Dict[str, Any], requeue: bool = True) -> None:
        """Make the message visible again, or drop it when not requeued."""
        if not requeue:
            await self.ack(raw_message)
            return
        await asyncio.to_thread(
            self._client.change_message_visibility,
            QueueUrl=raw_message["QueueUrl"],
            ReceiptHandle=raw_message["ReceiptHandle"],
            VisibilityTimeout=0,
        )
