"""Built-in service integrations for Task states."""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional

from .constants import SQS_SEND_MESSAGE
from .contracts import InvocationContext, QueueMessage
from .transports import BaseTransport

logger = logging.getLogger(__name__)

Service = Callable[[Any, InvocationContext], Awaitable[Any]]


class SendMessageService:
    """``sqs:sendMessage``: publish the task input to a queue."""

    resource = SQS_SEND_MESSAGE

    def __init__(self, transport: BaseTransport) -> None:
        self._transport = transport

    async def __call__(self, payload: Any, context: InvocationContext) -> Dict[str, Any]:
        if not isinstance(payload, dict) or not payload.get("QueueUrl"):
            raise ValueError("sqs:sendMessage requires a 'QueueUrl' parameter")

        queue_url = payload["QueueUrl"]
        body = json.dumps(payload.get("MessageBody"))
        md5 = hashlib.md5(body.encode("utf-8")).hexdigest()
        message = QueueMessage(
            message_id=str(uuid.uuid4()),
            queue_url=queue_url,
            body=body,
            md5_of_body=md5,
            delay_seconds=payload.get("DelaySeconds"),
            message_deduplication_id=payload.get("MessageDeduplicationId"),
            message_group_id=payload.get("MessageGroupId"),
            message_attributes=payload.get("MessageAttributes"),
        )

        broker_id = await self._transport.publish(queue_url, message)
        message_id = broker_id or message.message_id
        logger.info(
            f"Sent message {message_id} to {queue_url} for {context.execution_arn}"
        )
        return {"MessageId": message_id, "MD5OfMessageBody": md5}


class ServiceRegistry:
    """Maps service resource identifiers to service callables."""

    def __init__(self, services: Optional[Dict[str, Service]] = None) -> None:
        self._services: Dict[str, Service] = dict(services or {})

    def register(self, resource: str, service: Service) -> None:
        self._services[resource] = service

    def get(self, resource: str) -> Optional[Service]:
        return self._services.get(resource)

    def __contains__(self, resource: object) -> bool:
        return resource in self._services

    def __iter__(self) -> Iterator[str]:
        return iter(self._services)


def default_services(transport: BaseTransport) -> ServiceRegistry:
    """Registry holding every built-in integration bound to ``transport``."""
    registry = ServiceRegistry()
    registry.register(SQS_SEND_MESSAGE, SendMessageService(transport))
    return registry
