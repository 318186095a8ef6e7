"""
Message Queue — Abstract interface with Amazon SQS and in-memory backends.

Delivery semantics (both backends):
  send(body, attributes)          → message id
  receive(max_messages, wait)     → long poll; [] when nothing arrives in time
  delete(receipt)                 → acknowledge one delivery attempt

Every delivered message is hidden from other receivers for the visibility
timeout. If it is not deleted within that window it becomes visible again
and is redelivered with a new receipt, possibly to another consumer.

Message attributes:
  eventType, userId: string attributes for routing/filtering by external
  infrastructure; the pipeline itself never reads them.
"""
from __future__ import annotations

import asyncio
import time
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────────────────────

class QueueError(Exception):
    """Base class for queue adapter failures."""


class QueueUnavailable(QueueError):
    """Transport or auth failure talking to the broker."""


class ReceiveError(QueueUnavailable):
    """A receive (poll) call failed."""


# ──────────────────────────────────────────────────────────────
#  Delivered Message
# ──────────────────────────────────────────────────────────────

@dataclass
class DeliveredMessage:
    """One delivery attempt of a queued message."""
    message_id: str
    receipt: str
    body: str
    attributes: dict[str, str] = field(default_factory=dict)
    receive_count: int = 1


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class MessageQueue(ABC):
    """Abstract message queue interface."""

    @abstractmethod
    async def connect(self):
        """Create the shared broker handle."""
        ...

    @abstractmethod
    async def close(self):
        """Release the broker handle."""
        ...

    @abstractmethod
    async def send(self, body: str, attributes: dict[str, str] = None) -> str:
        """Enqueue ``body``; returns the broker-assigned message id."""
        ...

    @abstractmethod
    async def receive(self, max_messages: int = 10, wait_seconds: int = 20) -> list[DeliveredMessage]:
        """Long-poll for up to ``max_messages`` visible messages."""
        ...

    @abstractmethod
    async def delete(self, receipt: str) -> None:
        """Delete the message for ``receipt``. Expired receipts are ignored."""
        ...


# ──────────────────────────────────────────────────────────────
#  Amazon SQS Implementation
# ──────────────────────────────────────────────────────────────

_EXPIRED_RECEIPT_CODES = {
    "ReceiptHandleIsInvalid",
    "InvalidParameterValue",
    "AWS.SimpleQueueService.ReceiptHandleIsInvalid",
}


class SqsMessageQueue(MessageQueue):
    """
    Production queue backed by Amazon SQS (or LocalStack via endpoint_url).

    boto3 is synchronous, so each call runs in a worker thread. The client
    is created once in connect() and shared by every caller; boto3 clients
    are thread-safe.
    """

    def __init__(
        self,
        queue_url: str,
        region: str = "us-east-1",
        endpoint_url: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        visibility_timeout: int = 30,
        client: Any = None,
    ):
        self.queue_url = queue_url
        self.region = region
        self.endpoint_url = endpoint_url
        self.visibility_timeout = visibility_timeout
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client

    async def connect(self):
        if self._client is not None:
            return
        import boto3
        from botocore.config import Config

        kwargs: dict[str, Any] = {
            "region_name": self.region,
            # read timeout must outlast the longest long poll (20s)
            "config": Config(read_timeout=30, retries={"max_attempts": 3, "mode": "standard"}),
        }
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if self._access_key_id:
            kwargs["aws_access_key_id"] = self._access_key_id
            kwargs["aws_secret_access_key"] = self._secret_access_key
        self._client = boto3.client("sqs", **kwargs)
        logger.info("sqs_queue_connected",
                    queue_url=self.queue_url,
                    region=self.region,
                    endpoint=self.endpoint_url or "aws")

    async def close(self):
        if self._client is not None and hasattr(self._client, "close"):
            await asyncio.to_thread(self._client.close)
        self._client = None

    def _require_client(self):
        if self._client is None:
            raise QueueUnavailable("SQS client not connected; call connect() first")
        return self._client

    async def send(self, body: str, attributes: dict[str, str] = None) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        client = self._require_client()
        message_attributes = {
            name: {"DataType": "String", "StringValue": str(value)}
            for name, value in (attributes or {}).items()
            if value is not None and value != ""
        }
        try:
            result = await asyncio.to_thread(
                client.send_message,
                QueueUrl=self.queue_url,
                MessageBody=body,
                MessageAttributes=message_attributes,
            )
        except (BotoCoreError, ClientError) as e:
            raise QueueUnavailable(f"SQS send failed: {e}") from e
        return result["MessageId"]

    async def receive(self, max_messages: int = 10, wait_seconds: int = 20) -> list[DeliveredMessage]:
        from botocore.exceptions import BotoCoreError, ClientError

        client = self._require_client()
        try:
            result = await asyncio.to_thread(
                client.receive_message,
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max(1, min(max_messages, 10)),
                WaitTimeSeconds=max(0, min(wait_seconds, 20)),
                VisibilityTimeout=self.visibility_timeout,
                MessageAttributeNames=["All"],
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (BotoCoreError, ClientError) as e:
            raise ReceiveError(f"SQS receive failed: {e}") from e

        delivered = []
        for raw in result.get("Messages", []):
            attributes = {
                name: value.get("StringValue", "")
                for name, value in raw.get("MessageAttributes", {}).items()
            }
            delivered.append(DeliveredMessage(
                message_id=raw["MessageId"],
                receipt=raw["ReceiptHandle"],
                body=raw.get("Body", ""),
                attributes=attributes,
                receive_count=int(raw.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
            ))
        return delivered

    async def delete(self, receipt: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        client = self._require_client()
        try:
            await asyncio.to_thread(
                client.delete_message,
                QueueUrl=self.queue_url,
                ReceiptHandle=receipt,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _EXPIRED_RECEIPT_CODES:
                logger.warning("sqs_receipt_expired", code=code)
                return
            raise QueueUnavailable(f"SQS delete failed: {e}") from e
        except BotoCoreError as e:
            raise QueueUnavailable(f"SQS delete failed: {e}") from e


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

@dataclass
class _StoredMessage:
    message_id: str
    body: str
    attributes: dict[str, str]
    visible_at: float = 0.0
    receipt: Optional[str] = None
    receive_count: int = 0


class InMemoryMessageQueue(MessageQueue):
    """
    Development/test queue with SQS-like semantics on asyncio primitives.
    Single-process only, no persistence.

    Visibility timeouts and long polling behave like SQS so consumer
    retry behaviour can be exercised without a broker.
    """

    def __init__(self, visibility_timeout: float = 30, clock=time.monotonic):
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._messages: dict[str, _StoredMessage] = {}     # message_id → message
        self._receipts: dict[str, str] = {}                # receipt → message_id
        self._arrived: Optional[asyncio.Condition] = None
        self.available = True                              # flip to simulate an outage

    def _condition(self) -> asyncio.Condition:
        if self._arrived is None:
            self._arrived = asyncio.Condition()
        return self._arrived

    async def connect(self):
        self._condition()
        logger.info("inmemory_queue_connected")

    async def close(self):
        self._arrived = None

    async def send(self, body: str, attributes: dict[str, str] = None) -> str:
        if not self.available:
            raise QueueUnavailable("in-memory queue marked unavailable")
        message_id = str(uuid.uuid4())
        self._messages[message_id] = _StoredMessage(
            message_id=message_id,
            body=body,
            attributes=dict(attributes or {}),
        )
        cond = self._condition()
        async with cond:
            cond.notify_all()
        logger.debug("message_enqueued", message_id=message_id)
        return message_id

    def _take_visible(self, max_messages: int) -> list[DeliveredMessage]:
        now = self._clock()
        delivered = []
        for msg in self._messages.values():
            if len(delivered) >= max_messages:
                break
            if msg.visible_at > now:
                continue
            if msg.receipt:
                self._receipts.pop(msg.receipt, None)
            msg.receipt = uuid.uuid4().hex
            msg.receive_count += 1
            msg.visible_at = now + self.visibility_timeout
            self._receipts[msg.receipt] = msg.message_id
            delivered.append(DeliveredMessage(
                message_id=msg.message_id,
                receipt=msg.receipt,
                body=msg.body,
                attributes=dict(msg.attributes),
                receive_count=msg.receive_count,
            ))
        return delivered

    def _next_visible_in(self) -> Optional[float]:
        now = self._clock()
        pending = [m.visible_at - now for m in self._messages.values()]
        return max(0.0, min(pending)) if pending else None

    async def receive(self, max_messages: int = 10, wait_seconds: int = 20) -> list[DeliveredMessage]:
        if not self.available:
            raise ReceiveError("in-memory queue marked unavailable")

        deadline = self._clock() + wait_seconds
        cond = self._condition()
        async with cond:
            while True:
                delivered = self._take_visible(max_messages)
                if delivered:
                    return delivered
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return []
                # Wake on a new send or when the next hidden message reappears
                next_visible = self._next_visible_in()
                timeout = remaining if next_visible is None else min(remaining, next_visible + 0.001)
                try:
                    await asyncio.wait_for(cond.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass

    async def delete(self, receipt: str) -> None:
        message_id = self._receipts.get(receipt)
        msg = self._messages.get(message_id) if message_id else None
        if msg is None or msg.receipt != receipt or msg.visible_at <= self._clock():
            logger.debug("receipt_expired_or_unknown", receipt=receipt[:8])
            return
        del self._messages[message_id]
        self._receipts.pop(receipt, None)

    # ── Inspection (tests, debugging) ─────────────────────

    def __len__(self) -> int:
        return len(self._messages)

    def pending_ids(self) -> list[str]:
        return list(self._messages)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[MessageQueue] = None


def create_message_queue(queue_config: dict[str, Any] = None) -> MessageQueue:
    """Factory: create the appropriate queue backend."""
    global _instance
    if _instance:
        return _instance

    config = queue_config or {}
    backend = config.get("backend", "memory")

    if backend == "sqs":
        _instance = SqsMessageQueue(
            queue_url=config.get("queue_url", ""),
            region=config.get("region", "us-east-1"),
            endpoint_url=config.get("endpoint_url", ""),
            access_key_id=config.get("access_key_id", ""),
            secret_access_key=config.get("secret_access_key", ""),
            visibility_timeout=config.get("visibility_timeout", 30),
        )
    else:
        _instance = InMemoryMessageQueue(
            visibility_timeout=config.get("visibility_timeout", 30),
        )

    return _instance


def get_message_queue() -> MessageQueue:
    """Return the singleton queue instance."""
    global _instance
    if _instance is None:
        _instance = create_message_queue()
    return _instance


def reset_message_queue() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
