"""
Queue Consumer — Long-polls task events and materializes notifications.

Runs as an async task inside the API process or as a standalone worker
(job_queue/worker.py). Several instances may poll the same queue; the
broker's visibility timeout is the only thing keeping them from handling
the same message at once.

Loop:
  ┌───────────┐  non-empty batch   ┌──────────────┐
  │  Waiting  │───────────────────▶│  Processing  │
  │ (receive) │◀───────────────────│ (each msg)   │
  └───────────┘   batch handled    └──────┬───────┘
                                          │ per message
                      parse ─▶ materialize ─▶ delete(receipt)
                        │            │
                        └── failure ─┴─▶ leave undeleted → redelivered
                                          after the visibility timeout
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from job_queue.message_queue import (
    DeliveredMessage, MessageQueue, ReceiveError, get_message_queue,
)
from models.schemas import DomainEvent
from notifications.materializer import MaterializationError, NotificationMaterializer

logger = structlog.get_logger()


class MalformedMessageError(Exception):
    """The message body is not a valid DomainEvent."""


class MessageOutcome(str, Enum):
    DELETED = "deleted"
    MALFORMED = "malformed"
    FAILED = "failed"


@dataclass
class BatchResult:
    received: int = 0
    deleted: int = 0
    malformed: int = 0
    failed: int = 0


def parse_event(message: DeliveredMessage) -> DomainEvent:
    try:
        return DomainEvent.model_validate_json(message.body)
    except ValidationError as e:
        raise MalformedMessageError(
            f"message {message.message_id} is not a task event: {e.error_count()} error(s)"
        ) from e


class NotificationConsumer:
    """
    Polls the task event queue and drives the materializer.

    Usage:
        consumer = NotificationConsumer(queue, materializer)
        await consumer.start()             # blocks until stop()
        await consumer.start_background()  # returns immediately, runs as task
        await consumer.stop()
    """

    def __init__(
        self,
        queue: MessageQueue = None,
        materializer: NotificationMaterializer = None,
        max_messages: int = 10,
        wait_seconds: int = 20,
        concurrency: int = 5,
        receive_error_delay: Optional[float] = None,
        poison_threshold: int = 5,
    ):
        self.queue = queue if queue is not None else get_message_queue()
        self.materializer = materializer if materializer is not None else NotificationMaterializer()
        self.max_messages = max_messages
        self.wait_seconds = wait_seconds
        self.concurrency = concurrency
        self.receive_error_delay = (
            wait_seconds if receive_error_delay is None else receive_error_delay
        )
        self.poison_threshold = poison_threshold
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Poll until stop() is called."""
        self._running = True
        logger.info("notification_consumer_starting",
                    max_messages=self.max_messages,
                    wait_seconds=self.wait_seconds,
                    concurrency=self.concurrency)

        while self._running:
            try:
                await self.poll_once()
            except ReceiveError as e:
                logger.error("queue_receive_failed", error=str(e))
                if self._running:
                    await asyncio.sleep(self.receive_error_delay)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("consumer_error", error=str(e), exc_info=True)
                if self._running:
                    await asyncio.sleep(self.receive_error_delay)

        logger.info("notification_consumer_stopped")

    async def start_background(self) -> asyncio.Task:
        """Start polling in a background task. Returns the task handle."""
        self._task = asyncio.create_task(self.start(), name="notification_consumer")
        return self._task

    def request_stop(self):
        """Let the current iteration finish, then leave the loop."""
        self._running = False

    async def stop(self, timeout: Optional[float] = None):
        """
        Stop issuing receives. The in-flight receive and batch are allowed
        to finish for up to ``timeout`` seconds, then the task is cancelled.
        Undeleted messages are redelivered to another instance later.
        """
        self._running = False
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def poll_once(self) -> BatchResult:
        """One receive plus handling of whatever it returned."""
        messages = await self.queue.receive(
            max_messages=self.max_messages,
            wait_seconds=self.wait_seconds,
        )
        result = BatchResult(received=len(messages))
        if not messages:
            return result

        logger.info("messages_received", count=len(messages))
        outcomes = await asyncio.gather(*(self._guarded(m) for m in messages))
        for outcome in outcomes:
            if outcome is MessageOutcome.DELETED:
                result.deleted += 1
            elif outcome is MessageOutcome.MALFORMED:
                result.malformed += 1
            else:
                result.failed += 1
        return result

    async def _guarded(self, message: DeliveredMessage) -> MessageOutcome:
        async with self._semaphore:
            return await self.handle_message(message)

    async def handle_message(self, message: DeliveredMessage) -> MessageOutcome:
        """
        Process one delivery. Never raises: every failure is logged and the
        message is left on the queue for redelivery.
        """
        if message.receive_count > self.poison_threshold:
            logger.warning("poison_message_suspected",
                           message_id=message.message_id,
                           receive_count=message.receive_count)

        try:
            event = parse_event(message)
        except MalformedMessageError as e:
            logger.error("malformed_message", message_id=message.message_id, error=str(e))
            return MessageOutcome.MALFORMED

        logger.info("processing_event",
                    message_id=message.message_id,
                    event_type=event.event,
                    user_id=event.user_id)
        try:
            await self.materializer.materialize(event)
        except MaterializationError as e:
            logger.error("materialization_failed",
                         message_id=message.message_id,
                         event_type=event.event,
                         error=str(e))
            return MessageOutcome.FAILED
        except Exception as e:
            logger.error("message_processing_error",
                         message_id=message.message_id,
                         error=str(e),
                         exc_info=True)
            return MessageOutcome.FAILED

        try:
            await self.queue.delete(message.receipt)
        except Exception as e:
            # Notification exists; the redelivery will add a duplicate
            logger.error("message_delete_failed",
                         message_id=message.message_id,
                         error=str(e))
            return MessageOutcome.FAILED

        logger.info("message_deleted", message_id=message.message_id)
        return MessageOutcome.DELETED
