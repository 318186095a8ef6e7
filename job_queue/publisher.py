"""
Task Event Publisher — Serializes task lifecycle events onto the queue.

Runs inside the task service. The task row is already committed when an
event is published, so publishing is best-effort: a failed publish is
logged and the triggering request still succeeds. Lost notifications are
an expected outcome, not an exceptional one.

Usage:
    publisher = TaskEventPublisher(queue)
    message_id = await publisher.publish("task.created", task, user_id)   # raises PublishError
    publisher.publish_detached("task.updated", task, user_id)             # never raises
    await publisher.drain()                                               # at shutdown
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Any, Optional

from job_queue.message_queue import MessageQueue, QueueError, get_message_queue
from models.schemas import DomainEvent, Task, TaskEventType, TaskSnapshot

logger = structlog.get_logger()


class PublishError(Exception):
    """The queue was unreachable or rejected the send."""


class TaskEventPublisher:
    """Publishes ``task.*`` domain events to the shared queue."""

    def __init__(self, queue: MessageQueue = None, timeout_seconds: float = 5.0):
        self.queue = queue if queue is not None else get_message_queue()
        self.timeout_seconds = timeout_seconds
        self._pending: set[asyncio.Task] = set()

    @staticmethod
    def build_event(event_type: str, task: Task | dict[str, Any], user_id: str) -> DomainEvent:
        """Validate inputs and assemble the wire envelope."""
        try:
            event = TaskEventType.parse(event_type)
        except ValueError:
            raise ValueError(f"Unsupported task event type: {event_type!r}") from None

        if not user_id:
            raise ValueError("user_id is required")

        data = task.snapshot() if isinstance(task, Task) else dict(task or {})
        if data.get("id") in (None, "") or not data.get("title"):
            raise ValueError("task must contain 'id' and 'title'")

        return DomainEvent(
            event=event.value,
            task=TaskSnapshot.model_validate(data),
            user_id=str(user_id),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def publish(self, event_type: str, task: Task | dict[str, Any], user_id: str) -> str:
        """Send one event; returns the queue message id."""
        event = self.build_event(event_type, task, user_id)
        attributes = {"eventType": event.event, "userId": event.user_id}

        try:
            message_id = await asyncio.wait_for(
                self.queue.send(event.to_wire(), attributes),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PublishError(
                f"publish of {event.event} timed out after {self.timeout_seconds}s"
            ) from e
        except QueueError as e:
            raise PublishError(f"publish of {event.event} failed: {e}") from e

        logger.info("task_event_published",
                    event_type=event.event,
                    message_id=message_id,
                    task_id=event.task.id,
                    user_id=event.user_id)
        return message_id

    def publish_detached(
        self, event_type: str, task: Task | dict[str, Any], user_id: str,
    ) -> Optional[asyncio.Task]:
        """
        Fire-and-forget publish. The returned task is never joined by the
        caller; failures end up in the log only.
        """
        try:
            coro = self.publish(event_type, task, user_id)
            bg = asyncio.get_running_loop().create_task(coro, name=f"publish:{event_type}")
        except RuntimeError:
            coro.close()
            logger.error("task_event_publish_no_loop", event_type=event_type)
            return None

        self._pending.add(bg)
        bg.add_done_callback(self._on_done)
        return bg

    def _on_done(self, bg: asyncio.Task) -> None:
        self._pending.discard(bg)
        if bg.cancelled():
            logger.warning("task_event_publish_cancelled", task=bg.get_name())
            return
        error = bg.exception()
        if error is not None:
            logger.error("task_event_publish_failed",
                         task=bg.get_name(),
                         error=str(error),
                         error_type=type(error).__name__)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait (bounded) for in-flight detached publishes."""
        if not self._pending:
            return
        done, not_done = await asyncio.wait(list(self._pending), timeout=timeout)
        for bg in not_done:
            bg.cancel()
        if not_done:
            logger.warning("task_event_publish_abandoned", count=len(not_done))
