"""Test doubles shared across the test modules."""
from __future__ import annotations

from database.store_memory import InMemoryStore
from job_queue.message_queue import DeliveredMessage
from models.schemas import DomainEvent, Notification
from notifications.materializer import MaterializationError, NotificationMaterializer


def make_message(event: DomainEvent | str, n: int = 1) -> DeliveredMessage:
    body = event if isinstance(event, str) else event.to_wire()
    return DeliveredMessage(message_id=f"msg-{n}", receipt=f"rcpt-{n}", body=body)


class FlakyMaterializer(NotificationMaterializer):
    """Fails materialization for events whose task title is in ``fail_titles``."""

    def __init__(self, store: InMemoryStore, fail_titles=()):
        super().__init__(store)
        self.fail_titles = set(fail_titles)
        self.calls: list[DomainEvent] = []

    async def materialize(self, event: DomainEvent) -> Notification:
        self.calls.append(event)
        if event.task.title in self.fail_titles:
            raise MaterializationError(f"simulated write failure for {event.task.title}")
        return await super().materialize(event)


class RecordingPublisher:
    """Stands in for TaskEventPublisher in request-path tests."""

    def __init__(self):
        self.published: list[tuple[str, str, str]] = []

    def publish_detached(self, event_type, task, user_id):
        self.published.append((event_type, task.id, user_id))
        return None
