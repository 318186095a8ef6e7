"""
Notification Materializer — turns a task DomainEvent into a stored Notification.

Every successful call inserts a new row; there is no lookup for a row from
an earlier delivery of the same event. A message redelivered after a crash
between insert and queue delete therefore yields a second notification.
The mapping below is order independent, so reordered or repeated events
never produce an inconsistent row.
"""
from __future__ import annotations

import structlog
from typing import Any

from database.store_base import BaseStore
from database.store_factory import get_store
from models.schemas import DomainEvent, Notification, TaskSnapshot

logger = structlog.get_logger()


class MaterializationError(Exception):
    """The notification could not be written to the store."""


_MESSAGE_TEMPLATES = {
    "task.created": 'New task created: "{title}"',
    "task.updated": 'Task updated: "{title}" is now {status}',
    "task.deleted": 'Task deleted: "{title}"',
}
_UPDATED_WITHOUT_STATUS = 'Task updated: "{title}"'


def build_notification_message(event_type: str, task: TaskSnapshot | dict[str, Any]) -> str:
    """Human readable text for ``event_type``; unknown types get a generic line."""
    template = _MESSAGE_TEMPLATES.get(event_type)
    if template is None:
        return f"Task event: {event_type}"
    fields = task.model_dump() if isinstance(task, TaskSnapshot) else dict(task or {})
    if event_type == "task.updated" and not fields.get("status"):
        # No status in the snapshot: drop the "is now ..." clause
        template = _UPDATED_WITHOUT_STATUS
    return template.format(title=fields.get("title"), status=fields.get("status"))


class NotificationMaterializer:
    """Persists one notification per delivered event."""

    def __init__(self, store: BaseStore = None):
        self.store = store if store is not None else get_store()

    async def materialize(self, event: DomainEvent) -> Notification:
        message = build_notification_message(event.event, event.task)
        try:
            notification = await self.store.insert_notification(
                user_id=event.user_id,
                event_type=event.event,
                message=message,
                task_id=event.task.id,
            )
        except Exception as e:
            raise MaterializationError(
                f"failed to store notification for {event.event}: {e}"
            ) from e

        logger.info("notification_saved",
                    notification_id=notification.id,
                    event_type=event.event,
                    user_id=event.user_id,
                    task_title=event.task.title)
        return notification
