"""
Task service — task CRUD that announces every mutation on the event queue.

The store write commits first; the event is then handed to the publisher as
a detached task. The caller's result never depends on the publish outcome.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from database.store_base import BaseStore
from job_queue.publisher import TaskEventPublisher
from models.schemas import Task, TaskEventType, TaskStatus

logger = structlog.get_logger()

_VALID_STATUSES = {s.value for s in TaskStatus}


class TaskValidationError(ValueError):
    """Rejected input; the message is safe to show to the caller."""


class TaskService:
    def __init__(self, store: BaseStore, publisher: TaskEventPublisher):
        self.store = store
        self.publisher = publisher

    async def list_tasks(self, user_id: str) -> list[Task]:
        return await self.store.list_tasks(user_id)

    async def get_task(self, task_id: str, user_id: str) -> Optional[Task]:
        return await self.store.get_task(task_id, user_id)

    async def create_task(self, user_id: str, title: Optional[str],
                          description: Optional[str] = None,
                          status: Optional[str] = None) -> Task:
        if not title:
            raise TaskValidationError("Title is required")
        status = status or TaskStatus.PENDING.value
        if status not in _VALID_STATUSES:
            raise TaskValidationError("Invalid status value")

        task = await self.store.create_task(user_id, title, description, status)
        logger.info("task_created", task_id=task.id, user_id=user_id)
        self.publisher.publish_detached(TaskEventType.CREATED.value, task, user_id)
        return task

    async def update_task(self, task_id: str, user_id: str, changes: dict[str, Any]) -> Optional[Task]:
        """
        Apply the provided fields; returns None when the task does not exist.
        A present ``description`` of None clears it.
        """
        updates = {k: changes[k] for k in ("title", "description", "status") if k in changes}
        if "title" in updates and not updates["title"]:
            raise TaskValidationError("Title is required")
        if "status" in updates and updates["status"] not in _VALID_STATUSES:
            raise TaskValidationError("Invalid status value")
        if not updates:
            raise TaskValidationError("No fields to update")

        task = await self.store.update_task(task_id, user_id, **updates)
        if task is None:
            return None
        logger.info("task_updated", task_id=task.id, fields=sorted(updates))
        self.publisher.publish_detached(TaskEventType.UPDATED.value, task, user_id)
        return task

    async def delete_task(self, task_id: str, user_id: str) -> Optional[Task]:
        task = await self.store.delete_task(task_id, user_id)
        if task is None:
            return None
        logger.info("task_deleted", task_id=task.id)
        self.publisher.publish_detached(TaskEventType.DELETED.value, task, user_id)
        return task
