"""
InMemoryStore — Dict-backed store for development and testing.

  - Zero dependencies (no database)
  - Full interface compatibility with SqlStore
  - Safe within a single event loop; all data lost on restart
"""
from __future__ import annotations

import itertools
import uuid
import structlog
from datetime import datetime, timezone
from typing import Any, Optional

from database.store_base import BaseStore
from models.schemas import Notification, Task, TaskStatus

logger = structlog.get_logger()

_TASK_FIELDS = ("title", "description", "status")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryStore(BaseStore):
    """
    Full-featured in-memory store with the same interface as SqlStore.
    Rows are kept as dicts; recency ties are broken by insertion order.
    """

    def __init__(self):
        self._tasks: dict[str, dict] = {}              # id → task dict
        self._notifications: dict[str, dict] = {}      # id → notification dict
        self._seq = itertools.count()
        self.fail_writes = False                       # simulate store outages in tests
        logger.info("inmemory_store_initialized")

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise ConnectionError("in-memory store marked unavailable")

    # ── Tasks ─────────────────────────────────────────────

    async def create_task(self, user_id: str, title: str,
                          description: Optional[str] = None, status: str = "pending") -> Task:
        self._check_writable()
        now = _utcnow()
        data = {
            "id": _new_id(), "user_id": user_id, "title": title,
            "description": description, "status": TaskStatus(status).value,
            "created_at": now, "updated_at": now, "_seq": next(self._seq),
        }
        self._tasks[data["id"]] = data
        return self._to_task(data)

    async def get_task(self, task_id: str, user_id: str) -> Optional[Task]:
        data = self._tasks.get(task_id)
        if not data or data["user_id"] != user_id:
            return None
        return self._to_task(data)

    async def list_tasks(self, user_id: str) -> list[Task]:
        rows = [t for t in self._tasks.values() if t["user_id"] == user_id]
        rows.sort(key=lambda t: (t["created_at"], t["_seq"]), reverse=True)
        return [self._to_task(t) for t in rows]

    async def update_task(self, task_id: str, user_id: str, **fields: Any) -> Optional[Task]:
        self._check_writable()
        data = self._tasks.get(task_id)
        if not data or data["user_id"] != user_id:
            return None
        data.update({k: v for k, v in fields.items() if k in _TASK_FIELDS})
        data["updated_at"] = _utcnow()
        return self._to_task(data)

    async def delete_task(self, task_id: str, user_id: str) -> Optional[Task]:
        self._check_writable()
        data = self._tasks.get(task_id)
        if not data or data["user_id"] != user_id:
            return None
        del self._tasks[task_id]
        return self._to_task(data)

    # ── Notifications ─────────────────────────────────────

    async def insert_notification(self, user_id: str, event_type: str, message: str,
                                  task_id: Optional[str] = None) -> Notification:
        self._check_writable()
        data = {
            "id": _new_id(), "user_id": user_id, "event_type": event_type,
            "message": message, "task_id": task_id, "read": False,
            "created_at": _utcnow(), "_seq": next(self._seq),
        }
        self._notifications[data["id"]] = data
        return self._to_notification(data)

    async def list_notifications(self, user_id: str, read: Optional[bool] = None) -> list[Notification]:
        rows = [
            n for n in self._notifications.values()
            if n["user_id"] == user_id and (read is None or n["read"] == read)
        ]
        rows.sort(key=lambda n: (n["created_at"], n["_seq"]), reverse=True)
        return [self._to_notification(n) for n in rows]

    async def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        self._check_writable()
        data = self._notifications.get(notification_id)
        if not data or data["user_id"] != user_id:
            return None
        data["read"] = True
        return self._to_notification(data)

    async def count_unread(self, user_id: str) -> int:
        return sum(
            1 for n in self._notifications.values()
            if n["user_id"] == user_id and not n["read"]
        )

    # ── Helpers ───────────────────────────────────────────

    @staticmethod
    def _to_task(data: dict) -> Task:
        return Task(**{k: v for k, v in data.items() if not k.startswith("_")})

    @staticmethod
    def _to_notification(data: dict) -> Notification:
        return Notification(**{k: v for k, v in data.items() if not k.startswith("_")})

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "tasks": len(self._tasks),
            "notifications": len(self._notifications),
            "unread": sum(1 for n in self._notifications.values() if not n["read"]),
        }
