"""
Abstract Store — Interface for the task and notification persistence backends.

Implementations:
  - SqlStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryStore (dict-based, single-process, no persistence)

Lookups keyed by (id, user_id) return None when the row does not exist or
belongs to someone else; transport and constraint failures raise.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from models.schemas import Notification, Task


class BaseStore(ABC):
    """Interface that all store backends must implement."""

    # ── Tasks ─────────────────────────────────────────────────

    @abstractmethod
    async def create_task(self, user_id: str, title: str,
                          description: Optional[str] = None, status: str = "pending") -> Task:
        ...

    @abstractmethod
    async def get_task(self, task_id: str, user_id: str) -> Optional[Task]:
        ...

    @abstractmethod
    async def list_tasks(self, user_id: str) -> list[Task]:
        """Newest first."""
        ...

    @abstractmethod
    async def update_task(self, task_id: str, user_id: str, **fields: Any) -> Optional[Task]:
        ...

    @abstractmethod
    async def delete_task(self, task_id: str, user_id: str) -> Optional[Task]:
        """Delete and return the removed row."""
        ...

    # ── Notifications ─────────────────────────────────────────

    @abstractmethod
    async def insert_notification(self, user_id: str, event_type: str, message: str,
                                  task_id: Optional[str] = None) -> Notification:
        """Always inserts a new unread row."""
        ...

    @abstractmethod
    async def list_notifications(self, user_id: str, read: Optional[bool] = None) -> list[Notification]:
        """Newest first, optionally filtered by read state."""
        ...

    @abstractmethod
    async def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        """Set read=True. Marking an already-read row is a no-op, not an error."""
        ...

    @abstractmethod
    async def count_unread(self, user_id: str) -> int:
        ...
