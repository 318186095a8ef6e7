"""
SqlStore — Portable SQL queries for PostgreSQL, MySQL, SQLite.

Each operation opens its own short transaction through get_session(); the
engine underneath is the process-wide one from database.session.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from sqlalchemy import and_, delete, func, select, update

from database.models import NotificationRow, TaskRow
from database.session import get_session
from database.store_base import BaseStore
from models.schemas import Notification, Task

logger = structlog.get_logger()

_TASK_FIELDS = ("title", "description", "status")


class SqlStore(BaseStore):
    """
    Persistent store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    # ── Task operations ────────────────────────────────────

    async def create_task(self, user_id: str, title: str,
                          description: Optional[str] = None, status: str = "pending") -> Task:
        async with get_session() as db:
            row = TaskRow(user_id=user_id, title=title, description=description, status=status)
            db.add(row)
            await db.flush()
            await db.refresh(row)
            return self._row_to_task(row)

    async def get_task(self, task_id: str, user_id: str) -> Optional[Task]:
        async with get_session() as db:
            row = await self._owned_task(db, task_id, user_id)
            return self._row_to_task(row) if row else None

    async def list_tasks(self, user_id: str) -> list[Task]:
        async with get_session() as db:
            stmt = (
                select(TaskRow)
                .where(TaskRow.user_id == user_id)
                .order_by(TaskRow.created_at.desc())
            )
            result = await db.execute(stmt)
            return [self._row_to_task(row) for row in result.scalars()]

    async def update_task(self, task_id: str, user_id: str, **fields: Any) -> Optional[Task]:
        changes = {k: v for k, v in fields.items() if k in _TASK_FIELDS}
        async with get_session() as db:
            row = await self._owned_task(db, task_id, user_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            await db.flush()
            await db.refresh(row)
            return self._row_to_task(row)

    async def delete_task(self, task_id: str, user_id: str) -> Optional[Task]:
        async with get_session() as db:
            row = await self._owned_task(db, task_id, user_id)
            if row is None:
                return None
            task = self._row_to_task(row)
            await db.execute(delete(TaskRow).where(TaskRow.id == task_id))
            return task

    # ── Notification operations ────────────────────────────

    async def insert_notification(self, user_id: str, event_type: str, message: str,
                                  task_id: Optional[str] = None) -> Notification:
        async with get_session() as db:
            row = NotificationRow(
                user_id=user_id,
                event_type=event_type,
                message=message,
                task_id=task_id,
                read=False,
            )
            db.add(row)
            await db.flush()
            await db.refresh(row)
            return self._row_to_notification(row)

    async def list_notifications(self, user_id: str, read: Optional[bool] = None) -> list[Notification]:
        async with get_session() as db:
            stmt = select(NotificationRow).where(NotificationRow.user_id == user_id)
            if read is not None:
                stmt = stmt.where(NotificationRow.read == read)
            stmt = stmt.order_by(NotificationRow.created_at.desc())
            result = await db.execute(stmt)
            return [self._row_to_notification(row) for row in result.scalars()]

    async def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        async with get_session() as db:
            await db.execute(
                update(NotificationRow)
                .where(and_(
                    NotificationRow.id == notification_id,
                    NotificationRow.user_id == user_id,
                ))
                .values(read=True)
            )
            stmt = select(NotificationRow).where(and_(
                NotificationRow.id == notification_id,
                NotificationRow.user_id == user_id,
            ))
            row = (await db.execute(stmt)).scalar_one_or_none()
            return self._row_to_notification(row) if row else None

    async def count_unread(self, user_id: str) -> int:
        async with get_session() as db:
            stmt = select(func.count()).select_from(NotificationRow).where(and_(
                NotificationRow.user_id == user_id,
                NotificationRow.read == False,  # noqa: E712
            ))
            return int((await db.execute(stmt)).scalar_one())

    # ── Helpers ────────────────────────────────────────────

    @staticmethod
    async def _owned_task(db, task_id: str, user_id: str) -> Optional[TaskRow]:
        stmt = select(TaskRow).where(and_(TaskRow.id == task_id, TaskRow.user_id == user_id))
        return (await db.execute(stmt)).scalar_one_or_none()

    @staticmethod
    def _row_to_task(row: TaskRow) -> Task:
        return Task(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            description=row.description,
            status=row.status or "pending",
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _row_to_notification(row: NotificationRow) -> Notification:
        return Notification(
            id=row.id,
            user_id=row.user_id,
            event_type=row.event_type,
            message=row.message,
            task_id=row.task_id,
            read=bool(row.read),
            created_at=row.created_at,
        )
