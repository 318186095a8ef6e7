"""Tests for notification materialization."""
import pytest
from structlog.testing import capture_logs

from models.schemas import DomainEvent, TaskSnapshot
from notifications.materializer import (
    MaterializationError, NotificationMaterializer, build_notification_message,
)


def _event(event_type: str, title: str = "Buy milk", status: str = "pending") -> DomainEvent:
    return DomainEvent(
        event=event_type,
        task=TaskSnapshot(id="task-001", title=title, status=status),
        userId="user-42",
    )


class TestMessageText:
    @pytest.mark.parametrize("event_type,status,expected", [
        ("task.created", "pending", 'New task created: "Buy milk"'),
        ("task.updated", "completed", 'Task updated: "Buy milk" is now completed'),
        ("task.deleted", "pending", 'Task deleted: "Buy milk"'),
        ("task.archived", "pending", "Task event: task.archived"),
    ])
    def test_templates(self, event_type, status, expected):
        task = TaskSnapshot(id="t1", title="Buy milk", status=status)
        assert build_notification_message(event_type, task) == expected

    @pytest.mark.parametrize("task", [
        TaskSnapshot(id="t1", title="Buy milk"),
        {"title": "Buy milk", "status": ""},
    ])
    def test_update_without_status(self, task):
        assert build_notification_message("task.updated", task) == 'Task updated: "Buy milk"'

    def test_accepts_plain_dict(self):
        msg = build_notification_message("task.updated", {"title": "Report", "status": "in_progress"})
        assert msg == 'Task updated: "Report" is now in_progress'


class TestMaterializer:
    @pytest.mark.asyncio
    async def test_inserts_unread_notification(self, store, materializer):
        notification = await materializer.materialize(_event("task.created"))
        assert notification.user_id == "user-42"
        assert notification.event_type == "task.created"
        assert notification.task_id == "task-001"
        assert notification.message == 'New task created: "Buy milk"'
        assert notification.read is False
        assert await store.count_unread("user-42") == 1

    @pytest.mark.asyncio
    async def test_unknown_type_still_stored(self, store, materializer):
        notification = await materializer.materialize(_event("task.archived"))
        assert notification.message == "Task event: task.archived"
        assert await store.count_unread("user-42") == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_creates_second_row(self, store, materializer):
        event = _event("task.updated", status="completed")
        await materializer.materialize(event)
        await materializer.materialize(event)
        rows = await store.list_notifications("user-42")
        assert len(rows) == 2
        assert rows[0].id != rows[1].id
        assert {r.message for r in rows} == {'Task updated: "Buy milk" is now completed'}

    @pytest.mark.asyncio
    async def test_store_failure_wrapped(self, store, materializer):
        store.fail_writes = True
        with pytest.raises(MaterializationError) as exc:
            await materializer.materialize(_event("task.created"))
        assert isinstance(exc.value.__cause__, ConnectionError)
        store.fail_writes = False
        assert await store.count_unread("user-42") == 0

    @pytest.mark.asyncio
    async def test_saved_notification_is_logged(self, materializer):
        with capture_logs() as logs:
            notification = await materializer.materialize(_event("task.deleted"))
        [entry] = [e for e in logs if e["event"] == "notification_saved"]
        assert entry["event_type"] == "task.deleted"
        assert entry["notification_id"] == notification.id

    def test_keeps_given_empty_store(self, store):
        assert NotificationMaterializer(store).store is store

    @pytest.mark.asyncio
    async def test_default_store_is_singleton(self):
        from database.store_factory import get_store
        materializer = NotificationMaterializer()
        assert materializer.store is get_store()
