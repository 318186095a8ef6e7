"""
Tests for TaskEventPublisher.

Covers:
  - Envelope construction and input validation
  - publish() success, queue outage, timeout
  - publish_detached() never raising into the caller
  - drain() at shutdown
"""
import asyncio
import json

import pytest
from structlog.testing import capture_logs

from job_queue.message_queue import InMemoryMessageQueue
from job_queue.publisher import PublishError, TaskEventPublisher


class HangingQueue(InMemoryMessageQueue):
    async def send(self, body, attributes=None):
        await asyncio.sleep(30)
        return "never"


# ──────────────────────────────────────────────────────────────
#  build_event
# ──────────────────────────────────────────────────────────────

class TestBuildEvent:
    def test_from_task_model(self, sample_task):
        event = TaskEventPublisher.build_event("task.updated", sample_task, "user-42")
        assert event.event == "task.updated"
        assert event.user_id == "user-42"
        assert event.task.id == "task-001"
        assert event.task.status == "in_progress"
        assert event.timestamp is not None

    def test_short_event_name(self):
        event = TaskEventPublisher.build_event("created", {"id": "t1", "title": "X"}, "u1")
        assert event.event == "task.created"

    def test_unknown_event_type(self):
        with pytest.raises(ValueError, match="Unsupported"):
            TaskEventPublisher.build_event("task.archived", {"id": "t1", "title": "X"}, "u1")

    def test_missing_user(self):
        with pytest.raises(ValueError, match="user_id"):
            TaskEventPublisher.build_event("task.created", {"id": "t1", "title": "X"}, "")

    @pytest.mark.parametrize("task", [{}, {"id": "t1"}, {"title": "X"}, {"id": "", "title": "X"}])
    def test_incomplete_task(self, task):
        with pytest.raises(ValueError, match="id"):
            TaskEventPublisher.build_event("task.created", task, "u1")


# ──────────────────────────────────────────────────────────────
#  publish
# ──────────────────────────────────────────────────────────────

class TestPublish:
    def test_keeps_given_empty_queue(self):
        q = InMemoryMessageQueue()
        assert len(q) == 0
        assert TaskEventPublisher(q).queue is q

    @pytest.mark.asyncio
    async def test_message_on_queue(self, queue, sample_task):
        publisher = TaskEventPublisher(queue)
        message_id = await publisher.publish("task.created", sample_task, "user-42")

        [msg] = await queue.receive(wait_seconds=0)
        assert msg.message_id == message_id
        body = json.loads(msg.body)
        assert body["event"] == "task.created"
        assert body["userId"] == "user-42"
        assert body["task"]["title"] == "Buy milk"
        assert msg.attributes == {"eventType": "task.created", "userId": "user-42"}

    @pytest.mark.asyncio
    async def test_success_is_logged(self, queue, sample_task):
        publisher = TaskEventPublisher(queue)
        with capture_logs() as logs:
            message_id = await publisher.publish("task.updated", sample_task, "user-42")
        [entry] = [e for e in logs if e["event"] == "task_event_published"]
        assert entry["event_type"] == "task.updated"
        assert entry["message_id"] == message_id

    @pytest.mark.asyncio
    async def test_queue_unavailable(self, queue, sample_task):
        queue.available = False
        publisher = TaskEventPublisher(queue)
        with pytest.raises(PublishError):
            await publisher.publish("task.created", sample_task, "user-42")

    @pytest.mark.asyncio
    async def test_timeout(self, sample_task):
        publisher = TaskEventPublisher(HangingQueue(), timeout_seconds=0.05)
        with pytest.raises(PublishError, match="timed out"):
            await publisher.publish("task.created", sample_task, "user-42")

    @pytest.mark.asyncio
    async def test_invalid_input_not_sent(self, queue):
        publisher = TaskEventPublisher(queue)
        with pytest.raises(ValueError):
            await publisher.publish("task.created", {"title": "no id"}, "u1")
        assert len(queue) == 0


# ──────────────────────────────────────────────────────────────
#  publish_detached / drain
# ──────────────────────────────────────────────────────────────

class TestPublishDetached:
    @pytest.mark.asyncio
    async def test_detached_publish_delivers(self, queue, sample_task):
        publisher = TaskEventPublisher(queue)
        bg = publisher.publish_detached("task.created", sample_task, "user-42")
        assert bg is not None
        await publisher.drain()
        assert publisher.pending == 0
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, queue, sample_task):
        queue.available = False
        publisher = TaskEventPublisher(queue)
        with capture_logs() as logs:
            publisher.publish_detached("task.deleted", sample_task, "user-42")
            await publisher.drain()
        failures = [e for e in logs if e["event"] == "task_event_publish_failed"]
        assert len(failures) == 1
        assert failures[0]["error_type"] == "PublishError"

    def test_no_running_loop(self, queue, sample_task):
        publisher = TaskEventPublisher(queue)
        with capture_logs() as logs:
            assert publisher.publish_detached("task.created", sample_task, "user-42") is None
        assert logs[0]["event"] == "task_event_publish_no_loop"

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self, sample_task):
        publisher = TaskEventPublisher(HangingQueue(), timeout_seconds=30)
        bg = publisher.publish_detached("task.created", sample_task, "user-42")
        assert publisher.pending == 1
        with capture_logs() as logs:
            await publisher.drain(timeout=0.05)
            await asyncio.gather(bg, return_exceptions=True)
        assert bg.cancelled()
        assert any(e["event"] == "task_event_publish_abandoned" for e in logs)
        assert publisher.pending == 0
