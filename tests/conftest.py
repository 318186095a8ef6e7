"""Shared test fixtures for the task notification pipeline."""
import pytest

from database.store_memory import InMemoryStore
from job_queue.message_queue import InMemoryMessageQueue
from models.schemas import DomainEvent, Task, TaskSnapshot
from notifications.materializer import NotificationMaterializer


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Factories hand out process-wide singletons; isolate each test."""
    import database.store_factory as stores
    import job_queue.message_queue as queues
    stores.reset_store()
    queues.reset_message_queue()
    yield
    stores.reset_store()
    queues.reset_message_queue()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def queue() -> InMemoryMessageQueue:
    # Short visibility timeout so redelivery tests run quickly
    return InMemoryMessageQueue(visibility_timeout=0.2)


@pytest.fixture
def materializer(store) -> NotificationMaterializer:
    return NotificationMaterializer(store)


@pytest.fixture
def sample_task() -> Task:
    return Task(
        id="task-001",
        user_id="user-42",
        title="Buy milk",
        description="2 litres, semi-skimmed",
        status="in_progress",
    )


@pytest.fixture
def sample_event() -> DomainEvent:
    return DomainEvent(
        event="task.created",
        task=TaskSnapshot(id="task-001", title="Buy milk", status="pending"),
        userId="user-42",
        timestamp="2024-05-01T09:30:00+00:00",
    )

