"""
Task event queue — Decouples task mutations from notification delivery.

- Task service PUBLISHES task.* events to the queue (fire-and-forget)
- Notification consumer long-polls, materializes, then deletes
- Supports Amazon SQS (production) and an in-memory queue (dev/tests)
"""
from job_queue.message_queue import (
    DeliveredMessage, MessageQueue, QueueError, QueueUnavailable, ReceiveError,
    InMemoryMessageQueue, SqsMessageQueue,
    create_message_queue, get_message_queue, reset_message_queue,
)
from job_queue.publisher import PublishError, TaskEventPublisher
from job_queue.consumer import (
    BatchResult, MalformedMessageError, MessageOutcome, NotificationConsumer,
)

__all__ = [
    "DeliveredMessage", "MessageQueue", "QueueError", "QueueUnavailable", "ReceiveError",
    "InMemoryMessageQueue", "SqsMessageQueue",
    "create_message_queue", "get_message_queue", "reset_message_queue",
    "PublishError", "TaskEventPublisher",
    "BatchResult", "MalformedMessageError", "MessageOutcome", "NotificationConsumer",
]
