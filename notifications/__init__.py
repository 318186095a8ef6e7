"""Notification materialization — DomainEvent → persisted Notification."""
from notifications.materializer import (
    MaterializationError,
    NotificationMaterializer,
    build_notification_message,
)

__all__ = [
    "MaterializationError",
    "NotificationMaterializer",
    "build_notification_message",
]
