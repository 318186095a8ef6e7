"""
Core data models for the task notification pipeline.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class TaskEventType(str, Enum):
    CREATED = "task.created"
    UPDATED = "task.updated"
    DELETED = "task.deleted"

    @classmethod
    def parse(cls, value: str) -> TaskEventType:
        """Accept both "task.created" and the short "created" form."""
        if isinstance(value, cls):
            return value
        if value and "." not in value:
            value = f"task.{value}"
        return cls(value)


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ──────────────────────────────────────────────────────────────
#  Tasks
# ──────────────────────────────────────────────────────────────

class Task(BaseModel):
    """A task row as owned by the task service."""
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def snapshot(self) -> dict[str, Any]:
        """The task fields carried inside a domain event."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
        }


class TaskSnapshot(BaseModel):
    """Task state captured at publish time. Unknown keys are kept; immutable like the event."""
    model_config = ConfigDict(extra="allow", frozen=True)

    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        # Integer primary keys arrive as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


# ──────────────────────────────────────────────────────────────
#  Domain Event (the queue message body)
# ──────────────────────────────────────────────────────────────

class DomainEvent(BaseModel):
    """
    Immutable task lifecycle event as it travels through the queue.

    Wire format:
        {"event": "task.created", "task": {...}, "userId": "...",
         "timestamp": "2024-01-01T00:00:00+00:00"}

    ``event`` stays a plain string so event types added later still parse
    and fall through to the generic notification message.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event: str = Field(min_length=1)
    task: TaskSnapshot
    user_id: str = Field(alias="userId", min_length=1)
    timestamp: Optional[str] = None

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


# ──────────────────────────────────────────────────────────────
#  Notifications
# ──────────────────────────────────────────────────────────────

class Notification(BaseModel):
    """A persisted, human-readable notification for one user."""
    id: str
    user_id: str
    event_type: str
    message: str
    task_id: Optional[str] = None
    read: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
