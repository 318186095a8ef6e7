"""
FastAPI Application — Task and notification REST API.

Provides:
- Task CRUD; every mutation publishes a task.* event (fire-and-forget)
- Notification listing, read toggling and unread counts
- The notification consumer, run as a background task when
  queue.run_consumer is set (otherwise run job_queue.worker separately)
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.logging_config import setup_logging
from config.settings import get_settings
from database.session import close_db, init_db
from database.store_base import BaseStore
from database.store_factory import create_store
from job_queue.consumer import NotificationConsumer
from job_queue.message_queue import create_message_queue
from job_queue.publisher import TaskEventPublisher
from models.schemas import Notification, Task
from notifications.materializer import NotificationMaterializer
from services.auth import IdentityVerifier, InvalidCredentialError, create_identity_verifier
from services.tasks import TaskService, TaskValidationError

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────
#  Bootstrap: one shared handle per external collaborator
# ──────────────────────────────────────────────────────────────

_settings_boot = get_settings()
setup_logging(_settings_boot.log_level, _settings_boot.log_format)

store = create_store({"store_backend": _settings_boot.database.store_backend})
message_queue = create_message_queue({
    "backend": _settings_boot.queue.backend,
    "queue_url": _settings_boot.queue.queue_url,
    "region": _settings_boot.queue.region,
    "endpoint_url": _settings_boot.queue.endpoint_url,
    "access_key_id": _settings_boot.queue.access_key_id,
    "secret_access_key": _settings_boot.queue.secret_access_key,
    "visibility_timeout": _settings_boot.queue.visibility_timeout,
})
publisher = TaskEventPublisher(
    message_queue,
    timeout_seconds=_settings_boot.queue.publish_timeout_seconds,
)
task_service = TaskService(store, publisher)
identity_verifier = create_identity_verifier(_settings_boot.auth)

notification_consumer = NotificationConsumer(
    message_queue,
    NotificationMaterializer(store),
    max_messages=_settings_boot.queue.max_messages,
    wait_seconds=_settings_boot.queue.wait_seconds,
    concurrency=_settings_boot.queue.consumer_concurrency,
    receive_error_delay=_settings_boot.queue.receive_error_delay_seconds,
    poison_threshold=_settings_boot.queue.poison_receive_threshold,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    if settings.database.store_backend == "sql":
        await init_db()
    await message_queue.connect()
    if settings.queue.run_consumer:
        await notification_consumer.start_background()

    logger.info("tasknotify_started",
                store_backend=settings.database.store_backend,
                queue_backend=type(message_queue).__name__,
                consumer=settings.queue.run_consumer)
    yield

    await notification_consumer.stop(timeout=settings.queue.wait_seconds + 5)
    await publisher.drain()
    await message_queue.close()
    await identity_verifier.close()
    if settings.database.store_backend == "sql":
        await close_db()
    logger.info("tasknotify_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="TaskNotify API",
    description="Task CRUD with queued notification delivery",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error("request_failed",
                 path=request.url.path,
                 method=request.method,
                 error=str(exc),
                 exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ──────────────────────────────────────────────────────────────
#  Dependencies
# ──────────────────────────────────────────────────────────────

def get_store() -> BaseStore:
    return store


def get_task_service() -> TaskService:
    return task_service


def get_identity_verifier() -> IdentityVerifier:
    return identity_verifier


async def current_user_id(
    authorization: Optional[str] = Header(default=None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(401, "No token provided")
    try:
        return await verifier.verify(token.strip())
    except InvalidCredentialError:
        raise HTTPException(401, "Invalid token")
    except Exception as e:
        logger.error("auth_error", error=str(e))
        raise HTTPException(500, "Authentication failed")


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class TaskCreateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None


def _task_json(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json")


def _notification_json(notification: Notification) -> dict[str, Any]:
    return notification.model_dump(mode="json")


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "service": "tasknotify",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "consumer_running": notification_consumer.running,
        "pending_publishes": publisher.pending,
    }


# ══════════════════════════════════════════════════════════════
#  TASKS
# ══════════════════════════════════════════════════════════════

@app.get("/tasks")
async def list_tasks(
    user_id: str = Depends(current_user_id),
    service: TaskService = Depends(get_task_service),
):
    tasks = await service.list_tasks(user_id)
    return {"tasks": [_task_json(t) for t in tasks]}


@app.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    user_id: str = Depends(current_user_id),
    service: TaskService = Depends(get_task_service),
):
    task = await service.get_task(task_id, user_id)
    if task is None:
        raise HTTPException(404, "Task not found")
    return {"task": _task_json(task)}


@app.post("/tasks", status_code=201)
async def create_task(
    req: TaskCreateRequest,
    user_id: str = Depends(current_user_id),
    service: TaskService = Depends(get_task_service),
):
    try:
        task = await service.create_task(user_id, req.title, req.description, req.status)
    except TaskValidationError as e:
        raise HTTPException(400, str(e))
    return {"message": "Task created successfully", "task": _task_json(task)}


@app.put("/tasks/{task_id}")
async def update_task(
    task_id: str,
    req: TaskUpdateRequest,
    user_id: str = Depends(current_user_id),
    service: TaskService = Depends(get_task_service),
):
    try:
        task = await service.update_task(task_id, user_id, req.model_dump(exclude_unset=True))
    except TaskValidationError as e:
        raise HTTPException(400, str(e))
    if task is None:
        raise HTTPException(404, "Task not found")
    return {"message": "Task updated successfully", "task": _task_json(task)}


@app.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user_id: str = Depends(current_user_id),
    service: TaskService = Depends(get_task_service),
):
    task = await service.delete_task(task_id, user_id)
    if task is None:
        raise HTTPException(404, "Task not found")
    return {"message": "Task deleted successfully"}


# ══════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ══════════════════════════════════════════════════════════════

@app.get("/notifications")
async def list_notifications(
    read: Optional[bool] = Query(None),
    user_id: str = Depends(current_user_id),
    db: BaseStore = Depends(get_store),
):
    notifications = await db.list_notifications(user_id, read=read)
    return {"notifications": [_notification_json(n) for n in notifications]}


@app.get("/notifications/unread/count")
async def unread_count(
    user_id: str = Depends(current_user_id),
    db: BaseStore = Depends(get_store),
):
    return {"unread_count": await db.count_unread(user_id)}


@app.put("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(current_user_id),
    db: BaseStore = Depends(get_store),
):
    notification = await db.mark_notification_read(notification_id, user_id)
    if notification is None:
        raise HTTPException(404, "Notification not found")
    return {
        "message": "Notification marked as read",
        "notification": _notification_json(notification),
    }


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

def run() -> None:
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
