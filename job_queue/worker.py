"""
Standalone notification worker.

    python -m job_queue.worker
    TASKNOTIFY_CONFIG=/etc/tasknotify.yaml tasknotify-worker

SIGTERM/SIGINT stop further receives; the receive in flight completes and
its batch is handled before the process exits. Nothing is drained beyond
that; undeleted messages go back to the queue after the visibility timeout.
"""
from __future__ import annotations

import asyncio
import signal

import structlog
from dotenv import load_dotenv

from config.logging_config import setup_logging
from config.settings import Settings, load_settings
from database.session import close_db, init_db
from database.store_factory import create_store
from job_queue.consumer import NotificationConsumer
from job_queue.message_queue import create_message_queue
from notifications.materializer import NotificationMaterializer

logger = structlog.get_logger()


def build_consumer(settings: Settings) -> NotificationConsumer:
    """Wire the shared queue and store into a consumer."""
    q = settings.queue
    queue = create_message_queue({
        "backend": q.backend,
        "queue_url": q.queue_url,
        "region": q.region,
        "endpoint_url": q.endpoint_url,
        "access_key_id": q.access_key_id,
        "secret_access_key": q.secret_access_key,
        "visibility_timeout": q.visibility_timeout,
    })
    store = create_store({"store_backend": settings.database.store_backend})
    return NotificationConsumer(
        queue,
        NotificationMaterializer(store),
        max_messages=q.max_messages,
        wait_seconds=q.wait_seconds,
        concurrency=q.consumer_concurrency,
        receive_error_delay=q.receive_error_delay_seconds,
        poison_threshold=q.poison_receive_threshold,
    )


async def run(settings: Settings) -> None:
    if settings.database.store_backend == "sql":
        await init_db()

    consumer = build_consumer(settings)
    await consumer.queue.connect()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _request_stop, consumer, sig)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    logger.info("notification_worker_started",
                queue_backend=type(consumer.queue).__name__,
                store_backend=settings.database.store_backend)
    try:
        await consumer.start()
    finally:
        await consumer.queue.close()
        if settings.database.store_backend == "sql":
            await close_db()
        logger.info("notification_worker_exited")


def _request_stop(consumer: NotificationConsumer, sig: signal.Signals) -> None:
    logger.info("shutdown_signal_received", signal=sig.name)
    # No cancel: the current receive finishes, then the loop exits
    consumer.request_stop()


def main() -> None:
    load_dotenv()
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_format)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
