"""FastAPI endpoint receiving SDK reports."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import List, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from ..config import settings
from ..notifications.base import AlertNotification
from ..notifications.dispatcher import deliver_notification
from ..processing.pipeline import get_pipeline
from .event_parser import EventParser, ReportError

logger = structlog.get_logger(__name__)

router = APIRouter()

event_parser = EventParser()

# Thread pool for blocking storage I/O
_executor: Optional[ThreadPoolExecutor] = None


def get_executor() -> ThreadPoolExecutor:
    """Get or create the thread pool executor."""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=10, thread_name_prefix="ingest")
    return _executor


def validate_dsn(dsn: str) -> bool:
    """Validate DSN against allowed list."""
    if not settings.allowed_dsns:
        return True
    return dsn in settings.allowed_dsns


async def validate_request_size(request: Request) -> bytes:
    """
    Validate and read request body with size limit.

    Args:
        request: FastAPI request object

    Returns:
        Request body bytes

    Raises:
        HTTPException: If body exceeds max_request_size
    """
    too_large = HTTPException(
        status_code=413,
        detail=f"Request body too large. Maximum size: {settings.max_request_size} bytes",
    )

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > settings.max_request_size:
        raise too_large

    body = await request.body()
    if len(body) > settings.max_request_size:
        raise too_large

    return body


def schedule_notifications(
    background_tasks: BackgroundTasks,
    notifications: List[AlertNotification],
) -> None:
    """
    Hand triggered alerts to the notification path.

    With Celery enabled each notification becomes a task; otherwise it runs
    as a background task after the response has been sent.
    """
    if not notifications:
        return

    if settings.use_celery:
        from ..tasks.celery_tasks import send_alert_notification_task

        for notification in notifications:
            send_alert_notification_task.delay(notification.model_dump(mode="json"))
        return

    store = get_pipeline().store
    for notification in notifications:
        background_tasks.add_task(deliver_notification, notification, store)


@router.post("/report")
async def receive_report(request: Request, background_tasks: BackgroundTasks) -> dict:
    """
    Receive a batch of SDK events.

    Body: ``{"dsn": "...", "events": [...]}``. Error events carry ``type``
    and ``message``; performance samples carry ``url`` and no ``type``.
    The response is returned once every error group is committed; alert
    notifications are sent afterwards.
    """
    body = await validate_request_size(request)

    try:
        report = event_parser.parse(body)
    except ReportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not validate_dsn(report.dsn):
        raise HTTPException(status_code=404, detail="Project not found")

    pipeline = get_pipeline()
    loop = asyncio.get_running_loop()

    try:
        result = await loop.run_in_executor(get_executor(), partial(pipeline.process, report))
    except Exception as e:
        logger.error("report_processing_failed", dsn=report.dsn, error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save data")

    schedule_notifications(background_tasks, result.notifications)

    logger.info(
        "report_received",
        dsn=report.dsn,
        errors=result.errors,
        performance=result.performance,
        skipped=report.skipped,
    )

    return {
        "success": True,
        "count": result.errors + result.performance + report.skipped,
        "errors": result.errors,
        "performance": result.performance,
        "skipped": report.skipped,
    }
