"""Celery task definitions for alert delivery and maintenance."""

import asyncio
from typing import Any, Dict

import structlog
from celery import Celery

from ..config import settings
from ..notifications.base import AlertNotification
from ..notifications.dispatcher import deliver_notification
from ..storage.factory import get_store

logger = structlog.get_logger(__name__)

celery_app = Celery("pulsewatch", broker=settings.redis_url, backend=settings.redis_url)

# Alerts and maintenance use separate queues
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "send_alert_notification": {"queue": "alerts"},
        "cleanup_indices": {"queue": "maintenance"},
    },
    task_default_queue="alerts",
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=4,
)


@celery_app.task(name="send_alert_notification")
def send_alert_notification_task(notification_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deliver one alert notification.

    Delivery is attempted once; the outcome is written to the alert history
    row and failures are not retried.

    Args:
        notification_data: AlertNotification as dict

    Returns:
        Result dict with delivery outcome
    """
    notification = AlertNotification.model_validate(notification_data)
    result = asyncio.run(deliver_notification(notification, get_store(settings)))

    logger.info(
        "alert_notification_task_done",
        history_id=notification.history_id,
        sent=result.sent,
    )

    return {
        "history_id": notification.history_id,
        "sent": result.sent,
        "email_sent": result.email_sent,
        "error": result.error,
    }


@celery_app.task(name="cleanup_indices")
def cleanup_indices_task(days_to_keep: int = 90) -> Dict[str, Any]:
    """
    Clean up time-partitioned data older than the retention period.

    Args:
        days_to_keep: Number of days to keep

    Returns:
        Result dict with deleted indices
    """
    logger.info("index_cleanup_started", days_to_keep=days_to_keep)

    try:
        deleted = get_store(settings).delete_expired(days_to_keep)

        logger.info("index_cleanup_done", count=len(deleted))

        return {
            "status": "success",
            "deleted_indices": deleted,
            "count": len(deleted),
        }

    except Exception as e:
        logger.error("index_cleanup_failed", error=str(e))
        return {
            "status": "failed",
            "error": str(e),
        }


# Periodic task schedule (Celery Beat)
celery_app.conf.beat_schedule = {
    "cleanup-old-indices": {
        "task": "cleanup_indices",
        "schedule": 86400.0,  # Daily (24 hours)
        "args": (settings.retention_days,),
    },
}
