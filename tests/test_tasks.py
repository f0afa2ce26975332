"""Tests for Celery task bodies and the Celery notification path."""

import time
from unittest.mock import patch

import pytest
from fastapi import BackgroundTasks

from pulsewatch.notifications.base import AlertNotification, NotificationChannel
from pulsewatch.notifications.dispatcher import NotificationDispatcher, set_dispatcher
from pulsewatch.receiver import endpoints
from pulsewatch.storage.factory import set_store
from pulsewatch.storage.memory import MemoryStore
from pulsewatch.storage.models import AlertHistory, ErrorOccurrence
from pulsewatch.tasks.celery_tasks import cleanup_indices_task, send_alert_notification_task


class RecordingChannel(NotificationChannel):
    def __init__(self, result=True):
        self.result = result
        self.sent = []

    @property
    def channel_name(self) -> str:
        return "email"

    async def send(self, notification: AlertNotification) -> bool:
        self.sent.append(notification.history_id)
        return self.result


@pytest.fixture
def store():
    memory = MemoryStore()
    set_store(memory)
    yield memory
    set_store(None)
    set_dispatcher(None)


def _payload(history_id):
    return AlertNotification(
        history_id=history_id,
        rule_id="r1",
        rule_name="Threshold",
        rule_type="error_threshold",
        dsn="shop",
        fingerprint="fpA",
        group_id="g1",
        error_type="error",
        error_message="TypeError: x is undefined",
        count=12,
        first_seen=1000,
        last_seen=2000,
        triggered_at=2000,
    ).model_dump(mode="json")


class TestSendAlertNotificationTask:
    def test_delivers_and_records_outcome(self, store):
        channel = RecordingChannel()
        set_dispatcher(NotificationDispatcher([channel]))
        entry = store.append_history(AlertHistory(rule_id="r1", dsn="shop", fingerprint="fpA", triggered_at=2000))

        result = send_alert_notification_task(_payload(entry.id))

        assert result["sent"] is True
        assert result["email_sent"] is True
        assert channel.sent == [entry.id]
        assert store.list_history()[0].email_sent is True

    def test_failure_is_recorded_not_raised(self, store):
        set_dispatcher(NotificationDispatcher([RecordingChannel(result=False)]))
        entry = store.append_history(AlertHistory(rule_id="r1", dsn="shop", fingerprint="fpA", triggered_at=2000))

        result = send_alert_notification_task(_payload(entry.id))

        assert result["sent"] is False
        assert result["error"] == "delivery failed: email"
        assert store.list_history()[0].delivery_error == "delivery failed: email"


class TestCleanupIndicesTask:
    def test_removes_expired_occurrences(self, store):
        now = int(time.time() * 1000)
        for timestamp in (now - 40 * 86400 * 1000, now):
            store.record_occurrence(
                ErrorOccurrence(dsn="shop", fingerprint="fpA", group_id="g1", type="error", timestamp=timestamp)
            )

        result = cleanup_indices_task(30)

        assert result == {"status": "success", "deleted_indices": ["occurrences:1"], "count": 1}
        assert store.count_occurrences("shop", since=0) == 1

    def test_backend_failure(self, store):
        with patch.object(store, "delete_expired", side_effect=RuntimeError("cluster red")):
            result = cleanup_indices_task(30)

        assert result["status"] == "failed"
        assert "cluster red" in result["error"]


class TestScheduleNotifications:
    def test_celery_enabled_enqueues_tasks(self, monkeypatch):
        monkeypatch.setattr(endpoints.settings, "use_celery", True)
        notification = AlertNotification.model_validate(_payload("h1"))
        background_tasks = BackgroundTasks()

        with patch.object(send_alert_notification_task, "delay") as delay:
            endpoints.schedule_notifications(background_tasks, [notification])

        delay.assert_called_once()
        assert delay.call_args.args[0]["history_id"] == "h1"
        assert background_tasks.tasks == []

    def test_nothing_to_schedule(self, monkeypatch):
        monkeypatch.setattr(endpoints.settings, "use_celery", True)

        with patch.object(send_alert_notification_task, "delay") as delay:
            endpoints.schedule_notifications(BackgroundTasks(), [])

        delay.assert_not_called()
