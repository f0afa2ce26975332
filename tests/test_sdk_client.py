"""Tests for the Monitor entry point."""

import re

import httpx
import orjson
import pytest

from pulsewatch.sdk import ConfigError, Monitor
from pulsewatch.sdk.client import default_integrations
from pulsewatch.sdk.integrations import ExceptHookIntegration, LoggingIntegration
from pulsewatch.sdk.models import PerformanceEvent, ResourceErrorEvent
from pulsewatch.sdk.transport import HttpTransport

REPORT_URL = "http://collector.example/report"


@pytest.fixture
def bodies():
    return []


@pytest.fixture
def make_monitor(bodies):
    monitors = []

    def handler(request):
        bodies.append(orjson.loads(request.content))
        return httpx.Response(200)

    def factory(sampler=lambda: 0.5, **options):
        options.setdefault("dsn", "shop")
        options.setdefault("report_url", REPORT_URL)
        options.setdefault("batch_size", 100)
        monitor = Monitor(
            transport=HttpTransport(REPORT_URL, "shop", transport=httpx.MockTransport(handler)),
            integrations=[],
            sampler=sampler,
            **options,
        )
        monitors.append(monitor)
        return monitor

    yield factory
    for monitor in monitors:
        monitor.close()


def _queued(monitor):
    return monitor.reporter.queued()


class TestConstruction:
    def test_invalid_options(self):
        with pytest.raises(ConfigError):
            Monitor(dsn="", report_url=REPORT_URL)

    def test_default_integrations_follow_switches(self, make_monitor):
        monitor = make_monitor(enable_behavior=False)

        names = [i.name for i in default_integrations(monitor)]

        assert names == ["excepthook", "threading_excepthook", "urllib"]


class TestCaptureException:
    """Tests for exception capture."""

    def test_event_contents(self, make_monitor):
        monitor = make_monitor(release="2.3.0", environment="staging", tags={"region": "eu"})
        monitor.set_url("https://shop.example/cart")
        monitor.set_user({"id": "u-1"})
        monitor.add_breadcrumb(type="click", category="ui.click", message="button#pay")

        try:
            raise ValueError("card declined")
        except ValueError as e:
            assert monitor.capture_exception(e) is True

        [event] = _queued(monitor)
        assert event["type"] == "error"
        assert event["message"] == "ValueError: card declined"
        assert "Traceback (most recent call last)" in event["stack"]
        assert event["filename"].endswith("test_sdk_client.py")
        assert event["url"] == "https://shop.example/cart"
        assert event["user"] == {"id": "u-1"}
        assert event["release"] == "2.3.0"
        assert event["context"] == {"environment": "staging", "tags": {"region": "eu"}}
        assert event["breadcrumbs"][0]["message"] == "button#pay"

    def test_capture_message(self, make_monitor):
        monitor = make_monitor()

        monitor.capture_message("cache miss storm", level="warning")

        assert _queued(monitor)[0]["message"] == "[warning] cache miss storm"

    def test_resource_error_takes_page_url(self, make_monitor):
        monitor = make_monitor()
        monitor.set_url("https://shop.example/")

        monitor.capture_resource_error(ResourceErrorEvent(resource_type="img", url="https://cdn.example/logo.png"))

        [event] = _queued(monitor)
        assert event["type"] == "resource"
        assert event["resourceType"] == "img"
        assert event["url"] == "https://shop.example/"

    def test_errors_disabled(self, make_monitor):
        monitor = make_monitor(enable_error=False)

        assert monitor.capture_message("x") is False


class TestFilters:
    """Tests for sampling and URL/error filters."""

    def test_global_sample_rate(self, make_monitor):
        monitor = make_monitor(sample_rate=0.4)

        assert monitor.capture_message("dropped") is False
        assert _queued(monitor) == []

    def test_error_sample_rate(self, make_monitor):
        monitor = make_monitor(error_sample_rate=0.6)

        assert monitor.capture_message("kept") is True

    def test_performance_sample_rate(self, make_monitor):
        monitor = make_monitor(performance_sample_rate=0.1)

        assert monitor.capture_performance(fcp=100) is False

    def test_ignore_errors(self, make_monitor):
        monitor = make_monitor(ignore_errors=["ResizeObserver", re.compile(r"^\[info\] noise")])

        assert monitor.capture_message("ResizeObserver loop limit exceeded") is False
        assert monitor.capture_message("noise from a plugin") is False
        assert monitor.capture_message("real problem") is True

    def test_ignore_urls(self, make_monitor):
        monitor = make_monitor(ignore_urls=["/healthz"])
        monitor.set_url("https://shop.example/healthz")

        assert monitor.capture_message("x") is False

    def test_allow_urls(self, make_monitor):
        monitor = make_monitor(allow_urls=[re.compile(r"^https://shop\.example/")])

        monitor.set_url("https://evil.example/")
        assert monitor.capture_message("x") is False

        monitor.set_url("https://shop.example/cart")
        assert monitor.capture_message("x") is True


class TestBeforeSend:
    """Tests for the before_send hook."""

    def test_veto(self, make_monitor):
        monitor = make_monitor(before_send=lambda event: None)

        assert monitor.capture_message("x") is False
        assert _queued(monitor) == []

    def test_replace(self, make_monitor):
        monitor = make_monitor(before_send=lambda event: {**event, "message": "[redacted]"})

        monitor.capture_message("secret token 123")

        assert _queued(monitor)[0]["message"] == "[redacted]"

    def test_hook_failure_drops_event(self, make_monitor):
        def broken(event):
            raise KeyError("oops")

        monitor = make_monitor(before_send=broken)

        assert monitor.capture_message("x") is False

    def test_applies_to_performance(self, make_monitor):
        seen = []
        monitor = make_monitor(before_send=lambda event: seen.append(event) or event)

        monitor.capture_performance(PerformanceEvent(url="https://shop.example/", layout_shift=0.05))

        assert seen[0]["cls"] == 0.05
        assert _queued(monitor)[0]["url"] == "https://shop.example/"


class TestLifecycle:
    """Tests for start/close."""

    def test_close_delivers_queue(self, make_monitor, bodies):
        monitor = make_monitor()
        monitor.capture_message("last words")

        monitor.close()
        monitor.close()

        assert bodies[0]["events"][0]["message"] == "[info] last words"
        assert monitor.capture_message("after close") is False

    def test_flush_sends_batch(self, make_monitor, bodies):
        monitor = make_monitor()
        monitor.capture_message("a")

        monitor.flush()
        monitor.reporter.wait(timeout=5)

        assert [e["message"] for e in bodies[0]["events"]] == ["[info] a"]

    def test_context_manager_installs_and_uninstalls(self, make_monitor):
        monitor = make_monitor()
        excepthook = ExceptHookIntegration(monitor)
        logging_hook = LoggingIntegration(monitor)
        monitor.integrations = [excepthook, logging_hook]

        with monitor:
            assert excepthook.installed and logging_hook.installed

        assert not excepthook.installed
        assert not logging_hook.installed

    def test_offline_then_online(self, make_monitor, bodies):
        monitor = make_monitor()
        monitor.set_online(False)
        monitor.capture_message("while offline")
        monitor.flush()
        monitor.reporter.wait(timeout=5)

        assert bodies == []
        assert len(monitor.offline_store) == 1

        monitor.set_online(True)
        monitor.reporter.wait(timeout=5)

        assert [e["message"] for e in bodies[0]["events"]] == ["[info] while offline"]
        assert len(monitor.offline_store) == 0
