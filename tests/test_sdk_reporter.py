"""Tests for batched delivery, throttling and the offline queue."""

import httpx
import orjson
import pytest

from pulsewatch.sdk.offline import OfflineStore
from pulsewatch.sdk.reporter import Reporter, resend_offline
from pulsewatch.sdk.transport import DeliveryError, HttpTransport

REPORT_URL = "http://collector.example/report"


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class Collector:
    """MockTransport handler recording every report body."""

    def __init__(self):
        self.bodies = []
        self.status = 200
        self.network_down = False
        self.before_response = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.network_down:
            raise httpx.ConnectError("connection refused", request=request)
        self.bodies.append(orjson.loads(request.content))
        if self.before_response is not None:
            self.before_response()
        return httpx.Response(self.status, json={"success": self.status < 300})

    @property
    def events(self):
        return [body["events"] for body in self.bodies]


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def transport(collector):
    return HttpTransport(REPORT_URL, "shop", transport=httpx.MockTransport(collector))


@pytest.fixture
def make_reporter(transport):
    reporters = []

    def factory(**kwargs):
        kwargs.setdefault("batch_size", 10)
        reporter = Reporter(
            "shop",
            REPORT_URL,
            transport=transport,
            start_timer=False,
            register_atexit=False,
            **kwargs,
        )
        reporters.append(reporter)
        return reporter

    yield factory
    for reporter in reporters:
        reporter.destroy()


class TestHttpTransport:
    """Tests for HttpTransport."""

    def test_send_posts_dsn_and_events(self, transport, collector):
        assert transport.send([{"message": "a"}]) == 200
        assert collector.bodies == [{"dsn": "shop", "events": [{"message": "a"}]}]

    def test_http_error_status(self, transport, collector):
        collector.status = 503

        with pytest.raises(DeliveryError) as excinfo:
            transport.send([{"message": "a"}])

        assert excinfo.value.status_code == 503
        assert excinfo.value.is_network_error is False

    def test_network_error(self, transport, collector):
        collector.network_down = True

        with pytest.raises(DeliveryError) as excinfo:
            transport.send([{"message": "a"}])

        assert excinfo.value.is_network_error is True

    def test_beacon(self, transport, collector):
        assert transport.send_beacon([{"message": "bye"}]) is True
        assert collector.events == [[{"message": "bye"}]]

        collector.network_down = True
        assert transport.send_beacon([{"message": "bye"}]) is False

    def test_beacon_read_timeout_counts_as_sent(self):
        def handler(request):
            raise httpx.ReadTimeout("no response", request=request)

        transport = HttpTransport(REPORT_URL, "shop", transport=httpx.MockTransport(handler))

        assert transport.send_beacon([{"message": "bye"}]) is True


class TestBatching:
    """Tests for size-triggered and manual flushes."""

    def test_batch_size_triggers_single_post(self, make_reporter, collector):
        reporter = make_reporter(batch_size=3)

        for i in range(3):
            reporter.push({"type": "error", "message": f"e{i}"})
        reporter.wait(timeout=5)

        assert len(collector.bodies) == 1
        assert [e["message"] for e in collector.events[0]] == ["e0", "e1", "e2"]
        assert reporter.pending_count == 0

    def test_below_batch_size_stays_queued(self, make_reporter, collector):
        reporter = make_reporter(batch_size=3)

        reporter.push({"type": "error", "message": "e0"})
        reporter.wait(timeout=5)

        assert collector.bodies == []
        assert reporter.pending_count == 1

    def test_events_are_trimmed_on_push(self, make_reporter):
        reporter = make_reporter()

        reporter.push({"type": "error", "message": "m" * 2000})

        assert len(reporter.queued()[0]["message"]) == 1003

    def test_empty_flush_is_noop(self, make_reporter, collector):
        reporter = make_reporter()

        assert reporter.flush() is False
        assert collector.bodies == []


class TestThrottle:
    """Flushes closer than one second apart are dropped."""

    def test_flush_throttled_within_a_second(self, make_reporter, collector):
        clock = FakeClock()
        reporter = make_reporter(clock=clock)

        reporter.push({"message": "a"})
        assert reporter.flush() is True

        clock.now += 0.5
        reporter.push({"message": "b"})
        assert reporter.flush() is False
        assert reporter.pending_count == 1

        clock.now += 0.6
        assert reporter.flush() is True
        reporter.wait(timeout=5)

        assert [[e["message"] for e in batch] for batch in collector.events] == [["a"], ["b"]]


class TestFailures:
    """Tests for the offline fallback."""

    def test_failed_batch_persisted_as_one_item(self, make_reporter, collector):
        collector.status = 500
        store = OfflineStore()
        reporter = make_reporter(offline_store=store)

        reporter.push({"message": "a"})
        reporter.push({"message": "b"})
        reporter.flush()
        reporter.wait(timeout=5)

        items = store.items()
        assert len(items) == 1
        assert [e["message"] for e in items[0]["events"]] == ["a", "b"]
        assert reporter.is_online is True

    def test_network_error_goes_offline(self, make_reporter, collector):
        collector.network_down = True
        errors = []
        store = OfflineStore()
        reporter = make_reporter(offline_store=store, on_error=errors.append)

        reporter.push({"message": "a"})
        reporter.flush()
        reporter.wait(timeout=5)

        assert reporter.is_online is False
        assert len(store) == 1
        assert errors[0].is_network_error

    def test_offline_batches_skip_the_network(self, make_reporter, collector):
        store = OfflineStore()
        reporter = make_reporter(offline_store=store)
        reporter.on_offline()

        reporter.push({"message": "a"})
        reporter.flush()
        reporter.wait(timeout=5)

        assert collector.bodies == []
        assert len(store) == 1

    def test_on_failed_replaces_store(self, make_reporter, collector):
        collector.status = 500
        failed = []
        store = OfflineStore()
        reporter = make_reporter(offline_store=store, on_failed=failed.append)

        reporter.push({"message": "a"})
        reporter.flush()
        reporter.wait(timeout=5)

        assert len(failed) == 1
        assert failed[0].events == [{"message": "a"}]
        assert len(store) == 0


class TestReconnect:
    """Tests for resending the offline queue."""

    def _store_with_items(self, count=3):
        store = OfflineStore()
        for i in range(count):
            store.append([{"message": f"old{i}"}], created_at=i)
        return store

    def test_reconnect_sends_everything_in_one_post(self, make_reporter, collector):
        store = self._store_with_items()
        reporter = make_reporter(offline_store=store)
        reporter.wait(timeout=5)
        collector.bodies.clear()

        store.append([{"message": "late"}])
        reporter.on_offline()
        reporter.on_online()
        reporter.wait(timeout=5)

        assert len(collector.bodies) == 1
        assert [e["message"] for e in collector.events[0]] == ["late"]
        assert len(store) == 0

    def test_startup_resend(self, make_reporter, collector):
        store = self._store_with_items()

        reporter = make_reporter(offline_store=store)
        reporter.wait(timeout=5)

        assert len(collector.bodies) == 1
        assert [e["message"] for e in collector.events[0]] == ["old0", "old1", "old2"]
        assert len(store) == 0

    def test_failed_resend_keeps_items(self, transport, collector):
        collector.status = 502
        store = self._store_with_items()

        assert resend_offline(transport, store) == 0
        assert len(store) == 3

    def test_items_added_during_resend_are_kept(self, transport, collector):
        store = self._store_with_items(2)
        collector.before_response = lambda: store.append([{"message": "during"}])

        assert resend_offline(transport, store) == 2
        assert [item["events"][0]["message"] for item in store.items()] == ["during"]

    def test_item_added_to_full_store_during_resend_is_kept(self, transport, collector):
        store = OfflineStore(max_items=3)
        for i in range(3):
            store.append([{"message": f"old{i}"}], created_at=i)
        collector.before_response = lambda: store.append([{"message": "during"}])

        assert resend_offline(transport, store) == 3
        assert [item["events"][0]["message"] for item in store.items()] == ["during"]


class TestSessionEnd:
    """Tests for the final beacon and teardown."""

    def test_beacon_bypasses_throttle(self, make_reporter, collector):
        clock = FakeClock()
        reporter = make_reporter(clock=clock)
        reporter.push({"message": "a"})
        reporter.flush()
        reporter.wait(timeout=5)

        reporter.push({"message": "b"})
        reporter.session_end()

        assert [[e["message"] for e in batch] for batch in collector.events] == [["a"], ["b"]]
        assert reporter.pending_count == 0

    def test_offline_session_end_persists(self, make_reporter, collector):
        store = OfflineStore()
        reporter = make_reporter(offline_store=store)
        reporter.on_offline()

        reporter.push({"message": "a"})
        reporter.session_end()

        assert collector.bodies == []
        assert store.items()[0]["events"] == [{"message": "a"}]

    def test_failed_beacon_persists(self, make_reporter, collector):
        store = OfflineStore()
        reporter = make_reporter(offline_store=store)
        collector.network_down = True

        reporter.push({"message": "a"})
        reporter.session_end()

        assert len(store) == 1

    def test_destroy_is_idempotent(self, make_reporter, collector):
        reporter = make_reporter()
        reporter.push({"message": "a"})

        reporter.destroy()
        reporter.destroy()
        reporter.push({"message": "ignored"})

        assert collector.events == [[{"message": "a"}]]
        assert reporter.pending_count == 0
