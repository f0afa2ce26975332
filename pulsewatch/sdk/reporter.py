"""Batching, throttled delivery of events with offline fallback."""

import atexit
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from threading import Event, Lock, Thread
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from .connectivity import ConnectivityMonitor
from .offline import OfflineStore
from .transport import DeliveryError, HttpTransport
from .trimming import trim_event

logger = structlog.get_logger(__name__)

MIN_FLUSH_INTERVAL = 1.0  # seconds


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class DeliveryBatch:
    """Events sent together in one POST."""

    events: List[Dict[str, Any]]
    created_at: int = field(default_factory=_now_ms)


def resend_offline(transport: HttpTransport, store: OfflineStore) -> int:
    """
    Resend every stored batch in a single POST.

    Items are removed only when the server accepted the request; items
    appended while the request was in flight are kept.

    Returns:
        Number of events resent, 0 if nothing was stored or the send failed
    """
    items = store.items()
    if not items:
        return 0

    events = [event for item in items for event in item["events"]]
    try:
        transport.send(events)
    except DeliveryError as e:
        logger.warning("offline_resend_failed", items=len(items), error=str(e))
        return 0

    store.remove(item["id"] for item in items)
    logger.info("offline_resent", items=len(items), events=len(events))
    return len(events)


class Reporter:
    """
    Queues events and delivers them in batches.

    A batch is sent when ``batch_size`` events are queued, on every
    ``report_interval`` tick, and once more at interpreter exit. Flushes are
    throttled to one per second. Sends run on a single background thread so
    ``push`` never blocks on the network. Failed batches go to the offline
    store (or to ``on_failed`` when given) and are resent on reconnect.
    """

    def __init__(
        self,
        dsn: str,
        report_url: str,
        batch_size: int = 10,
        report_interval: int = 5000,
        transport: Optional[HttpTransport] = None,
        offline_store: Optional[OfflineStore] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        on_failed: Optional[Callable[[DeliveryBatch], None]] = None,
        on_sent: Optional[Callable[[int], None]] = None,
        on_error: Optional[Callable[[DeliveryError], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        start_timer: bool = True,
        register_atexit: bool = True,
        request_timeout: float = 10.0,
    ):
        """
        Args:
            dsn: Project identifier
            report_url: Ingestion endpoint
            batch_size: Queue length that triggers an immediate flush
            report_interval: Periodic flush interval in milliseconds
            transport: HTTP transport, built from report_url when omitted
            offline_store: Where failed batches are persisted
            connectivity: Shared online state; marked offline on network errors
            on_failed: Receives failed batches instead of the offline store
            on_sent: Called with the event count after each accepted batch
            on_error: Called with the DeliveryError of each failed batch
            clock: Monotonic clock in seconds, used for throttling
            start_timer: Start the periodic flush thread
            register_atexit: Beacon the remaining queue at interpreter exit
            request_timeout: Timeout for the default transport
        """
        self.dsn = dsn
        self.report_url = report_url
        self.batch_size = batch_size
        self.report_interval = report_interval
        self.transport = transport or HttpTransport(report_url, dsn, timeout=request_timeout)
        self.offline_store = offline_store
        self.connectivity = connectivity
        self.on_failed = on_failed
        self.on_sent = on_sent
        self.on_error = on_error
        self.clock = clock

        self._queue: List[Dict[str, Any]] = []
        self._lock = Lock()
        self._last_flush: Optional[float] = None
        self._online = True
        self._destroyed = False

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pulsewatch-sender")
        self._pending: Set[Future] = set()
        self._pending_lock = Lock()

        self._timer_stop = Event()
        self._timer: Optional[Thread] = None
        if start_timer:
            self._start_timer()

        self._atexit_registered = register_atexit
        if register_atexit:
            atexit.register(self.session_end)

        if self.offline_store is not None and self.is_online:
            self._submit(resend_offline, self.transport, self.offline_store)

    @property
    def is_online(self) -> bool:
        if self.connectivity is not None:
            return self.connectivity.online
        return self._online

    @property
    def pending_count(self) -> int:
        """Number of events waiting in the queue."""
        with self._lock:
            return len(self._queue)

    def queued(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._queue)

    def push(self, event: Dict[str, Any]) -> None:
        """
        Queue one wire event. Flushes when the batch size is reached.

        Args:
            event: Event in wire (camelCase) form
        """
        if self._destroyed:
            logger.debug("push_after_destroy_ignored")
            return

        trimmed = trim_event(event)
        with self._lock:
            self._queue.append(trimmed)
            should_flush = len(self._queue) >= self.batch_size

        if should_flush:
            self.flush()

    def flush(self) -> bool:
        """
        Send the queue as one batch.

        A flush within one second of the previous one is a no-op, as is a
        flush of an empty queue.

        Returns:
            True if a batch was submitted
        """
        with self._lock:
            if not self._queue or self._destroyed:
                return False

            now = self.clock()
            if self._last_flush is not None and now - self._last_flush < MIN_FLUSH_INTERVAL:
                return False

            batch = DeliveryBatch(events=self._queue)
            self._queue = []
            self._last_flush = now

        self._submit(self._send, batch)
        return True

    def _submit(self, func: Callable, *args: Any) -> None:
        try:
            future = self._executor.submit(func, *args)
        except RuntimeError:
            # Executor already shut down
            logger.debug("sender_unavailable")
            return

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard_future)

    def _discard_future(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _send(self, batch: DeliveryBatch) -> None:
        if not self.is_online:
            self._persist(batch)
            return

        try:
            self.transport.send(batch.events)
        except DeliveryError as e:
            logger.warning("report_failed", events=len(batch.events), error=str(e))
            if self.on_error is not None:
                self.on_error(e)
            if e.is_network_error:
                self.on_offline()
            self._persist(batch)
            return

        logger.debug("report_sent", events=len(batch.events))
        if self.on_sent is not None:
            self.on_sent(len(batch.events))

    def _persist(self, batch: DeliveryBatch) -> None:
        if self.on_failed is not None:
            self.on_failed(batch)
        elif self.offline_store is not None:
            self.offline_store.append(batch.events, batch.created_at)
        else:
            logger.warning("report_dropped", events=len(batch.events))

    def on_online(self) -> None:
        """Connection restored: resend stored batches in one request."""
        self._online = True
        if self.offline_store is not None and not self._destroyed:
            self._submit(resend_offline, self.transport, self.offline_store)

    def on_offline(self) -> None:
        if self.connectivity is not None:
            self.connectivity.mark_offline()
        else:
            self._online = False

    def _start_timer(self) -> None:
        self._timer = Thread(target=self._timer_loop, name="pulsewatch-timer", daemon=True)
        self._timer.start()

    def _timer_loop(self) -> None:
        interval = self.report_interval / 1000.0
        while not self._timer_stop.wait(interval):
            try:
                self.flush()
            except Exception as e:
                logger.error("timer_flush_failed", error=str(e))

    def session_end(self) -> None:
        """
        Final best-effort delivery of the queue, bypassing the throttle.

        The beacon does not wait for a response. If it cannot be written the
        remaining events are persisted.
        """
        self._timer_stop.set()

        with self._lock:
            events = self._queue
            self._queue = []

        if not events:
            return

        batch = DeliveryBatch(events=events)
        if not self.is_online or not self.transport.send_beacon(batch.events):
            self._persist(batch)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until submitted sends have finished."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait_futures(pending, timeout=timeout)

    def destroy(self) -> None:
        """Stop timers, beacon the remaining queue and shut the sender down."""
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True

        self.session_end()
        self._executor.shutdown(wait=True)
        if self._atexit_registered:
            atexit.unregister(self.session_end)
            self._atexit_registered = False
        self.transport.close()
        logger.debug("reporter_destroyed")
