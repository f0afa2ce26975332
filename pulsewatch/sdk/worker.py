"""
Report delivery offloaded to a child process.

The child runs the same Reporter state machine and talks to the main process
only through two queues of protocol messages. The main process is the only
writer of the offline store: the child reports undeliverable batches with an
``offline`` message and the main process persists them. When the child
cannot be started, or dies, delivery continues with an in-process Reporter.
"""

import atexit
import multiprocessing
import queue
from threading import Event, Lock, Thread
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from .connectivity import ConnectivityMonitor
from .offline import OfflineStore
from .protocol import (
    DestroyMessage,
    ErrorMessage,
    FlushMessage,
    InitMessage,
    OfflineMessage,
    PushMessage,
    ReadyMessage,
    SentMessage,
    WorkerConfig,
    parse_request,
    parse_response,
)
from .reporter import DeliveryBatch, Reporter, resend_offline
from .transport import DeliveryError, HttpTransport

logger = structlog.get_logger(__name__)

POLL_INTERVAL = 0.5  # seconds
JOIN_TIMEOUT = 5.0  # seconds


class _ChildReporter(Reporter):
    """Reporter inside the worker; connectivity is tracked by the main process."""

    def on_offline(self) -> None:
        pass


def run_worker(requests, responses, transport: Optional[HttpTransport] = None) -> None:
    """
    Worker loop: wait for ``init``, then serve requests until ``destroy``.

    Args:
        requests: Queue of request dicts from the main process
        responses: Queue of response dicts to the main process
        transport: Transport override, used when running in a thread
    """
    init = parse_request(requests.get())
    if not isinstance(init, InitMessage):
        responses.put(ErrorMessage(message=f"expected init, got {init.type}").model_dump())
        return

    config = init.config

    def report_offline(batch: DeliveryBatch) -> None:
        responses.put(
            OfflineMessage(
                count=len(batch.events),
                created_at=batch.created_at,
                events=batch.events,
            ).model_dump()
        )

    def report_error(error: DeliveryError) -> None:
        responses.put(ErrorMessage(message=str(error), network=error.is_network_error).model_dump())

    reporter = _ChildReporter(
        dsn=config.dsn,
        report_url=config.report_url,
        batch_size=config.batch_size,
        report_interval=config.report_interval,
        transport=transport,
        request_timeout=config.request_timeout,
        on_failed=report_offline,
        on_sent=lambda count: responses.put(SentMessage(count=count).model_dump()),
        on_error=report_error,
        register_atexit=False,
    )
    responses.put(ReadyMessage().model_dump())

    while True:
        raw = requests.get()
        try:
            message = parse_request(raw)
        except ValidationError as e:
            responses.put(ErrorMessage(message=f"invalid request: {e}").model_dump())
            continue

        if isinstance(message, PushMessage):
            reporter.push(message.data)
        elif isinstance(message, FlushMessage):
            reporter.flush()
        elif isinstance(message, DestroyMessage):
            reporter.destroy()
            break


class WorkerReporter:
    """
    Reporter facade backed by a worker process.

    Exposes the same ``push``/``flush``/``destroy``/``on_online``/
    ``on_offline``/``session_end`` contract as Reporter.
    """

    def __init__(
        self,
        config: WorkerConfig,
        offline_store: Optional[OfflineStore] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        transport: Optional[HttpTransport] = None,
        mp_context=None,
        register_atexit: bool = True,
    ):
        """
        Args:
            config: Settings sent to the worker with ``init``
            offline_store: Offline store owned by this process
            connectivity: Shared online state
            transport: Transport for offline resends and the in-process fallback
            mp_context: multiprocessing context, spawn by default
            register_atexit: Destroy the worker at interpreter exit
        """
        self.config = config
        self.offline_store = offline_store
        self.connectivity = connectivity
        self.transport = transport or HttpTransport(
            config.report_url, config.dsn, timeout=config.request_timeout
        )

        self._lock = Lock()
        self._pending: List[Dict[str, Any]] = []
        self._ready = False
        self._destroyed = False
        self._fallback: Optional[Reporter] = None
        self._stop = Event()
        self._listener: Optional[Thread] = None
        self._process = None
        self._resend_thread: Optional[Thread] = None

        self._atexit_registered = register_atexit
        if register_atexit:
            atexit.register(self.destroy)

        self._start(mp_context or multiprocessing.get_context("spawn"))
        self.on_online_resend()

    @property
    def using_fallback(self) -> bool:
        return self._fallback is not None

    @property
    def is_ready(self) -> bool:
        return self._ready

    def _start(self, ctx) -> None:
        try:
            self._requests = ctx.Queue()
            self._responses = ctx.Queue()
            self._process = ctx.Process(
                target=run_worker,
                args=(self._requests, self._responses),
                name="pulsewatch-worker",
                daemon=True,
            )
            self._process.start()
        except (OSError, ValueError, RuntimeError) as e:
            self._process = None
            self._fall_back(f"worker could not be started: {e}")
            return

        self._requests.put(InitMessage(config=self.config).model_dump())
        self._listener = Thread(target=self._listen, name="pulsewatch-worker-listener", daemon=True)
        self._listener.start()

    def _fall_back(self, reason: str) -> None:
        with self._lock:
            if self._fallback is not None:
                return
            logger.warning("worker_fallback", reason=reason)
            self._ready = False
            self._fallback = Reporter(
                dsn=self.config.dsn,
                report_url=self.config.report_url,
                batch_size=self.config.batch_size,
                report_interval=self.config.report_interval,
                transport=self.transport,
                offline_store=self.offline_store,
                connectivity=self.connectivity,
                register_atexit=False,
            )
            pending, self._pending = self._pending, []

        for event in pending:
            self._fallback.push(event)

    def _listen(self) -> None:
        while not self._stop.is_set():
            try:
                raw = self._responses.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if self._process is not None and not self._process.is_alive() and not self._destroyed:
                    self._fall_back("worker exited")
                    return
                continue
            self.handle_response(raw)

    def handle_response(self, raw: Dict[str, Any]) -> None:
        """Apply one response message from the worker."""
        try:
            message = parse_response(raw)
        except ValidationError as e:
            logger.warning("invalid_worker_response", error=str(e))
            return

        if isinstance(message, ReadyMessage):
            with self._lock:
                self._ready = True
                pending, self._pending = self._pending, []
                for event in pending:
                    self._requests.put(PushMessage(data=event).model_dump())
            logger.debug("worker_ready", replayed=len(pending))
        elif isinstance(message, SentMessage):
            logger.debug("worker_sent", events=message.count)
        elif isinstance(message, ErrorMessage):
            logger.warning("worker_send_failed", error=message.message)
            if message.network and self.connectivity is not None:
                self.connectivity.mark_offline()
        elif isinstance(message, OfflineMessage):
            if self.offline_store is not None:
                self.offline_store.append(message.events, message.created_at)
            else:
                logger.warning("report_dropped", events=message.count)

    def push(self, event: Dict[str, Any]) -> None:
        if self._destroyed:
            return

        with self._lock:
            fallback = self._fallback
            if fallback is None:
                if self._ready:
                    self._requests.put(PushMessage(data=event).model_dump())
                else:
                    self._pending.append(event)
                return

        fallback.push(event)

    def flush(self) -> None:
        with self._lock:
            fallback = self._fallback
            if fallback is None:
                if self._ready:
                    self._requests.put(FlushMessage().model_dump())
                return

        fallback.flush()

    def on_online_resend(self) -> None:
        if self.offline_store is None or len(self.offline_store) == 0:
            return
        if self.connectivity is not None and not self.connectivity.online:
            return

        self._resend_thread = Thread(
            target=resend_offline,
            args=(self.transport, self.offline_store),
            name="pulsewatch-resend",
            daemon=True,
        )
        self._resend_thread.start()

    def on_online(self) -> None:
        """Connection restored: the main process resends the offline store."""
        if self._fallback is not None:
            self._fallback.on_online()
        else:
            self.on_online_resend()

    def on_offline(self) -> None:
        if self.connectivity is not None:
            self.connectivity.mark_offline()

    def session_end(self) -> None:
        self.destroy()

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._resend_thread is not None:
            self._resend_thread.join(timeout)
        if self._fallback is not None:
            self._fallback.wait(timeout)

    def destroy(self) -> None:
        """Stop the worker, collect its last responses and persist leftovers."""
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            pending, self._pending = self._pending, []

        if self._fallback is not None:
            for event in pending:
                self._fallback.push(event)
            self._fallback.destroy()
        elif self._process is not None:
            self._requests.put(DestroyMessage().model_dump())
            self._process.join(JOIN_TIMEOUT)
            if self._process.is_alive():
                logger.warning("worker_terminated")
                self._process.terminate()

            self._stop.set()
            if self._listener is not None:
                self._listener.join(JOIN_TIMEOUT)
            self._drain_responses()

            if pending and self.offline_store is not None:
                self.offline_store.append(pending)

        if self._atexit_registered:
            atexit.unregister(self.destroy)
            self._atexit_registered = False
        self.transport.close()

    def _drain_responses(self) -> None:
        while True:
            try:
                raw = self._responses.get(timeout=0.1)
            except queue.Empty:
                return
            self.handle_response(raw)
