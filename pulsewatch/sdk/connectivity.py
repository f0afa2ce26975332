"""Online/offline tracking with a reconnect probe."""

import socket
from threading import Event, Lock, Thread
from typing import Callable, Optional, Tuple
from urllib.parse import urlsplit

import structlog

logger = structlog.get_logger(__name__)


def probe_address(url: str) -> Tuple[str, int]:
    """Host and port to TCP-connect to for a report URL."""
    parts = urlsplit(url)
    port = parts.port or (443 if parts.scheme == "https" else 80)
    return parts.hostname or "localhost", port


def tcp_probe(address: Tuple[str, int], timeout: float = 3.0) -> bool:
    try:
        with socket.create_connection(address, timeout=timeout):
            return True
    except OSError:
        return False


class ConnectivityMonitor:
    """
    Tracks whether the report endpoint is reachable.

    ``mark_offline`` starts a daemon probe thread that tries a TCP connect
    every ``probe_interval`` seconds; the first success switches back to
    online and calls ``on_online``. ``on_online`` only fires on an
    offline to online transition.
    """

    def __init__(
        self,
        report_url: str,
        probe_interval: float = 30.0,
        on_online: Optional[Callable[[], None]] = None,
        probe: Optional[Callable[[Tuple[str, int]], bool]] = None,
    ):
        self.address = probe_address(report_url)
        self.probe_interval = probe_interval
        self.on_online = on_online
        self._probe = probe or tcp_probe
        self._online = True
        self._lock = Lock()
        self._stop = Event()
        self._thread: Optional[Thread] = None

    @property
    def online(self) -> bool:
        return self._online

    def mark_offline(self) -> bool:
        """Switch to offline. Returns True if this was a transition."""
        with self._lock:
            if not self._online:
                return False
            self._online = False
            self._start_probe()

        logger.info("connectivity_lost", host=self.address[0], port=self.address[1])
        return True

    def mark_online(self) -> bool:
        """Switch to online. Returns True if this was a transition."""
        with self._lock:
            if self._online:
                return False
            self._online = True
            self._stop.set()

        logger.info("connectivity_restored", host=self.address[0], port=self.address[1])
        if self.on_online is not None:
            try:
                self.on_online()
            except Exception as e:
                logger.warning("on_online_callback_failed", error=str(e))
        return True

    def _start_probe(self) -> None:
        if self._thread is not None and self._thread.is_alive() and not self._stop.is_set():
            return
        self._stop = Event()
        self._thread = Thread(
            target=self._probe_loop,
            args=(self._stop,),
            name="pulsewatch-probe",
            daemon=True,
        )
        self._thread.start()

    def _probe_loop(self, stop: Event) -> None:
        while not stop.wait(self.probe_interval):
            if self._probe(self.address):
                self.mark_online()
                return

    def stop(self) -> None:
        self._stop.set()
