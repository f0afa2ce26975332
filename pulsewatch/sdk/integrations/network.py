"""Outgoing HTTP instrumentation: breadcrumbs, request stats and resource errors."""

import functools
import os
import time
import urllib.error
import urllib.request
from threading import Lock
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import httpx

from ..models import Breadcrumb, ResourceErrorEvent
from .base import PatchIntegration

_RESOURCE_TYPES = {
    ".js": "script",
    ".mjs": "module",
    ".css": "link",
    ".png": "img",
    ".jpg": "img",
    ".jpeg": "img",
    ".gif": "img",
    ".svg": "img",
    ".webp": "img",
    ".ico": "img",
}


def resource_type_for(url: str) -> str:
    _, ext = os.path.splitext(urlsplit(url).path)
    return _RESOURCE_TYPES.get(ext.lower(), "other")


class RequestStats:
    """Aggregate counters over observed requests. Thread-safe."""

    def __init__(self):
        self._lock = Lock()
        self.total = 0
        self.success = 0
        self.failed = 0
        self.slow = 0
        self.total_duration = 0.0
        self.max_duration = 0.0

    def record(self, duration: float, ok: bool, slow: bool) -> None:
        with self._lock:
            self.total += 1
            if ok:
                self.success += 1
            else:
                self.failed += 1
            if slow:
                self.slow += 1
            self.total_duration += duration
            self.max_duration = max(self.max_duration, duration)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            total = self.total
            return {
                "total": total,
                "success": self.success,
                "failed": self.failed,
                "slow": self.slow,
                "avgDuration": round(self.total_duration / total) if total else 0,
                "maxDuration": round(self.max_duration),
                "failureRate": self.failed / total if total else 0.0,
                "slowRate": self.slow / total if total else 0.0,
            }


class NetworkIntegration(PatchIntegration):
    """Shared request recording for the HTTP client adapters."""

    breadcrumb_type = "fetch"

    def __init__(self, monitor):
        super().__init__(monitor)
        self.stats = RequestStats()

    @property
    def slow_threshold(self) -> int:
        return self.monitor.config.slow_request_threshold

    def should_record(self, url: str) -> bool:
        return not url.startswith(self.monitor.config.report_url)

    def record(self, method: str, url: str, status: Optional[int], duration: float) -> None:
        """
        Args:
            method: HTTP method
            url: Request URL
            status: Response status, None when no response was received
            duration: Elapsed time in milliseconds
        """
        if not self.should_record(url):
            return

        ok = status is not None and status < 400
        slow = duration >= self.slow_threshold
        self.stats.record(duration, ok, slow)

        self.monitor.add_breadcrumb(
            Breadcrumb(
                type=self.breadcrumb_type,
                category="http",
                message=f"{method} {url} [{status if status is not None else 'failed'}]",
                data={"method": method, "url": url, "status": status, "duration": round(duration)},
            )
        )
        if slow:
            self.monitor.add_breadcrumb(
                Breadcrumb(
                    type=self.breadcrumb_type,
                    category="slow_request",
                    message=f"Slow request: {method} {url} took {round(duration)}ms",
                    data={"method": method, "url": url, "duration": round(duration)},
                )
            )


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class HttpxIntegration(NetworkIntegration):
    """Records requests made with ``httpx.Client``."""

    name = "httpx"
    target_attr = "send"

    def target_owner(self):
        return httpx.Client

    def wrap(self, previous):
        @functools.wraps(previous)
        def send(client, request, *args, **kwargs):
            start = time.perf_counter()
            try:
                response = previous(client, request, *args, **kwargs)
            except Exception:
                self.observe(self.record, request.method, str(request.url), None, _elapsed_ms(start))
                raise
            self.observe(
                self.record, request.method, str(request.url), response.status_code, _elapsed_ms(start)
            )
            return response

        return send


class AsyncHttpxIntegration(NetworkIntegration):
    """Records requests made with ``httpx.AsyncClient``."""

    name = "httpx_async"
    target_attr = "send"

    def target_owner(self):
        return httpx.AsyncClient

    def wrap(self, previous):
        @functools.wraps(previous)
        async def send(client, request, *args, **kwargs):
            start = time.perf_counter()
            try:
                response = await previous(client, request, *args, **kwargs)
            except Exception:
                self.observe(self.record, request.method, str(request.url), None, _elapsed_ms(start))
                raise
            self.observe(
                self.record, request.method, str(request.url), response.status_code, _elapsed_ms(start)
            )
            return response

        return send


class UrllibResourceIntegration(NetworkIntegration):
    """
    Records ``urllib.request.urlopen`` calls and reports failed loads as
    resource errors.
    """

    name = "urllib"
    breadcrumb_type = "xhr"
    target_attr = "urlopen"

    def target_owner(self):
        return urllib.request

    def report_failure(self, url: str) -> None:
        if not self.should_record(url):
            return
        self.monitor.capture_resource_error(
            ResourceErrorEvent(resource_type=resource_type_for(url), url=url)
        )

    def wrap(self, previous):
        @functools.wraps(previous)
        def urlopen(url, data=None, *args, **kwargs):
            if isinstance(url, urllib.request.Request):
                full_url, method = url.full_url, url.get_method()
            else:
                full_url, method = str(url), "POST" if data is not None else "GET"

            start = time.perf_counter()
            try:
                response = previous(url, data, *args, **kwargs)
            except urllib.error.HTTPError as e:
                self.observe(self.record, method, full_url, e.code, _elapsed_ms(start))
                self.observe(self.report_failure, full_url)
                raise
            except OSError:
                self.observe(self.record, method, full_url, None, _elapsed_ms(start))
                self.observe(self.report_failure, full_url)
                raise

            status = getattr(response, "status", None)
            self.observe(self.record, method, full_url, status, _elapsed_ms(start))
            return response

        return urlopen
