"""Per-client request limiting for the ingestion service."""

import time
from threading import Lock
from typing import Callable, Dict, List, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

UNLIMITED_PATHS = frozenset({"/health", "/ready", "/metrics"})


class FixedWindowLimiter:
    """
    Counts hits per key in fixed windows.

    Windows that have ended are dropped every ``window_seconds`` so the table
    only holds clients seen recently. Single-node only.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._last_prune = clock()
        self._lock = Lock()

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Record one request for ``key``.

        Returns:
            (allowed, remaining requests in the current window)
        """
        now = self._clock()
        with self._lock:
            self._prune(now)

            started, used = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, used = now, 0

            if used >= self.limit:
                return False, 0

            used += 1
            self._windows[key] = (started, used)
            return True, self.limit - used

    def tracked(self) -> int:
        with self._lock:
            return len(self._windows)

    def _prune(self, now: float) -> None:
        if now - self._last_prune < self.window_seconds:
            return
        expired: List[str] = [
            key for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        self._last_prune = now


def client_key(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects clients over the limit with 429; health checks are never limited."""

    def __init__(self, app, requests_per_window: int = 1000, window_seconds: int = 60):
        super().__init__(app)
        self.limiter = FixedWindowLimiter(requests_per_window, window_seconds)

    def _headers(self, remaining: int) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limiter.limit),
            "X-RateLimit-Remaining": str(remaining),
        }

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNLIMITED_PATHS:
            return await call_next(request)

        allowed, remaining = self.limiter.hit(client_key(request))
        if not allowed:
            retry_after = self.limiter.window_seconds
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded", "retry_after": retry_after},
                headers={"Retry-After": str(retry_after), **self._headers(0)},
            )

        response = await call_next(request)
        response.headers.update(self._headers(remaining))
        return response
