"""Tests for request rate limiting."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from pulsewatch.ratelimit import FixedWindowLimiter, RateLimitMiddleware


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestFixedWindowLimiter:
    def test_limit_within_window(self):
        clock = FakeClock()
        limiter = FixedWindowLimiter(limit=2, window_seconds=60, clock=clock)

        assert limiter.hit("a") == (True, 1)
        assert limiter.hit("a") == (True, 0)
        assert limiter.hit("a") == (False, 0)
        assert limiter.hit("b") == (True, 1)

    def test_new_window_resets(self):
        clock = FakeClock()
        limiter = FixedWindowLimiter(limit=1, window_seconds=60, clock=clock)
        limiter.hit("a")

        clock.now = 60
        assert limiter.hit("a") == (True, 0)

    def test_expired_clients_pruned(self):
        clock = FakeClock()
        limiter = FixedWindowLimiter(limit=5, window_seconds=10, clock=clock)
        limiter.hit("a")
        limiter.hit("b")

        clock.now = 30
        limiter.hit("c")

        assert limiter.tracked() == 1


def _app(limit):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, requests_per_window=limit, window_seconds=60)

    @app.get("/errors")
    async def errors():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


class TestRateLimitMiddleware:
    def test_headers_and_429(self):
        client = TestClient(_app(limit=1))

        first = client.get("/errors")
        second = client.get("/errors")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Remaining"] == "0"
        assert second.status_code == 429
        assert second.headers["Retry-After"] == "60"

    def test_forwarded_for_identifies_client(self):
        client = TestClient(_app(limit=1))

        assert client.get("/errors", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/errors", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.9"}).status_code == 200
        assert client.get("/errors", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429

    def test_probes_not_limited(self):
        client = TestClient(_app(limit=1))

        for _ in range(3):
            assert client.get("/health").status_code == 200
