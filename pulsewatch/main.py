"""FastAPI application entry point for Pulsewatch."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import __version__
from .api.alerts import router as alerts_router
from .api.deps import run_blocking
from .api.errors import router as errors_router
from .api.performance import router as performance_router
from .api.sourcemaps import router as sourcemaps_router
from .config import Settings, settings
from .ratelimit import RateLimitMiddleware
from .receiver.endpoints import router as receiver_router
from .storage.factory import get_store, reset_store

HEALTHY_STORE_STATES = ("ok", "green", "yellow")


def configure_logging(level: str) -> None:
    """JSON structlog output through the stdlib root logger."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=getattr(logging, level.upper()), format="%(message)s")


configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


def prepare_opensearch(store) -> None:
    """Create templates, fixed indices and the retention policy."""
    client = store.client
    client.ensure_index_templates()
    client.ensure_indices()
    client.ensure_ism_policy(settings.retention_days)


def cors_origins(config: Settings) -> list:
    # Reports come from arbitrary pages; "*" only in debug with nothing configured
    if config.allowed_cors_origins:
        return list(config.allowed_cors_origins)
    return ["*"] if config.debug else []


def check_redis(config: Settings) -> Dict[str, Any]:
    import redis

    client = redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        socket_timeout=2,
    )
    try:
        client.ping()
    finally:
        client.close()
    return {"status": "ok"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "pulsewatch_starting",
        version=__version__,
        storage_backend=settings.storage_backend,
        use_celery=settings.use_celery,
    )

    store = get_store(settings)
    app.state.store = store

    if settings.storage_backend == "opensearch":
        try:
            await run_blocking(prepare_opensearch, store)
            logger.info("opensearch_prepared", hosts=settings.opensearch_hosts)
        except Exception as e:
            # Daily indices still come from templates on first write
            logger.error("opensearch_prepare_failed", error=str(e))

    yield

    logger.info("pulsewatch_stopping")
    reset_store()


app = FastAPI(
    title="Pulsewatch",
    description="Lightweight application monitoring: error aggregation, source maps and alerting",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(settings),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window,
    )

app.include_router(receiver_router, tags=["Ingestion"])
app.include_router(errors_router, tags=["Errors"])
app.include_router(sourcemaps_router, tags=["Source maps"])
app.include_router(alerts_router, tags=["Alerts"])
app.include_router(performance_router, tags=["Performance"])


@app.get("/health")
async def health_check():
    """Liveness: the process is up, nothing else is checked."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": __version__,
        "storage_backend": settings.storage_backend,
    }


@app.get("/ready")
async def readiness_check():
    """
    Readiness: storage answers and, with Celery enabled, Redis does too.

    Returns 503 with the per-dependency checks when anything is down.
    """
    checks: Dict[str, Dict[str, Any]] = {}

    try:
        health = await run_blocking(get_store(settings).health)
        state = health.get("status", "unknown")
        checks["storage"] = {**health, "status": "ok" if state in HEALTHY_STORE_STATES else "degraded"}
        ready = state != "red"
    except Exception as e:
        checks["storage"] = {"status": "error", "error": str(e)}
        ready = False

    if settings.use_celery:
        try:
            checks["redis"] = await run_blocking(check_redis, settings)
        except Exception as e:
            checks["redis"] = {"status": "error", "error": str(e)}
            ready = False

    if not ready:
        return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})
    return {"status": "ready", "checks": checks}


@app.get("/metrics")
async def metrics():
    """Prometheus exposition."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def main():
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "pulsewatch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
