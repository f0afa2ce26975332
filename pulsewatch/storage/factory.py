"""Global storage backend selection."""

from threading import Lock
from typing import Optional

import structlog

from ..config import Settings
from .base import TelemetryStore

logger = structlog.get_logger(__name__)

_store: Optional[TelemetryStore] = None
_store_lock = Lock()


def create_store(settings: Settings) -> TelemetryStore:
    """
    Build the backend named by ``settings.storage_backend``.

    Args:
        settings: Application settings

    Returns:
        TelemetryStore instance
    """
    if settings.storage_backend == "memory":
        from .memory import MemoryStore

        return MemoryStore()

    from ..opensearch.client import OpenSearchClient
    from ..opensearch.store import OpenSearchStore

    return OpenSearchStore(
        OpenSearchClient(settings),
        upsert_retries=settings.opensearch_upsert_retries,
    )


def get_store(settings: Optional[Settings] = None) -> TelemetryStore:
    """
    Get global store instance.

    Thread-safe lazy initialization.

    Returns:
        TelemetryStore instance
    """
    global _store

    if _store is None:
        with _store_lock:
            # Double-check locking pattern
            if _store is None:
                if settings is None:
                    from ..config import settings as default_settings

                    settings = default_settings
                _store = create_store(settings)
                logger.info("store_initialized", backend=settings.storage_backend)

    return _store


def set_store(store: Optional[TelemetryStore]) -> None:
    """Replace the global store (tests and embedding)."""
    global _store
    with _store_lock:
        _store = store


def reset_store() -> None:
    """Close and forget the global store."""
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
        _store = None
