"""Shared dependencies for the management API."""

import asyncio
from functools import partial
from threading import Lock
from typing import Any, Callable, Optional, TypeVar

from ..config import settings
from ..receiver.endpoints import get_executor
from ..sourcemap.resolver import SourceMapResolver
from ..storage.base import TelemetryStore
from ..storage.factory import get_store

T = TypeVar("T")

_resolver: Optional[SourceMapResolver] = None
_resolver_lock = Lock()


def store_dependency() -> TelemetryStore:
    return get_store()


def get_resolver() -> SourceMapResolver:
    """Get global resolver; its decode cache is shared across requests."""
    global _resolver

    if _resolver is None:
        with _resolver_lock:
            if _resolver is None:
                _resolver = SourceMapResolver(get_store(), cache_size=settings.sourcemap_cache_size)

    return _resolver


def reset_resolver() -> None:
    global _resolver
    with _resolver_lock:
        _resolver = None


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run blocking storage I/O on the shared executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_executor(), partial(func, *args, **kwargs))
