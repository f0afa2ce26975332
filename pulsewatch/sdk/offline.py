"""Persistent queue of batches that could not be delivered."""

import os
import tempfile
import time
import uuid
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

import orjson
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ITEMS = 100


class OfflineStore:
    """
    Bounded FIFO of failed batches, persisted to a JSON file.

    Each item is ``{"id": <hex>, "createdAt": <ms>, "events": [...]}``; the id
    lets a resend remove exactly what it sent. When more than ``max_items``
    are held the oldest are evicted. With no ``path`` the queue
    lives in memory only and is lost when the process exits.
    """

    def __init__(self, path: Optional[str] = None, max_items: int = DEFAULT_MAX_ITEMS):
        self.path = path
        self.max_items = max_items
        self._lock = Lock()
        self._items: List[Dict[str, Any]] = self._load()

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path or not os.path.exists(self.path):
            return []

        try:
            with open(self.path, "rb") as f:
                data = orjson.loads(f.read())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning("offline_store_unreadable", path=self.path, error=str(e))
            return []

        if not isinstance(data, list):
            return []

        items = [
            item for item in data
            if isinstance(item, dict) and isinstance(item.get("events"), list)
        ]
        for item in items:
            item.setdefault("id", uuid.uuid4().hex)
        return items[-self.max_items:]

    def _save(self) -> None:
        if not self.path:
            return

        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".pulsewatch-", suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(orjson.dumps(self._items))
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning("offline_store_write_failed", path=self.path, error=str(e))

    def append(self, events: List[Dict[str, Any]], created_at: Optional[int] = None) -> None:
        """Persist one failed batch as a single item."""
        if not events:
            return

        item = {
            "id": uuid.uuid4().hex,
            "createdAt": created_at if created_at is not None else int(time.time() * 1000),
            "events": list(events),
        }
        with self._lock:
            self._items.append(item)
            evicted = len(self._items) - self.max_items
            if evicted > 0:
                del self._items[:evicted]
                logger.debug("offline_items_evicted", count=evicted)
            self._save()

    def items(self) -> List[Dict[str, Any]]:
        """Snapshot of the stored items, oldest first."""
        with self._lock:
            return [dict(item) for item in self._items]

    def remove(self, ids: Iterable[str]) -> int:
        """
        Drop the items with the given ids, after they were resent.

        Items evicted in the meantime are simply absent; others are untouched.

        Returns:
            Number of items removed
        """
        wanted = set(ids)
        if not wanted:
            return 0
        with self._lock:
            kept = [item for item in self._items if item["id"] not in wanted]
            removed = len(self._items) - len(kept)
            if removed:
                self._items = kept
                self._save()
        return removed

    def clear(self) -> None:
        with self._lock:
            self._items = []
            self._save()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
