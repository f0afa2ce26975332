"""Bounded breadcrumb buffer."""

from collections import deque
from threading import Lock
from typing import Deque, Tuple

from .models import Breadcrumb


class BreadcrumbBuffer:
    """
    Fixed-capacity FIFO of breadcrumbs.

    Adding past capacity evicts the oldest entry. Safe to use from any thread.
    """

    def __init__(self, max_breadcrumbs: int = 20):
        self.max_breadcrumbs = max_breadcrumbs
        self._items: Deque[Breadcrumb] = deque(maxlen=max_breadcrumbs)
        self._lock = Lock()

    def add(self, crumb: Breadcrumb) -> None:
        with self._lock:
            self._items.append(crumb)

    def snapshot(self) -> Tuple[Breadcrumb, ...]:
        """Copy of the current contents, oldest first. Does not clear."""
        with self._lock:
            return tuple(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
