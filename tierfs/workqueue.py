"""Thread-safe FIFO queue for many producers and one consumer."""

from __future__ import annotations

import threading
from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")


class WorkQueue(Generic[T]):
    """FIFO queue guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: deque[T] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def empty(self) -> bool:
        return not self._items

    def push(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def pop(self) -> T:
        """Remove and return the oldest item; raise IndexError if empty."""
        with self._lock:
            if not self._items:
                raise IndexError("pop from empty WorkQueue")
            return self._items.popleft()