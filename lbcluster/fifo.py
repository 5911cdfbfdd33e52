"""First-in first-out queue of pending items."""

from __future__ import annotations

from collections import deque
from typing import Any, Iterable, Iterator


class EmptyQueueError(LookupError):
    """Raised when an item is taken from an empty queue."""


class Fifo:
    """Unbounded FIFO queue; callers provide their own locking."""

    def __init__(self, items: Iterable[Any] = ()) -> None:
        self._items: deque[Any] = deque(items)

    def push(self, item: Any) -> None:
        """Append an item at the back."""
        self._items.append(item)

    def pop(self) -> Any:
        """Remove and return the front item."""
        try:
            return self._items.popleft()
        except IndexError:
            raise EmptyQueueError("queue is empty") from None

    def peek(self) -> Any:
        """Return the front item without removing it."""
        try:
            return self._items[0]
        except IndexError:
            raise EmptyQueueError("queue is empty") from None

    def clear(self) -> None:
        """Drop every queued item."""
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._items))