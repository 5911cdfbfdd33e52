"""The balancer's record of one connected worker and its in-flight messages."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import replace
from typing import Any

from lbcluster.message import Message

MAX_DATA_SIZE = 1000


class WorkerFullError(RuntimeError):
    """Raised when a worker already holds its maximum number of messages."""


class WorkerHandle:
    """Connection and in-flight message list of a worker, safe across threads."""

    def __init__(self, worker_id: int, conn: Any = None, capacity: int = MAX_DATA_SIZE) -> None:
        self.id = worker_id
        self.conn = conn
        self.capacity = capacity
        self._messages: deque[Message] = deque()
        self._lock = threading.Lock()

    def add_message(self, message: Message) -> None:
        """Record a copy of a message sent to this worker."""
        with self._lock:
            if len(self._messages) >= self.capacity:
                raise WorkerFullError(f"worker {self.id} holds {self.capacity} messages already")
            self._messages.append(replace(message))

    def pop_message(self) -> Message | None:
        """Remove and return the oldest in-flight message, or None if there is none."""
        with self._lock:
            return self._messages.popleft() if self._messages else None

    def drain(self) -> list[Message]:
        """Remove and return every in-flight message, oldest first."""
        with self._lock:
            drained = list(self._messages)
            self._messages.clear()
            return drained

    def send(self, data: str | bytes) -> int:
        """Send data over the worker connection and return the number of bytes sent."""
        if self.conn is None:
            raise OSError(f"worker {self.id} has no connection")
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self.conn.sendall(payload)
        return len(payload)

    def _fileno(self) -> int:
        if self.conn is None:
            return -1
        try:
            return self.conn.fileno()
        except (OSError, AttributeError):
            return -1

    def describe(self) -> str:
        """Return a human-readable summary of the worker."""
        return "\n".join(
            [
                f"Worker ID: {self.id}",
                f"Messages: {len(self)}",
                f"Capacity: {self.capacity}",
                f"Socket FD: {self._fileno()}",
            ]
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __repr__(self) -> str:
        return f"WorkerHandle(id={self.id}, messages={len(self)})"