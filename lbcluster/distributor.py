"""Assignment of queued messages to the least busy worker."""

from __future__ import annotations

import logging
import threading
import time
from typing import Sequence

from lbcluster.fifo import EmptyQueueError, Fifo
from lbcluster.message import Message
from lbcluster.workerinfo import WorkerFullError, WorkerHandle

log = logging.getLogger(__name__)

FREE_QUEUE_COMMAND = "FREE_QUEUE"


def find_most_free_worker(workers: Sequence[WorkerHandle]) -> WorkerHandle | None:
    """Return the worker with the fewest in-flight messages; the earliest wins ties."""
    return min(workers, key=len, default=None)


class Distributor:
    """Moves messages from the shared client queue to workers."""

    def __init__(
        self,
        queue: Fifo,
        workers: list[WorkerHandle],
        queue_lock: threading.Lock | None = None,
        dead_delay: float = 0.01,
    ) -> None:
        self.queue = queue
        self.workers = workers
        self.queue_lock = queue_lock if queue_lock is not None else threading.Lock()
        self.dead_delay = dead_delay
        self._active = threading.Event()

    def dispatch(self, worker: WorkerHandle) -> Message | None:
        """Send the front queued message to a worker; return it, or None if the queue was empty."""
        if worker is None:
            raise ValueError("invalid worker")
        with self.queue_lock:
            try:
                message = self.queue.pop()
            except EmptyQueueError:
                log.warning("client queue is empty")
                return None
        try:
            worker.add_message(message)
        except WorkerFullError as exc:
            log.warning("%s", exc)
        try:
            sent = worker.send(message.content)
        except OSError as exc:
            log.error("sending to worker %d failed: %s", worker.id, exc)
        else:
            log.info("sent %d bytes to worker %d: %s", sent, worker.id, message.content)
        return message

    def _dispatch_all(self) -> None:
        while True:
            with self.queue_lock:
                if not self.queue:
                    return
            worker = find_most_free_worker(self.workers)
            if worker is None:
                log.error("no workers available for redistribution")
                return
            self.dispatch(worker)

    def redistribute(self) -> None:
        """Reclaim every in-flight message from all workers and spread them out again."""
        self._active.set()
        try:
            for worker in list(self.workers):
                try:
                    worker.send(FREE_QUEUE_COMMAND + "\n")
                except OSError as exc:
                    log.error("sending %s to worker %d failed: %s", FREE_QUEUE_COMMAND, worker.id, exc)
            for worker in list(self.workers):
                for message in worker.drain():
                    with self.queue_lock:
                        self.queue.push(message)
            self._dispatch_all()
        finally:
            self._active.clear()

    def redistribute_dead(self) -> bool:
        """Dispatch queued messages after a worker left; return False if a full redistribution was running."""
        time.sleep(self.dead_delay)
        if self._active.is_set():
            log.info("full redistribution in progress; skipping")
            return False
        self._dispatch_all()
        return True