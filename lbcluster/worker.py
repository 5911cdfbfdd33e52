"""Worker node that processes lines from the balancer and mirrors them to the replicator."""

from __future__ import annotations

import argparse
import logging
import os
import socket
import threading
import time
from pathlib import Path
from typing import Sequence

from lbcluster.distributor import FREE_QUEUE_COMMAND
from lbcluster.fifo import Fifo
from lbcluster.message import BUFFER_SIZE, LineSplitter, fit_content
from lbcluster.replicator import REPLICATOR_PORT, save_line

log = logging.getLogger(__name__)

WORKER_PORT = 6060
OUTPUT_FILE = "workerOutput.txt"
GREETING = "Podaci od Workera"
RECV_SIZE = BUFFER_SIZE - 1


class WorkerNode:
    """Queues lines from the balancer, stores each one, and echoes it back and to the replicator."""

    def __init__(
        self,
        balancer: socket.socket,
        replicator: socket.socket | None = None,
        output_path: str | os.PathLike[str] = OUTPUT_FILE,
        delay: float = 0.001,
    ) -> None:
        self.balancer = balancer
        self.replicator = replicator
        self.output_path = Path(output_path)
        self.delay = delay
        self.queue = Fifo()
        self.queue_ready = threading.Condition()
        self._stop = threading.Event()
        self._file_lock = threading.Lock()

    def run(self) -> None:
        """Process messages until the balancer closes the connection, then release the sockets."""
        processor = threading.Thread(target=self.process_loop, daemon=True)
        processor.start()
        try:
            self.receive_loop()
        finally:
            processor.join()
            self.balancer.close()
            if self.replicator is not None:
                self.replicator.close()
            with self.queue_ready:
                self.queue.clear()

    def receive_loop(self) -> None:
        """Split incoming data into lines and queue them; FREE_QUEUE empties the queue."""
        splitter = LineSplitter()
        while True:
            try:
                data = self.balancer.recv(RECV_SIZE)
            except OSError:
                break
            if not data:
                break
            for line in splitter.feed(data):
                with self.queue_ready:
                    if line == FREE_QUEUE_COMMAND:
                        log.info(FREE_QUEUE_COMMAND)
                        self.queue.clear()
                        continue
                    self.queue.push(fit_content(line))
                    self.queue_ready.notify()
        self._stop.set()
        with self.queue_ready:
            self.queue_ready.notify_all()

    def process_loop(self) -> None:
        """Take queued messages one at a time until the node is stopped."""
        while True:
            with self.queue_ready:
                self.queue_ready.wait_for(lambda: len(self.queue) > 0 or self._stop.is_set())
                if self._stop.is_set():
                    return
                message = self.queue.pop()
            log.info("worker received message: %s", message)
            try:
                with self._file_lock:
                    save_line(self.output_path, message)
            except OSError as exc:
                log.error("cannot write %s: %s", self.output_path, exc)
            if self.delay:
                time.sleep(self.delay)
            payload = message.encode("utf-8")
            try:
                self.balancer.sendall(payload)
            except OSError as exc:
                log.error("replying to the balancer failed: %s", exc)
            if self.replicator is not None:
                try:
                    self.replicator.sendall(payload)
                except OSError as exc:
                    log.error("forwarding to the replicator failed: %s", exc)

    def close(self) -> None:
        """Stop processing and end the connection to the balancer."""
        self._stop.set()
        try:
            self.balancer.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        with self.queue_ready:
            self.queue_ready.notify_all()


def main(argv: Sequence[str] | None = None) -> int:
    """Run a worker from the command line."""
    parser = argparse.ArgumentParser(prog="lbcluster-worker", description="Run a worker node.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=WORKER_PORT)
    parser.add_argument("--replicator-host", default="127.0.0.1")
    parser.add_argument("--replicator-port", type=int, default=REPLICATOR_PORT)
    parser.add_argument("--output", default=OUTPUT_FILE)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        balancer = socket.create_connection((args.host, args.port))
    except OSError as exc:
        log.error("cannot connect to the load balancer: %s", exc)
        return 1

    replicator: socket.socket | None
    try:
        replicator = socket.create_connection((args.replicator_host, args.replicator_port))
    except OSError as exc:
        log.error("cannot connect to the replicator: %s", exc)
        replicator = None
    else:
        log.info("connected to the replicator")

    log.info("worker connected to the load balancer on port %d", args.port)
    try:
        balancer.sendall(GREETING.encode("utf-8"))
    except OSError as exc:
        log.error("greeting the load balancer failed: %s", exc)

    node = WorkerNode(balancer, replicator, args.output)
    try:
        node.run()
    except KeyboardInterrupt:
        node.close()
    return 0