"""Replicator that stores every message a worker forwards to it."""

from __future__ import annotations

import argparse
import codecs
import logging
import os
import socket
import threading
import time
from pathlib import Path
from typing import Sequence

from lbcluster.fifo import Fifo
from lbcluster.message import BUFFER_SIZE, fit_content

log = logging.getLogger(__name__)

REPLICATOR_PORT = 6061
OUTPUT_FILE = "replicatorOutput.txt"
REPLICATED_PREFIX = "Replikator primio poruku: "
RECV_SIZE = BUFFER_SIZE - 1
_POLL_INTERVAL = 0.2


def save_line(path: str | os.PathLike[str], text: str) -> None:
    """Append text and a newline to the file at path."""
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(text + "\n")


class Replicator:
    """Accepts worker connections, keeps a copy of each message and appends it to a file."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = REPLICATOR_PORT,
        output_path: str | os.PathLike[str] = OUTPUT_FILE,
        delay: float = 0.001,
    ) -> None:
        self.output_path = Path(output_path)
        self.delay = delay
        self.queue = Fifo()
        self.queue_lock = threading.Lock()
        self.queue_ready = threading.Condition(self.queue_lock)
        self._file_lock = threading.Lock()
        self._connections: set[socket.socket] = set()
        self._connections_lock = threading.Lock()
        self._closed = threading.Event()
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self._listener.bind((host, port))
            self._listener.listen(socket.SOMAXCONN)
        except OSError:
            self._listener.close()
            raise
        self._listener.settimeout(_POLL_INTERVAL)

    @property
    def address(self) -> tuple[str, int]:
        """Address workers connect to."""
        return self._listener.getsockname()

    def __enter__(self) -> "Replicator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def serve_forever(self) -> None:
        """Accept connections until close() is called or accepting fails."""
        log.info("replicator waiting for connections on port %d", self.address[1])
        while not self._closed.is_set():
            try:
                conn, _ = self._listener.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if not self._closed.is_set():
                    log.error("accepting a connection failed: %s", exc)
                break
            with self._connections_lock:
                self._connections.add(conn)
            threading.Thread(target=self.handle_connection, args=(conn,), daemon=True).start()
        self.close()

    def handle_connection(self, conn: socket.socket) -> None:
        """Store every chunk received on a connection until the peer closes it."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                try:
                    data = conn.recv(RECV_SIZE)
                except OSError:
                    break
                if not data:
                    break
                text = decoder.decode(data)
                prefixed = fit_content(REPLICATED_PREFIX + text)
                with self.queue_ready:
                    self.queue.push(prefixed)
                    self.queue_ready.notify()
                log.info("message replicated: %s", prefixed)
                if self.delay:
                    time.sleep(self.delay)
                try:
                    with self._file_lock:
                        save_line(self.output_path, text)
                except OSError as exc:
                    log.error("cannot write %s: %s", self.output_path, exc)
        finally:
            conn.close()
            with self._connections_lock:
                self._connections.discard(conn)

    def close(self) -> None:
        """Stop accepting and disconnect every worker."""
        self._closed.set()
        self._listener.close()
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        with self.queue_ready:
            self.queue_ready.notify_all()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the replicator from the command line."""
    parser = argparse.ArgumentParser(prog="lbcluster-replicator", description="Run the replicator.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=REPLICATOR_PORT)
    parser.add_argument("--output", default=OUTPUT_FILE)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        replicator = Replicator(args.host, args.port, args.output)
    except OSError as exc:
        log.error("cannot listen: %s", exc)
        return 1
    with replicator:
        try:
            replicator.serve_forever()
        except KeyboardInterrupt:
            pass
    return 0