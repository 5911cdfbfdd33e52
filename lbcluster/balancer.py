"""Load balancer that takes lines from clients and spreads them over connected workers."""

from __future__ import annotations

import argparse
import itertools
import logging
import socket
import threading
import time
from typing import Callable, Sequence

from lbcluster.distributor import Distributor, find_most_free_worker
from lbcluster.fifo import Fifo
from lbcluster.message import (
    BUFFER_SIZE,
    LineSplitter,
    Message,
    MessageType,
    fit_content,
    frame_content,
)
from lbcluster.workerinfo import WorkerHandle

log = logging.getLogger(__name__)

CLIENT_PORT = 5059
WORKER_PORT = 6060
RECV_SIZE = BUFFER_SIZE - 1
ACK_PREFIX = "LB primio msg_id="
PROCESSED_FORMAT = "msg_id={msg_id} obradjeno: {content}"
_POLL_INTERVAL = 0.2


def _open_listener(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(socket.SOMAXCONN)
    except OSError:
        sock.close()
        raise
    sock.settimeout(_POLL_INTERVAL)
    return sock


def _shutdown(conn: socket.socket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


class LoadBalancer:
    """Accepts clients and workers; forwards each client line to the least busy worker."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        client_port: int = CLIENT_PORT,
        worker_port: int = WORKER_PORT,
        dead_delay: float = 0.01,
    ) -> None:
        self.queue = Fifo()
        self.queue_lock = threading.Lock()
        self.workers: list[WorkerHandle] = []
        self.workers_lock = threading.Lock()
        self.distributor = Distributor(self.queue, self.workers, self.queue_lock, dead_delay)
        self.processed = 0
        self._processed_lock = threading.Lock()
        self._ids = itertools.count()
        self._id_lock = threading.Lock()
        self._clients: set[socket.socket] = set()
        self._clients_lock = threading.Lock()
        self._closed = threading.Event()
        self._client_listener = _open_listener(host, client_port)
        try:
            self._worker_listener = _open_listener(host, worker_port)
        except OSError:
            self._client_listener.close()
            raise

    @property
    def client_address(self) -> tuple[str, int]:
        """Address clients connect to."""
        return self._client_listener.getsockname()

    @property
    def worker_address(self) -> tuple[str, int]:
        """Address workers connect to."""
        return self._worker_listener.getsockname()

    def __enter__(self) -> "LoadBalancer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def serve_forever(self) -> None:
        """Accept clients and workers until close() is called."""
        log.info("load balancer listening for clients on port %d", self.client_address[1])
        threads = [
            threading.Thread(
                target=self._accept_loop,
                args=(self._client_listener, self._start_client),
                daemon=True,
            ),
            threading.Thread(
                target=self._accept_loop,
                args=(self._worker_listener, self.accept_worker),
                daemon=True,
            ),
        ]
        for thread in threads:
            thread.start()
        self._closed.wait()
        for thread in threads:
            thread.join()

    def _accept_loop(self, listener: socket.socket, on_accept: Callable[[socket.socket], object]) -> None:
        while not self._closed.is_set():
            try:
                conn, _ = listener.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self._closed.is_set():
                    return
                log.error("accepting a connection failed: %s", exc)
                time.sleep(_POLL_INTERVAL)
                continue
            on_accept(conn)

    def _start_client(self, conn: socket.socket) -> None:
        log.info("client connected")
        with self._clients_lock:
            self._clients.add(conn)
        threading.Thread(target=self.handle_client, args=(conn,), daemon=True).start()

    def handle_client(self, conn: socket.socket) -> None:
        """Read newline-terminated lines from a client, queue and dispatch each, and acknowledge it."""
        splitter = LineSplitter(strip_cr=True)
        try:
            while True:
                try:
                    data = conn.recv(RECV_SIZE)
                except OSError as exc:
                    log.error("receiving from client failed: %s", exc)
                    break
                if not data:
                    log.info("client disconnected")
                    break
                for line in splitter.feed(data):
                    self._accept_line(conn, line)
        finally:
            conn.close()
            with self._clients_lock:
                self._clients.discard(conn)
            log.info("client handler finished")

    def _accept_line(self, conn: socket.socket, line: str) -> None:
        log.info("received from client: %r", line)
        with self._id_lock:
            msg_id = next(self._ids)
        message = Message(
            msg_id,
            frame_content(msg_id, fit_content(line)),
            MessageType.TEXT,
            client=conn,
        )
        with self.queue_lock:
            self.queue.push(message)
        with self.workers_lock:
            worker = find_most_free_worker(self.workers)
        if worker is not None:
            self.distributor.dispatch(worker)
        try:
            conn.sendall(f"{ACK_PREFIX}{msg_id}".encode("utf-8"))
        except OSError as exc:
            log.error("acknowledging message %d failed: %s", msg_id, exc)

    def accept_worker(self, conn: socket.socket) -> WorkerHandle:
        """Register a newly connected worker, rebalance if others exist, and start its reader."""
        with self.workers_lock:
            handle = WorkerHandle(len(self.workers), conn)
            self.workers.append(handle)
            log.info("worker added with id %d", handle.id)
            if len(self.workers) > 1:
                self.distributor.redistribute()
            for worker in self.workers:
                log.info("%r", worker)
        try:
            conn.recv(RECV_SIZE)
        except OSError as exc:
            log.error("reading greeting from worker %d failed: %s", handle.id, exc)
        threading.Thread(target=self.handle_worker, args=(handle,), daemon=True).start()
        return handle

    def handle_worker(self, handle: WorkerHandle) -> None:
        """Relay worker replies to clients; when the worker leaves, requeue and redispatch its messages."""
        conn = handle.conn
        while True:
            try:
                data = conn.recv(RECV_SIZE)
            except OSError as exc:
                log.error("receiving from worker %d failed: %s", handle.id, exc)
                break
            if not data:
                log.info("worker %d disconnected", handle.id)
                break
            log.info("worker %d response: %s", handle.id, data.decode("utf-8", errors="replace"))
            finished = handle.pop_message()
            if finished is None:
                log.warning("no in-flight message to pop for worker %d", handle.id)
                continue
            self._acknowledge(finished)

        with self.queue_lock:
            for message in handle.drain():
                log.info("message returned to queue: %s", message.content)
                self.queue.push(message)
        with self.workers_lock:
            try:
                self.workers.remove(handle)
            except ValueError:
                pass
        conn.close()
        with self.workers_lock:
            self.distributor.redistribute_dead()
        log.info("handler for worker %d ended", handle.id)

    def _acknowledge(self, message: Message) -> None:
        text = fit_content(PROCESSED_FORMAT.format(msg_id=message.msg_id, content=message.content))
        if message.client is not None:
            try:
                message.client.sendall(text.encode("utf-8"))
            except OSError as exc:
                log.error("notifying client of message %d failed: %s", message.msg_id, exc)
        with self._processed_lock:
            self.processed += 1

    def close(self) -> None:
        """Stop accepting and disconnect every client and worker."""
        self._closed.set()
        for listener in (self._client_listener, self._worker_listener):
            listener.close()
        with self._clients_lock:
            clients = list(self._clients)
        for conn in clients:
            _shutdown(conn)
        with self.workers_lock:
            workers = list(self.workers)
        for worker in workers:
            if worker.conn is not None:
                _shutdown(worker.conn)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the load balancer from the command line."""
    parser = argparse.ArgumentParser(prog="lbcluster-balancer", description="Run the load balancer.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--client-port", type=int, default=CLIENT_PORT)
    parser.add_argument("--worker-port", type=int, default=WORKER_PORT)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        balancer = LoadBalancer(args.host, args.client_port, args.worker_port)
    except OSError as exc:
        log.error("cannot listen: %s", exc)
        return 1
    with balancer:
        try:
            balancer.serve_forever()
        except KeyboardInterrupt:
            pass
    return 0