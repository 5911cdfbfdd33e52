"""Client that sends lines to the load balancer and counts its acknowledgements."""

from __future__ import annotations

import argparse
import codecs
import logging
import random
import socket
import string
import threading
import time
from typing import Iterable, Iterator, Sequence

from lbcluster.balancer import ACK_PREFIX, CLIENT_PORT
from lbcluster.message import BUFFER_SIZE

log = logging.getLogger(__name__)

SERVER_HOST = "127.0.0.1"
MESSAGE_LENGTH = 20
DEFAULT_COUNT = 2000
SEND_DELAY = 75e-6
END_COMMAND = "end"
RECV_SIZE = BUFFER_SIZE - 1
_ALPHABET = string.ascii_lowercase + string.ascii_uppercase


def random_message(rng: random.Random, length: int = MESSAGE_LENGTH) -> str:
    """Return a string of random ASCII letters."""
    return "".join(rng.choice(_ALPHABET) for _ in range(length))


class Client:
    """Sends messages over a connected socket and tracks acknowledgements from the balancer."""

    def __init__(
        self,
        conn: socket.socket,
        rng: random.Random | None = None,
        send_delay: float = SEND_DELAY,
    ) -> None:
        self.conn = conn
        self.rng = rng if rng is not None else random.Random()
        self.send_delay = send_delay
        self.expected_acks = 0
        self.received_acks = 0
        self._acks = threading.Condition()

    def send_lines(self, lines: Iterable[str]) -> int:
        """Send each line until one reads 'end'; return how many were sent."""
        sent = 0
        for line in lines:
            if line == END_COMMAND:
                log.info("ending communication with the server")
                break
            try:
                self.conn.sendall((line + "\n").encode("utf-8"))
            except OSError as exc:
                log.error("sending failed: %s", exc)
                break
            sent += 1
            log.info("message sent to the server")
        return sent

    def send_random(self, count: int = DEFAULT_COUNT) -> list[str]:
        """Send count random messages, expecting one acknowledgement each; return what was sent."""
        with self._acks:
            self.expected_acks = count
            self._acks.notify_all()
        messages = []
        for number in range(1, count + 1):
            message = random_message(self.rng)
            if self.send_delay:
                time.sleep(self.send_delay)
            try:
                self.conn.sendall((message + "\n").encode("utf-8"))
            except OSError as exc:
                log.error("sending failed: %s", exc)
                break
            messages.append(message)
            log.info("message %d sent to the server", number)
        return messages

    def receive_loop(self) -> None:
        """Print server replies and count acknowledgements until the server hangs up; then close the socket."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        keep = len(ACK_PREFIX) - 1
        tail = ""
        try:
            while True:
                try:
                    data = self.conn.recv(RECV_SIZE)
                except OSError as exc:
                    log.error("receiving failed: %s", exc)
                    break
                if not data:
                    log.info("server closed the connection")
                    break
                text = decoder.decode(data)
                log.info("message from server: %s", text)
                tail += text
                found = tail.count(ACK_PREFIX)
                tail = tail[-keep:]
                if found:
                    with self._acks:
                        self.received_acks += found
                        log.info("acknowledgements received: %d", self.received_acks)
                        self._acks.notify_all()
        finally:
            self.conn.close()

    def wait_for_acks(self, timeout: float | None = None) -> bool:
        """Wait until every expected acknowledgement arrived; return False on timeout."""
        with self._acks:
            return self._acks.wait_for(lambda: self.received_acks >= self.expected_acks, timeout)

    def close(self) -> None:
        """Stop sending; the receiver closes the socket once the server hangs up."""
        try:
            self.conn.shutdown(socket.SHUT_WR)
        except OSError:
            pass


def _prompt_lines() -> Iterator[str]:
    while True:
        try:
            yield input("Message for the server (or 'end' to stop): ")
        except EOFError:
            return


def _prompt_option() -> int:
    print("Choose an option:")
    print("1. Type messages for the server (or 'end' to stop)")
    print(f"2. Send {DEFAULT_COUNT} random messages")
    try:
        return int(input("Option: "))
    except (ValueError, EOFError):
        return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the client from the command line."""
    parser = argparse.ArgumentParser(prog="lbcluster-client", description="Send messages to the load balancer.")
    parser.add_argument("--host", default=SERVER_HOST)
    parser.add_argument("--port", type=int, default=CLIENT_PORT)
    parser.add_argument("--option", type=int, choices=(1, 2))
    parser.add_argument("--count", type=int, default=DEFAULT_COUNT)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        conn = socket.create_connection((args.host, args.port))
    except OSError as exc:
        log.error("cannot connect to the server: %s", exc)
        return 1
    print("Connected to the server!")

    client = Client(conn)
    receiver = threading.Thread(target=client.receive_loop, daemon=True)
    receiver.start()

    option = args.option if args.option is not None else _prompt_option()
    if option == 1:
        client.send_lines(_prompt_lines())
    elif option == 2:
        client.send_random(args.count)
    else:
        print("Unknown option!")

    if client.expected_acks > 0:
        try:
            client.wait_for_acks()
        except KeyboardInterrupt:
            pass
        print(f"All acknowledgements received ({client.received_acks}/{client.expected_acks}).")

    client.close()
    receiver.join()
    return 0