import socket
import threading
import time

import pytest

from lbcluster.balancer import ACK_PREFIX, LoadBalancer, main


def _recv_until(sock, needle, timeout=5.0):
    sock.settimeout(timeout)
    data = b""
    while needle not in data:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk
    return data


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def balancer():
    lb = LoadBalancer(host="127.0.0.1", client_port=0, worker_port=0, dead_delay=0)
    yield lb
    lb.close()


def _connect_worker(balancer):
    lb_side, remote = socket.socketpair()
    remote.sendall(b"worker greeting")
    handle = balancer.accept_worker(lb_side)
    return handle, remote


def test_client_line_is_framed_queued_and_acked(balancer):
    remote, lb_side = socket.socketpair()
    remote.sendall(b"hello\r\n")
    remote.shutdown(socket.SHUT_WR)
    balancer.handle_client(lb_side)
    assert _recv_until(remote, b"\0") == b"LB primio msg_id=0"
    messages = list(balancer.queue)
    assert [m.msg_id for m in messages] == [0]
    assert messages[0].content == "|0|hello|\n"
    remote.close()


def test_ids_increase_per_line(balancer):
    remote, lb_side = socket.socketpair()
    remote.sendall(b"one\ntwo\n")
    remote.shutdown(socket.SHUT_WR)
    balancer.handle_client(lb_side)
    acks = _recv_until(remote, b"\0")
    assert acks == f"{ACK_PREFIX}0{ACK_PREFIX}1".encode()
    assert [(m.msg_id, m.content) for m in balancer.queue] == [(0, "|0|one|\n"), (1, "|1|two|\n")]
    remote.close()


def test_unterminated_line_is_not_queued(balancer):
    remote, lb_side = socket.socketpair()
    remote.sendall(b"partial")
    remote.shutdown(socket.SHUT_WR)
    balancer.handle_client(lb_side)
    assert remote.recv(100) == b""
    assert len(balancer.queue) == 0
    remote.close()


def test_worker_round_trip(balancer):
    handle, worker_remote = _connect_worker(balancer)
    assert handle.id == 0
    client_lb, client_remote = socket.socketpair()
    thread = threading.Thread(target=balancer.handle_client, args=(client_lb,), daemon=True)
    thread.start()

    client_remote.sendall(b"abc\n")
    assert _recv_until(worker_remote, b"\n") == b"|0|abc|\n"
    assert _recv_until(client_remote, b"msg_id=0") == b"LB primio msg_id=0"
    assert len(handle) == 1

    worker_remote.sendall(b"|0|abc|")
    assert _recv_until(client_remote, b"\n") == b"msg_id=0 obradjeno: |0|abc|\n"
    assert _wait_for(lambda: balancer.processed == 1)
    assert len(handle) == 0
    assert len(balancer.queue) == 0

    client_remote.close()
    thread.join(5)
    assert not thread.is_alive()
    worker_remote.close()


def test_worker_disconnect_requeues_messages(balancer):
    handle, worker_remote = _connect_worker(balancer)
    client_lb, client_remote = socket.socketpair()
    thread = threading.Thread(target=balancer.handle_client, args=(client_lb,), daemon=True)
    thread.start()

    client_remote.sendall(b"abc\n")
    assert _recv_until(worker_remote, b"\n") == b"|0|abc|\n"
    worker_remote.close()

    assert _wait_for(lambda: not balancer.workers)
    assert [m.content for m in balancer.queue] == ["|0|abc|\n"]
    assert len(handle) == 0
    client_remote.close()
    thread.join(5)


def test_second_worker_triggers_redistribution(balancer):
    first, first_remote = _connect_worker(balancer)
    client_lb, client_remote = socket.socketpair()
    thread = threading.Thread(target=balancer.handle_client, args=(client_lb,), daemon=True)
    thread.start()
    client_remote.sendall(b"x\n")
    assert _recv_until(first_remote, b"\n") == b"|0|x|\n"
    assert _recv_until(client_remote, b"msg_id=0") == b"LB primio msg_id=0"

    second, second_remote = _connect_worker(balancer)
    assert [w.id for w in balancer.workers] == [0, 1]
    assert second.id == 1
    assert _recv_until(first_remote, b"|0|x|\n") == b"FREE_QUEUE\n|0|x|\n"
    assert _recv_until(second_remote, b"\n") == b"FREE_QUEUE\n"
    assert len(first) == 1
    assert len(second) == 0
    assert len(balancer.queue) == 0

    client_remote.close()
    thread.join(5)
    first_remote.close()
    second_remote.close()


def test_serve_forever_over_tcp_and_close(balancer):
    server = threading.Thread(target=balancer.serve_forever, daemon=True)
    server.start()
    address = balancer.client_address
    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"ping\n")
        assert _recv_until(client, b"msg_id=0") == b"LB primio msg_id=0"
    assert _wait_for(lambda: len(balancer.queue) == 1)
    assert [m.content for m in balancer.queue] == ["|0|ping|\n"]

    balancer.close()
    server.join(5)
    assert not server.is_alive()
    with pytest.raises(OSError):
        socket.create_connection(address, timeout=2)


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit):
        main(["--client-port", "not-a-port"])