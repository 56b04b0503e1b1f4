import json
import socket
import threading
import time

import pytest

from controller.command_sender import CommandSender, ConnectionState
from controller.exceptions import ConnectError, NotConnected, SendError


class LineServer:
    """Local TCP server that records every newline-terminated line it receives."""

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(4)
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self.lines: list[bytes] = []
        self.connections = 0
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def _accept_loop(self):
        while not self._stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            self.connections += 1
            threading.Thread(target=self._read, args=(conn,), daemon=True).start()

    def _read(self, conn):
        buffer = b""
        with conn:
            conn.settimeout(0.1)
            while not self._stop.is_set():
                try:
                    chunk = conn.recv(4096)
                except socket.timeout:
                    continue
                except OSError:
                    break
                if not chunk:
                    break
                buffer += chunk
                while b"\n" in buffer:
                    line, buffer = buffer.split(b"\n", 1)
                    self.lines.append(line)

    def wait_for_lines(self, count, timeout=2.0):
        deadline = time.monotonic() + timeout
        while len(self.lines) < count and time.monotonic() < deadline:
            time.sleep(0.01)
        return [json.loads(line) for line in self.lines]

    def close(self):
        self._stop.set()
        self.sock.close()
        self._thread.join(timeout=1.0)


@pytest.fixture
def server():
    srv = LineServer()
    yield srv
    srv.close()


@pytest.fixture
def sender():
    s = CommandSender(connect_timeout=1.0)
    yield s
    s.close()


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_send_before_connect_raises_not_connected(sender):
    with pytest.raises(NotConnected):
        sender.send({"command": "noop"})
    assert sender.state is ConnectionState.DISCONNECTED


def test_connect_send_close_lifecycle(server, sender):
    sender.connect("127.0.0.1", server.port)
    assert sender.is_connected()
    assert sender.state is ConnectionState.CONNECTED
    assert sender.peer == ("127.0.0.1", server.port)

    sender.send({"command": "set_pipeline", "index": 2})
    sender.send(["exposure", 12])

    assert server.wait_for_lines(2) == [
        {"command": "set_pipeline", "index": 2},
        ["exposure", 12],
    ]

    sender.close()
    assert not sender.is_connected()
    assert sender.peer is None
    with pytest.raises(NotConnected):
        sender.send({"command": "noop"})


def test_close_is_idempotent(server, sender):
    sender.close()
    sender.connect("127.0.0.1", server.port)
    sender.close()
    sender.close()

    assert not sender.is_connected()
    assert sender.state is ConnectionState.DISCONNECTED


def test_connect_refused_raises_connect_error(sender):
    port = unused_port()

    with pytest.raises(ConnectError) as excinfo:
        sender.connect("127.0.0.1", port)

    assert excinfo.value.port == port
    assert not sender.is_connected()


def test_reconnect_opens_new_session(server, sender):
    sender.connect("127.0.0.1", server.port)
    sender.send({"n": 1})
    server.wait_for_lines(1)

    sender.reconnect("127.0.0.1", server.port)
    sender.send({"n": 2})

    assert server.wait_for_lines(2) == [{"n": 1}, {"n": 2}]
    assert server.connections == 2
    assert sender.is_connected()


def test_reconnect_from_disconnected(server, sender):
    sender.reconnect("127.0.0.1", server.port)

    assert sender.is_connected()


def test_failed_reconnect_leaves_sender_disconnected(server, sender):
    sender.connect("127.0.0.1", server.port)

    with pytest.raises(ConnectError):
        sender.reconnect("127.0.0.1", unused_port())

    assert not sender.is_connected()


def test_close_failure_is_logged_and_state_reset(server, sender, caplog):
    class BrokenSocket:
        def shutdown(self, how):
            raise OSError("already gone")

        def close(self):
            raise OSError("close failed")

    sender.connect("127.0.0.1", server.port)
    real = sender._sock
    sender._sock = BrokenSocket()
    try:
        sender.close()
    finally:
        real.close()

    assert not sender.is_connected()
    assert "close failed" in caplog.text


def test_send_failure_closes_session(sender):
    class FailingSocket:
        def sendall(self, data):
            raise BrokenPipeError("peer closed")

        def shutdown(self, how):
            pass

        def close(self):
            pass

    sender._sock = FailingSocket()
    sender._peer = ("127.0.0.1", 5801)

    with pytest.raises(SendError):
        sender.send({"command": "noop"})
    assert not sender.is_connected()
    assert sender.peer is None


def test_unserializable_command_does_not_touch_session(server, sender):
    sender.connect("127.0.0.1", server.port)

    with pytest.raises(TypeError):
        sender.send({"bad": object()})

    assert sender.is_connected()


def test_concurrent_sends_never_interleave(server, sender):
    sender.connect("127.0.0.1", server.port)
    payload = "x" * 2000

    def worker(n):
        for i in range(25):
            sender.send({"worker": n, "i": i, "payload": payload})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    received = server.wait_for_lines(100)
    assert len(received) == 100
    assert all(r["payload"] == payload for r in received)


def test_sends_racing_reconnect_either_succeed_or_raise_cleanly(server, sender):
    sender.connect("127.0.0.1", server.port)
    errors = []
    sent = []

    def send_loop():
        for i in range(50):
            try:
                sender.send({"i": i})
                sent.append(i)
            except NotConnected:
                pass
            except Exception as e:
                errors.append(e)

    t = threading.Thread(target=send_loop)
    t.start()
    for _ in range(5):
        sender.reconnect("127.0.0.1", server.port)
    t.join()

    assert errors == []
    assert len(server.wait_for_lines(len(sent))) == len(sent)


def test_context_manager_closes(server):
    with CommandSender() as s:
        s.connect("127.0.0.1", server.port)
        assert s.is_connected()

    assert not s.is_connected()
