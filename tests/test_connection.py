import queue
import socket
import socketserver
import struct
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from hsmtool.hsm.connection import Connection, ConnectionError_, ConnectionState


class _Handler(socketserver.BaseRequestHandler):
    def _read(self, size):
        buf = b""
        while len(buf) < size:
            chunk = self.request.recv(size - len(buf))
            if not chunk:
                return None
            buf += chunk
        return buf

    def handle(self):
        try:
            while True:
                header = self._read(2)
                if header is None:
                    return
                (length,) = struct.unpack(">H", header)
                payload = self._read(length)
                if payload is None:
                    return
                reply = b"ND00" if payload == b"NC" else b"ER"
                self.request.sendall(struct.pack(">H", len(reply)) + reply)
        except OSError:
            return


class _Server(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


@pytest.fixture
def hsm_server():
    server = _Server(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address
    yield host, str(port)
    server.shutdown()
    server.server_close()


@pytest.fixture
def closed_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return str(port)


@pytest.fixture
def changes():
    return []


@pytest.fixture
def conn(changes):
    connection = Connection(changes.append)
    yield connection
    if connection.state() is not ConnectionState.DISCONNECTED:
        connection.disconnect()


def test_new_connection_defaults():
    connection = Connection(None)
    assert connection.state() is ConnectionState.DISCONNECTED
    assert connection.worker_count == 3
    assert connection.dial_timeout == 5.0
    assert connection.idle_timeout == 60.0
    assert connection.pool_capacity() == 0
    assert connection.last_error() is None


def test_successful_connect_disconnect(conn, changes, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 1)
    assert conn.state() is ConnectionState.CONNECTED
    assert conn.last_error() is None
    conn.disconnect()
    assert conn.state() is ConnectionState.DISCONNECTED
    assert changes == [ConnectionState.CONNECTED, ConnectionState.DISCONNECTED]


def test_connect_when_already_connected(conn, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 1)
    with pytest.raises(ConnectionError_, match="already connected"):
        conn.connect(host, port, 1)
    assert conn.state() is ConnectionState.CONNECTED
    conn.disconnect()
    assert conn.state() is ConnectionState.DISCONNECTED


def test_connect_refused_sets_error_and_capacity(conn, closed_port):
    with pytest.raises(ConnectionError_) as info:
        conn.connect("127.0.0.1", closed_port, 5)
    assert "failed to dial" in str(info.value)
    assert conn.last_error() is info.value
    assert conn.state() is ConnectionState.DISCONNECTED
    assert conn.pool_capacity() == 5


def test_disconnect_when_not_connected(conn):
    with pytest.raises(ConnectionError_, match="already disconnected"):
        conn.disconnect()
    assert conn.state() is ConnectionState.DISCONNECTED


def test_pool_capacity_at_least_one(conn, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 0)
    assert conn.pool_capacity() == 1


def test_pool_capacity_after_connect(conn, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 4)
    assert conn.pool_capacity() == 4


def test_execute_command_success(conn, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 2)
    assert conn.execute_command(b"NC", 5.0) == b"ND00"
    assert conn.execute_command(b"XX", 5.0) == b"ER"


def test_execute_command_without_broker(conn):
    with pytest.raises(ConnectionError_, match="broker is not initialized"):
        conn.execute_command(b"NC", 5.0)


def test_execute_command_after_disconnect(conn, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 1)
    conn.disconnect()
    with pytest.raises(ConnectionError_, match="broker is not initialized"):
        conn.execute_command(b"NC", 5.0)


def test_reconnect_after_disconnect(conn, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 1)
    conn.disconnect()
    conn.connect(host, port, 1)
    assert conn.state() is ConnectionState.CONNECTED
    assert conn.execute_command(b"NC", 5.0) == b"ND00"


def test_state_callback_receives_state(conn, hsm_server):
    host, port = hsm_server
    received = queue.Queue()
    conn.register_state_callback(lambda state, error: received.put((state, error)))
    conn.connect(host, port, 1)
    assert received.get(timeout=2) == (ConnectionState.CONNECTED, None)
    conn.disconnect()
    assert received.get(timeout=2) == (ConnectionState.DISCONNECTED, None)


def test_many_concurrent_commands(conn, hsm_server):
    host, port = hsm_server
    conn.connect(host, port, 3)
    commands = [b"NC", b"XX"] * 5
    with ThreadPoolExecutor(max_workers=10) as executor:
        responses = list(executor.map(lambda cmd: conn.execute_command(cmd, 5.0), commands))
    assert responses == [b"ND00", b"ER"] * 5