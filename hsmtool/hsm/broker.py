"""Connection pooling and dispatch of length-prefixed messages over TCP."""

from __future__ import annotations

import socket
import struct
import threading
import time
from collections import deque
from itertools import cycle
from typing import Iterable

_HEADER = struct.Struct(">H")
MAX_MESSAGE_SIZE = 0xFFFF


class BrokerClosedError(ConnectionError):
    """Raised when a closed broker or pool is used."""


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"invalid address: {address!r}")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ValueError(f"invalid port in address: {address!r}") from exc
    host = host.strip("[]") or "localhost"
    return host, port_number


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            raise ConnectionError("connection closed by peer")
        buffer += chunk
    return bytes(buffer)


def _exchange(sock: socket.socket, payload: bytes) -> bytes:
    sock.sendall(_HEADER.pack(len(payload)) + payload)
    (length,) = _HEADER.unpack(_recv_exact(sock, _HEADER.size))
    return _recv_exact(sock, length)


class Pool:
    """A bounded pool of TCP connections to one address, dialled on demand."""

    def __init__(
        self,
        capacity: int,
        address: str,
        dial_timeout: float = 5.0,
        idle_timeout: float = 60.0,
    ) -> None:
        self.capacity = max(1, int(capacity))
        self.address = address
        self.dial_timeout = dial_timeout
        self.idle_timeout = idle_timeout
        self._idle: deque[tuple[socket.socket, float]] = deque()
        self._open = 0
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        """Number of connections currently open, idle or in use."""
        with self._cond:
            return self._open

    def _expired(self, released_at: float, now: float) -> bool:
        return bool(self.idle_timeout) and now - released_at > self.idle_timeout

    def _dial(self) -> socket.socket:
        host, port = _split_address(self.address)
        sock = socket.create_connection((host, port), timeout=self.dial_timeout)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        return sock

    def get(self) -> socket.socket:
        """Take an idle connection or dial a new one, waiting for a free slot."""
        deadline = time.monotonic() + self.dial_timeout
        with self._cond:
            while True:
                if self._closed:
                    raise BrokerClosedError("pool is closed")
                now = time.monotonic()
                while self._idle and self._expired(self._idle[0][1], now):
                    stale, _ = self._idle.popleft()
                    stale.close()
                    self._open -= 1
                if self._idle:
                    return self._idle.pop()[0]
                if self._open < self.capacity:
                    self._open += 1
                    break
                remaining = deadline - now
                if remaining <= 0:
                    raise TimeoutError("timed out waiting for a pooled connection")
                self._cond.wait(remaining)
        try:
            return self._dial()
        except BaseException:
            with self._cond:
                self._open -= 1
                self._cond.notify()
            raise

    def put(self, conn: socket.socket) -> None:
        """Return a healthy connection to the pool."""
        with self._cond:
            if self._closed:
                conn.close()
                self._open = max(0, self._open - 1)
                return
            self._idle.append((conn, time.monotonic()))
            self._cond.notify()

    def discard(self, conn: socket.socket) -> None:
        """Close a broken connection and free its slot."""
        conn.close()
        with self._cond:
            self._open = max(0, self._open - 1)
            self._cond.notify()

    def close(self) -> None:
        """Close idle connections; connections in use close when returned."""
        with self._cond:
            self._closed = True
            for conn, _ in self._idle:
                conn.close()
            self._open = max(0, self._open - len(self._idle))
            self._idle.clear()
            self._cond.notify_all()


class Broker:
    """Sends requests through pooled connections, at most ``workers`` at a time."""

    def __init__(self, pools: Iterable[Pool], workers: int = 1) -> None:
        self._pools = tuple(pools)
        if not self._pools:
            raise ValueError("at least one pool is required")
        self.workers = max(1, int(workers))
        self._slots = threading.BoundedSemaphore(self.workers)
        self._rotation = cycle(self._pools)
        self._rotation_lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def pools(self) -> tuple[Pool, ...]:
        return self._pools

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        """Run until the broker is closed."""
        if self._closed.is_set():
            raise BrokerClosedError("broker is closed")
        self._closed.wait()

    def _next_pool(self) -> Pool:
        with self._rotation_lock:
            return next(self._rotation)

    def send(self, request: bytes, timeout: float | None = None) -> bytes:
        """Send one request and return the response payload."""
        if self._closed.is_set():
            raise BrokerClosedError("broker is closed")
        payload = bytes(request)
        if len(payload) > MAX_MESSAGE_SIZE:
            raise ValueError(f"request exceeds {MAX_MESSAGE_SIZE} bytes")

        deadline = None if timeout is None else time.monotonic() + timeout
        if not self._slots.acquire(timeout=timeout):
            raise TimeoutError("timed out waiting for a free worker")
        try:
            pool = self._next_pool()
            conn = pool.get()
            try:
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError("request timed out")
                    conn.settimeout(remaining)
                else:
                    conn.settimeout(None)
                response = _exchange(conn, payload)
            except BaseException:
                pool.discard(conn)
                raise
            pool.put(conn)
            return response
        finally:
            self._slots.release()

    def close(self) -> None:
        """Stop the broker; further sends fail."""
        self._closed.set()