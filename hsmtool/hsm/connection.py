"""Managed HSM connection with state tracking and automatic reconnection."""

from __future__ import annotations

import threading
from enum import IntEnum
from typing import Callable, Optional

from hsmtool.hsm.broker import Broker, BrokerClosedError, Pool

MAX_RECONNECT_ATTEMPTS = 5
BACKOFF_BASE = 1.0
MAX_BACKOFF = 30.0
START_GRACE = 0.1


class ConnectionState(IntEnum):
    """Current state of the HSM connection."""

    DISCONNECTED = 0
    CONNECTED = 1
    RECONNECTING = 2


class ConnectionError_(ConnectionError):
    """Raised when the connection cannot perform the requested operation."""


StateChanged = Callable[[ConnectionState], None]
StateCallback = Callable[[ConnectionState, Optional[BaseException]], None]


class Connection:
    """Manages a pooled broker connection to an HSM."""

    def __init__(self, state_changed: StateChanged | None = None) -> None:
        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._host = ""
        self._port = ""
        self._broker: Broker | None = None
        self._pool: Pool | None = None
        self._state_changed = state_changed
        self._callbacks: list[StateCallback] = []
        self._pool_cap = 0
        self._last_error: BaseException | None = None
        self._stop = threading.Event()
        self._reconnect_guard = threading.Lock()
        self._reconnecting = False
        self.worker_count = 3
        self.dial_timeout = 5.0
        self.idle_timeout = 60.0

    def connect(self, host: str, port: str | int, num_conns: int = 1) -> None:
        """Open a pool of connections to host:port and start the broker."""
        if self._state is ConnectionState.CONNECTED:
            raise ConnectionError_("already connected")

        with self._lock:
            # Halt any reconnection loop belonging to a previous session.
            self._stop.set()
            self._stop = threading.Event()
            self._teardown()

            self._pool_cap = max(1, int(num_conns))
            self._host = host
            self._port = str(port)

            try:
                broker, pool = self._create_broker()
            except ConnectionError_ as exc:
                self._last_error = exc
                raise
            self._broker = broker
            self._pool = pool
            self._spawn_runner(broker)

            self._stop.wait(START_GRACE)
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED)

    def disconnect(self) -> None:
        """Close the connection pool and the broker."""
        with self._lock:
            if self._state is ConnectionState.DISCONNECTED:
                raise ConnectionError_("already disconnected")
            self._stop.set()
            self._set_state(ConnectionState.DISCONNECTED)
            self._teardown()

    def state(self) -> ConnectionState:
        """Return the current connection state."""
        return self._state

    def pool_capacity(self) -> int:
        """Return the configured capacity of the connection pool."""
        with self._lock:
            return self._pool_cap

    def last_error(self) -> BaseException | None:
        """Return the last error that occurred, if any."""
        with self._lock:
            return self._last_error

    def register_state_callback(self, callback: StateCallback) -> None:
        """Register a callback invoked with (state, last_error) on state changes."""
        with self._lock:
            self._callbacks.append(callback)

    def execute_command(self, command: bytes, timeout: float = 5.0) -> bytes:
        """Send a command to the HSM and return its response."""
        with self._lock:
            broker = self._broker
        if broker is None:
            raise ConnectionError_("broker is not initialized")
        return broker.send(bytes(command), timeout)

    def _address(self) -> str:
        return f"{self._host}:{self._port}"

    def _create_broker(self) -> tuple[Broker, Pool]:
        address = self._address()
        pool = Pool(self._pool_cap, address, self.dial_timeout, self.idle_timeout)
        try:
            conn = pool.get()
        except OSError as exc:
            pool.close()
            raise ConnectionError_(f"failed to dial {address}: {exc}") from exc
        pool.put(conn)
        return Broker([pool], self.worker_count), pool

    def _teardown(self) -> None:
        if self._pool is not None:
            self._pool.close()
        if self._broker is not None:
            self._broker.close()
        self._broker = None
        self._pool = None

    def _spawn_runner(self, broker: Broker) -> None:
        threading.Thread(target=self._run_broker, args=(broker,), daemon=True).start()

    def _run_broker(self, broker: Broker) -> None:
        error: BaseException | None = None
        try:
            broker.start()
        except BrokerClosedError:
            pass
        except Exception as exc:
            error = exc

        with self._lock:
            if self._broker is not broker:
                return
            if error is not None:
                self._last_error = ConnectionError_(
                    f"broker stopped unexpectedly: {error}"
                )
                if not self._reconnecting:
                    threading.Thread(
                        target=self._reconnect, args=(self._stop,), daemon=True
                    ).start()
            else:
                self._last_error = None
            self._set_state(ConnectionState.DISCONNECTED)

    def _reconnect(self, stop: threading.Event) -> None:
        with self._reconnect_guard:
            if self._reconnecting:
                return
            self._reconnecting = True
        try:
            with self._lock:
                self._state = ConnectionState.RECONNECTING
                self._notify()

            for attempt in range(1, MAX_RECONNECT_ATTEMPTS + 1):
                delay = min(BACKOFF_BASE * 2 ** (attempt - 1), MAX_BACKOFF)
                if stop.wait(delay):
                    return

                with self._lock:
                    self._teardown()

                try:
                    broker, pool = self._create_broker()
                except ConnectionError_ as exc:
                    with self._lock:
                        self._last_error = ConnectionError_(
                            f"reconnection attempt {attempt} failed: {exc}"
                        )
                    continue

                with self._lock:
                    if stop.is_set():
                        broker.close()
                        pool.close()
                        return
                    self._pool = pool
                    self._broker = broker
                    self._last_error = None
                    self._state = ConnectionState.CONNECTED
                    self._notify()
                    self._spawn_runner(broker)
                return

            with self._lock:
                self._state = ConnectionState.DISCONNECTED
                if self._last_error is None:
                    self._last_error = ConnectionError_(
                        f"failed to reconnect after {MAX_RECONNECT_ATTEMPTS} attempts"
                    )
                self._notify()
        finally:
            with self._reconnect_guard:
                self._reconnecting = False

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if self._state_changed is not None:
            self._state_changed(state)
        self._notify()

    def _notify(self) -> None:
        state = self._state
        error = self._last_error
        for callback in self._callbacks:
            if callback is not None:
                threading.Thread(
                    target=callback, args=(state, error), daemon=True
                ).start()