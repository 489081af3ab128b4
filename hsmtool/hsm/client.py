"""HSM client sending commands through a pooled broker."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from hsmtool.hsm.broker import Broker, Pool


@dataclass
class Config:
    """HSM client configuration; timeouts are in seconds."""

    host: str = ""
    port: int = 0
    pool_size: int = 5
    lmk_index: int = 0
    max_worker: int = 2
    dial_timeout: float = 5.0
    idle_timeout: float = 60.0


class ClientError(RuntimeError):
    """Raised when the client cannot deliver a command."""


def default_config() -> Config:
    """Return the default client configuration."""
    return Config(pool_size=5, max_worker=2, dial_timeout=5.0, idle_timeout=60.0)


class Client:
    """Sends commands to an HSM."""

    def __init__(
        self,
        config: Config | None = None,
        broker: Broker | None = None,
        pool: Pool | None = None,
    ) -> None:
        self.config = config if config is not None else default_config()
        if pool is None:
            pool = Pool(
                self.config.pool_size,
                f"{self.config.host}:{self.config.port}",
                self.config.dial_timeout,
                self.config.idle_timeout,
            )
        if broker is None:
            broker = Broker([pool], self.config.max_worker)
        self.pool = pool
        self.broker = broker
        self._lock = threading.Lock()
        self._ready = True

    @property
    def ready(self) -> bool:
        return self._ready

    def send_command(self, cmd: bytes) -> bytes:
        """Send a command and return the HSM response."""
        with self._lock:
            if not self._ready:
                raise ClientError("hsm client not ready")
            broker = self.broker
        try:
            return broker.send(cmd)
        except Exception as exc:
            raise ClientError(f"failed to send command: {exc}") from exc

    def close(self) -> None:
        """Mark the client as not ready and close its pool."""
        with self._lock:
            self._ready = False
            if self.pool is not None:
                self.pool.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()