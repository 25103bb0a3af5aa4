"""Stream connections: MasterConfig, the framed Connection wrapper and the TCP connector."""

import logging
import os
import select
import socket
import threading
import time
from dataclasses import dataclass
from typing import Mapping, Protocol

from .codec import hexdump, split_frame
from .errors import ConnectionLostError, NotConnectedError, ResponseTimeoutError, SendFailureError
from .types import ChannelRole

logger = logging.getLogger(__name__)

RECV_BUFFER_SIZE = 2048
ENV_PREFIX = "MBTCP_"


@dataclass(frozen=True)
class MasterConfig:
    """Endpoint and timeout settings shared by both connections of a master."""

    host: str = "localhost"
    port: int = 502
    unit_id: int = 1
    connect_timeout: float = 0.5
    timeout: float = 0.5
    no_delay: bool = True

    def __post_init__(self) -> None:
        if not 0 < self.port <= 65535:
            raise ValueError(f"port must be in 1..65535, got {self.port}")
        if not 0 <= self.unit_id <= 255:
            raise ValueError(f"unit_id must be in 0..255, got {self.unit_id}")
        if self.timeout <= 0 or self.connect_timeout <= 0:
            raise ValueError("timeouts must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "MasterConfig":
        """Build a config from MBTCP_HOST, MBTCP_PORT, MBTCP_UNIT_ID, MBTCP_TIMEOUT, MBTCP_CONNECT_TIMEOUT."""
        env = os.environ if environ is None else environ
        values: dict = {}
        if f"{ENV_PREFIX}HOST" in env:
            values["host"] = env[f"{ENV_PREFIX}HOST"]
        if f"{ENV_PREFIX}PORT" in env:
            values["port"] = int(env[f"{ENV_PREFIX}PORT"])
        if f"{ENV_PREFIX}UNIT_ID" in env:
            values["unit_id"] = int(env[f"{ENV_PREFIX}UNIT_ID"])
        if f"{ENV_PREFIX}TIMEOUT" in env:
            values["timeout"] = float(env[f"{ENV_PREFIX}TIMEOUT"])
        if f"{ENV_PREFIX}CONNECT_TIMEOUT" in env:
            values["connect_timeout"] = float(env[f"{ENV_PREFIX}CONNECT_TIMEOUT"])
        values.update(overrides)
        return cls(**values)


class Connection:
    """
    An owned duplex byte stream with a channel role.

    Incoming bytes accumulate in a per-connection stream buffer and are handed
    out one complete ADU at a time. Only one thread may read; sends are
    serialized by an internal lock.
    """

    def __init__(self, sock: socket.socket, role: ChannelRole, peer: str = "") -> None:
        self._sock = sock
        self._role = role
        self._peer = peer
        self._timeout = sock.gettimeout()
        self._buffer = bytearray()
        self._send_lock = threading.Lock()
        self._closed = False

    @property
    def role(self) -> ChannelRole:
        return self._role

    @property
    def peer(self) -> str:
        return self._peer

    @property
    def connected(self) -> bool:
        return not self._closed

    def fileno(self) -> int:
        return self._sock.fileno()

    def send(self, adu: bytes) -> None:
        """Write a whole ADU. Timeout -> SendFailureError; any other socket error -> ConnectionLostError."""
        if self._closed:
            raise ConnectionLostError("connection is closed")
        with self._send_lock:
            try:
                self._sock.sendall(adu)
            except socket.timeout as e:
                raise SendFailureError(f"send timed out on {self._role.value} connection", cause=e) from e
            except OSError as e:
                raise ConnectionLostError(f"send failed: {e}", cause=e) from e
        logger.debug("%s Tx %s", self._role.value, hexdump(adu))

    def read_frame(self, timeout: float) -> bytes:
        """Block until one complete ADU is buffered, or raise after timeout seconds."""
        deadline = time.monotonic() + timeout
        try:
            while True:
                frame = split_frame(self._buffer)
                if frame is not None:
                    logger.debug("%s Rx %s", self._role.value, hexdump(frame))
                    return frame
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ResponseTimeoutError()
                try:
                    self._sock.settimeout(remaining)
                    chunk = self._sock.recv(RECV_BUFFER_SIZE)
                except socket.timeout as e:
                    raise ResponseTimeoutError(cause=e) from e
                except OSError as e:
                    raise ConnectionLostError(f"receive failed: {e}", cause=e) from e
                if not chunk:
                    raise ConnectionLostError("connection closed by peer")
                self._buffer.extend(chunk)
        finally:
            if not self._closed:
                try:
                    self._sock.settimeout(self._timeout)
                except OSError:
                    pass  # closed underneath us; the caller sees the original error

    def wait_readable(self, timeout: float) -> bool:
        if self._closed:
            raise ConnectionLostError("connection is closed")
        try:
            ready, _, _ = select.select([self._sock], [], [], timeout)
        except (OSError, ValueError) as e:
            raise ConnectionLostError(f"select failed: {e}") from e
        return bool(ready)

    def receive_frames(self) -> list[bytes]:
        """Read what the socket has (call after wait_readable) and return all complete ADUs."""
        try:
            chunk = self._sock.recv(RECV_BUFFER_SIZE)
        except socket.timeout:
            return []
        except OSError as e:
            raise ConnectionLostError(f"receive failed: {e}", cause=e) from e
        if not chunk:
            raise ConnectionLostError("connection closed by peer")
        self._buffer.extend(chunk)
        frames = []
        frame = split_frame(self._buffer)
        while frame is not None:
            logger.debug("%s Rx %s", self._role.value, hexdump(frame))
            frames.append(frame)
            frame = split_frame(self._buffer)
        return frames

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing %s connection: %s", self._role.value, e)
        logger.debug("Closed %s connection %s", self._role.value, self._peer)


class Connector(Protocol):
    """Hands out a connected stream per channel role."""

    def acquire_connection(self, role: ChannelRole) -> Connection: ...


class TcpConnector:
    """Opens one TCP connection per call using the endpoint and timeouts in a MasterConfig."""

    def __init__(self, config: MasterConfig) -> None:
        self._config = config

    def acquire_connection(self, role: ChannelRole) -> Connection:
        cfg = self._config
        try:
            sock = socket.create_connection((cfg.host, cfg.port), timeout=cfg.connect_timeout)
        except OSError as e:
            raise NotConnectedError(f"Failed to connect to {cfg.host}:{cfg.port}: {e}", cause=e) from e
        if cfg.no_delay:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(cfg.timeout)
        logger.info("Opened %s connection to %s:%d", role.value, cfg.host, cfg.port)
        return Connection(sock, role, peer=f"{cfg.host}:{cfg.port}")
