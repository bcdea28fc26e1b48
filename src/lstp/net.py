from __future__ import annotations

import random
import selectors
import socket
import struct
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .constants import DEFAULT_CONNECT_TIMEOUT_MS, INT_FORMAT, STRING_LEN_FORMAT
from .packet import ACK, ChannelClosed, Unit, decode_ack, encode_ack, read_unit

_INT = struct.Struct(INT_FORMAT)
_STRING_LEN = struct.Struct(STRING_LEN_FORMAT)


@dataclass(slots=True)
class Impairment:
    """Simulated channel damage: drop units with ``loss_rate``, delay replies."""

    loss_rate: float = 0.0
    delay_ms: int = 0
    seed: Optional[int] = None
    rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.loss_rate <= 1.0:
            raise ValueError(f"loss rate must be within [0, 1], got {self.loss_rate}")
        self.rng = random.Random(self.seed)

    def should_drop(self, seq: int) -> bool:
        return self.rng.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class StreamEndpoint:
    """Framed reads and writes over one connected stream socket."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._selector: Optional[selectors.BaseSelector] = None

    @classmethod
    def connecting(
        cls,
        host: str,
        port: int,
        timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
    ) -> "StreamEndpoint":
        sock = socket.create_connection((host, port), timeout=timeout_ms / 1000.0)
        sock.settimeout(None)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return cls(sock)

    @classmethod
    def accepted(cls, sock: socket.socket, timeout_ms: int = 0) -> "StreamEndpoint":
        sock.settimeout(timeout_ms / 1000.0 if timeout_ms > 0 else None)
        if sock.family in (socket.AF_INET, socket.AF_INET6):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return cls(sock)

    @property
    def peer(self) -> Tuple[str, int] | str:
        try:
            return self.sock.getpeername()
        except OSError:
            return "?"

    def send_all(self, data: bytes) -> None:
        self.sock.sendall(data)

    def recv_exact(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self.sock.recv(n - len(buf))
            if not chunk:
                raise ChannelClosed(
                    f"stream ended after {len(buf)} of {n} bytes", received=len(buf)
                )
            buf += chunk
        return bytes(buf)

    def write_int(self, value: int) -> None:
        self.send_all(_INT.pack(value))

    def read_int(self) -> int:
        (value,) = _INT.unpack(self.recv_exact(_INT.size))
        return value

    def write_string(self, text: str) -> None:
        raw = text.encode("utf-8")
        if len(raw) > 0xFFFF:
            raise ValueError("string too long to frame")
        self.send_all(_STRING_LEN.pack(len(raw)) + raw)

    def read_string(self) -> str:
        (length,) = _STRING_LEN.unpack(self.recv_exact(_STRING_LEN.size))
        return self.recv_exact(length).decode("utf-8") if length else ""

    def send_unit(self, unit: Unit) -> None:
        self.send_all(unit.to_bytes())

    def recv_unit(self) -> Optional[Unit]:
        return read_unit(self)

    def send_ack(self, value: int) -> None:
        self.send_all(encode_ack(value))

    def recv_ack(self) -> int:
        return decode_ack(self.recv_exact(ACK.size))

    def wait_readable(self, timeout_s: Optional[float]) -> bool:
        """Block until data (or EOF) is available, at most ``timeout_s`` seconds."""
        if self._selector is None:
            self._selector = selectors.DefaultSelector()
            self._selector.register(self.sock, selectors.EVENT_READ)
        if timeout_s is not None:
            timeout_s = max(0.0, timeout_s)
        return bool(self._selector.select(timeout_s))

    def close(self) -> None:
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        self.sock.close()
