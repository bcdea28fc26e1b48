from __future__ import annotations

import logging
import socket
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional, Tuple

from .constants import (
    DEFAULT_IDLE_TIMEOUT_MS,
    DEFAULT_LOSS_RATE,
    DEFAULT_PORT,
    DEFAULT_WINDOW_SIZE,
    OUTPUT_PREFIX,
    PROMPT,
    STATUS_FOUND,
    STATUS_NOT_FOUND,
)
from .net import Impairment, StreamEndpoint
from .packet import ChannelClosed

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Metrics:
    units_sent: int = 0
    bytes_sent: int = 0
    timeouts: int = 0
    retransmits: int = 0
    fast_retransmits: int = 0
    duplicate_acks: int = 0
    units_received: int = 0
    units_dropped: int = 0
    units_delivered: int = 0
    acks_sent: int = 0
    final_ack: int = 0
    goodput_bytes: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.goodput_bytes * 8 / 1_000_000) / self.duration_s


@dataclass(slots=True)
class ReceiverState:
    expected_seq: int = 1
    last_delivered: int = 0

    def accept(self, seq: int) -> bool:
        """In-order acceptance test: only ``expected_seq`` moves the state."""
        if seq != self.expected_seq:
            return False
        self.expected_seq += 1
        self.last_delivered = self.expected_seq - 1
        return True


@dataclass(slots=True)
class Receiver:
    """Handles one accepted connection from handshake to end of stream."""

    endpoint: StreamEndpoint
    out_dir: Path
    window_size: int = DEFAULT_WINDOW_SIZE
    impairment: Impairment = field(default_factory=Impairment)
    state: ReceiverState = field(default_factory=ReceiverState)
    out_path: Optional[Path] = None

    def _open_output(self, name: str) -> Tuple[Optional[BinaryIO], str]:
        base = Path(name).name
        if not base or base in (".", ".."):
            return None, f"{STATUS_NOT_FOUND}: invalid name {name!r}"
        path = Path(self.out_dir) / f"{OUTPUT_PREFIX}{base}"
        try:
            out = open(path, "wb")
        except (OSError, ValueError) as exc:
            # ValueError: names the OS cannot represent, e.g. an embedded NUL
            return None, f"{STATUS_NOT_FOUND}: {getattr(exc, 'strerror', None) or exc}"
        self.out_path = path
        return out, STATUS_FOUND

    def _handshake(self) -> Optional[BinaryIO]:
        self.endpoint.write_int(self.window_size)
        self.endpoint.write_string(PROMPT)
        name = self.endpoint.read_string()
        out, status = self._open_output(name)
        self.endpoint.write_string(status)
        logger.info("handshake; peer=%s name=%r status=%r", self.endpoint.peer, name, status)
        return out

    def run(self) -> Metrics:
        metrics = Metrics()
        try:
            out = self._handshake()
        except (ChannelClosed, ConnectionError, TimeoutError, ValueError) as exc:
            logger.warning("handshake failed; peer=%s err=%s", self.endpoint.peer, exc)
            out = None

        if out is not None:
            with out:
                self._receive(out, metrics)
            logger.info(
                "receiver done; peer=%s delivered=%d dropped=%d file=%s",
                self.endpoint.peer,
                metrics.units_delivered,
                metrics.units_dropped,
                self.out_path,
            )

        metrics.final_ack = self.state.last_delivered
        metrics.end_ts = time.monotonic()
        return metrics

    def _receive(self, out: BinaryIO, metrics: Metrics) -> None:
        state = self.state
        while True:
            try:
                unit = self.endpoint.recv_unit()
            except TimeoutError:
                logger.info("idle timeout; peer=%s expected_seq=%d", self.endpoint.peer, state.expected_seq)
                return
            except (ChannelClosed, ValueError) as exc:
                logger.warning("malformed unit; peer=%s err=%s", self.endpoint.peer, exc)
                return
            except ConnectionError as exc:
                logger.info("connection lost; peer=%s err=%s", self.endpoint.peer, exc)
                return

            if unit is None:
                logger.info("end of stream; peer=%s last_ack=%d", self.endpoint.peer, state.last_delivered)
                return

            metrics.units_received += 1
            if self.impairment.should_drop(unit.seq):
                metrics.units_dropped += 1
                logger.debug("dropped; seq=%d", unit.seq)
                continue

            if state.accept(unit.seq):
                out.write(unit.payload)
                out.flush()
                metrics.units_delivered += 1
                metrics.goodput_bytes += len(unit.payload)
                logger.debug("delivered; seq=%d ack=%d", unit.seq, state.last_delivered)
            elif unit.seq > state.expected_seq:
                logger.debug("out of order; seq=%d dup_ack=%d", unit.seq, state.last_delivered)
            else:
                logger.debug("already delivered; seq=%d ack=%d", unit.seq, state.last_delivered)

            self.impairment.sleep_if_needed()
            try:
                self.endpoint.send_ack(state.last_delivered)
            except ConnectionError as exc:
                logger.info("connection lost; peer=%s err=%s", self.endpoint.peer, exc)
                return
            metrics.acks_sent += 1


class ReceiverServer:
    """Accept loop; every connection gets its own worker thread and state."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        out_dir: Path | str = ".",
        window_size: int = DEFAULT_WINDOW_SIZE,
        loss_rate: float = DEFAULT_LOSS_RATE,
        delay_ms: int = 0,
        seed: Optional[int] = None,
        idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS,
        max_results: int = 1000,
    ):
        if window_size < 1:
            raise ValueError(f"window size must be at least 1, got {window_size}")
        self.out_dir = Path(out_dir)
        self.window_size = window_size
        self.loss_rate = loss_rate
        self.delay_ms = delay_ms
        self.seed = seed
        self.idle_timeout_ms = idle_timeout_ms

        self.sock = socket.create_server((host, port))
        self.sock.settimeout(0.5)
        # most recent finished transfers only
        self.results: deque[Metrics] = deque(maxlen=max_results)
        self._results_lock = threading.Lock()
        self._workers: list[threading.Thread] = []
        self._stopped = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def serve_forever(self, max_connections: Optional[int] = None) -> None:
        logger.info("receiver listening; addr=%s out_dir=%s", self.address, self.out_dir)
        accepted = 0
        while not self._stopped.is_set():
            if max_connections is not None and accepted >= max_connections:
                break
            try:
                conn, addr = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._stopped.is_set():
                    break
                raise
            accepted += 1
            logger.info("connection accepted; peer=%s", addr)
            t = threading.Thread(target=self._handle, args=(conn,), name=f"lstp-recv-{accepted}", daemon=True)
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(t)
            t.start()

    def _handle(self, conn: socket.socket) -> None:
        endpoint = StreamEndpoint.accepted(conn, timeout_ms=self.idle_timeout_ms)
        receiver = Receiver(
            endpoint,
            self.out_dir,
            window_size=self.window_size,
            impairment=Impairment(self.loss_rate, self.delay_ms, self.seed),
        )
        try:
            metrics = receiver.run()
        except Exception:
            logger.exception("receiver worker failed; peer=%s", endpoint.peer)
            return
        finally:
            endpoint.close()
        with self._results_lock:
            self.results.append(metrics)

    def join_workers(self, timeout: Optional[float] = None) -> None:
        for t in list(self._workers):
            t.join(timeout)

    def shutdown(self) -> None:
        self._stopped.set()
        self.sock.close()
