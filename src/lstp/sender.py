from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Optional

from .acks import AckInterpreter, AckKind
from .constants import DEFAULT_UNIT_SIZE, DUP_ACK_THRESHOLD, INITIAL_RTT_MS, STATUS_FOUND_PREFIX
from .net import StreamEndpoint
from .packet import HandshakeError, TransferError, packetize
from .receiver import Metrics
from .rtt import RttEstimator
from .window import SendWindow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Sender:
    """Pushes one file through a connected endpoint.

    The window size is whatever the receiver announces during the handshake.
    Retransmission is unbounded unless ``max_retries`` caps the number of
    consecutive timeouts without forward progress.
    """

    endpoint: StreamEndpoint
    f: BinaryIO
    name: str
    unit_size: int = DEFAULT_UNIT_SIZE
    initial_rtt_ms: float = INITIAL_RTT_MS
    dup_ack_threshold: int = DUP_ACK_THRESHOLD
    max_retries: Optional[int] = None
    clock: Callable[[], float] = time.monotonic
    window_size: int = field(init=False, default=0)

    def handshake(self) -> int:
        window_size = self.endpoint.read_int()
        if window_size < 1:
            raise HandshakeError(f"receiver announced invalid window size {window_size}")
        prompt = self.endpoint.read_string()
        logger.info("handshake; window=%d prompt=%r", window_size, prompt)

        self.endpoint.write_string(os.path.basename(self.name))
        status = self.endpoint.read_string()
        logger.info("handshake; status=%r", status)
        if not status.startswith(STATUS_FOUND_PREFIX):
            raise HandshakeError(f"receiver refused transfer: {status}")

        self.window_size = window_size
        return window_size

    def run(self) -> Metrics:
        metrics = Metrics()
        self.handshake()

        units = packetize(self.f, self.unit_size)
        rtt = RttEstimator(self.initial_rtt_ms, clock=self.clock)
        window = SendWindow(units, self.window_size, self.endpoint.send_unit, rtt, self.clock)
        acks = AckInterpreter(window, rtt, self.dup_ack_threshold)
        total_bytes = sum(len(u.payload) for u in units)
        logger.info("send start; units=%d window=%d size=%d bytes", len(units), self.window_size, total_bytes)

        stalled = 0
        while not window.done:
            window.fill()

            if window.check_timeout():
                stalled += 1
                if self.max_retries is not None and stalled > self.max_retries:
                    raise TransferError(f"too many timeouts; base={window.base}")

            if not self.endpoint.wait_readable(window.time_until_timeout()):
                continue

            ack = self.endpoint.recv_ack()
            if acks.on_ack(ack) is AckKind.NEW:
                stalled = 0
                metrics.final_ack = acks.state.last_acked

        metrics.units_sent = window.units_sent
        metrics.bytes_sent = window.bytes_sent
        metrics.timeouts = window.timeouts
        metrics.retransmits = window.retransmits
        metrics.fast_retransmits = acks.fast_retransmits
        metrics.duplicate_acks = acks.duplicate_acks
        metrics.goodput_bytes = total_bytes
        metrics.end_ts = time.monotonic()
        logger.info(
            "done; final_ack=%d retransmits=%d timeouts=%d throughput=%.2f Mbps",
            metrics.final_ack,
            metrics.retransmits,
            metrics.timeouts,
            metrics.throughput_mbps,
        )
        return metrics
