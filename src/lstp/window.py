from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .packet import Unit
from .rtt import RttEstimator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InFlightEntry:
    seq: int
    payload: bytes
    sent_at: float


class SendWindow:
    """Sliding window over units 1..N.

    ``base`` is the oldest unacknowledged sequence number and ``next_seq`` the
    next one never sent; ``base <= next_seq <= base + window_size`` holds
    throughout. On RTO expiry only the unit at ``base`` is resent.
    """

    def __init__(
        self,
        units: Sequence[Unit],
        window_size: int,
        transmit: Callable[[Unit], None],
        rtt: RttEstimator,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_size < 1:
            raise ValueError(f"window size must be at least 1, got {window_size}")
        self.units = units
        self.window_size = window_size
        self.transmit = transmit
        self.rtt = rtt
        self.clock = clock

        self.base = 1
        self.next_seq = 1
        self.in_flight: dict[int, InFlightEntry] = {}
        self.last_activity = clock()

        self.units_sent = 0
        self.bytes_sent = 0
        self.timeouts = 0
        self.retransmits = 0

    @property
    def total(self) -> int:
        return len(self.units)

    @property
    def done(self) -> bool:
        return self.base > self.total

    @property
    def outstanding(self) -> int:
        return self.next_seq - self.base

    def _send(self, unit: Unit) -> None:
        self.transmit(unit)
        now = self.clock()
        self.in_flight[unit.seq] = InFlightEntry(unit.seq, unit.payload, now)
        self.rtt.record_send(unit.seq)
        self.units_sent += 1
        self.bytes_sent += len(unit.payload)

    def fill(self) -> int:
        sent = 0
        while self.next_seq <= self.total and self.next_seq - self.base < self.window_size:
            unit = self.units[self.next_seq - 1]
            self._send(unit)
            logger.debug("sent; seq=%d len=%d", unit.seq, len(unit.payload))
            self.next_seq += 1
            self.last_activity = self.clock()
            sent += 1
        return sent

    def time_until_timeout(self) -> Optional[float]:
        """Seconds until the base timer expires, ``None`` if nothing is in flight."""
        if self.base not in self.in_flight:
            return None
        deadline = self.last_activity + self.rtt.current_timeout() / 1000.0
        return max(0.0, deadline - self.clock())

    def check_timeout(self) -> bool:
        entry = self.in_flight.get(self.base)
        if entry is None:
            return False
        elapsed_ms = (self.clock() - self.last_activity) * 1000.0
        if elapsed_ms <= self.rtt.current_timeout():
            return False

        logger.info(
            "timeout; retransmit seq=%d rto=%.1fms", entry.seq, self.rtt.current_timeout()
        )
        self._send(Unit(entry.seq, entry.payload))
        self.timeouts += 1
        self.retransmits += 1
        self.rtt.on_timeout()
        self.last_activity = self.clock()
        return True

    def retransmit(self, seq: int) -> bool:
        entry = self.in_flight.get(seq)
        if entry is None:
            return False
        self._send(Unit(entry.seq, entry.payload))
        self.retransmits += 1
        return True

    def acknowledge(self, ack: int) -> None:
        if ack < self.base:
            return
        # an ack can never cover units that were not sent yet
        self.base = min(ack, self.next_seq - 1) + 1
        for seq in [s for s in self.in_flight if s <= ack]:
            del self.in_flight[seq]
        self.last_activity = self.clock()
