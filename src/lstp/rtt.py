from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .constants import INITIAL_RTT_MS, RTT_ALPHA, RTT_BETA, RTT_DEV_WEIGHT

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RttState:
    estimated_rtt: float
    deviation_rtt: float
    timeout_interval: float


@dataclass(slots=True)
class RttEstimator:
    """EWMA round-trip estimator for one transfer. All durations are in ms.

    Send times are keyed by sequence number. A retransmission overwrites the
    previous send time for its sequence number, and each send time is consumed
    by at most one acknowledgment.
    """

    initial_rtt_ms: float = INITIAL_RTT_MS
    alpha: float = RTT_ALPHA
    beta: float = RTT_BETA
    clock: Callable[[], float] = time.monotonic
    state: RttState = field(init=False)
    _sent_at: dict[int, float] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.state = RttState(
            estimated_rtt=self.initial_rtt_ms,
            deviation_rtt=0.0,
            timeout_interval=self.initial_rtt_ms,
        )

    def record_send(self, seq: int) -> None:
        self._sent_at[seq] = self.clock()

    def on_ack_received(self, ack: int) -> Optional[float]:
        sent = self._sent_at.pop(ack, None)
        for seq in [s for s in self._sent_at if s < ack]:
            del self._sent_at[seq]
        if sent is None:
            return None

        sample = (self.clock() - sent) * 1000.0
        st = self.state
        st.estimated_rtt = (1 - self.alpha) * st.estimated_rtt + self.alpha * sample
        st.deviation_rtt = (1 - self.beta) * st.deviation_rtt + self.beta * abs(
            sample - st.estimated_rtt
        )
        st.timeout_interval = st.estimated_rtt + RTT_DEV_WEIGHT * st.deviation_rtt
        logger.debug(
            "rtt sample; ack=%d sample=%.1fms est=%.1fms dev=%.2fms rto=%.2fms",
            ack,
            sample,
            st.estimated_rtt,
            st.deviation_rtt,
            st.timeout_interval,
        )
        return sample

    def on_timeout(self) -> None:
        self.state.timeout_interval *= 2

    def current_timeout(self) -> float:
        return self.state.timeout_interval
