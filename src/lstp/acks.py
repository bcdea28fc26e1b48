from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from .constants import DUP_ACK_THRESHOLD
from .rtt import RttEstimator
from .window import SendWindow

logger = logging.getLogger(__name__)


class AckKind(enum.Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    FAST_RETRANSMIT = "fast_retransmit"
    STALE = "stale"


@dataclass(slots=True)
class AckTrackState:
    last_acked: int = 0
    duplicate_count: int = 0
    last_duplicate: int = -1


class AckInterpreter:
    def __init__(self, window: SendWindow, rtt: RttEstimator, threshold: int = DUP_ACK_THRESHOLD):
        if threshold < 1:
            raise ValueError(f"duplicate ack threshold must be at least 1, got {threshold}")
        self.window = window
        self.rtt = rtt
        self.threshold = threshold
        self.state = AckTrackState()

        self.duplicate_acks = 0
        self.fast_retransmits = 0

    def on_ack(self, ack: int) -> AckKind:
        st = self.state

        if ack >= self.window.next_seq:
            logger.warning("ack beyond sent units ignored; ack=%d next_seq=%d", ack, self.window.next_seq)
            return AckKind.STALE

        if ack > st.last_acked:
            st.last_acked = ack
            st.duplicate_count = 0
            st.last_duplicate = -1
            self.window.acknowledge(ack)
            self.rtt.on_ack_received(ack)
            return AckKind.NEW

        if ack != st.last_acked or ack <= 0:
            return AckKind.STALE

        self.duplicate_acks += 1
        if ack == st.last_duplicate:
            st.duplicate_count += 1
        else:
            st.duplicate_count = 1
            st.last_duplicate = ack
        logger.debug("duplicate ack; ack=%d count=%d", ack, st.duplicate_count)

        if st.duplicate_count < self.threshold:
            return AckKind.DUPLICATE

        st.duplicate_count = 0
        st.last_duplicate = -1
        if not self.window.retransmit(ack + 1):
            return AckKind.DUPLICATE
        logger.info("fast retransmit; seq=%d after %d duplicate acks", ack + 1, self.threshold)
        self.fast_retransmits += 1
        return AckKind.FAST_RETRANSMIT
