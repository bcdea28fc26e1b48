from __future__ import annotations

import pytest

from lstp.net import Impairment


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class DropFirst(Impairment):
    """Drops the first arrival of each listed sequence number."""

    def __init__(self, *seqs: int):
        super().__init__()
        self.pending = set(seqs)

    def should_drop(self, seq: int) -> bool:
        if seq in self.pending:
            self.pending.discard(seq)
            return True
        return False


@pytest.fixture
def drop_first():
    return DropFirst
