from __future__ import annotations

import pytest

from lstp.packet import Unit
from lstp.rtt import RttEstimator
from lstp.window import SendWindow


def make_window(clock, n=10, window_size=4):
    units = [Unit(i, bytes([i])) for i in range(1, n + 1)]
    sent: list[int] = []
    rtt = RttEstimator(100.0, clock=clock)
    window = SendWindow(units, window_size, lambda u: sent.append(u.seq), rtt, clock)
    return window, rtt, sent


def test_fill_respects_window(clock):
    window, _, sent = make_window(clock)
    assert window.fill() == 4
    assert sent == [1, 2, 3, 4]
    assert window.fill() == 0
    assert window.outstanding == 4


def test_fill_stops_at_last_unit(clock):
    window, _, sent = make_window(clock, n=2)
    window.fill()
    assert sent == [1, 2]
    assert window.next_seq == 3


def test_acknowledge_slides_window(clock):
    window, _, sent = make_window(clock)
    window.fill()
    window.acknowledge(2)
    assert window.base == 3
    assert set(window.in_flight) == {3, 4}
    window.fill()
    assert sent[-2:] == [5, 6]
    assert window.next_seq - window.base <= window.window_size


def test_ack_beyond_sent_units_is_clamped(clock):
    window, _, _ = make_window(clock)
    window.fill()
    window.acknowledge(9)
    assert window.base == window.next_seq == 5


def test_timeout_resends_only_base(clock):
    window, rtt, sent = make_window(clock)
    window.fill()
    sent.clear()

    clock.advance_ms(99)
    assert window.check_timeout() is False
    clock.advance_ms(2)
    assert window.check_timeout() is True
    assert sent == [1]
    assert rtt.current_timeout() == pytest.approx(200.0)
    assert window.timeouts == 1


def test_consecutive_timeouts_back_off(clock):
    window, rtt, sent = make_window(clock, n=3)
    window.fill()
    sent.clear()
    for m in range(1, 5):
        clock.advance_ms(rtt.current_timeout() + 1)
        assert window.check_timeout()
        assert rtt.current_timeout() == pytest.approx(100.0 * 2**m)
    assert sent == [1, 1, 1, 1]


def test_time_until_timeout(clock):
    window, _, _ = make_window(clock)
    assert window.time_until_timeout() is None
    window.fill()
    assert window.time_until_timeout() == pytest.approx(0.1)
    clock.advance_ms(40)
    assert window.time_until_timeout() == pytest.approx(0.06)


def test_fast_retransmit_leaves_timer_alone(clock):
    window, _, sent = make_window(clock)
    window.fill()
    clock.advance_ms(50)
    before = window.last_activity
    assert window.retransmit(3) is True
    assert sent[-1] == 3
    assert window.last_activity == before
    assert window.retransmit(7) is False


def test_done_after_last_ack(clock):
    window, _, _ = make_window(clock, n=3)
    window.fill()
    assert not window.done
    window.acknowledge(3)
    assert window.done
    assert window.in_flight == {}


def test_empty_transfer_is_done(clock):
    window, _, _ = make_window(clock, n=0)
    assert window.done
    assert window.fill() == 0


def test_rejects_zero_window(clock):
    with pytest.raises(ValueError):
        make_window(clock, window_size=0)
