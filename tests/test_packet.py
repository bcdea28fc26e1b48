from __future__ import annotations

import io

import pytest

from lstp.packet import ChannelClosed, Unit, decode_ack, encode_ack, packetize, read_unit


class BufferReader:
    def __init__(self, raw: bytes):
        self.buf = io.BytesIO(raw)

    def recv_exact(self, n: int) -> bytes:
        data = self.buf.read(n)
        if len(data) < n:
            raise ChannelClosed(received=len(data))
        return data


def test_packetize_numbers_from_one_and_keeps_short_tail():
    units = packetize(io.BytesIO(b"a" * 2500), unit_size=1024)
    assert [u.seq for u in units] == [1, 2, 3]
    assert [len(u.payload) for u in units] == [1024, 1024, 452]
    assert b"".join(u.payload for u in units) == b"a" * 2500


def test_packetize_exact_multiple_has_no_empty_unit():
    units = packetize(io.BytesIO(b"x" * 2048), unit_size=1024)
    assert len(units) == 2


def test_packetize_empty_source():
    assert packetize(io.BytesIO(b"")) == []


def test_packetize_restarts_from_beginning():
    src = io.BytesIO(b"hello world")
    first = packetize(src, unit_size=4)
    second = packetize(src, unit_size=4)
    assert first == second
    assert first[-1] == Unit(3, b"rld")


def test_packetize_rejects_bad_unit_size():
    with pytest.raises(ValueError):
        packetize(io.BytesIO(b"abc"), unit_size=0)


def test_unit_wire_format():
    raw = Unit(7, b"hello").to_bytes()
    assert raw == b"\x00\x00\x00\x07\x00\x00\x00\x05hello"
    assert read_unit(BufferReader(raw)) == Unit(7, b"hello")


def test_read_unit_clean_end_of_stream():
    assert read_unit(BufferReader(b"")) is None


def test_read_unit_truncated_payload():
    raw = Unit(1, b"payload").to_bytes()[:-2]
    with pytest.raises(ChannelClosed):
        read_unit(BufferReader(raw))


def test_read_unit_truncated_header():
    with pytest.raises(ChannelClosed):
        read_unit(BufferReader(b"\x00\x00"))


@pytest.mark.parametrize(
    "raw",
    [
        b"\x00\x00\x00\x00\x00\x00\x00\x01x",  # seq 0
        b"\x00\x00\x00\x01\xff\xff\xff\xff",  # negative length
        b"\x00\x00\x00\x01\x7f\x00\x00\x00",  # absurd length
    ],
)
def test_read_unit_malformed_header(raw):
    with pytest.raises(ValueError):
        read_unit(BufferReader(raw))


def test_ack_codec():
    assert encode_ack(10) == b"\x00\x00\x00\x0a"
    assert decode_ack(encode_ack(10)) == 10
    with pytest.raises(ValueError):
        decode_ack(b"\x00\x01")
