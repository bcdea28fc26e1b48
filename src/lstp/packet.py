from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional, Protocol

from .constants import ACK_FORMAT, DEFAULT_UNIT_SIZE, MAX_UNIT_SIZE, UNIT_HEADER_FORMAT

UNIT_HEADER = struct.Struct(UNIT_HEADER_FORMAT)
ACK = struct.Struct(ACK_FORMAT)


class TransferError(Exception):
    """A transfer could not be completed."""


class HandshakeError(TransferError):
    pass


class ChannelClosed(TransferError):
    """The peer closed the stream before a complete frame arrived."""

    def __init__(self, message: str = "connection closed by peer", received: int = 0):
        super().__init__(message)
        self.received = received


class ByteReader(Protocol):
    def recv_exact(self, n: int) -> bytes: ...


@dataclass(frozen=True, slots=True)
class Unit:
    seq: int
    payload: bytes = b""

    def to_bytes(self) -> bytes:
        return UNIT_HEADER.pack(self.seq, len(self.payload)) + self.payload


def packetize(source: BinaryIO, unit_size: int = DEFAULT_UNIT_SIZE) -> list[Unit]:
    """Split ``source`` into units numbered 1..N in file order.

    The source is rewound first when it supports seeking, so calling this twice
    on the same file yields the same units. The last unit may be short.
    """
    if unit_size <= 0:
        raise ValueError(f"unit size must be positive, got {unit_size}")
    if source.seekable():
        source.seek(0)

    units: list[Unit] = []
    seq = 1
    for chunk in iter(lambda: source.read(unit_size), b""):
        units.append(Unit(seq, chunk))
        seq += 1
    return units


def read_unit(reader: ByteReader, max_size: int = MAX_UNIT_SIZE) -> Optional[Unit]:
    """Decode one unit; ``None`` means the stream ended cleanly between units."""
    try:
        header = reader.recv_exact(UNIT_HEADER.size)
    except ChannelClosed as exc:
        if exc.received == 0:
            return None
        raise

    seq, length = UNIT_HEADER.unpack(header)
    if seq < 1:
        raise ValueError(f"invalid sequence number: {seq}")
    if length < 0 or length > max_size:
        raise ValueError(f"invalid payload length: {length}")

    payload = reader.recv_exact(length) if length else b""
    return Unit(seq, payload)


def encode_ack(value: int) -> bytes:
    return ACK.pack(value)


def decode_ack(raw: bytes) -> int:
    if len(raw) != ACK.size:
        raise ValueError(f"ack must be {ACK.size} bytes, got {len(raw)}")
    (value,) = ACK.unpack(raw)
    return value
