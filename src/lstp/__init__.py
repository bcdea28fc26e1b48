"""Lossy Stream Transfer Protocol (LSTP)

Reliable file transfer over TCP with simulated packet loss layered back on top,
so the usual transport machinery has something to recover from:
- a sliding send window with cumulative acknowledgments
- duplicate-ACK detection and fast retransmit
- an adaptive retransmission timeout (EWMA of RTT) with exponential backoff

Packet framing, protocol state machines and socket plumbing live in separate
modules so each can be tested without the others.
"""

__all__ = []
