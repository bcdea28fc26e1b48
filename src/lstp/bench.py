from __future__ import annotations

import os
import random
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .constants import DEFAULT_UNIT_SIZE, DEFAULT_WINDOW_SIZE, INITIAL_RTT_MS, OUTPUT_PREFIX
from .net import StreamEndpoint
from .packet import TransferError
from .receiver import ReceiverServer
from .sender import Sender


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    duration_s: float
    throughput_mbps: float
    retransmits: int
    timeouts: int
    fast_retransmits: int
    units_dropped: int


def run_benchmark(
    *,
    size_bytes: int,
    loss_rate: float = 0.0,
    delay_ms: int = 0,
    unit_size: int = DEFAULT_UNIT_SIZE,
    window_size: int = DEFAULT_WINDOW_SIZE,
    initial_rtt_ms: float = INITIAL_RTT_MS,
    seed: Optional[int] = None,
) -> BenchmarkResult:
    payload = random.Random(seed).randbytes(size_bytes)

    with tempfile.TemporaryDirectory() as tmp:
        workdir = Path(tmp)
        src = workdir / "payload.bin"
        src.write_bytes(payload)
        out_dir = workdir / "out"
        out_dir.mkdir()

        server = ReceiverServer(
            "127.0.0.1",
            0,
            out_dir=out_dir,
            window_size=window_size,
            loss_rate=loss_rate,
            delay_ms=delay_ms,
            seed=seed,
        )
        host, port = server.address
        t = threading.Thread(target=server.serve_forever, kwargs={"max_connections": 1}, daemon=True)
        t.start()

        endpoint = StreamEndpoint.connecting(host, port)
        try:
            with open(src, "rb") as f:
                send_metrics = Sender(
                    endpoint,
                    f,
                    str(src),
                    unit_size=unit_size,
                    initial_rtt_ms=initial_rtt_ms,
                ).run()
        finally:
            endpoint.close()

        t.join(timeout=10.0)
        server.join_workers(timeout=10.0)
        server.shutdown()

        received = out_dir / f"{OUTPUT_PREFIX}{src.name}"
        if not received.exists() or os.path.getsize(received) != size_bytes:
            raise TransferError(f"received file incomplete: {received}")
        if received.read_bytes() != payload:
            raise TransferError("received file does not match payload")
        dropped = sum(m.units_dropped for m in server.results)

    duration_s = max(0.001, send_metrics.duration_s)
    return BenchmarkResult(
        bytes_transferred=size_bytes,
        duration_s=duration_s,
        throughput_mbps=(size_bytes * 8 / 1_000_000) / duration_s,
        retransmits=send_metrics.retransmits,
        timeouts=send_metrics.timeouts,
        fast_retransmits=send_metrics.fast_retransmits,
        units_dropped=dropped,
    )
