from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path

from .bench import run_benchmark
from .constants import (
    DEFAULT_IDLE_TIMEOUT_MS,
    DEFAULT_LOSS_RATE,
    DEFAULT_PORT,
    DEFAULT_UNIT_SIZE,
    DEFAULT_WINDOW_SIZE,
    INITIAL_RTT_MS,
)
from .net import StreamEndpoint
from .packet import TransferError
from .receiver import ReceiverServer
from .sender import Sender

logger = logging.getLogger("lstp")


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_recv(args: argparse.Namespace) -> int:
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    server = ReceiverServer(
        args.listen_host,
        args.listen_port,
        out_dir=out_dir,
        window_size=args.window_size,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
        seed=args.seed,
        idle_timeout_ms=args.idle_timeout_ms,
    )
    try:
        server.serve_forever(max_connections=args.max_connections)
        server.join_workers()
    except KeyboardInterrupt:
        logger.info("interrupted; shutting down")
    finally:
        server.shutdown()

    for m in server.results:
        _emit(
            {
                "role": "receiver",
                "bytes": m.goodput_bytes,
                "seconds": m.duration_s,
                "mbps": m.throughput_mbps,
                "delivered": m.units_delivered,
                "dropped": m.units_dropped,
                "final_ack": m.final_ack,
            },
            args.json,
        )
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    endpoint = StreamEndpoint.connecting(args.dest_host, args.dest_port)
    try:
        with open(args.file, "rb") as f:
            metrics = Sender(
                endpoint,
                f,
                args.file,
                unit_size=args.unit_size,
                initial_rtt_ms=args.initial_rtt_ms,
                max_retries=args.max_retries,
            ).run()
    finally:
        endpoint.close()

    _emit(
        {
            "role": "sender",
            "bytes": metrics.goodput_bytes,
            "seconds": metrics.duration_s,
            "mbps": metrics.throughput_mbps,
            "final_ack": metrics.final_ack,
            "timeouts": metrics.timeouts,
            "retransmits": metrics.retransmits,
            "fast_retransmits": metrics.fast_retransmits,
        },
        args.json,
    )
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        size_bytes=args.size_bytes,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
        unit_size=args.unit_size,
        window_size=args.window_size,
        initial_rtt_ms=args.initial_rtt_ms,
        seed=args.seed,
    )
    _emit({"role": "bench", **asdict(r)}, args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lstp", description="Reliable file transfer over a lossy-simulated stream.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--json", action="store_true")

    def add_channel(x: argparse.ArgumentParser) -> None:
        x.add_argument("--window-size", type=int, default=DEFAULT_WINDOW_SIZE)
        x.add_argument("--loss-rate", type=float, default=DEFAULT_LOSS_RATE)
        x.add_argument("--delay-ms", type=int, default=0)
        x.add_argument("--seed", type=int, default=None)

    recv = sub.add_parser("recv", help="accept transfers and write received_<name> files")
    add_common(recv)
    add_channel(recv)
    recv.add_argument("--listen-host", default="0.0.0.0")
    recv.add_argument("--listen-port", type=int, default=DEFAULT_PORT)
    recv.add_argument("--out-dir", default=".")
    recv.add_argument("--idle-timeout-ms", type=int, default=DEFAULT_IDLE_TIMEOUT_MS)
    recv.add_argument("--max-connections", type=int, default=None)
    recv.set_defaults(func=cmd_recv)

    send = sub.add_parser("send", help="send a file to a receiver")
    add_common(send)
    send.add_argument("--dest-host", default="localhost")
    send.add_argument("--dest-port", type=int, default=DEFAULT_PORT)
    send.add_argument("--file", required=True)
    send.add_argument("--unit-size", type=int, default=DEFAULT_UNIT_SIZE)
    send.add_argument("--initial-rtt-ms", type=float, default=INITIAL_RTT_MS)
    send.add_argument("--max-retries", type=int, default=None, help="give up after this many timeouts without progress")
    send.set_defaults(func=cmd_send)

    bench = sub.add_parser("bench", help="loopback benchmark through a real receiver")
    add_common(bench)
    add_channel(bench)
    bench.add_argument("--size-bytes", type=int, default=1_000_000)
    bench.add_argument("--unit-size", type=int, default=DEFAULT_UNIT_SIZE)
    bench.add_argument("--initial-rtt-ms", type=float, default=INITIAL_RTT_MS)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except (TransferError, OSError) as exc:
        logger.error("%s failed; %s", args.cmd, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
