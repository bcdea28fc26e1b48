from __future__ import annotations

UNIT_HEADER_FORMAT = "!ii"  # seq, payload length
ACK_FORMAT = "!i"
INT_FORMAT = "!i"
STRING_LEN_FORMAT = "!H"

DEFAULT_UNIT_SIZE = 1024
MAX_UNIT_SIZE = 65536
DEFAULT_WINDOW_SIZE = 4
DEFAULT_LOSS_RATE = 0.1
DUP_ACK_THRESHOLD = 3

RTT_ALPHA = 0.125
RTT_BETA = 0.25
RTT_DEV_WEIGHT = 4
INITIAL_RTT_MS = 105.0

DEFAULT_PORT = 5000
DEFAULT_IDLE_TIMEOUT_MS = 30_000
DEFAULT_CONNECT_TIMEOUT_MS = 5_000

PROMPT = "Enter the file name:"
STATUS_FOUND_PREFIX = "File found"
STATUS_FOUND = f"{STATUS_FOUND_PREFIX}, starting transfer..."
STATUS_NOT_FOUND = "File not found"
OUTPUT_PREFIX = "received_"
