"""ID generation.

- ``RequestIdSequence``: wire request ids, unique for the lifetime of one connection.
- ``SnowflakeIdGenerator``: business IDs (trade_id, market_id), monotonically increasing.
"""

import itertools
import threading
import time


class RequestIdSequence:
    """Monotonic positive request ids. A new connection gets a new sequence.

    Id 0 is never issued: pushes from the clearing node carry id 0.
    """

    def __init__(self, start: int = 1) -> None:
        if start < 1:
            raise ValueError("request ids start at 1")
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)


class SnowflakeIdGenerator:
    """Simple snowflake ID generator.

    Layout (64 bits):
      - 41 bits: millisecond timestamp (since custom epoch)
      - 10 bits: machine_id (0-1023)
      - 12 bits: sequence (0-4095 per millisecond)
    """

    _EPOCH_MS = 1_700_000_000_000  # 2023-11-14 approx
    _MACHINE_BITS = 10
    _SEQUENCE_BITS = 12
    _MAX_SEQUENCE = (1 << _SEQUENCE_BITS) - 1

    def __init__(self, machine_id: int = 0) -> None:
        if not (0 <= machine_id < (1 << self._MACHINE_BITS)):
            raise ValueError(f"machine_id must be 0-{(1 << self._MACHINE_BITS) - 1}")
        self._machine_id = machine_id
        self._sequence = 0
        self._last_timestamp_ms = -1
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            ts = int(time.time() * 1000)
            if ts == self._last_timestamp_ms:
                self._sequence = (self._sequence + 1) & self._MAX_SEQUENCE
                if self._sequence == 0:
                    while ts <= self._last_timestamp_ms:
                        ts = int(time.time() * 1000)
            else:
                self._sequence = 0
            self._last_timestamp_ms = ts
            return (
                ((ts - self._EPOCH_MS) << (self._MACHINE_BITS + self._SEQUENCE_BITS))
                | (self._machine_id << self._SEQUENCE_BITS)
                | self._sequence
            )

    def next_id(self, prefix: str = "") -> str:
        return f"{prefix}{self.next_int()}"


_default_generator = SnowflakeIdGenerator()


def generate_trade_id() -> str:
    return _default_generator.next_id("trd_")


def generate_market_id() -> str:
    return _default_generator.next_id("mkt_")
