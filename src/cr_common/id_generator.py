"""Snowflake-style ID generator for ledger entry ids.

Generates monotonically increasing, unique string IDs within one process.
Workers running side by side must be given distinct machine ids
(settings.NODE_ID); entry uniqueness across nodes is additionally enforced
by the ledger_entries primary key.
"""

import threading
import time

from config.settings import settings


class SnowflakeIdGenerator:
    """Layout (64 bits):
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
        self._last_ms = -1
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            now_ms = self._now_ms()
            if now_ms < self._last_ms:
                # Clock moved backwards: keep issuing from the last timestamp
                now_ms = self._last_ms
            if now_ms == self._last_ms:
                self._sequence = (self._sequence + 1) & self._MAX_SEQUENCE
                if self._sequence == 0:
                    now_ms = self._wait_until_after(now_ms)
            else:
                self._sequence = 0

            self._last_ms = now_ms
            value = (
                ((now_ms - self._EPOCH_MS) << (self._MACHINE_BITS + self._SEQUENCE_BITS))
                | (self._machine_id << self._SEQUENCE_BITS)
                | self._sequence
            )
            return str(value)

    def _now_ms(self) -> int:
        return int(time.time() * 1000)

    def _wait_until_after(self, last_ms: int) -> int:
        now_ms = self._now_ms()
        while now_ms <= last_ms:
            now_ms = self._now_ms()
        return now_ms


_default_generator = SnowflakeIdGenerator(machine_id=settings.NODE_ID)


def generate_entry_id() -> str:
    """Next ledger entry id from the process-wide generator."""
    return _default_generator.next_id()
