"""
Identifier and timestamp generation.

IDs look like::

    ALERT 1718035200123 0007 9F3A
    └─┬─┘ └─────┬─────┘ └┬─┘ └┬─┘
    prefix   epoch ms    seq  random

Within one process the (ms, seq) pair strictly increases, so IDs are
unique and sort in creation order even when many are minted in the
same millisecond. The random tail only separates processes.

``MonotonicClock`` gives the same guarantee for timestamps: two alerts
created back to back never share or invert their ``timestamp``.
"""

from __future__ import annotations

import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

MAX_SEQUENCE = 9999


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IdGenerator:
    """Thread-safe, strictly increasing ID source for one prefix."""

    def __init__(self, prefix: str, *, clock_ms: Callable[[], int] = _epoch_ms):
        self.prefix = prefix
        self._clock_ms = clock_ms
        self._lock = threading.Lock()
        self._last_ms = 0
        self._seq = 0

    def next_id(self) -> str:
        with self._lock:
            now_ms = self._clock_ms()
            if now_ms > self._last_ms:
                self._last_ms = now_ms
                self._seq = 0
            else:
                self._seq += 1
                if self._seq > MAX_SEQUENCE:
                    # Borrow the next millisecond rather than wrap
                    self._last_ms += 1
                    self._seq = 0
            ms, seq = self._last_ms, self._seq
        return f"{self.prefix}{ms:013d}{seq:04d}{secrets.token_hex(2).upper()}"

    __call__ = next_id


class MonotonicClock:
    """Wall clock (UTC) that never returns the same or an earlier instant twice."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = self._clock()
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current

    __call__ = now
