"""
vestledger/core/time.py

Clock helpers.

The engine itself takes `now` as an argument and never reads a clock.
Host components read time through here:

    unix_now()        — integer seconds since the Unix epoch
    MonotonicClock    — unix_now() that never goes backwards
    journal_timestamp — YYYY-MM-DDTHH:MM:SS.mmmZ for journal entries
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional


def unix_now() -> int:
    """Current UTC time in whole seconds."""
    return int(datetime.now(timezone.utc).timestamp())


def journal_timestamp() -> str:
    """
    Return current UTC time in journal wire format.
    Format: YYYY-MM-DDTHH:MM:SS.mmmZ  (exactly 3 fractional digits, Z suffix)
    """
    now = datetime.now(timezone.utc)
    ms  = now.microsecond // 1000
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"


def format_unix(ts: int) -> str:
    """Render unix seconds as an ISO-8601 UTC string (for human output)."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class MonotonicClock:
    """
    Non-decreasing source of unix seconds.

    If the wall clock steps backwards, the last value handed out is
    repeated until the wall clock catches up.
    """

    def __init__(self, source: Optional[Callable[[], int]] = None) -> None:
        self._source = source or unix_now
        self._last: Optional[int] = None
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            current = int(self._source())
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
            return current

    def __call__(self) -> int:
        return self.now()
