"""
Clock - injectable time source.

Services never read the system time directly. They receive a clock: any
zero-argument callable returning epoch seconds. The transfer lock window
and every journal timestamp come from it, so tests and replays can run
against a controlled time.
"""

import time
from threading import Lock
from typing import Callable

Clock = Callable[[], int]


def system_clock() -> int:
    """Current time in epoch seconds."""
    return int(time.time())


class ManualClock:
    """
    Clock with controlled time.

    Returns the same value on repeated calls until advance() or set()
    is called.
    """

    def __init__(self, start: int = 1_700_000_000):
        self._now = start
        self._lock = Lock()

    def __call__(self) -> int:
        with self._lock:
            return self._now

    def set(self, now: int) -> None:
        with self._lock:
            self._now = now

    def advance(self, seconds: int = 1) -> int:
        """Advance by `seconds` and return the new time."""
        with self._lock:
            self._now += seconds
            return self._now
